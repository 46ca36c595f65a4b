"""LLM providers used for drafting posts."""
from .base import LLMProvider, LLMResponse
from .router import ProviderRouter, build_providers

__all__ = [
    "LLMProvider",
    "LLMResponse",
    "ProviderRouter",
    "build_providers",
]
