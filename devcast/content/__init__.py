"""Post drafting and publishing."""
from .context import build_context, clean_generated_text, fallback_text
from .generator import (
    PLATFORM_CONSTRAINTS,
    ContentGenerator,
    EmptyGenerationError,
    Platform,
    PlatformConstraints,
)
from .publisher import ContentPublisher, PublishResult

__all__ = [
    "PLATFORM_CONSTRAINTS",
    "ContentGenerator",
    "ContentPublisher",
    "EmptyGenerationError",
    "Platform",
    "PlatformConstraints",
    "PublishResult",
    "build_context",
    "clean_generated_text",
    "fallback_text",
]
