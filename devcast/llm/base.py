"""Base LLM provider interface."""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class LLMResponse:
    """Response from an LLM."""
    content: str
    model: str
    provider: str
    usage: dict[str, int] = field(default_factory=dict)
    finish_reason: str = "stop"
    raw_response: Optional[Any] = None

    @property
    def input_tokens(self) -> int:
        return self.usage.get("input_tokens", 0)

    @property
    def output_tokens(self) -> int:
        return self.usage.get("output_tokens", 0)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class LLMProvider(ABC):
    """
    Base class for LLM providers.

    Implementations translate SDK failures into the DevCast taxonomy:
    RateLimitError, UpstreamServerError, UpstreamTimeoutError (retryable) and
    ProviderAuthError, ProviderRequestError (terminal).
    """

    provider_name: str = "base"
    default_model: str = ""

    @property
    def is_configured(self) -> bool:
        """Whether credentials are present."""
        return True

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        *,
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 150,
        system_prompt: Optional[str] = None,
        **kwargs,
    ) -> LLMResponse:
        """
        Generate a response from the model.

        Args:
            prompt: User prompt
            model: Model ID to use
            temperature: Sampling temperature (0-2)
            max_tokens: Maximum tokens to generate
            system_prompt: System instructions
            **kwargs: Provider-specific options

        Returns:
            LLMResponse with generated content
        """
        pass
