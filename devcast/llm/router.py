"""Provider selection for content generation."""
from typing import Optional

from .base import LLMProvider
from ..core.config import Settings
from ..core.errors import ConfigurationError


class ProviderRouter:
    """
    Picks the LLM provider for a request.

    Order of preference:
    - The caller's preference (usually the user's ``ai_provider``) if configured
    - The router default
    - Any configured provider
    """

    def __init__(
        self,
        providers: dict[str, LLMProvider],
        default: Optional[str] = None,
    ):
        """
        Initialize the router.

        Args:
            providers: Dict of provider_name -> LLMProvider instances
            default: Name of the default provider

        Raises:
            ConfigurationError: If no provider is configured
        """
        self.providers = {
            name: provider
            for name, provider in providers.items()
            if provider is not None and provider.is_configured
        }
        if not self.providers:
            raise ConfigurationError("No AI provider configured")
        self.default = default if default in self.providers else next(iter(self.providers))

    @property
    def available(self) -> list[str]:
        return list(self.providers)

    def select(self, preference: Optional[str] = None) -> LLMProvider:
        """
        Select a provider.

        Raises:
            ConfigurationError: If the router has been emptied at runtime
        """
        if preference and preference in self.providers:
            return self.providers[preference]
        if self.default in self.providers:
            return self.providers[self.default]
        if self.providers:
            return next(iter(self.providers.values()))
        raise ConfigurationError("No AI provider configured")


def build_providers(settings: Settings) -> dict[str, LLMProvider]:
    """Instantiate every provider that has credentials in ``settings``."""
    providers: dict[str, LLMProvider] = {}
    if settings.openai_api_key:
        from .openai_provider import OpenAIProvider
        providers["openai"] = OpenAIProvider(
            api_key=settings.openai_api_key,
            default_model=settings.openai_model,
            timeout=settings.ai_request_timeout_seconds,
        )
    if settings.google_api_key:
        from .gemini import GeminiProvider
        providers["gemini"] = GeminiProvider(
            api_key=settings.google_api_key,
            default_model=settings.gemini_model,
        )
    return providers
