"""Google Gemini LLM provider."""
from typing import Optional

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from google.generativeai.types import GenerationConfig

from .base import LLMProvider, LLMResponse
from ..core.errors import (
    ConfigurationError,
    ProviderAuthError,
    ProviderRequestError,
    RateLimitError,
    UpstreamServerError,
    UpstreamTimeoutError,
)

# Aliases for convenience
MODEL_ALIASES = {
    "flash": "gemini-2.5-flash",
    "flash-lite": "gemini-2.5-flash-lite",
    "fast": "gemini-2.0-flash-lite",
}


class GeminiProvider(LLMProvider):
    """Google Gemini provider using the Google AI Studio API."""

    provider_name = "gemini"

    def __init__(
        self,
        api_key: Optional[str] = None,
        default_model: str = "gemini-2.5-flash",
    ):
        """
        Initialize Gemini provider.

        Args:
            api_key: Google AI API key
            default_model: Default model to use for requests.
        """
        if not api_key:
            raise ConfigurationError("Google API key required. Set DEVCAST_GOOGLE_API_KEY.")

        self.api_key = api_key
        genai.configure(api_key=self.api_key)
        self.default_model = self._resolve_model(default_model)

    def _resolve_model(self, model: str) -> str:
        """Resolve model alias to full model ID."""
        return MODEL_ALIASES.get(model, model)

    def _get_client(self, model: str, system_prompt: Optional[str] = None) -> genai.GenerativeModel:
        """Get a GenerativeModel client for the specified model."""
        return genai.GenerativeModel(self._resolve_model(model), system_instruction=system_prompt)

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
        """Generate a response from Gemini."""
        model_id = self._resolve_model(model or self.default_model)
        client = self._get_client(model_id, system_prompt)

        config = GenerationConfig(
            temperature=temperature,
            max_output_tokens=max_tokens,
        )

        try:
            response = await client.generate_content_async(
                prompt,
                generation_config=config,
            )
        except google_exceptions.ResourceExhausted as e:
            raise RateLimitError(str(e)) from e
        except google_exceptions.DeadlineExceeded as e:
            raise UpstreamTimeoutError(str(e)) from e
        except (google_exceptions.Unauthenticated, google_exceptions.PermissionDenied) as e:
            raise ProviderAuthError(str(e)) from e
        except google_exceptions.ServerError as e:
            raise UpstreamServerError(str(e), status_code=e.code) from e
        except google_exceptions.ClientError as e:
            raise ProviderRequestError(str(e)) from e

        usage = {}
        if getattr(response, "usage_metadata", None):
            usage = {
                "input_tokens": response.usage_metadata.prompt_token_count,
                "output_tokens": response.usage_metadata.candidates_token_count,
            }

        try:
            text = response.text
        except ValueError:
            # Blocked or empty candidates
            text = ""

        return LLMResponse(
            content=text,
            model=model_id,
            provider=self.provider_name,
            usage=usage,
            finish_reason=response.candidates[0].finish_reason.name if response.candidates else "unknown",
            raw_response=response,
        )
