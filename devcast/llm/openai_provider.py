"""OpenAI LLM provider."""
from datetime import datetime, timedelta, timezone
from typing import Optional

import openai
from openai import AsyncOpenAI

from .base import LLMProvider, LLMResponse
from ..core.errors import (
    ConfigurationError,
    ProviderAuthError,
    ProviderRequestError,
    RateLimitError,
    UpstreamServerError,
    UpstreamTimeoutError,
)


def _reset_from_headers(headers) -> Optional[datetime]:
    """Read a retry hint from OpenAI rate-limit headers."""
    if headers is None:
        return None
    retry_after = headers.get("retry-after")
    if retry_after:
        try:
            return datetime.now(timezone.utc) + timedelta(seconds=float(retry_after))
        except ValueError:
            return None
    return None


class OpenAIProvider(LLMProvider):
    """
    OpenAI chat completions provider.

    Uses gpt-4o-mini by default for cost efficiency.
    """

    provider_name = "openai"

    def __init__(
        self,
        api_key: Optional[str] = None,
        default_model: str = "gpt-4o-mini",
        timeout: float = 30.0,
    ):
        """
        Initialize OpenAI provider.

        Args:
            api_key: OpenAI API key
            default_model: Default model (gpt-4o-mini for cost efficiency)
            timeout: Per-request timeout in seconds
        """
        if not api_key:
            raise ConfigurationError("OpenAI API key required. Set DEVCAST_OPENAI_API_KEY.")

        self.api_key = api_key
        self.default_model = default_model
        self.timeout = timeout
        self._client: Optional[AsyncOpenAI] = None

    def _get_client(self) -> AsyncOpenAI:
        """Lazy load OpenAI client."""
        if self._client is None:
            # Retries are handled by the caller's backoff policy
            self._client = AsyncOpenAI(api_key=self.api_key, timeout=self.timeout, max_retries=0)
        return self._client

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
        """Generate a response from OpenAI."""
        model_id = model or self.default_model
        client = self._get_client()

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        try:
            response = await client.chat.completions.create(
                model=model_id,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except openai.RateLimitError as e:
            raise RateLimitError(str(e), reset_at=_reset_from_headers(e.response.headers)) from e
        except openai.APITimeoutError as e:
            raise UpstreamTimeoutError(str(e)) from e
        except openai.APIConnectionError as e:
            raise ConnectionError(str(e)) from e
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            raise ProviderAuthError(str(e)) from e
        except openai.InternalServerError as e:
            raise UpstreamServerError(str(e), status_code=e.status_code) from e
        except openai.APIStatusError as e:
            if e.status_code >= 500:
                raise UpstreamServerError(str(e), status_code=e.status_code) from e
            raise ProviderRequestError(str(e)) from e

        usage = {}
        if response.usage:
            usage = {
                "input_tokens": response.usage.prompt_tokens,
                "output_tokens": response.usage.completion_tokens,
            }

        return LLMResponse(
            content=response.choices[0].message.content or "",
            model=model_id,
            provider=self.provider_name,
            usage=usage,
            finish_reason=response.choices[0].finish_reason or "unknown",
            raw_response=response,
        )
