"""
Twitter/X API v2 integration.

Posts tweets and reads public metrics on behalf of a user, using the
user's OAuth 2.0 access token.

Usage:
    client = TwitterClient(access_token=user.twitter_token)
    tweet = await client.post_tweet("Shipped v1.2.0 🚀 #devwork")
    metrics = await client.get_metrics(tweet.id)
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import httpx

from ..core.errors import (
    PlatformRejectedError,
    ProviderAuthError,
    RateLimitError,
    UpstreamServerError,
    UpstreamTimeoutError,
)
from ..core.rate_limiter import Throttle

logger = logging.getLogger(__name__)

# Twitter API v2 endpoints
TWITTER_API_BASE = "https://api.twitter.com/2"
TWEET_URL_TEMPLATE = "https://twitter.com/i/status/{id}"
MAX_TWEET_LENGTH = 280

# Legacy error codes that signal a temporary condition
RETRYABLE_ERROR_CODES = {88, 130, 131}


@dataclass
class Tweet:
    """Represents a posted tweet."""
    id: str
    text: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def url(self) -> str:
        return TWEET_URL_TEMPLATE.format(id=self.id)

    @classmethod
    def from_api_response(cls, data: dict) -> "Tweet":
        """Create Tweet from API response."""
        return cls(
            id=data.get("id", ""),
            text=data.get("text", ""),
        )

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "text": self.text,
            "url": self.url,
            "created_at": self.created_at.isoformat(),
        }


def _format_error(response: httpx.Response) -> str:
    """Human readable message from a Twitter error body."""
    try:
        data = response.json()
    except ValueError:
        return f"HTTP {response.status_code}: {response.text[:200]}"

    errors = data.get("errors") or []
    messages = [e.get("message") or e.get("detail") for e in errors if isinstance(e, dict)]
    messages = [m for m in messages if m]
    if messages:
        return "; ".join(messages)
    return data.get("detail") or data.get("title") or f"HTTP {response.status_code}"


def _legacy_error_codes(response: httpx.Response) -> set[int]:
    try:
        errors = response.json().get("errors") or []
    except (ValueError, AttributeError):
        return set()
    return {e["code"] for e in errors if isinstance(e, dict) and isinstance(e.get("code"), int)}


def raise_for_twitter_status(response: httpx.Response) -> None:
    """Translate an error response into the DevCast error taxonomy."""
    status = response.status_code
    if status < 400:
        return

    message = _format_error(response)
    if status == 429:
        reset_at = None
        reset_header = response.headers.get("x-rate-limit-reset")
        if reset_header and reset_header.isdigit():
            reset_at = datetime.fromtimestamp(int(reset_header), tz=timezone.utc)
        raise RateLimitError(message, reset_at=reset_at)
    if status >= 500:
        raise UpstreamServerError(message, status_code=status)
    if _legacy_error_codes(response) & RETRYABLE_ERROR_CODES:
        raise UpstreamServerError(message, status_code=status)
    if status in (401, 403) and "duplicate" not in message.lower():
        raise ProviderAuthError(message)
    raise PlatformRejectedError(message)


class TwitterClient:
    """
    Client for Twitter API v2 operations.

    One instance per user token. Pass a shared ``http_client`` and
    ``throttle`` to reuse connections and request spacing across users.
    """

    def __init__(
        self,
        access_token: Optional[str],
        *,
        base_url: str = TWITTER_API_BASE,
        http_client: Optional[httpx.AsyncClient] = None,
        throttle: Optional[Throttle] = None,
        timeout: float = 30.0,
    ):
        """
        Initialize the Twitter client.

        Args:
            access_token: User's OAuth 2.0 access token
            base_url: API base URL
            http_client: Shared HTTP client (not closed by this instance)
            throttle: Shared request spacing
            timeout: Request timeout in seconds
        """
        self.access_token = access_token or ""
        self.base_url = base_url.rstrip("/")
        self.throttle = throttle or Throttle(0.5)
        self.timeout = timeout
        self._client = http_client
        self._owns_client = http_client is None

    @property
    def is_configured(self) -> bool:
        """Check if the client is configured with credentials."""
        return bool(self.access_token)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        if not self.is_configured:
            raise ProviderAuthError("Twitter account not connected")

        await self.throttle.async_wait()
        client = await self._get_client()
        try:
            response = await client.request(
                method,
                f"{self.base_url}{path}",
                headers=self._headers(),
                **kwargs,
            )
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError(f"Twitter request timed out: {e}") from e
        except httpx.TransportError as e:
            raise ConnectionError(f"Twitter connection failed: {e}") from e

        raise_for_twitter_status(response)
        return response.json()

    async def post_tweet(self, text: str) -> Tweet:
        """
        Post a single tweet.

        Args:
            text: Tweet text (max 280 chars)

        Returns:
            Posted Tweet object

        Raises:
            PlatformRejectedError: If text exceeds 280 characters or Twitter refuses it
            TransientError: On retryable API errors
        """
        if len(text) > MAX_TWEET_LENGTH:
            raise PlatformRejectedError(f"Tweet exceeds {MAX_TWEET_LENGTH} chars: {len(text)}")

        data = await self._request("POST", "/tweets", json={"text": text})
        tweet = Tweet.from_api_response(data.get("data", {}))
        if not tweet.id:
            raise UpstreamServerError("Failed to post tweet: no tweet ID returned")

        logger.info(f"Posted tweet {tweet.id}")
        return tweet

    async def get_metrics(self, tweet_id: str) -> dict[str, int]:
        """
        Get public metrics for a tweet.

        Returns:
            Dict with likes, shares, replies, impressions
        """
        data = await self._request(
            "GET",
            f"/tweets/{tweet_id}",
            params={"tweet.fields": "public_metrics"},
        )
        metrics = data.get("data", {}).get("public_metrics") or {}
        return {
            "likes": metrics.get("like_count", 0),
            "shares": metrics.get("retweet_count", 0),
            "replies": metrics.get("reply_count", 0),
            "impressions": metrics.get("impression_count", 0),
        }

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None
