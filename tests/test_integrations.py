"""Tests for the Twitter and Telegram HTTP clients."""
import json

import httpx
import pytest

from devcast.approval.transport import Button
from devcast.core.errors import (
    PlatformRejectedError,
    ProviderAuthError,
    RateLimitError,
    UpstreamServerError,
)
from devcast.core.rate_limiter import Throttle
from devcast.integrations.telegram import TelegramTransport, parse_update
from devcast.integrations.twitter import TwitterClient


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestTwitterClient:
    """Tests for TwitterClient."""

    @pytest.mark.asyncio
    async def test_post_tweet(self):
        """Test a successful post returns the tweet and its url."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"data": {"id": "1234", "text": "hello"}})

        async with mock_client(handler) as http:
            client = TwitterClient("token", http_client=http, throttle=Throttle(0.0))
            tweet = await client.post_tweet("hello")

        assert tweet.id == "1234"
        assert tweet.url == "https://twitter.com/i/status/1234"
        assert seen == {"auth": "Bearer token", "body": {"text": "hello"}}

    @pytest.mark.asyncio
    async def test_rate_limit_carries_reset(self):
        """Test 429 responses expose the reset time."""

        def handler(request):
            return httpx.Response(429, headers={"x-rate-limit-reset": "1741953600"}, json={"title": "Too Many Requests"})

        async with mock_client(handler) as http:
            client = TwitterClient("token", http_client=http, throttle=Throttle(0.0))
            with pytest.raises(RateLimitError) as exc_info:
                await client.post_tweet("hello")

        assert exc_info.value.reset_at.timestamp() == 1741953600

    @pytest.mark.parametrize("status,body,error", [
        (503, {"title": "Service Unavailable"}, UpstreamServerError),
        (401, {"title": "Unauthorized"}, ProviderAuthError),
        (403, {"detail": "You are not allowed to create a Tweet with duplicate content."}, PlatformRejectedError),
        (400, {"errors": [{"code": 130, "message": "Over capacity"}]}, UpstreamServerError),
    ])
    @pytest.mark.asyncio
    async def test_error_mapping(self, status, body, error):
        """Test HTTP failures map onto the error taxonomy."""
        async with mock_client(lambda request: httpx.Response(status, json=body)) as http:
            client = TwitterClient("token", http_client=http, throttle=Throttle(0.0))
            with pytest.raises(error):
                await client.post_tweet("hello")

    @pytest.mark.asyncio
    async def test_too_long_refused_locally(self):
        """Test over-long text never reaches the API."""
        client = TwitterClient("token", throttle=Throttle(0.0))
        with pytest.raises(PlatformRejectedError):
            await client.post_tweet("x" * 281)

    @pytest.mark.asyncio
    async def test_get_metrics(self):
        """Test public metrics are renamed to DevCast counters."""
        metrics = {"like_count": 4, "retweet_count": 2, "reply_count": 1, "impression_count": 90}

        def handler(request):
            assert request.url.params["tweet.fields"] == "public_metrics"
            return httpx.Response(200, json={"data": {"id": "1", "public_metrics": metrics}})

        async with mock_client(handler) as http:
            client = TwitterClient("token", http_client=http, throttle=Throttle(0.0))
            result = await client.get_metrics("1")

        assert result == {"likes": 4, "shares": 2, "replies": 1, "impressions": 90}


class TestTelegramTransport:
    """Tests for TelegramTransport."""

    @pytest.mark.asyncio
    async def test_send_with_buttons(self):
        """Test buttons become an inline keyboard."""
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"ok": True})

        async with mock_client(handler) as http:
            transport = TelegramTransport("bot-token", http_client=http)
            sent = await transport.send(
                "100", "*hi*", buttons=[[Button("✅ Approve", "approve:abc")]], formatting="Markdown"
            )

        assert sent is True
        assert seen["path"] == "/botbot-token/sendMessage"
        assert seen["body"]["parse_mode"] == "Markdown"
        assert seen["body"]["reply_markup"]["inline_keyboard"] == [
            [{"text": "✅ Approve", "callback_data": "approve:abc"}]
        ]

    @pytest.mark.asyncio
    async def test_failure_is_reported_not_raised(self):
        """Test delivery errors come back as False."""
        async with mock_client(lambda request: httpx.Response(500)) as http:
            transport = TelegramTransport("bot-token", http_client=http)
            assert await transport.send("100", "hi") is False

    @pytest.mark.asyncio
    async def test_unconfigured(self):
        """Test a missing bot token drops messages."""
        assert await TelegramTransport(None).send("100", "hi") is False


class TestParseUpdate:
    """Tests for parse_update."""

    def test_text_message(self):
        """Test text messages carry chat id and sender."""
        message = parse_update({"message": {"chat": {"id": 42}, "from": {"username": "alice"}, "text": "/help"}})
        assert message.chat_id == "42"
        assert message.text == "/help"
        assert message.from_handle == "alice"

    def test_callback_query(self):
        """Test button presses carry their payload and callback id."""
        message = parse_update({
            "callback_query": {
                "id": "cb-1",
                "data": "approve:abc",
                "from": {"username": "alice"},
                "message": {"chat": {"id": 42}},
            }
        })
        assert message.is_callback
        assert message.callback_data == "approve:abc"
        assert message.callback_id == "cb-1"

    def test_irrelevant_updates(self):
        """Test updates without text or buttons are skipped."""
        assert parse_update({"message": {"chat": {"id": 42}, "sticker": {}}}) is None
        assert parse_update({"my_chat_member": {}}) is None
