"""Pytest fixtures for DevCast tests."""
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from devcast.approval.transport import Button, ChatTransport
from devcast.core.rate_limiter import Throttle
from devcast.core.retry import RetryPolicy
from devcast.integrations.twitter import Tweet
from devcast.llm.base import LLMProvider, LLMResponse
from devcast.store.models import Activity, ActivityType, User
from devcast.store.sqlite import SQLiteStore

NOW = datetime(2025, 3, 14, 12, 0, tzinfo=timezone.utc)


# --- Fakes ---

class FakeProvider(LLMProvider):
    """LLM provider that replays queued answers or errors."""

    default_model = "fake-model"

    def __init__(self, name: str = "fake", responses: Optional[list] = None):
        self.provider_name = name
        self.responses = list(responses or [])
        self.calls: list[dict] = []

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
        self.calls.append({"prompt": prompt, "system_prompt": system_prompt, "max_tokens": max_tokens})
        item = self.responses.pop(0) if self.responses else "Shipped something new today! #devwork"
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, LLMResponse):
            return item
        return LLMResponse(content=item, model=model or self.default_model, provider=self.provider_name)


class FakeTransport(ChatTransport):
    """Chat transport that records outbound messages."""

    def __init__(self):
        self.sent: list[dict] = []

    async def send(
        self,
        chat_id: str,
        text: str,
        *,
        buttons: Optional[list[list[Button]]] = None,
        formatting: Optional[str] = None,
    ) -> bool:
        self.sent.append({"chat_id": chat_id, "text": text, "buttons": buttons, "formatting": formatting})
        return True

    @property
    def last(self) -> dict:
        return self.sent[-1]


class FakeSocialClient:
    """Stands in for TwitterClient; replays queued tweets or errors."""

    def __init__(self, outcomes: Optional[list] = None, metrics=None):
        self.outcomes = list(outcomes or [])
        self.metrics = metrics or {"likes": 0, "shares": 0, "replies": 0, "impressions": 0}
        self.posted: list[str] = []
        self.closed = 0

    async def post_tweet(self, text: str) -> Tweet:
        self.posted.append(text)
        item = self.outcomes.pop(0) if self.outcomes else Tweet(id=f"17{len(self.posted):04d}", text=text)
        if isinstance(item, BaseException):
            raise item
        return item

    async def get_metrics(self, tweet_id: str) -> dict:
        if isinstance(self.metrics, BaseException):
            raise self.metrics
        return dict(self.metrics)

    async def close(self) -> None:
        self.closed += 1


class SleepRecorder:
    """Async sleep replacement that records requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


# --- Core fixtures ---

@pytest.fixture
def store() -> SQLiteStore:
    """In-memory store."""
    return SQLiteStore()


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def fast_retry() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, base_delay=1.0)


@pytest.fixture
def no_throttle() -> Throttle:
    return Throttle(0.0)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def social_client() -> FakeSocialClient:
    return FakeSocialClient()


# --- Sample data ---

@pytest.fixture
async def user_a(store) -> User:
    """Owner with GitHub, Twitter and a linked chat."""
    return await store.save_user(User(
        id="user-a",
        github_username="alice",
        github_token="gh-token-a",
        twitter_token="tw-token-a",
        chat_id="100",
        chat_username="alice",
    ))


@pytest.fixture
async def user_b(store) -> User:
    """A second, unrelated owner."""
    return await store.save_user(User(
        id="user-b",
        github_username="bob",
        github_token="gh-token-b",
        twitter_token="tw-token-b",
        chat_id="200",
    ))


@pytest.fixture
def make_activity():
    """Factory for unsaved activities."""
    counter = {"n": 0}

    def _make(
        user_id: str = "user-a",
        repository: str = "alice/devcast",
        activity_type: ActivityType = ActivityType.COMMIT,
        title: Optional[str] = None,
        external_id: Optional[str] = None,
        minutes_ago: int = 0,
        **kwargs,
    ) -> Activity:
        counter["n"] += 1
        n = counter["n"]
        return Activity(
            user_id=user_id,
            type=activity_type,
            repository=repository,
            title=title or f"Change number {n}",
            external_id=external_id or f"sha{n:04d}",
            created_at=NOW - timedelta(minutes=minutes_ago or n),
            **kwargs,
        )

    return _make


@pytest.fixture
def push_payload() -> dict:
    """A GitHub push delivery with two commits."""
    return {
        "ref": "refs/heads/main",
        "repository": {
            "full_name": "alice/devcast",
            "name": "devcast",
            "owner": {"login": "alice", "name": "alice"},
        },
        "commits": [
            {
                "id": "a1b2c3d4e5",
                "message": "Add webhook signature check\n\nUses HMAC-SHA256.",
                "timestamp": "2025-03-14T10:00:00Z",
                "url": "https://github.com/alice/devcast/commit/a1b2c3d4e5",
                "author": {"name": "Alice", "email": "alice@example.com", "username": "alice"},
            },
            {
                "id": "f6e5d4c3b2",
                "message": "Fix typo in README",
                "timestamp": "2025-03-14T10:05:00Z",
                "url": "https://github.com/alice/devcast/commit/f6e5d4c3b2",
                "author": {"name": "Alice", "email": "alice@example.com", "username": "alice"},
            },
        ],
    }
