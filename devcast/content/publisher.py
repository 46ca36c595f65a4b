"""
Publisher for approved content.

Posts approved, due content to Twitter/X, records the outcome on the
content and its activities, and tells the owner what happened.
"""
import asyncio
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from ..core.errors import (
    ConfigurationError,
    PreconditionError,
    RateLimitError,
    TerminalUpstreamError,
    ValidationError,
    is_retryable,
)
from ..core.logging import TWITTER, get_event_logger
from ..core.retry import RetryPolicy, retry_async
from ..integrations.twitter import TwitterClient
from ..store.base import Store
from ..store.models import (
    ActivityStatus,
    Analytics,
    Content,
    ContentStatus,
    User,
    utcnow,
)

SocialClientFactory = Callable[[User], TwitterClient]

DEFAULT_RATE_LIMIT_WAIT = timedelta(minutes=15)
TERMINAL_ERRORS = (TerminalUpstreamError, ValidationError, ConfigurationError)


@dataclass
class PublishResult:
    """Outcome of one publish attempt."""
    content_id: str
    status: str  # "posted", "failed", "deferred", "conflict"
    post_id: Optional[str] = None
    post_url: Optional[str] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == "posted"

    def to_dict(self) -> dict:
        return {
            "content_id": self.content_id,
            "status": self.status,
            "post_id": self.post_id,
            "post_url": self.post_url,
            "error": self.error,
        }


class ContentPublisher:
    """
    Publishes approved content.

    Transient upstream errors are retried with backoff; a rate limit waits
    until the upstream reset time. Terminal errors move the content to
    ``failed``. When retries run out the content stays approved and the
    next run picks it up again.

    ``notifier`` receives ``notify_posted(content)``,
    ``notify_failed(content, reason, will_retry=...)`` and
    ``notify_post_conflict(content, post_url)`` calls.
    """

    def __init__(
        self,
        store: Store,
        social_client_factory: SocialClientFactory,
        *,
        notifier=None,
        retry_policy: Optional[RetryPolicy] = None,
        rate_limit_fallback: timedelta = DEFAULT_RATE_LIMIT_WAIT,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
        event_logger=None,
    ):
        self.store = store
        self.social_client_factory = social_client_factory
        self.notifier = notifier
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=3, base_delay=1.0)
        self.rate_limit_fallback = rate_limit_fallback
        self._sleep = sleep
        self._clock = clock
        self.log = event_logger or get_event_logger(TWITTER)

    async def publish(self, content: Content) -> PublishResult:
        """
        Post one content item.

        Raises:
            PreconditionError: If the content is not approved or not yet due
        """
        now = self._clock()
        if content.status != ContentStatus.APPROVED:
            raise PreconditionError(
                f"Content {content.id} is {content.status.value}, only approved content can be posted"
            )
        if content.scheduled_for is None or content.scheduled_for > now:
            raise PreconditionError(f"Content {content.id} is not due yet")

        user = await self.store.get_user(content.user_id)
        if user is None or not user.has_twitter_credentials:
            return await self._mark_failed(content, "Twitter account not connected")

        client = self.social_client_factory(user)
        try:
            tweet = await retry_async(
                lambda: client.post_tweet(content.text),
                self.retry_policy,
                delay_for=self._retry_delay,
                on_retry=lambda e, attempt, delay: self._log_retry(content, e, attempt, delay),
                sleep=self._sleep,
            )
        except TERMINAL_ERRORS as e:
            return await self._mark_failed(content, str(e))
        except Exception as e:
            reason = str(e) or type(e).__name__
            self.log.error(
                "publish_deferred",
                content_id=content.id,
                error=reason,
                retryable=is_retryable(e),
            )
            await self._notify_failed(content, reason, will_retry=True)
            return PublishResult(content_id=content.id, status="deferred", error=reason)
        finally:
            await client.close()

        posted_at = self._clock()
        content.status = ContentStatus.POSTED
        content.post_id = tweet.id
        content.post_url = tweet.url
        content.posted_at = posted_at
        content.scheduled_for = None
        content.failure_reason = None
        if not await self.store.update_content(content, [ContentStatus.APPROVED]):
            return await self._record_conflict(content, tweet.id, tweet.url)

        await self.store.transition_activities(
            content.activity_ids,
            [ActivityStatus.PENDING, ActivityStatus.PROCESSED],
            ActivityStatus.PUBLISHED,
            at=posted_at,
        )
        self.log.info("content_posted", content_id=content.id, post_id=tweet.id, url=tweet.url)
        if self.notifier is not None:
            await self.notifier.notify_posted(content)
        return PublishResult(
            content_id=content.id,
            status="posted",
            post_id=tweet.id,
            post_url=tweet.url,
        )

    async def publish_due(self, now: Optional[datetime] = None) -> list[PublishResult]:
        """Publish every approved item whose scheduled time has come."""
        now = now or self._clock()
        due = await self.store.list_content(
            statuses=[ContentStatus.APPROVED],
            scheduled_before=now,
        )
        results = []
        for content in due:
            try:
                results.append(await self.publish(content))
            except PreconditionError as e:
                self.log.info("publish_skipped", content_id=content.id, reason=str(e))
            except Exception as e:
                self.log.error("publish_error", content_id=content.id, error=str(e))
        return results

    async def refresh_analytics(
        self,
        max_age: timedelta = timedelta(days=7),
        now: Optional[datetime] = None,
    ) -> dict[str, int]:
        """
        Refresh engagement counters of content posted within ``max_age``.

        Best effort: failures are logged and counted. Status is never touched.
        """
        now = now or self._clock()
        posted = await self.store.list_content(
            statuses=[ContentStatus.POSTED],
            posted_since=now - max_age,
        )
        by_user: dict[str, list[Content]] = defaultdict(list)
        for content in posted:
            if content.post_id:
                by_user[content.user_id].append(content)

        counts = {"updated": 0, "failed": 0}
        for user_id, items in by_user.items():
            user = await self.store.get_user(user_id)
            if user is None or not user.has_twitter_credentials:
                counts["failed"] += len(items)
                continue
            client = self.social_client_factory(user)
            try:
                for content in items:
                    try:
                        metrics = await client.get_metrics(content.post_id)
                    except Exception as e:
                        counts["failed"] += 1
                        self.log.warning("analytics_refresh_failed", content_id=content.id, error=str(e))
                        continue
                    content.analytics = Analytics(
                        likes=metrics.get("likes", 0),
                        shares=metrics.get("shares", 0),
                        replies=metrics.get("replies", 0),
                        impressions=metrics.get("impressions", 0),
                        last_updated=now,
                    )
                    if await self.store.update_content(content, [ContentStatus.POSTED]):
                        counts["updated"] += 1
            finally:
                await client.close()

        self.log.info("analytics_refreshed", **counts)
        return counts

    async def _mark_failed(self, content: Content, reason: str) -> PublishResult:
        content.status = ContentStatus.FAILED
        content.failure_reason = reason
        content.scheduled_for = None
        landed = await self.store.update_content(content, [ContentStatus.APPROVED])
        self.log.error("publish_failed", content_id=content.id, error=reason, recorded=landed)
        await self._notify_failed(content, reason, will_retry=False)
        return PublishResult(content_id=content.id, status="failed", error=reason)

    async def _record_conflict(self, content: Content, post_id: str, post_url: Optional[str]) -> PublishResult:
        """
        Keep track of a live post whose content changed mid-publish.

        The post cannot be taken back, so its id and url are stored in the
        current record's metadata and the owner is told to check it.
        """
        current = await self.store.get_content(content.id)
        self.log.error(
            "publish_state_conflict",
            content_id=content.id,
            post_id=post_id,
            current_status=current.status.value if current else None,
        )
        if current is not None:
            current.metadata["conflicting_post"] = {"post_id": post_id, "post_url": post_url}
            if not await self.store.update_content(current, [current.status]):
                self.log.error("publish_conflict_not_recorded", content_id=content.id, post_id=post_id)
        if self.notifier is not None:
            await self.notifier.notify_post_conflict(current or content, post_url)
        return PublishResult(
            content_id=content.id,
            status="conflict",
            post_id=post_id,
            post_url=post_url,
            error="Content changed while it was being posted",
        )

    async def _notify_failed(self, content: Content, reason: str, *, will_retry: bool) -> None:
        if self.notifier is not None:
            await self.notifier.notify_failed(content, reason, will_retry=will_retry)

    def _retry_delay(self, error: BaseException, attempt: int) -> Optional[float]:
        """Wait until the rate limit resets. Other errors use normal backoff."""
        if not isinstance(error, RateLimitError):
            return None
        if error.reset_at is None:
            return self.rate_limit_fallback.total_seconds()
        return max(0.0, (error.reset_at - self._clock()).total_seconds())

    def _log_retry(self, content: Content, error: BaseException, attempt: int, delay: float) -> None:
        self.log.warning(
            "publish_retry",
            content_id=content.id,
            attempt=attempt,
            delay=round(delay, 2),
            error=str(error),
        )
