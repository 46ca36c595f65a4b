"""
Scheduled jobs.

Runs the pipeline stages for every user: sync GitHub activity, draft
content, publish what is approved and due, and refresh analytics. A
failure for one user or one content item is logged and the loop moves on.

Usage:
    runner = JobRunner(store, sync, generator, processor, publisher)
    summary = await runner.run("all")
"""
from datetime import timedelta
from typing import Awaitable, Callable, Optional

from .approval.processor import ApprovalProcessor
from .content.generator import ContentGenerator
from .content.publisher import ContentPublisher
from .core.errors import ValidationError
from .core.logging import SCHEDULER, get_event_logger
from .ingestion.sync import GitHubSync
from .store.base import Store
from .store.models import utcnow

SYNC_ACTIVITIES = "sync-activities"
GENERATE_CONTENT = "generate-content"
POST_CONTENT = "post-content"
UPDATE_ANALYTICS = "update-analytics"
ALL_JOBS = "all"


class JobRunner:
    """Runs pipeline jobs across all users."""

    def __init__(
        self,
        store: Store,
        sync: GitHubSync,
        generator: ContentGenerator,
        processor: ApprovalProcessor,
        publisher: ContentPublisher,
        *,
        analytics_max_age: timedelta = timedelta(days=7),
        event_logger=None,
    ):
        self.store = store
        self.sync = sync
        self.generator = generator
        self.processor = processor
        self.publisher = publisher
        self.analytics_max_age = analytics_max_age
        self.log = event_logger or get_event_logger(SCHEDULER)

        self._jobs: dict[str, Callable[[], Awaitable[dict]]] = {
            SYNC_ACTIVITIES: self.sync_all_users,
            GENERATE_CONTENT: self.generate_for_all_users,
            POST_CONTENT: self.post_approved_content,
            UPDATE_ANALYTICS: self.update_content_analytics,
            ALL_JOBS: self.run_all,
        }

    @property
    def job_names(self) -> list[str]:
        return list(self._jobs)

    async def run(self, job: Optional[str] = None) -> dict:
        """
        Run a job by name. No name runs everything.

        Raises:
            ValidationError: If the job name is unknown
        """
        name = job or ALL_JOBS
        if name not in self._jobs:
            raise ValidationError(f"Unknown job: {name}. Choose one of: {', '.join(self._jobs)}")
        return await self._jobs[name]()

    async def sync_all_users(self) -> dict:
        """Pull recent GitHub activity for every user with a token."""
        users = await self.store.list_users(with_github_token=True)
        summary = {"users": len(users), "synced": 0, "failed": 0, "activities": 0}
        for user in users:
            try:
                report = await self.sync.sync_user(user)
            except Exception as e:
                summary["failed"] += 1
                self.log.error("sync_user_failed", user_id=user.id, error=str(e))
                continue
            summary["synced"] += 1
            summary["activities"] += report.ingested

        self.log.info("sync_job_completed", **summary)
        return summary

    async def generate_for_all_users(self) -> dict:
        """
        Draft content for every user with pending activity.

        Drafts of auto-approve users are approved straight away; everyone
        else gets an approval request in chat.
        """
        users = await self.store.list_users()
        summary = {"users": len(users), "generated": 0, "auto_approved": 0, "requested": 0, "failed": 0}
        for user in users:
            try:
                content = await self.generator.generate_for_user(user)
                if content is None:
                    continue
                summary["generated"] += 1
                if user.auto_approve:
                    await self.processor.auto_approve(content.id)
                    summary["auto_approved"] += 1
                elif user.chat_id:
                    if await self.processor.send_approval_request(content):
                        summary["requested"] += 1
            except Exception as e:
                summary["failed"] += 1
                self.log.error("generate_user_failed", user_id=user.id, error=str(e))

        self.log.info("generate_job_completed", **summary)
        return summary

    async def post_approved_content(self) -> dict:
        """Publish approved content that is due."""
        results = await self.publisher.publish_due(utcnow())
        summary = {"attempted": len(results)}
        for result in results:
            summary[result.status] = summary.get(result.status, 0) + 1

        self.log.info("post_job_completed", **summary)
        return summary

    async def update_content_analytics(self) -> dict:
        """Refresh engagement counters of recently posted content."""
        return await self.publisher.refresh_analytics(self.analytics_max_age)

    async def run_all(self) -> dict:
        """Run every job in pipeline order."""
        summary = {
            SYNC_ACTIVITIES: await self.sync_all_users(),
            GENERATE_CONTENT: await self.generate_for_all_users(),
            POST_CONTENT: await self.post_approved_content(),
            UPDATE_ANALYTICS: await self.update_content_analytics(),
        }
        self.log.info("all_jobs_completed")
        return summary
