"""Polling sync of recent GitHub activity."""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

from ..core.errors import ConfigurationError
from ..core.logging import GITHUB, get_event_logger
from ..integrations.github import GitHubClient
from ..store.models import User, utcnow
from .ingestor import ActivityIngestor, IngestOutcome
from .normalize import (
    ActivityDraft,
    commit_draft,
    issue_draft,
    parse_timestamp,
    pull_request_draft,
    release_draft,
)

GitHubClientFactory = Callable[[User], GitHubClient]


@dataclass
class SyncReport:
    """Counts from one user's sync run."""
    user_id: str
    repositories: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def ingested(self) -> int:
        return self.created + self.updated

    def record(self, outcome: IngestOutcome) -> None:
        setattr(self, outcome.value, getattr(self, outcome.value) + 1)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "repositories": self.repositories,
            "created": self.created,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "failed": self.failed,
            "errors": self.errors,
        }


def _updated_after(item: dict, since: datetime, *keys: str) -> bool:
    for key in keys:
        value = parse_timestamp(item.get(key))
        if value is not None:
            return value > since
    return False


class GitHubSync:
    """
    Pulls recent commits, pull requests, issues and releases for a user.

    Uses the same ingestion path as webhooks, so re-syncing an interval
    never duplicates activity. Failures per repository and per item are
    logged and swallowed.
    """

    def __init__(
        self,
        ingestor: ActivityIngestor,
        client_factory: GitHubClientFactory,
        *,
        lookback: timedelta = timedelta(hours=24),
        event_logger=None,
    ):
        self.ingestor = ingestor
        self.client_factory = client_factory
        self.lookback = lookback
        self.log = event_logger or get_event_logger(GITHUB)

    async def sync_user(self, user: User, since: Optional[datetime] = None) -> SyncReport:
        """
        Sync one user's repositories.

        Raises:
            ConfigurationError: If the user has no GitHub credential
        """
        if not user.has_github_credentials:
            raise ConfigurationError(f"User {user.id} has no GitHub token")

        since = since or utcnow() - self.lookback
        report = SyncReport(user_id=user.id)
        client = self.client_factory(user)
        try:
            repositories = await client.list_repositories()
            for repo in repositories:
                if repo.get("fork") and not _updated_after(repo, since, "updated_at", "pushed_at"):
                    continue
                report.repositories += 1
                await self._sync_repository(client, user, repo["full_name"], since, report)
        finally:
            await client.close()

        self.log.info("sync_completed", **report.to_dict())
        return report

    async def _sync_repository(
        self,
        client: GitHubClient,
        user: User,
        repository: str,
        since: datetime,
        report: SyncReport,
    ) -> None:
        try:
            items = await self._collect(client, repository, since)
        except Exception as e:
            report.errors.append(f"{repository}: {e}")
            self.log.error("sync_repository_failed", user_id=user.id, repository=repository, error=str(e))
            return

        for kind, item in items:
            try:
                draft = _to_draft(kind, repository, item, since)
                if draft is None:
                    continue
                report.record(await self.ingestor.ingest(user.id, draft))
            except Exception as e:
                report.failed += 1
                self.log.error(
                    "sync_item_failed",
                    user_id=user.id,
                    repository=repository,
                    kind=kind,
                    error=str(e),
                )

    async def _collect(
        self,
        client: GitHubClient,
        repository: str,
        since: datetime,
    ) -> list[tuple[str, dict]]:
        """Fetch raw listings; a failed listing fails the whole repository."""
        items: list[tuple[str, dict]] = []
        items.extend(("commit", c) for c in await client.list_commits(repository, since))
        items.extend(("pull_request", pr) for pr in await client.list_pull_requests(repository))
        items.extend(("issue", i) for i in await client.list_issues(repository))
        items.extend(("release", r) for r in await client.list_releases(repository))
        return items


def _to_draft(kind: str, repository: str, item: dict, since: datetime) -> Optional[ActivityDraft]:
    """Normalize one listed item, or None when it is outside the window."""
    if kind == "commit":
        return commit_draft(repository, item)
    if kind == "pull_request":
        return pull_request_draft(repository, item) if _updated_after(item, since, "updated_at") else None
    if kind == "issue":
        return issue_draft(repository, item) if _updated_after(item, since, "updated_at") else None
    if item.get("draft") or not _updated_after(item, since, "published_at", "created_at"):
        return None
    return release_draft(repository, item)
