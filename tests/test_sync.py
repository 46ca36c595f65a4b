"""Tests for the polling GitHub sync."""
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from devcast.core.errors import ConfigurationError, UpstreamServerError
from devcast.ingestion.ingestor import ActivityIngestor
from devcast.ingestion.sync import GitHubSync
from devcast.store.models import ActivityStatus, User

from conftest import NOW


def iso(delta: timedelta) -> str:
    return (NOW + delta).isoformat().replace("+00:00", "Z")


@pytest.fixture
def github_client() -> MagicMock:
    """GitHub client returning one repository with fresh activity."""
    client = MagicMock()
    client.list_repositories = AsyncMock(return_value=[
        {"full_name": "alice/devcast", "fork": False, "updated_at": iso(timedelta(hours=-1))},
        {"full_name": "alice/old-fork", "fork": True, "updated_at": iso(timedelta(days=-30))},
    ])
    client.list_commits = AsyncMock(return_value=[
        {"sha": "c0ffee", "commit": {"message": "Polish CLI output", "author": {"date": iso(timedelta(hours=-2))}}},
    ])
    client.list_pull_requests = AsyncMock(return_value=[
        {"number": 5, "title": "Fresh PR", "state": "open", "updated_at": iso(timedelta(hours=-3))},
        {"number": 1, "title": "Stale PR", "state": "closed", "updated_at": iso(timedelta(days=-10))},
    ])
    client.list_issues = AsyncMock(return_value=[
        {"number": 9, "title": "Crash on start", "state": "open", "updated_at": iso(timedelta(hours=-4))},
    ])
    client.list_releases = AsyncMock(return_value=[
        {"tag_name": "v0.2.0", "draft": False, "published_at": iso(timedelta(hours=-5))},
        {"tag_name": "v0.3.0-draft", "draft": True, "created_at": iso(timedelta(hours=-1))},
    ])
    client.close = AsyncMock()
    return client


class TestGitHubSync:
    """Tests for GitHubSync."""

    @pytest.mark.asyncio
    async def test_sync_ingests_recent_items(self, store, user_a, github_client):
        """Test recent commits, PRs, issues and published releases are ingested."""
        sync = GitHubSync(ActivityIngestor(store), lambda user: github_client)

        report = await sync.sync_user(user_a, since=NOW - timedelta(hours=24))

        assert report.repositories == 1
        assert report.created == 4
        titles = {a.title for a in await store.list_activities(user_a.id, [ActivityStatus.PENDING])}
        assert titles == {"Polish CLI output", "Fresh PR", "Crash on start", "v0.2.0"}
        github_client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_resync_is_idempotent(self, store, user_a, github_client):
        """Test syncing the same interval twice creates nothing new."""
        sync = GitHubSync(ActivityIngestor(store), lambda user: github_client)
        await sync.sync_user(user_a, since=NOW - timedelta(hours=24))

        report = await sync.sync_user(user_a, since=NOW - timedelta(hours=24))
        assert report.created == 0
        assert report.unchanged == 4

    @pytest.mark.asyncio
    async def test_repository_failure_is_isolated(self, store, user_a, github_client):
        """Test a failing repository is reported and the run completes."""
        github_client.list_commits = AsyncMock(side_effect=UpstreamServerError("boom", 502))
        sync = GitHubSync(ActivityIngestor(store), lambda user: github_client)

        report = await sync.sync_user(user_a, since=NOW - timedelta(hours=24))
        assert report.created == 0
        assert report.errors and "alice/devcast" in report.errors[0]

    @pytest.mark.asyncio
    async def test_user_without_token(self, store):
        """Test sync refuses users without a GitHub credential."""
        sync = GitHubSync(ActivityIngestor(store), lambda user: MagicMock())
        with pytest.raises(ConfigurationError):
            await sync.sync_user(User(id="u"))

    @pytest.mark.asyncio
    async def test_malformed_item_is_isolated(self, store, user_a, github_client):
        """Test one unparseable commit is counted and the rest still land."""
        github_client.list_commits = AsyncMock(return_value=[
            {"sha": "beef01", "commit": {"message": "Good commit"}},
            {"commit": {"message": "no sha here"}},
        ])
        sync = GitHubSync(ActivityIngestor(store), lambda user: github_client)

        report = await sync.sync_user(user_a, since=NOW - timedelta(hours=24))

        assert report.failed == 1
        assert report.created == 4
        assert report.errors == []
        titles = {a.title for a in await store.list_activities(user_a.id, [ActivityStatus.PENDING])}
        assert titles == {"Good commit", "Fresh PR", "Crash on start", "v0.2.0"}
