"""
GitHub REST API integration.

Lists repositories and recent activity for polling sync, and fetches
repository details used to enrich instruction-driven drafts.

Usage:
    client = GitHubClient(access_token=user.github_token)
    repos = await client.list_repositories()
    context = await client.get_repository_context("octo/widgets")
"""
import base64
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

import httpx

from ..core.errors import RateLimitError, UpstreamServerError, UpstreamTimeoutError
from ..core.retry import with_retry

logger = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com"
README_EXCERPT_LENGTH = 500


@dataclass
class RepositoryContext:
    """Repository details used to enrich a prompt."""
    full_name: str
    name: str
    description: Optional[str] = None
    language: Optional[str] = None
    topics: list[str] = field(default_factory=list)
    stars: int = 0
    forks: int = 0
    releases: list[dict] = field(default_factory=list)
    recent_issues: list[dict] = field(default_factory=list)
    readme: Optional[str] = None

    @classmethod
    def from_api_response(cls, data: dict) -> "RepositoryContext":
        """Create from a ``GET /repos/{owner}/{repo}`` body."""
        return cls(
            full_name=data.get("full_name", ""),
            name=data.get("name", ""),
            description=data.get("description"),
            language=data.get("language"),
            topics=data.get("topics") or [],
            stars=data.get("stargazers_count", 0),
            forks=data.get("forks_count", 0),
        )

    def to_prompt_lines(self) -> str:
        """Render as the repository block appended to a prompt context."""
        lines = [
            "Repository Details:",
            f"Name: {self.name}",
            f"Description: {self.description or 'N/A'}",
            f"Main Language: {self.language or 'N/A'}",
            f"Topics: {', '.join(self.topics) or 'N/A'}",
            f"Stars: {self.stars}, Forks: {self.forks}",
        ]
        if self.releases:
            lines += ["", "Recent Releases:"]
            for release in self.releases[:2]:
                body = release.get("body")
                summary = f"{body[:100]}..." if body else "No description"
                lines.append(f"- {release.get('tag_name') or release.get('name')}: {summary}")
        if self.recent_issues:
            lines += ["", "Recent Issues:"]
            for issue in self.recent_issues[:3]:
                lines.append(f"- #{issue.get('number')}: {issue.get('title')}")
        if self.readme:
            lines += ["", "README Excerpt:", self.readme]
        return "\n".join(lines)


class GitHubClient:
    """Client for the GitHub REST API, authenticated as one user."""

    def __init__(
        self,
        access_token: str,
        *,
        base_url: str = GITHUB_API_BASE,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        """
        Initialize the GitHub client.

        Args:
            access_token: User's GitHub token
            base_url: API base URL
            http_client: Shared HTTP client (not closed by this instance)
            timeout: Request timeout in seconds
        """
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = http_client
        self._owns_client = http_client is None

    @property
    def is_configured(self) -> bool:
        return bool(self.access_token)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    @with_retry(max_attempts=3, base_delay=1.0)
    async def _get_json(self, path: str, params: Optional[dict] = None) -> Any:
        client = await self._get_client()
        try:
            response = await client.get(
                f"{self.base_url}{path}",
                headers=self._headers(),
                params=params,
            )
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError(f"GitHub request timed out: {e}") from e
        except httpx.TransportError as e:
            raise ConnectionError(f"GitHub connection failed: {e}") from e

        if response.status_code >= 500:
            raise UpstreamServerError(f"GitHub returned {response.status_code}", response.status_code)
        if response.status_code == 429:
            raise RateLimitError("GitHub rate limit exceeded")
        response.raise_for_status()
        return response.json()

    async def list_repositories(self) -> list[dict]:
        """Repositories of the authenticated user, most recently updated first."""
        return await self._get_json(
            "/user/repos",
            {"visibility": "all", "sort": "updated", "per_page": 100},
        )

    async def list_commits(self, repository: str, since: datetime) -> list[dict]:
        return await self._get_json(
            f"/repos/{repository}/commits",
            {"since": since.isoformat(), "per_page": 30},
        )

    async def list_pull_requests(self, repository: str) -> list[dict]:
        return await self._get_json(
            f"/repos/{repository}/pulls",
            {"state": "all", "sort": "updated", "direction": "desc", "per_page": 30},
        )

    async def list_issues(self, repository: str) -> list[dict]:
        """Issues of a repository, pull requests excluded."""
        issues = await self._get_json(
            f"/repos/{repository}/issues",
            {"state": "all", "sort": "updated", "direction": "desc", "per_page": 30},
        )
        return [issue for issue in issues if "pull_request" not in issue]

    async def list_releases(self, repository: str, per_page: int = 10) -> list[dict]:
        return await self._get_json(f"/repos/{repository}/releases", {"per_page": per_page})

    async def get_readme_excerpt(self, repository: str) -> Optional[str]:
        """First characters of the README, or None when the repository has none."""
        try:
            data = await self._get_json(f"/repos/{repository}/readme")
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                return None
            raise
        encoded = data.get("content") or ""
        text = base64.b64decode(encoded).decode("utf-8", errors="replace").strip()
        if len(text) > README_EXCERPT_LENGTH:
            return text[:README_EXCERPT_LENGTH] + "..."
        return text or None

    async def get_repository_context(self, repository: str) -> RepositoryContext:
        """
        Collect repository details for prompt enrichment.

        Args:
            repository: Full name, ``owner/name``

        Returns:
            RepositoryContext with releases, issues and README excerpt
        """
        context = RepositoryContext.from_api_response(
            await self._get_json(f"/repos/{repository}")
        )
        context.releases = await self.list_releases(repository, per_page=2)
        context.recent_issues = (await self.list_issues(repository))[:3]
        context.readme = await self.get_readme_excerpt(repository)
        logger.debug(f"Fetched repository context for {repository}")
        return context

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None
