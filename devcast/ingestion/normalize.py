"""
Normalization of GitHub payloads into ActivityDraft records.

GitHub describes the same objects differently depending on where they come
from: webhook commits carry ``message`` and ``author.username`` while REST
commits nest them under ``commit``; webhook objects may only have ``url``
where REST items have ``html_url``. Every accepted shape is mapped here so
the rest of the pipeline only sees ActivityDraft.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from ..core.errors import PayloadValidationError
from ..store.models import Activity, ActivityType

SUPPORTED_PR_ACTIONS = frozenset({"opened", "closed", "reopened", "edited", "synchronize"})
SUPPORTED_ISSUE_ACTIONS = frozenset({"opened", "closed", "reopened", "edited"})
SUPPORTED_RELEASE_ACTIONS = frozenset({"published"})

# Fields whose change counts as a re-sighting worth recording
MUTABLE_METADATA_FIELDS = ("state", "merged", "labels")

_MISSING = object()


@dataclass
class ActivityDraft:
    """Canonical, source-independent description of one activity."""
    type: ActivityType
    repository: str
    external_id: str
    title: str
    description: Optional[str] = None
    url: Optional[str] = None
    occurred_at: Optional[datetime] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_activity(self, user_id: str) -> Activity:
        kwargs: dict[str, Any] = {}
        if self.occurred_at:
            kwargs["created_at"] = self.occurred_at
        return Activity(
            user_id=user_id,
            type=self.type,
            repository=self.repository,
            title=self.title,
            external_id=self.external_id,
            description=self.description,
            url=self.url,
            metadata=dict(self.metadata),
            **kwargs,
        )


def lookup(data: Any, *paths: str, default: Any = None) -> Any:
    """
    Return the first non-empty value among dotted ``paths``.

    ``lookup(commit, "message", "commit.message")`` reads ``commit["message"]``
    and falls back to ``commit["commit"]["message"]``.
    """
    for path in paths:
        value: Any = data
        for part in path.split("."):
            if not isinstance(value, dict):
                value = _MISSING
                break
            value = value.get(part, _MISSING)
        if value is not _MISSING and value not in (None, ""):
            return value
    return default


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 GitHub timestamp into an aware UTC datetime."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _label_names(item: dict) -> list[str]:
    return [
        label.get("name") if isinstance(label, dict) else str(label)
        for label in item.get("labels") or []
    ]


def _split_message(message: str) -> tuple[str, Optional[str]]:
    lines = message.strip().split("\n")
    body = "\n".join(lines[1:]).strip()
    return lines[0].strip(), body or None


def repository_owner(payload: dict) -> str:
    """
    Validate the repository block of a webhook payload.

    Raises:
        PayloadValidationError: If repository, its full name or owner login is missing
    """
    repository = payload.get("repository")
    if not isinstance(repository, dict):
        raise PayloadValidationError("Invalid webhook payload: missing repository")
    if not repository.get("full_name"):
        raise PayloadValidationError("Invalid webhook payload: missing repository name")
    login = lookup(repository, "owner.login", "owner.name")
    if not login:
        raise PayloadValidationError("Invalid webhook payload: missing repository owner")
    return login


# --- Commits ---

def commit_draft(repository: str, commit: dict, branch: Optional[str] = None) -> ActivityDraft:
    """Map a webhook push commit or a REST commit list item."""
    sha = lookup(commit, "id", "sha")
    if not sha:
        raise PayloadValidationError("Commit is missing its SHA")

    message = lookup(commit, "message", "commit.message", default="")
    title, body = _split_message(message) if message else (f"Commit {sha[:7]}", None)

    metadata: dict[str, Any] = {
        "author": lookup(commit, "author.name", "commit.author.name", "author.username", "author.login"),
        "author_email": lookup(commit, "author.email", "commit.author.email"),
    }
    if branch:
        metadata["branch"] = branch
    stats = commit.get("stats")
    if stats:
        metadata["stats"] = stats

    return ActivityDraft(
        type=ActivityType.COMMIT,
        repository=repository,
        external_id=sha,
        title=title,
        description=body,
        url=lookup(commit, "html_url", "url"),
        occurred_at=parse_timestamp(lookup(commit, "timestamp", "commit.author.date", "commit.committer.date")),
        metadata=metadata,
    )


# --- Pull requests ---

def pull_request_draft(repository: str, pr: dict) -> ActivityDraft:
    """Map a webhook ``pull_request`` object or a REST pull list item."""
    number = pr.get("number")
    if number is None:
        raise PayloadValidationError("Pull request is missing its number")

    merged = pr.get("merged")
    if merged is None:
        merged = bool(pr.get("merged_at"))

    return ActivityDraft(
        type=ActivityType.PR,
        repository=repository,
        external_id=str(number),
        title=pr.get("title") or f"Pull request #{number}",
        description=pr.get("body"),
        url=lookup(pr, "html_url", "url"),
        occurred_at=parse_timestamp(lookup(pr, "updated_at", "created_at")),
        metadata={
            "state": pr.get("state"),
            "merged": merged,
            "merged_at": pr.get("merged_at"),
            "labels": _label_names(pr),
            "author": lookup(pr, "user.login"),
            "additions": pr.get("additions"),
            "deletions": pr.get("deletions"),
            "changed_files": pr.get("changed_files"),
        },
    )


# --- Issues ---

def issue_draft(repository: str, issue: dict) -> ActivityDraft:
    """Map a webhook ``issue`` object or a REST issue list item."""
    number = issue.get("number")
    if number is None:
        raise PayloadValidationError("Issue is missing its number")

    return ActivityDraft(
        type=ActivityType.ISSUE,
        repository=repository,
        external_id=str(number),
        title=issue.get("title") or f"Issue #{number}",
        description=issue.get("body"),
        url=lookup(issue, "html_url", "url"),
        occurred_at=parse_timestamp(lookup(issue, "updated_at", "created_at")),
        metadata={
            "state": issue.get("state"),
            "labels": _label_names(issue),
            "author": lookup(issue, "user.login"),
            "closed_at": issue.get("closed_at"),
        },
    )


# --- Releases ---

def release_draft(repository: str, release: dict) -> ActivityDraft:
    """Map a webhook ``release`` object or a REST release list item."""
    tag = lookup(release, "tag_name", "name")
    if not tag:
        raise PayloadValidationError("Release is missing its tag")

    return ActivityDraft(
        type=ActivityType.RELEASE,
        repository=repository,
        external_id=tag,
        title=release.get("name") or tag,
        description=release.get("body"),
        url=lookup(release, "html_url", "url"),
        occurred_at=parse_timestamp(lookup(release, "published_at", "created_at")),
        metadata={
            "tag_name": tag,
            "prerelease": bool(release.get("prerelease")),
            "author": lookup(release, "author.login"),
        },
    )


def webhook_drafts(
    event: str,
    payload: dict,
    on_error: Optional[Callable[[dict, PayloadValidationError], None]] = None,
) -> list[ActivityDraft]:
    """
    Map a webhook event to drafts.

    Unsupported events and actions map to an empty list. A malformed commit
    inside a push is reported to ``on_error`` and skipped.

    Raises:
        PayloadValidationError: If a supported event is missing required fields
    """
    repository = payload["repository"]["full_name"]

    if event == "push":
        ref = payload.get("ref") or ""
        branch = ref.rsplit("/", 1)[-1] if ref else None
        commits = payload.get("commits")
        if commits is None:
            raise PayloadValidationError("Push payload is missing commits")
        drafts = []
        for commit in commits:
            try:
                drafts.append(commit_draft(repository, commit, branch=branch))
            except PayloadValidationError as e:
                if on_error is None:
                    raise
                on_error(commit, e)
        return drafts

    if event == "pull_request":
        action = payload.get("action")
        if not action:
            raise PayloadValidationError("Pull request payload is missing action")
        if action not in SUPPORTED_PR_ACTIONS:
            return []
        if not isinstance(payload.get("pull_request"), dict):
            raise PayloadValidationError("Pull request payload is missing pull_request")
        return [pull_request_draft(repository, payload["pull_request"])]

    if event == "issues":
        action = payload.get("action")
        if not action:
            raise PayloadValidationError("Issue payload is missing action")
        if action not in SUPPORTED_ISSUE_ACTIONS:
            return []
        if not isinstance(payload.get("issue"), dict):
            raise PayloadValidationError("Issue payload is missing issue")
        return [issue_draft(repository, payload["issue"])]

    if event == "release":
        action = payload.get("action")
        if not action:
            raise PayloadValidationError("Release payload is missing action")
        if action not in SUPPORTED_RELEASE_ACTIONS:
            return []
        if not isinstance(payload.get("release"), dict):
            raise PayloadValidationError("Release payload is missing release")
        return [release_draft(repository, payload["release"])]

    return []
