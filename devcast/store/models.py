"""
Records for activities, generated content and users.

Status lattices:
    Activity: pending -> processed -> published
        (the only backward move is published -> processed on a reject cascade)
    Content:  pending -> {approved, rejected, edited}
              edited -> {approved, rejected, edited}
              approved -> {posted, failed, rejected, edited}
              rejected, posted, failed are terminal
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

TWITTER_MAX_LENGTH = 280
ELLIPSIS = "..."


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid4().hex


class ActivityType(str, Enum):
    """Kinds of developer activity."""
    COMMIT = "commit"
    PR = "pr"
    ISSUE = "issue"
    RELEASE = "release"


class ActivityStatus(str, Enum):
    """Activity lifecycle."""
    PENDING = "pending"
    PROCESSED = "processed"
    PUBLISHED = "published"


class ContentStatus(str, Enum):
    """Generated content lifecycle."""
    PENDING = "pending"
    APPROVED = "approved"
    EDITED = "edited"
    REJECTED = "rejected"
    POSTED = "posted"
    FAILED = "failed"


CONTENT_TRANSITIONS: dict[ContentStatus, frozenset[ContentStatus]] = {
    ContentStatus.PENDING: frozenset({
        ContentStatus.APPROVED, ContentStatus.REJECTED, ContentStatus.EDITED,
    }),
    ContentStatus.EDITED: frozenset({
        ContentStatus.APPROVED, ContentStatus.REJECTED, ContentStatus.EDITED,
    }),
    ContentStatus.APPROVED: frozenset({
        ContentStatus.POSTED, ContentStatus.FAILED, ContentStatus.REJECTED, ContentStatus.EDITED,
    }),
    ContentStatus.REJECTED: frozenset(),
    ContentStatus.POSTED: frozenset(),
    ContentStatus.FAILED: frozenset(),
}


def sources_for(target: ContentStatus) -> tuple[ContentStatus, ...]:
    """All statuses from which ``target`` is reachable in one step."""
    return tuple(
        status for status, targets in CONTENT_TRANSITIONS.items()
        if target in targets
    )


@dataclass
class Activity:
    """A unit of developer work: commit, pull request, issue or release."""
    user_id: str
    type: ActivityType
    repository: str
    title: str
    external_id: str
    description: Optional[str] = None
    url: Optional[str] = None
    status: ActivityStatus = ActivityStatus.PENDING
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    processed_at: Optional[datetime] = None
    published_at: Optional[datetime] = None

    @property
    def natural_key(self) -> tuple[str, str, str, str]:
        return (self.user_id, self.type.value, self.repository, self.external_id)

    @property
    def project_name(self) -> str:
        return self.repository.split("/")[-1]

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type.value,
            "repository": self.repository,
            "title": self.title,
            "description": self.description,
            "url": self.url,
            "external_id": self.external_id,
            "status": self.status.value,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat(),
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
            "published_at": self.published_at.isoformat() if self.published_at else None,
        }


@dataclass
class Analytics:
    """Engagement counters for a posted item."""
    likes: int = 0
    shares: int = 0
    replies: int = 0
    impressions: int = 0
    last_updated: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "likes": self.likes,
            "shares": self.shares,
            "replies": self.replies,
            "impressions": self.impressions,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "Analytics":
        data = data or {}
        last_updated = data.get("last_updated")
        return cls(
            likes=data.get("likes", 0),
            shares=data.get("shares", 0),
            replies=data.get("replies", 0),
            impressions=data.get("impressions", 0),
            last_updated=datetime.fromisoformat(last_updated) if last_updated else None,
        )


@dataclass
class Content:
    """A generated social post and its approval/publishing state."""
    user_id: str
    text: str
    activity_ids: list[str] = field(default_factory=list)
    original_text: Optional[str] = None
    status: ContentStatus = ContentStatus.PENDING
    platform: str = "twitter"
    scheduled_for: Optional[datetime] = None
    post_id: Optional[str] = None
    post_url: Optional[str] = None
    posted_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    analytics: Analytics = field(default_factory=Analytics)
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        if self.original_text is None:
            self.original_text = self.text

    @property
    def generated_by_fallback(self) -> bool:
        return bool(self.metadata.get("generated_by_fallback"))

    def can_transition_to(self, target: ContentStatus) -> bool:
        return target in CONTENT_TRANSITIONS[self.status]

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "activity_ids": list(self.activity_ids),
            "text": self.text,
            "original_text": self.original_text,
            "status": self.status.value,
            "platform": self.platform,
            "scheduled_for": self.scheduled_for.isoformat() if self.scheduled_for else None,
            "post_id": self.post_id,
            "post_url": self.post_url,
            "posted_at": self.posted_at.isoformat() if self.posted_at else None,
            "failure_reason": self.failure_reason,
            "analytics": self.analytics.to_dict(),
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class User:
    """An account owner. Read-only to the pipeline except chat identity and AI preference."""
    id: str
    github_username: Optional[str] = None
    github_token: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None
    twitter_username: Optional[str] = None
    twitter_token: Optional[str] = None
    chat_id: Optional[str] = None
    chat_username: Optional[str] = None
    ai_provider: Optional[str] = None
    content_style: str = "professional"
    auto_approve: bool = False
    posting_time: str = "18:00"
    timezone: str = "UTC"

    @property
    def has_github_credentials(self) -> bool:
        return bool(self.github_token)

    @property
    def has_twitter_credentials(self) -> bool:
        return bool(self.twitter_token)


def truncate_text(text: str, limit: int = TWITTER_MAX_LENGTH) -> str:
    """Truncate to ``limit`` characters, ending with an ellipsis when cut."""
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[:limit - len(ELLIPSIS)].rstrip() + ELLIPSIS
