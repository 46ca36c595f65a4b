"""Activity, content and user persistence."""
from .base import DuplicateActivityError, Store
from .models import (
    Activity,
    ActivityStatus,
    ActivityType,
    Analytics,
    Content,
    ContentStatus,
    TWITTER_MAX_LENGTH,
    User,
    truncate_text,
)
from .sqlite import SQLiteStore

__all__ = [
    "DuplicateActivityError",
    "Store",
    "SQLiteStore",
    "Activity",
    "ActivityStatus",
    "ActivityType",
    "Analytics",
    "Content",
    "ContentStatus",
    "TWITTER_MAX_LENGTH",
    "User",
    "truncate_text",
]
