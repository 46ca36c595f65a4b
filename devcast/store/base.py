"""Storage interface for users, activities and content."""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, Optional, Sequence

from ..core.errors import DevCastError
from .models import (
    Activity,
    ActivityStatus,
    ActivityType,
    Content,
    ContentStatus,
    User,
)


class DuplicateActivityError(DevCastError):
    """An activity with the same natural key already exists."""

    def __init__(self, natural_key: tuple):
        self.natural_key = natural_key
        super().__init__(f"Activity already exists: {natural_key}")


class Store(ABC):
    """
    Persistence for the pipeline.

    Status changes go through conditional updates: the write only lands if
    the row is still in one of the expected statuses, and the return value
    says whether it did.
    """

    # --- Users ---

    @abstractmethod
    async def save_user(self, user: User) -> User:
        """Insert or replace a user."""

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]:
        pass

    @abstractmethod
    async def get_user_by_github_username(self, username: str) -> Optional[User]:
        pass

    @abstractmethod
    async def get_user_by_chat_id(self, chat_id: str) -> Optional[User]:
        pass

    @abstractmethod
    async def list_users(self, *, with_github_token: bool = False) -> list[User]:
        pass

    @abstractmethod
    async def link_chat(
        self,
        user_id: str,
        chat_id: str,
        chat_username: Optional[str] = None,
    ) -> Optional[User]:
        """Attach a chat identity to a user. Returns None if the user is unknown."""

    # --- Activities ---

    @abstractmethod
    async def find_activity(
        self,
        user_id: str,
        activity_type: ActivityType,
        repository: str,
        external_id: str,
    ) -> Optional[Activity]:
        """Look up an activity by natural key."""

    @abstractmethod
    async def insert_activity(self, activity: Activity) -> Activity:
        """
        Insert a new activity.

        Raises:
            DuplicateActivityError: If the natural key is already taken
        """

    @abstractmethod
    async def update_activity_details(self, activity: Activity) -> None:
        """Overwrite title, description, url and metadata. Status is untouched."""

    @abstractmethod
    async def get_activities(self, activity_ids: Sequence[str]) -> list[Activity]:
        """Fetch activities, preserving the order of ``activity_ids``."""

    @abstractmethod
    async def list_activities(
        self,
        user_id: str,
        statuses: Iterable[ActivityStatus],
        limit: Optional[int] = None,
    ) -> list[Activity]:
        """Activities of a user in the given statuses, most recent first."""

    @abstractmethod
    async def transition_activities(
        self,
        activity_ids: Sequence[str],
        expected: Iterable[ActivityStatus],
        target: ActivityStatus,
        at: Optional[datetime] = None,
    ) -> int:
        """Move activities still in ``expected`` to ``target``. Returns rows changed."""

    @abstractmethod
    async def activity_referenced_elsewhere(
        self,
        activity_id: str,
        exclude_content_id: str,
        statuses: Iterable[ContentStatus],
    ) -> bool:
        """Whether content other than ``exclude_content_id`` in ``statuses`` references the activity."""

    # --- Content ---

    @abstractmethod
    async def insert_content(self, content: Content) -> Content:
        pass

    @abstractmethod
    async def get_content(self, content_id: str) -> Optional[Content]:
        pass

    @abstractmethod
    async def update_content(
        self,
        content: Content,
        expected: Iterable[ContentStatus],
    ) -> bool:
        """
        Write every mutable field of ``content`` if the stored row is in ``expected``.

        Returns:
            True when the write landed, False when another writer got there first
        """

    @abstractmethod
    async def list_content(
        self,
        *,
        user_id: Optional[str] = None,
        statuses: Optional[Iterable[ContentStatus]] = None,
        scheduled_before: Optional[datetime] = None,
        posted_since: Optional[datetime] = None,
    ) -> list[Content]:
        """Content matching all given filters, oldest first."""

    async def close(self) -> None:
        """Release resources."""
