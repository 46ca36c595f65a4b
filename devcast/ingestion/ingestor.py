"""Idempotent activity ingestion keyed by natural key."""
from enum import Enum
from typing import Optional

from ..core.logging import GITHUB, get_event_logger
from ..store.base import DuplicateActivityError, Store
from ..store.models import Activity
from .normalize import MUTABLE_METADATA_FIELDS, ActivityDraft


class IngestOutcome(str, Enum):
    """What ingesting one draft did to the store."""
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


def _changed_fields(existing: Activity, draft: ActivityDraft) -> list[str]:
    changed = []
    if existing.title != draft.title:
        changed.append("title")
    if (existing.description or None) != (draft.description or None):
        changed.append("description")
    for key in MUTABLE_METADATA_FIELDS:
        if key in draft.metadata and existing.metadata.get(key) != draft.metadata.get(key):
            changed.append(key)
    return changed


class ActivityIngestor:
    """
    Records activities so that re-delivery of an event never duplicates it.

    A re-sighting only updates title, description, url and metadata when a
    mutable field (state, merged, labels, title, description) changed.
    Status is never touched here.
    """

    def __init__(self, store: Store, event_logger=None):
        self.store = store
        self.log = event_logger or get_event_logger(GITHUB)

    async def ingest(self, user_id: str, draft: ActivityDraft) -> IngestOutcome:
        """
        Ingest one draft for a user.

        Returns:
            IngestOutcome.CREATED, UPDATED or UNCHANGED
        """
        existing = await self.store.find_activity(
            user_id, draft.type, draft.repository, draft.external_id
        )
        if existing is None:
            try:
                activity = await self.store.insert_activity(draft.to_activity(user_id))
            except DuplicateActivityError:
                # Lost an insert race; treat as a re-sighting
                existing = await self.store.find_activity(
                    user_id, draft.type, draft.repository, draft.external_id
                )
                if existing is None:
                    raise
            else:
                self.log.info(
                    "activity_created",
                    activity_id=activity.id,
                    type=activity.type.value,
                    repository=activity.repository,
                    external_id=activity.external_id,
                )
                return IngestOutcome.CREATED

        return await self._resight(existing, draft)

    async def _resight(self, existing: Activity, draft: ActivityDraft) -> IngestOutcome:
        changed = _changed_fields(existing, draft)
        if not changed:
            return IngestOutcome.UNCHANGED

        existing.title = draft.title
        existing.description = draft.description
        existing.url = draft.url or existing.url
        existing.metadata = {**existing.metadata, **draft.metadata}
        await self.store.update_activity_details(existing)
        self.log.info(
            "activity_updated",
            activity_id=existing.id,
            changed=changed,
        )
        return IngestOutcome.UPDATED

    async def ingest_many(self, user_id: str, drafts: list[ActivityDraft]) -> dict[str, int]:
        """
        Ingest drafts one by one. A failing item is logged and skipped.

        Returns:
            Counts per outcome, plus "failed"
        """
        counts = {outcome.value: 0 for outcome in IngestOutcome}
        counts["failed"] = 0
        for draft in drafts:
            outcome: Optional[IngestOutcome] = None
            try:
                outcome = await self.ingest(user_id, draft)
            except Exception as e:
                counts["failed"] += 1
                self.log.error(
                    "activity_ingest_failed",
                    user_id=user_id,
                    repository=draft.repository,
                    external_id=draft.external_id,
                    error=str(e),
                )
            if outcome is not None:
                counts[outcome.value] += 1
        return counts
