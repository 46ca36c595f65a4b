"""GitHub webhook handling."""
from dataclasses import dataclass, field
from typing import Optional

from ..core.errors import AuthorizationError, PayloadValidationError
from ..core.logging import GITHUB, get_event_logger
from ..store.base import Store
from .ingestor import ActivityIngestor
from .normalize import repository_owner, webhook_drafts

SUPPORTED_EVENTS = frozenset({"push", "pull_request", "issues", "release"})


@dataclass
class WebhookResult:
    """Outcome of one webhook delivery."""
    event: str
    status: str  # "processed", "ignored", "dropped"
    reason: Optional[str] = None
    counts: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "event": self.event,
            "status": self.status,
            "reason": self.reason,
            "counts": self.counts,
        }


class GitHubWebhookHandler:
    """
    Turns GitHub webhook deliveries into activities.

    Signature checking happens at the HTTP edge; this handler receives the
    verdict as a boolean. Deliveries for unknown owners, or owners without a
    GitHub credential, are dropped and logged rather than retried.
    """

    def __init__(
        self,
        store: Store,
        ingestor: Optional[ActivityIngestor] = None,
        *,
        allow_unsigned: bool = False,
        event_logger=None,
    ):
        """
        Args:
            store: Persistence
            ingestor: Ingestor to use; built from ``store`` if omitted
            allow_unsigned: Development mode, accept deliveries with a bad signature
            event_logger: Structured logger
        """
        self.store = store
        self.log = event_logger or get_event_logger(GITHUB)
        self.ingestor = ingestor or ActivityIngestor(store, self.log)
        self.allow_unsigned = allow_unsigned

    async def handle(self, event: str, payload: dict, signature_valid: bool) -> WebhookResult:
        """
        Process one delivery.

        Raises:
            AuthorizationError: If the signature is invalid outside development mode
            PayloadValidationError: If the payload lacks repository or owner data
        """
        if not signature_valid:
            if not self.allow_unsigned:
                self.log.warning("webhook_signature_invalid", event=event)
                raise AuthorizationError("Invalid signature")
            self.log.warning("webhook_signature_bypassed", event=event)

        if event not in SUPPORTED_EVENTS:
            self.log.info("webhook_event_ignored", event=event)
            return WebhookResult(event=event, status="ignored", reason="unsupported event")

        owner = repository_owner(payload)
        drafts = webhook_drafts(event, payload, on_error=self._log_bad_item)
        if not drafts:
            return WebhookResult(event=event, status="ignored", reason="unsupported action")

        user = await self.store.get_user_by_github_username(owner)
        if user is None:
            self.log.warning("webhook_unknown_owner", event=event, owner=owner)
            return WebhookResult(event=event, status="dropped", reason="unknown user")
        if not user.has_github_credentials:
            self.log.warning("webhook_owner_missing_token", event=event, owner=owner, user_id=user.id)
            return WebhookResult(event=event, status="dropped", reason="missing GitHub credentials")

        counts = await self.ingestor.ingest_many(user.id, drafts)
        self.log.info(
            "webhook_processed",
            event=event,
            user_id=user.id,
            repository=payload["repository"]["full_name"],
            **counts,
        )
        return WebhookResult(event=event, status="processed", counts=counts)

    def _log_bad_item(self, item: dict, error: PayloadValidationError) -> None:
        keys = sorted(item)[:10] if isinstance(item, dict) else None
        self.log.error("webhook_item_invalid", error=str(error), item_keys=keys)
