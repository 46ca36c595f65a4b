"""Ingestion of GitHub activity from webhooks and polling."""
from .ingestor import ActivityIngestor, IngestOutcome
from .normalize import ActivityDraft, webhook_drafts
from .sync import GitHubSync, SyncReport
from .webhook import GitHubWebhookHandler, WebhookResult

__all__ = [
    "ActivityIngestor",
    "IngestOutcome",
    "ActivityDraft",
    "webhook_drafts",
    "GitHubSync",
    "SyncReport",
    "GitHubWebhookHandler",
    "WebhookResult",
]
