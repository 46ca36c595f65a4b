"""
Service wiring.

Builds every pipeline component once from Settings. HTTP clients,
throttles and the store are shared; per-user API clients are created on
demand by small factories.
"""
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import httpx

from .approval.processor import ApprovalProcessor
from .approval.transport import ChatTransport
from .content.generator import ContentGenerator
from .content.publisher import ContentPublisher
from .core.config import Settings
from .core.rate_limiter import Throttle
from .core.retry import RetryPolicy
from .ingestion.ingestor import ActivityIngestor
from .ingestion.sync import GitHubSync
from .ingestion.webhook import GitHubWebhookHandler
from .integrations.github import GitHubClient, RepositoryContext
from .integrations.telegram import TelegramTransport
from .integrations.twitter import TwitterClient
from .llm.router import ProviderRouter, build_providers
from .scheduler import JobRunner
from .store.base import Store
from .store.models import User
from .store.sqlite import SQLiteStore


@dataclass
class Services:
    """Everything the HTTP layer and the job runner need."""
    settings: Settings
    store: Store
    transport: ChatTransport
    generator: ContentGenerator
    processor: ApprovalProcessor
    publisher: ContentPublisher
    webhook_handler: GitHubWebhookHandler
    runner: JobRunner
    http_client: Optional[httpx.AsyncClient] = None

    async def close(self) -> None:
        if self.http_client is not None:
            await self.http_client.aclose()
        await self.store.close()


def build_services(
    settings: Settings,
    *,
    store: Optional[Store] = None,
    router: Optional[ProviderRouter] = None,
    transport: Optional[ChatTransport] = None,
) -> Services:
    """
    Wire the pipeline.

    Raises:
        ConfigurationError: If no AI provider has credentials
    """
    http_client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    store = store or SQLiteStore(settings.database_path)
    router = router or ProviderRouter(build_providers(settings), default=settings.default_ai_provider)
    transport = transport or TelegramTransport(
        settings.telegram_bot_token,
        base_url=settings.telegram_api_base,
        http_client=http_client,
    )
    retry_policy = RetryPolicy(
        max_attempts=settings.max_retries,
        base_delay=settings.retry_delay_seconds,
    )
    twitter_throttle = Throttle(settings.twitter_rate_limit_window_seconds)

    def github_client(user: User) -> GitHubClient:
        return GitHubClient(
            user.github_token,
            base_url=settings.github_api_base,
            http_client=http_client,
        )

    def twitter_client(user: User) -> TwitterClient:
        return TwitterClient(
            user.twitter_token,
            base_url=settings.twitter_api_base,
            http_client=http_client,
            throttle=twitter_throttle,
        )

    async def repository_context(user: User, repository: str) -> RepositoryContext:
        client = github_client(user)
        try:
            return await client.get_repository_context(repository)
        finally:
            await client.close()

    generator = ContentGenerator(
        store,
        router,
        repository_context=repository_context,
        retry_policy=retry_policy,
        throttle=Throttle(settings.ai_rate_limit_window_seconds),
        timeout=settings.ai_request_timeout_seconds,
        temperature=settings.ai_temperature,
        max_tokens=settings.ai_max_tokens,
    )
    processor = ApprovalProcessor(store, transport, generator=generator)
    publisher = ContentPublisher(
        store,
        twitter_client,
        notifier=processor,
        retry_policy=retry_policy,
        rate_limit_fallback=timedelta(seconds=settings.rate_limit_fallback_seconds),
    )
    ingestor = ActivityIngestor(store)
    webhook_handler = GitHubWebhookHandler(
        store,
        ingestor,
        allow_unsigned=settings.is_development,
    )
    sync = GitHubSync(
        ingestor,
        github_client,
        lookback=timedelta(hours=settings.sync_lookback_hours),
    )
    runner = JobRunner(
        store,
        sync,
        generator,
        processor,
        publisher,
        analytics_max_age=timedelta(days=settings.analytics_max_age_days),
    )
    return Services(
        settings=settings,
        store=store,
        transport=transport,
        generator=generator,
        processor=processor,
        publisher=publisher,
        webhook_handler=webhook_handler,
        runner=runner,
        http_client=http_client,
    )
