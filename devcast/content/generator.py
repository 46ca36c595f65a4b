"""
Content Generator for developer activity posts.

Drafts a social post from a user's recent GitHub activity using the
configured LLM providers. Provider calls are throttled, bounded by a
timeout and retried with exponential backoff; when every attempt fails the
generator falls back to a deterministic template, so a call with activity
always yields a draft.

Usage:
    generator = ContentGenerator(store, ProviderRouter(providers, default="openai"))
    content = await generator.generate_for_user(user)
    content = await generator.generate_with_instructions(user, "tweet about the 2.0 release")
"""
import asyncio
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from ..core.errors import UpstreamTimeoutError, ValidationError
from ..core.logging import AI, get_event_logger
from ..core.rate_limiter import Throttle
from ..core.retry import RetryPolicy, retry_async
from ..integrations.github import RepositoryContext
from ..llm.base import LLMProvider, LLMResponse
from ..llm.router import ProviderRouter
from ..store.base import Store
from ..store.models import (
    Activity,
    ActivityStatus,
    Content,
    User,
    truncate_text,
    utcnow,
)
from .context import (
    build_context,
    clean_generated_text,
    clean_instruction,
    fallback_text,
    instructions_fallback_text,
    largest_group,
    most_recent_group,
)

RECENT_ACTIVITY_LIMIT = 10

RepositoryContextProvider = Callable[[User, str], Awaitable[RepositoryContext]]


class Platform(str, Enum):
    """Supported content platforms."""
    TWITTER = "twitter"


@dataclass
class PlatformConstraints:
    """Constraints for a specific platform."""
    max_length: int
    hashtag_range: str = "1-2"


PLATFORM_CONSTRAINTS: dict[Platform, PlatformConstraints] = {
    Platform.TWITTER: PlatformConstraints(max_length=280, hashtag_range="1-2"),
}


class EmptyGenerationError(ValidationError):
    """The provider answered with no usable text."""


class ContentGenerator:
    """
    Generates post drafts from activity.

    Uses Jinja2 templates for prompts and the provider router for
    AI-powered drafting, with a deterministic fallback.
    """

    def __init__(
        self,
        store: Store,
        router: ProviderRouter,
        *,
        repository_context: Optional[RepositoryContextProvider] = None,
        retry_policy: Optional[RetryPolicy] = None,
        throttle: Optional[Throttle] = None,
        timeout: float = 30.0,
        temperature: float = 0.7,
        max_tokens: int = 150,
        platform: Platform = Platform.TWITTER,
        default_style: str = "professional",
        template_dir: Optional[Path] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        event_logger=None,
    ):
        """
        Initialize the content generator.

        Args:
            store: Persistence for activities and content
            router: Provider selection. Construction fails if it has no provider.
            repository_context: Async lookup of repository details for instruction prompts
            retry_policy: Backoff for provider calls (3 attempts, 1s base by default)
            throttle: Minimum spacing between provider calls
            timeout: Per-call timeout in seconds
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate
            platform: Target platform
            default_style: Tone when the user has none
            template_dir: Path to Jinja2 templates. Defaults to devcast/content/templates.
            sleep: Injectable sleep for backoff waits
            event_logger: Structured logger
        """
        if template_dir is None:
            template_dir = Path(__file__).parent / "templates"

        self.store = store
        self.router = router
        self.repository_context = repository_context
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=3, base_delay=1.0)
        self.throttle = throttle or Throttle(1.0)
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.platform = platform
        self.constraints = PLATFORM_CONSTRAINTS[platform]
        self.default_style = default_style
        self._sleep = sleep
        self.log = event_logger or get_event_logger(AI)

        # Initialize Jinja2 environment
        self.env = Environment(
            loader=FileSystemLoader(str(template_dir)),
            autoescape=select_autoescape([]),
            trim_blocks=True,
            lstrip_blocks=True,
        )

    # --- Public operations ---

    async def generate(
        self,
        activities: list[Activity],
        style: Optional[str] = None,
        provider_preference: Optional[str] = None,
    ) -> Content:
        """
        Draft a post from an explicit activity set.

        When the set spans several repositories, the largest group is used
        and only its activities are referenced.

        Raises:
            ValidationError: If the set is empty or mixes owners
        """
        if not activities:
            raise ValidationError("Cannot generate content without activities")
        owners = {a.user_id for a in activities}
        if len(owners) > 1:
            raise ValidationError("Activities belong to more than one user")

        repository, group = largest_group(activities)
        return await self._draft(
            user_id=owners.pop(),
            repository=repository,
            activities=group,
            style=style or self.default_style,
            provider_preference=provider_preference,
        )

    async def generate_for_user(self, user: User) -> Optional[Content]:
        """
        Draft a post from the user's recent pending activity.

        Returns:
            The new Content, or None when nothing is pending
        """
        activities = await self.store.list_activities(
            user.id, [ActivityStatus.PENDING], limit=RECENT_ACTIVITY_LIMIT
        )
        if not activities:
            self.log.info("generation_skipped", user_id=user.id, reason="no pending activity")
            return None

        repository, group = largest_group(activities)
        return await self._draft(
            user_id=user.id,
            repository=repository,
            activities=group,
            style=user.content_style or self.default_style,
            provider_preference=user.ai_provider,
        )

    async def generate_with_instructions(self, user: User, instructions: str) -> Optional[Content]:
        """
        Draft a post that follows the user's instructions.

        Context comes from the repository with the most recent pending or
        processed activity, enriched with repository details when available.

        Returns:
            The new Content, or None when the user has no recent activity
        """
        activities = await self.store.list_activities(
            user.id,
            [ActivityStatus.PENDING, ActivityStatus.PROCESSED],
            limit=RECENT_ACTIVITY_LIMIT,
        )
        if not activities:
            self.log.info("generation_skipped", user_id=user.id, reason="no recent activity")
            return None

        repository, group = most_recent_group(activities)
        return await self._draft(
            user_id=user.id,
            repository=repository,
            activities=group,
            style=user.content_style or self.default_style,
            provider_preference=user.ai_provider,
            instructions=instructions,
            user=user,
        )

    # --- Drafting ---

    async def _draft(
        self,
        *,
        user_id: str,
        repository: str,
        activities: list[Activity],
        style: str,
        provider_preference: Optional[str],
        instructions: Optional[str] = None,
        user: Optional[User] = None,
    ) -> Content:
        debug: list[str] = []
        context = build_context(repository, activities, now=utcnow())
        if instructions is not None:
            context = await self._enrich(context, user, repository, debug)
        prompt = self._render_prompt(context, style, instructions)

        metadata: dict = {}
        if instructions is not None:
            metadata["instructions"] = instructions

        try:
            provider = self.router.select(provider_preference)
            debug.append(f"PROVIDER: {provider.provider_name}")
            response = await retry_async(
                lambda: self._call_provider(provider, prompt),
                self.retry_policy,
                on_retry=self._log_retry,
                sleep=self._sleep,
            )
            text = response.content
            if instructions is not None:
                text, actions = clean_generated_text(text, prompt)
                debug.extend(actions)
            text = text.strip()
            if not text:
                raise EmptyGenerationError("Provider returned empty text")

            text = truncate_text(text, self.constraints.max_length)
            metadata.update(
                generated_by=provider.provider_name,
                model=response.model,
                tokens={
                    "input": response.input_tokens,
                    "output": response.output_tokens,
                    "total": response.total_tokens,
                },
            )
        except Exception as e:
            self.log.warning(
                "generation_fallback",
                user_id=user_id,
                repository=repository,
                error=str(e),
                error_type=type(e).__name__,
            )
            debug.append(f"FALLBACK: {type(e).__name__}: {e}")
            if instructions is not None:
                text = instructions_fallback_text(
                    instructions, repository, activities, self.constraints.max_length
                )
            else:
                text = fallback_text(repository, activities, self.constraints.max_length)
            metadata.update(generated_by_fallback=True, error=str(e) or type(e).__name__)

        metadata["debug"] = "\n".join(debug)
        content = Content(
            user_id=user_id,
            text=text,
            activity_ids=[a.id for a in activities],
            platform=self.platform.value,
            metadata=metadata,
        )
        await self.store.insert_content(content)
        await self.store.transition_activities(
            content.activity_ids,
            [ActivityStatus.PENDING],
            ActivityStatus.PROCESSED,
        )

        self.log.info(
            "content_generated",
            content_id=content.id,
            user_id=user_id,
            repository=repository,
            activities=len(activities),
            fallback=content.generated_by_fallback,
            tokens=metadata.get("tokens", {}).get("total", 0),
        )
        return content

    async def _enrich(
        self,
        context: str,
        user: Optional[User],
        repository: str,
        debug: list[str],
    ) -> str:
        """Append repository details. Failures only show up in the debug trace."""
        if self.repository_context is None or user is None or not user.has_github_credentials:
            debug.append("REPOSITORY CONTEXT: unavailable")
            return context
        try:
            details = await self.repository_context(user, repository)
        except Exception as e:
            debug.append(f"REPOSITORY CONTEXT: failed ({e})")
            self.log.warning("repository_context_failed", repository=repository, error=str(e))
            return context

        debug.append(f"REPOSITORY CONTEXT: {details.language or 'N/A'}, {details.stars} stars")
        return f"{context}\n\n{details.to_prompt_lines()}"

    def _render_prompt(self, context: str, style: str, instructions: Optional[str]) -> str:
        values = {
            "context": context,
            "style": style,
            "max_length": self.constraints.max_length,
            "hashtag_range": self.constraints.hashtag_range,
        }
        if instructions is not None:
            template = self.env.get_template("instructions_prompt.jinja2")
            values["instructions"] = clean_instruction(instructions)
        else:
            template = self.env.get_template("tweet_prompt.jinja2")
        return template.render(**values)

    def _system_prompt(self) -> str:
        return self.env.get_template("system_prompt.jinja2").render(
            platform=self.platform.value.capitalize(),
            max_length=self.constraints.max_length,
        )

    async def _call_provider(self, provider: LLMProvider, prompt: str) -> LLMResponse:
        await self.throttle.async_wait()
        try:
            return await asyncio.wait_for(
                provider.generate(
                    prompt,
                    system_prompt=self._system_prompt(),
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise UpstreamTimeoutError(
                f"{provider.provider_name} did not answer within {self.timeout}s"
            ) from e

    def _log_retry(self, error: BaseException, attempt: int, delay: float) -> None:
        self.log.warning(
            "generation_retry",
            attempt=attempt,
            max_attempts=self.retry_policy.max_attempts,
            delay=round(delay, 2),
            error=str(error),
        )
