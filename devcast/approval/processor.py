"""
Approval command processor.

Applies approve / reject / edit / schedule to generated content on behalf
of a chat identity, and answers every inbound chat command with exactly
one reply.

Every status change is a conditional store write against the status that
was read. When another writer gets there first, the content is re-read and
the command is evaluated again against its new state.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional

from ..core.errors import (
    ConfigurationError,
    ContentAccessError,
    DevCastError,
    InvalidTransitionError,
    PreconditionError,
    ValidationError,
)
from ..core.logging import TELEGRAM, get_event_logger
from ..store.base import Store
from ..store.models import (
    ActivityStatus,
    Content,
    ContentStatus,
    User,
    sources_for,
    truncate_text,
    utcnow,
)
from .commands import ParsedCommand, parse_message
from .scheduling import SLOT_LABELS, resolve_slot, user_zone
from .transport import Button, ChatMessage, ChatTransport

MAX_CAS_ATTEMPTS = 3
MARKDOWN = "Markdown"

WELCOME_MESSAGE = """Welcome to DevCast! 👋

I'll help you review and approve social media updates generated from your development activity.

To link this chat to your DevCast account, please:
1. Go to your DevCast web dashboard
2. Navigate to the "Settings" page
3. Find your unique registration code
4. Come back here and type: /register YOUR_CODE"""

COMMANDS_HELP = """- /approve [id] - Approve an update for posting
- /reject [id] - Reject an update
- /edit [id] [new text] - Replace the text of an update
- /schedule [id] [slot] - Pick when an approved update is posted
- /generate [instructions] - Draft a new update now"""

REGISTERED_MESSAGE = f"""✅ Successfully registered!

You'll now receive notifications about your DevCast updates here.
Use these commands to manage your updates:
{COMMANDS_HELP}

Your first update will arrive soon!"""

HELP_MESSAGE = f"""DevCast commands:
- /start - Getting started
- /register [code] - Link this chat to your account
{COMMANDS_HELP}

Schedule slots: {", ".join(SLOT_LABELS)}"""

APPROVED_MESSAGE = "✅ Content approved for posting! It will be published to Twitter/X shortly."
ALREADY_POSTED_MESSAGE = "This update has already been posted."
REJECTED_MESSAGE = "❌ Content rejected. We'll generate new content for your next update."
NOT_REGISTERED_MESSAGE = "This chat is not linked to a DevCast account. Type /start to get started."
NO_ACTIVITY_MESSAGE = "No recent activity to write about yet. Push some code and try again!"
UNEXPECTED_ERROR_MESSAGE = "Error: Something went wrong. Please try again later."


@dataclass
class Reply:
    """One outbound chat message."""
    text: str
    buttons: Optional[list[list[Button]]] = None
    formatting: Optional[str] = None


def approval_buttons(content_id: str) -> list[list[Button]]:
    return [
        [Button("✅ Approve", f"approve:{content_id}"), Button("❌ Reject", f"reject:{content_id}")],
        [Button("✏️ Edit", f"edit:{content_id}"), Button("🕒 Schedule", f"schedule:{content_id}")],
    ]


def slot_buttons(content_id: str) -> list[list[Button]]:
    buttons = [Button(label, f"schedule:{content_id}:{slot}") for slot, label in SLOT_LABELS.items()]
    return [buttons[i:i + 2] for i in range(0, len(buttons), 2)]


class ApprovalProcessor:
    """
    Human-in-the-loop approval over a chat transport.

    Content that does not exist and content owned by someone else are
    indistinguishable to the caller: both raise ContentAccessError.
    """

    def __init__(
        self,
        store: Store,
        transport: ChatTransport,
        *,
        generator=None,
        max_length: int = 280,
        clock: Callable[[], datetime] = utcnow,
        event_logger=None,
    ):
        """
        Args:
            store: Persistence
            transport: Outbound chat messages
            generator: ContentGenerator used by /generate; the command is
                unavailable without one
            max_length: Platform length limit applied on approval
            clock: Injectable time source
            event_logger: Structured logger
        """
        self.store = store
        self.transport = transport
        self.generator = generator
        self.max_length = max_length
        self._clock = clock
        self.log = event_logger or get_event_logger(TELEGRAM)

    # --- Transitions ---

    async def approve(self, content_id: str, actor_chat_id: str) -> Content:
        """
        Approve pending or edited content for immediate posting.

        Approving approved or posted content returns it unchanged.
        """
        content, _ = await self._transition(
            "approve",
            lambda: self._load_owned(content_id, actor_chat_id),
            self._apply_approve,
        )
        return content

    async def auto_approve(self, content_id: str) -> Content:
        """Approve on the owner's standing behalf (users with auto-approve on)."""
        content, _ = await self._transition(
            "auto_approve",
            lambda: self._load(content_id),
            self._apply_approve,
        )
        return content

    async def reject(self, content_id: str, actor_chat_id: str) -> Content:
        """
        Reject content that has not been posted.

        Related activities no other approved or posted content uses go back
        to ``processed``. Rejecting rejected content returns it unchanged.
        """
        content, changed = await self._transition(
            "reject",
            lambda: self._load_owned(content_id, actor_chat_id),
            self._apply_reject,
        )
        if changed:
            await self._release_activities(content)
        return content

    async def edit(self, content_id: str, new_text: str, actor_chat_id: str) -> Content:
        """
        Replace the text. The content returns to the approval gate as ``edited``.

        Raises:
            ValidationError: If the new text is empty
        """
        new_text = (new_text or "").strip()
        if not new_text:
            raise ValidationError("New text must not be empty")

        def apply(user: User, content: Content) -> bool:
            if not content.can_transition_to(ContentStatus.EDITED):
                raise InvalidTransitionError(content.id, content.status.value, ContentStatus.EDITED.value)
            content.text = new_text
            content.status = ContentStatus.EDITED
            content.scheduled_for = None
            return True

        content, _ = await self._transition(
            "edit",
            lambda: self._load_owned(content_id, actor_chat_id),
            apply,
        )
        return content

    async def schedule(self, content_id: str, actor_chat_id: str, when: str) -> Content:
        """
        Set the posting time of approved content to a named slot.

        Raises:
            PreconditionError: If the content is not approved
            CommandError: If the slot is unknown
        """

        def apply(user: User, content: Content) -> bool:
            if content.status != ContentStatus.APPROVED:
                raise PreconditionError("Only approved content can be scheduled. Approve it first.")
            content.scheduled_for = resolve_slot(when, user, self._clock())
            return True

        content, _ = await self._transition(
            "schedule",
            lambda: self._load_owned(content_id, actor_chat_id),
            apply,
        )
        return content

    def _apply_approve(self, user: User, content: Content) -> bool:
        if content.status in (ContentStatus.APPROVED, ContentStatus.POSTED):
            return False
        if content.status not in sources_for(ContentStatus.APPROVED):
            raise InvalidTransitionError(content.id, content.status.value, ContentStatus.APPROVED.value)
        content.status = ContentStatus.APPROVED
        content.scheduled_for = self._clock()
        content.text = truncate_text(content.text, self.max_length)
        return True

    def _apply_reject(self, user: User, content: Content) -> bool:
        if content.status == ContentStatus.REJECTED:
            return False
        if not content.can_transition_to(ContentStatus.REJECTED):
            raise InvalidTransitionError(content.id, content.status.value, ContentStatus.REJECTED.value)
        content.status = ContentStatus.REJECTED
        content.scheduled_for = None
        return True

    async def _transition(
        self,
        action: str,
        load: Callable[[], Awaitable[tuple[User, Content]]],
        apply: Callable[[User, Content], bool],
    ) -> tuple[Content, bool]:
        """Returns the content and whether a write landed."""
        for attempt in range(MAX_CAS_ATTEMPTS):
            user, content = await load()
            observed = content.status
            if not apply(user, content):
                return content, False
            if await self.store.update_content(content, [observed]):
                self.log.info(
                    "content_transitioned",
                    action=action,
                    content_id=content.id,
                    from_status=observed.value,
                    to_status=content.status.value,
                )
                return content, True
            self.log.info("content_transition_conflict", action=action, content_id=content.id, attempt=attempt + 1)
        raise PreconditionError("Content is being changed by another request. Please try again.")

    async def _release_activities(self, content: Content) -> None:
        released = []
        for activity_id in content.activity_ids:
            if await self.store.activity_referenced_elsewhere(
                activity_id,
                content.id,
                [ContentStatus.APPROVED, ContentStatus.POSTED],
            ):
                continue
            await self.store.transition_activities(
                [activity_id],
                [ActivityStatus.PROCESSED, ActivityStatus.PUBLISHED],
                ActivityStatus.PROCESSED,
                at=self._clock(),
            )
            released.append(activity_id)
        self.log.info("activities_released", content_id=content.id, activity_ids=released)

    async def _load(self, content_id: str) -> tuple[User, Content]:
        content = await self.store.get_content(content_id)
        if content is None:
            raise ContentAccessError(content_id)
        user = await self.store.get_user(content.user_id)
        if user is None:
            raise ContentAccessError(content_id)
        return user, content

    async def _load_owned(self, content_id: str, actor_chat_id: str) -> tuple[User, Content]:
        user = await self.store.get_user_by_chat_id(str(actor_chat_id))
        content = await self.store.get_content(content_id)
        if user is None or content is None or content.user_id != user.id:
            self.log.warning("content_access_denied", content_id=content_id, chat_id=str(actor_chat_id))
            raise ContentAccessError(content_id)
        return user, content

    # --- Chat commands ---

    async def handle(self, message: ChatMessage) -> Reply:
        """
        Execute one inbound command and send exactly one reply.

        Returns:
            The reply that was sent
        """
        try:
            command = parse_message(message)
            reply = await self._dispatch(command, message)
        except (ContentAccessError, ValidationError, ConfigurationError) as e:
            reply = Reply(f"Error: {e}")
        except DevCastError as e:
            self.log.error("command_failed", chat_id=message.chat_id, error=str(e))
            reply = Reply(f"Error: {e}")
        except Exception as e:
            self.log.exception("command_crashed", chat_id=message.chat_id, error=str(e))
            reply = Reply(UNEXPECTED_ERROR_MESSAGE)

        await self.transport.send(
            message.chat_id,
            reply.text,
            buttons=reply.buttons,
            formatting=reply.formatting,
        )
        return reply

    async def _dispatch(self, command: ParsedCommand, message: ChatMessage) -> Reply:
        chat_id = message.chat_id
        name = command.name

        if name == "start":
            return Reply(WELCOME_MESSAGE)
        if name == "help":
            return Reply(HELP_MESSAGE)
        if name == "register":
            return await self._register(command.argument, message)
        if name == "generate":
            return await self._generate(chat_id, command.argument)

        if name == "approve":
            content = await self.approve(command.content_id, chat_id)
            if content.status == ContentStatus.POSTED:
                return Reply(ALREADY_POSTED_MESSAGE)
            return Reply(APPROVED_MESSAGE)

        if name == "reject":
            await self.reject(command.content_id, chat_id)
            return Reply(REJECTED_MESSAGE)

        if name == "edit":
            if command.argument is None:
                await self._load_owned(command.content_id, chat_id)
                return Reply(
                    f"To edit this update, send:\n/edit {command.content_id} [your new text]"
                )
            content = await self.edit(command.content_id, command.argument, chat_id)
            return Reply(
                f"✏️ Content edited! Review the new text and approve it when ready:\n\n{content.text}",
                buttons=[approval_buttons(content.id)[0]],
            )

        if name == "schedule":
            if command.argument is None:
                user, content = await self._load_owned(command.content_id, chat_id)
                if content.status != ContentStatus.APPROVED:
                    raise PreconditionError("Only approved content can be scheduled. Approve it first.")
                return Reply("🕒 When should this update be posted?", buttons=slot_buttons(content.id))
            content = await self.schedule(command.content_id, chat_id, command.argument)
            user = await self.store.get_user(content.user_id)
            local = content.scheduled_for.astimezone(user_zone(user))
            return Reply(f"🕒 Update scheduled for {local.strftime('%Y-%m-%d %H:%M')} ({user.timezone}).")

        raise ValidationError(f"Unsupported command: {name}")

    async def _register(self, user_id: Optional[str], message: ChatMessage) -> Reply:
        user = await self.store.link_chat(user_id, message.chat_id, message.from_handle)
        if user is None:
            raise ValidationError("User not found")
        self.log.info("chat_registered", user_id=user.id, chat_id=message.chat_id)
        return Reply(REGISTERED_MESSAGE)

    async def _generate(self, chat_id: str, instructions: Optional[str]) -> Reply:
        if self.generator is None:
            raise ConfigurationError("Content generation is not available right now")
        user = await self.store.get_user_by_chat_id(chat_id)
        if user is None:
            return Reply(NOT_REGISTERED_MESSAGE)

        if instructions:
            content = await self.generator.generate_with_instructions(user, instructions)
        else:
            content = await self.generator.generate_for_user(user)
        if content is None:
            return Reply(NO_ACTIVITY_MESSAGE)
        return self._approval_request(content)

    # --- Notifications ---

    def _approval_request(self, content: Content) -> Reply:
        text = (
            "🔔 *New Update Ready for Review*\n\n"
            f"{content.text}\n\n"
            "📊 About this update:\n"
            f"- ID: `{content.id}`\n"
            f"- Based on {len(content.activity_ids)} recent activities\n\n"
            "*Actions:*\n"
            f"/approve {content.id} - Post now\n"
            f"/reject {content.id} - Discard this update\n"
            f"/edit {content.id} [your new text] - Replace the text"
        )
        return Reply(text, buttons=approval_buttons(content.id), formatting=MARKDOWN)

    async def _send_to_owner(self, content: Content, reply: Reply, event: str) -> bool:
        user = await self.store.get_user(content.user_id)
        if user is None or not user.chat_id:
            self.log.info(f"{event}_skipped", content_id=content.id, reason="no linked chat")
            return False
        sent = await self.transport.send(
            user.chat_id,
            reply.text,
            buttons=reply.buttons,
            formatting=reply.formatting,
        )
        self.log.info(event, content_id=content.id, chat_id=user.chat_id, delivered=sent)
        return sent

    async def send_approval_request(self, content: Content) -> bool:
        """Send the draft to its owner with approve/reject/edit/schedule buttons."""
        return await self._send_to_owner(content, self._approval_request(content), "approval_request")

    async def notify_posted(self, content: Content) -> bool:
        reply = Reply(
            "🚀 *Update Posted Successfully!*\n\n"
            f"{content.text}\n\n"
            f"🔗 [View on Twitter/X]({content.post_url})",
            formatting=MARKDOWN,
        )
        return await self._send_to_owner(content, reply, "post_notification")

    async def notify_failed(self, content: Content, reason: str, *, will_retry: bool = False) -> bool:
        text = f"⚠️ Posting failed for update {content.id}\n\n{content.text}\n\nReason: {reason}"
        if will_retry:
            text += "\n\nIt will be retried on the next run."
        return await self._send_to_owner(content, Reply(text), "failure_notification")

    async def notify_post_conflict(self, content: Content, post_url: Optional[str]) -> bool:
        text = (
            f"⚠️ Update {content.id} was posted, but it changed while posting "
            f"(now {content.status.value}).\n\n"
            f"Please check the live post and remove it if needed: {post_url}"
        )
        return await self._send_to_owner(content, Reply(text), "conflict_notification")
