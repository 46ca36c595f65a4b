"""
Tests for the approval loop.

Covers command parsing, schedule slots, the content transitions with their
ownership boundary, and the one-reply-per-command chat handler.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from devcast.approval.commands import parse_callback, parse_message, parse_text
from devcast.approval.processor import (
    ALREADY_POSTED_MESSAGE,
    APPROVED_MESSAGE,
    NO_ACTIVITY_MESSAGE,
    NOT_REGISTERED_MESSAGE,
    REGISTERED_MESSAGE,
    REJECTED_MESSAGE,
    UNEXPECTED_ERROR_MESSAGE,
    WELCOME_MESSAGE,
    ApprovalProcessor,
)
from devcast.approval.scheduling import parse_posting_time, resolve_slot
from devcast.approval.transport import ChatMessage
from devcast.core.errors import (
    CommandError,
    ContentAccessError,
    InvalidTransitionError,
    PreconditionError,
    ValidationError,
)
from devcast.store.models import ActivityStatus, Content, ContentStatus, User

from conftest import NOW


@pytest.fixture
def processor(store, transport) -> ApprovalProcessor:
    return ApprovalProcessor(store, transport, clock=lambda: NOW)


@pytest.fixture
def make_content(store, make_activity):
    """Persist content for user-a over fresh processed activities."""

    async def _make(status=ContentStatus.PENDING, activity_ids=None, **kwargs) -> Content:
        if activity_ids is None:
            activities = [await store.insert_activity(make_activity()) for _ in range(2)]
            activity_ids = [a.id for a in activities]
            await store.transition_activities(activity_ids, [ActivityStatus.PENDING], ActivityStatus.PROCESSED)
        content = Content(
            user_id=kwargs.pop("user_id", "user-a"),
            text=kwargs.pop("text", "Shipped retries today #devcast"),
            activity_ids=activity_ids,
            status=status,
            **kwargs,
        )
        return await store.insert_content(content)

    return _make


# --- Command grammar ---

class TestCommandParsing:
    """Tests for chat command parsing."""

    def test_content_commands(self):
        """Test content commands carry their id and argument."""
        command = parse_text("/edit abc123 A brand new text")
        assert command.name == "edit"
        assert command.content_id == "abc123"
        assert command.argument == "A brand new text"

        assert parse_text("/approve abc123").content_id == "abc123"
        assert parse_text("/schedule abc123 +3h").argument == "+3h"

    def test_bot_suffix_stripped(self):
        """Test group-chat command suffixes are ignored."""
        assert parse_text("/approve@DevCastBot abc").name == "approve"

    def test_missing_arguments(self):
        """Test helpful messages for incomplete commands."""
        with pytest.raises(CommandError, match="Format: /register YOUR_CODE"):
            parse_text("/register")
        with pytest.raises(CommandError, match=r"Format: /edit \[id\] \[new text\]"):
            parse_text("/edit abc123")
        with pytest.raises(CommandError, match="Content ID not provided"):
            parse_text("/approve")

    def test_unknown_and_free_text(self):
        """Test unknown commands and plain text point at /help."""
        with pytest.raises(CommandError, match="Unknown command: /dance"):
            parse_text("/dance now")
        with pytest.raises(CommandError, match="I only understand commands"):
            parse_text("hello there")

    def test_generate_optional_instructions(self):
        """Test /generate works with and without instructions."""
        assert parse_text("/generate").argument is None
        assert parse_text("/generate tweet about the release").argument == "tweet about the release"

    def test_callback_payloads(self):
        """Test button payloads map to content commands."""
        command = parse_callback("schedule:abc123:tomorrow_9am")
        assert command.name == "schedule"
        assert command.content_id == "abc123"
        assert command.argument == "tomorrow_9am"
        assert command.from_callback

        with pytest.raises(CommandError):
            parse_callback("delete:abc123")
        with pytest.raises(CommandError):
            parse_callback("approve:")

    def test_parse_message_prefers_callback(self):
        """Test a button press is parsed from its payload."""
        message = ChatMessage(chat_id="100", callback_data="reject:xyz", callback_id="cb1")
        assert parse_message(message).name == "reject"


# --- Schedule slots ---

class TestScheduleSlots:
    """Tests for named slot resolution."""

    def test_relative_slots(self):
        """Test relative slots are offsets from now."""
        user = User(id="u")
        assert resolve_slot("+1h", user, NOW) == NOW + timedelta(hours=1)
        assert resolve_slot("+3h", user, NOW) == NOW + timedelta(hours=3)

    def test_tomorrow_in_user_timezone(self):
        """Test tomorrow slots are local wall-clock times."""
        user = User(id="u", timezone="America/New_York")
        # 2025-03-15 09:00 EDT
        assert resolve_slot("tomorrow_9am", user, NOW) == datetime(2025, 3, 15, 13, 0, tzinfo=timezone.utc)

    def test_best_today_or_tomorrow(self):
        """Test best rolls over once today's posting time has passed."""
        later_today = User(id="u", posting_time="18:00")
        assert resolve_slot("best", later_today, NOW) == datetime(2025, 3, 14, 18, 0, tzinfo=timezone.utc)

        already_passed = User(id="u", posting_time="09:00")
        assert resolve_slot("best", already_passed, NOW) == datetime(2025, 3, 15, 9, 0, tzinfo=timezone.utc)

    def test_unknown_timezone_uses_utc(self):
        """Test an invalid timezone falls back to UTC."""
        user = User(id="u", timezone="Mars/Olympus_Mons")
        assert resolve_slot("tomorrow_12pm", user, NOW) == datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)

    def test_unknown_slot(self):
        """Test unknown slots are refused."""
        with pytest.raises(CommandError, match="Unknown schedule option"):
            resolve_slot("next_week", User(id="u"), NOW)

    def test_malformed_posting_time(self):
        """Test malformed posting times default to 18:00."""
        assert parse_posting_time("six pm").hour == 18
        assert parse_posting_time("07:30").minute == 30


# --- Transitions ---

class TestApprove:
    """Tests for approval."""

    @pytest.mark.asyncio
    async def test_approve_pending(self, store, user_a, processor, make_content):
        """Test approving schedules the content for now."""
        content = await make_content()

        approved = await processor.approve(content.id, "100")

        assert approved.status == ContentStatus.APPROVED
        assert approved.scheduled_for == NOW
        stored = await store.get_content(content.id)
        assert stored.status == ContentStatus.APPROVED

    @pytest.mark.asyncio
    async def test_approve_is_idempotent(self, store, user_a, processor, make_content):
        """Test approving twice leaves the first approval in place."""
        content = await make_content()
        await processor.approve(content.id, "100")
        second = await processor.approve(content.id, "100")
        assert second.status == ContentStatus.APPROVED
        assert second.scheduled_for == NOW

    @pytest.mark.asyncio
    async def test_approve_truncates_long_text(self, store, user_a, processor, make_content):
        """Test approved text fits the platform limit."""
        content = await make_content(status=ContentStatus.EDITED, text="x" * 400)
        approved = await processor.approve(content.id, "100")
        assert len(approved.text) == 280

    @pytest.mark.asyncio
    async def test_approve_rejected_fails(self, store, user_a, processor, make_content):
        """Test rejected content cannot be approved."""
        content = await make_content(status=ContentStatus.REJECTED)
        with pytest.raises(InvalidTransitionError):
            await processor.approve(content.id, "100")

    @pytest.mark.asyncio
    async def test_other_users_content_is_inaccessible(self, store, user_a, user_b, processor, make_content):
        """Test a chat cannot act on content it does not own."""
        content = await make_content()

        with pytest.raises(ContentAccessError):
            await processor.approve(content.id, "200")
        with pytest.raises(ContentAccessError):
            await processor.approve("no-such-id", "200")

        assert (await store.get_content(content.id)).status == ContentStatus.PENDING

    @pytest.mark.asyncio
    async def test_auto_approve(self, store, user_a, processor, make_content):
        """Test the system approval path skips the chat identity."""
        content = await make_content()
        approved = await processor.auto_approve(content.id)
        assert approved.status == ContentStatus.APPROVED

    @pytest.mark.asyncio
    async def test_concurrent_writer_is_reevaluated(self, store, user_a, processor, make_content):
        """Test a lost conditional write re-reads and re-applies the command."""
        content = await make_content()
        original_update = store.update_content
        raced = {"done": False}

        async def racing_update(item, expected):
            if not raced["done"]:
                raced["done"] = True
                rival = await store.get_content(item.id)
                rival.status = ContentStatus.REJECTED
                await original_update(rival, [ContentStatus.PENDING])
                return False
            return await original_update(item, expected)

        store.update_content = racing_update
        with pytest.raises(InvalidTransitionError):
            await processor.approve(content.id, "100")
        assert (await store.get_content(content.id)).status == ContentStatus.REJECTED


class TestReject:
    """Tests for rejection."""

    @pytest.mark.asyncio
    async def test_reject_releases_activities(self, store, user_a, processor, make_content):
        """Test activities not used by other approved content return to processed."""
        content = await make_content()
        shared, exclusive = content.activity_ids
        await store.transition_activities(
            [shared, exclusive], [ActivityStatus.PROCESSED], ActivityStatus.PUBLISHED
        )
        await make_content(status=ContentStatus.APPROVED, activity_ids=[shared])

        rejected = await processor.reject(content.id, "100")

        assert rejected.status == ContentStatus.REJECTED
        by_id = {a.id: a for a in await store.get_activities([shared, exclusive])}
        assert by_id[exclusive].status == ActivityStatus.PROCESSED
        assert by_id[shared].status == ActivityStatus.PUBLISHED

    @pytest.mark.asyncio
    async def test_reject_twice_is_noop(self, store, user_a, processor, make_content):
        """Test rejecting rejected content changes nothing."""
        content = await make_content()
        await processor.reject(content.id, "100")
        again = await processor.reject(content.id, "100")
        assert again.status == ContentStatus.REJECTED

    @pytest.mark.asyncio
    async def test_posted_cannot_be_rejected(self, store, user_a, processor, make_content):
        """Test posted content is terminal."""
        content = await make_content(status=ContentStatus.POSTED)
        with pytest.raises(InvalidTransitionError):
            await processor.reject(content.id, "100")


class TestEditAndSchedule:
    """Tests for edit and schedule."""

    @pytest.mark.asyncio
    async def test_edit_returns_to_gate(self, store, user_a, processor, make_content):
        """Test editing approved content sends it back for approval."""
        content = await make_content(status=ContentStatus.APPROVED, scheduled_for=NOW)

        edited = await processor.edit(content.id, "  Better words #devcast  ", "100")

        assert edited.status == ContentStatus.EDITED
        assert edited.text == "Better words #devcast"
        assert edited.scheduled_for is None
        assert edited.original_text == "Shipped retries today #devcast"

    @pytest.mark.asyncio
    async def test_edit_empty_text(self, store, user_a, processor, make_content):
        """Test empty replacement text is refused."""
        content = await make_content()
        with pytest.raises(ValidationError):
            await processor.edit(content.id, "   ", "100")

    @pytest.mark.asyncio
    async def test_schedule_requires_approval(self, store, user_a, processor, make_content):
        """Test pending content cannot be scheduled."""
        content = await make_content()
        with pytest.raises(PreconditionError):
            await processor.schedule(content.id, "100", "+1h")

    @pytest.mark.asyncio
    async def test_schedule_approved(self, store, user_a, processor, make_content):
        """Test scheduling sets the UTC posting time."""
        content = await make_content(status=ContentStatus.APPROVED, scheduled_for=NOW)
        scheduled = await processor.schedule(content.id, "100", "+3h")
        assert scheduled.scheduled_for == NOW + timedelta(hours=3)
        assert scheduled.status == ContentStatus.APPROVED


# --- Chat handler ---

class TestHandle:
    """Tests for inbound chat commands."""

    @pytest.mark.asyncio
    async def test_start_and_help(self, processor, transport):
        """Test informational commands reply once each."""
        await processor.handle(ChatMessage(chat_id="100", text="/start"))
        await processor.handle(ChatMessage(chat_id="100", text="/help"))
        assert transport.sent[0]["text"] == WELCOME_MESSAGE
        assert "/schedule" in transport.sent[1]["text"]
        assert len(transport.sent) == 2

    @pytest.mark.asyncio
    async def test_register_links_chat(self, store, processor, transport):
        """Test registration attaches the chat to the user."""
        await store.save_user(User(id="code-123"))

        reply = await processor.handle(ChatMessage(chat_id="555", text="/register code-123", from_handle="carol"))

        assert reply.text == REGISTERED_MESSAGE
        user = await store.get_user("code-123")
        assert user.chat_id == "555"
        assert user.chat_username == "carol"

    @pytest.mark.asyncio
    async def test_register_unknown_user(self, processor, transport):
        """Test registering an unknown code reports an error."""
        reply = await processor.handle(ChatMessage(chat_id="555", text="/register nobody"))
        assert reply.text == "Error: User not found"

    @pytest.mark.asyncio
    async def test_approve_via_button(self, store, user_a, processor, transport, make_content):
        """Test a button press approves and confirms."""
        content = await make_content()
        reply = await processor.handle(ChatMessage(chat_id="100", callback_data=f"approve:{content.id}"))
        assert reply.text == APPROVED_MESSAGE
        assert transport.last["chat_id"] == "100"

    @pytest.mark.asyncio
    async def test_approve_posted(self, store, user_a, processor, make_content):
        """Test approving posted content says so."""
        content = await make_content(status=ContentStatus.POSTED)
        reply = await processor.handle(ChatMessage(chat_id="100", text=f"/approve {content.id}"))
        assert reply.text == ALREADY_POSTED_MESSAGE

    @pytest.mark.asyncio
    async def test_reject_command(self, store, user_a, processor, make_content):
        """Test /reject confirms the rejection."""
        content = await make_content()
        reply = await processor.handle(ChatMessage(chat_id="100", text=f"/reject {content.id}"))
        assert reply.text == REJECTED_MESSAGE

    @pytest.mark.asyncio
    async def test_access_error_reply(self, store, user_a, user_b, processor, transport, make_content):
        """Test foreign content gets the same reply as missing content."""
        content = await make_content()

        foreign = await processor.handle(ChatMessage(chat_id="200", text=f"/approve {content.id}"))
        missing = await processor.handle(ChatMessage(chat_id="200", text="/approve nope"))

        assert foreign.text == missing.text == "Error: Content not found or not permitted"
        assert len(transport.sent) == 2

    @pytest.mark.asyncio
    async def test_edit_commands(self, store, user_a, processor, make_content):
        """Test the edit button asks for text and /edit applies it."""
        content = await make_content()

        prompt = await processor.handle(ChatMessage(chat_id="100", callback_data=f"edit:{content.id}"))
        assert f"/edit {content.id}" in prompt.text

        done = await processor.handle(ChatMessage(chat_id="100", text=f"/edit {content.id} Fresh words"))
        assert done.text.startswith("✏️ Content edited!")
        assert done.buttons[0][0].callback_data == f"approve:{content.id}"

    @pytest.mark.asyncio
    async def test_schedule_buttons_then_slot(self, store, user_a, processor, make_content):
        """Test the schedule button offers slots and a slot schedules the post."""
        content = await make_content(status=ContentStatus.APPROVED, scheduled_for=NOW)

        options = await processor.handle(ChatMessage(chat_id="100", callback_data=f"schedule:{content.id}"))
        slots = [b.callback_data for row in options.buttons for b in row]
        assert f"schedule:{content.id}:best" in slots

        done = await processor.handle(ChatMessage(chat_id="100", callback_data=f"schedule:{content.id}:+1h"))
        assert done.text == "🕒 Update scheduled for 2025-03-14 13:00 (UTC)."

    @pytest.mark.asyncio
    async def test_schedule_pending_refused(self, store, user_a, processor, make_content):
        """Test scheduling unapproved content explains why."""
        content = await make_content()
        reply = await processor.handle(ChatMessage(chat_id="100", callback_data=f"schedule:{content.id}"))
        assert reply.text.startswith("Error: Only approved content can be scheduled")

    @pytest.mark.asyncio
    async def test_unexpected_error_still_replies(self, store, user_a, transport, make_content):
        """Test crashes produce the generic reply."""
        broken = MagicMock(wraps=store)
        broken.get_user_by_chat_id = AsyncMock(side_effect=RuntimeError("db gone"))
        processor = ApprovalProcessor(broken, transport, clock=lambda: NOW)

        reply = await processor.handle(ChatMessage(chat_id="100", text="/approve abc"))

        assert reply.text == UNEXPECTED_ERROR_MESSAGE
        assert len(transport.sent) == 1

    @pytest.mark.asyncio
    async def test_generate_without_generator(self, user_a, processor):
        """Test /generate reports unavailability without a generator."""
        reply = await processor.handle(ChatMessage(chat_id="100", text="/generate"))
        assert reply.text.startswith("Error: Content generation is not available")

    @pytest.mark.asyncio
    async def test_generate_sends_approval_request(self, store, user_a, transport, make_content):
        """Test /generate replies with the draft and its buttons."""
        content = await make_content()
        generator = MagicMock()
        generator.generate_with_instructions = AsyncMock(return_value=content)
        processor = ApprovalProcessor(store, transport, generator=generator, clock=lambda: NOW)

        reply = await processor.handle(ChatMessage(chat_id="100", text="/generate tweet about retries"))

        generator.generate_with_instructions.assert_awaited_once_with(user_a, "tweet about retries")
        assert reply.text.startswith("🔔 *New Update Ready for Review*")
        assert reply.formatting == "Markdown"
        assert len(reply.buttons) == 2

    @pytest.mark.asyncio
    async def test_generate_nothing_to_say(self, store, user_a, transport):
        """Test /generate without pending activity says so."""
        generator = MagicMock()
        generator.generate_for_user = AsyncMock(return_value=None)
        processor = ApprovalProcessor(store, transport, generator=generator)

        reply = await processor.handle(ChatMessage(chat_id="100", text="/generate"))
        assert reply.text == NO_ACTIVITY_MESSAGE

    @pytest.mark.asyncio
    async def test_generate_unregistered_chat(self, store, transport):
        """Test unlinked chats are told to register."""
        processor = ApprovalProcessor(store, transport, generator=MagicMock())
        reply = await processor.handle(ChatMessage(chat_id="999", text="/generate"))
        assert reply.text == NOT_REGISTERED_MESSAGE


class TestNotifications:
    """Tests for outbound notifications."""

    @pytest.mark.asyncio
    async def test_approval_request_goes_to_owner(self, store, user_a, processor, transport, make_content):
        """Test approval requests reach the owner's chat."""
        content = await make_content()
        assert await processor.send_approval_request(content) is True
        assert transport.last["chat_id"] == "100"
        assert content.id in transport.last["text"]

    @pytest.mark.asyncio
    async def test_owner_without_chat(self, store, processor, transport, make_content):
        """Test owners without a linked chat are skipped."""
        await store.save_user(User(id="user-a"))
        content = await make_content()
        assert await processor.notify_posted(content) is False
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_failure_notice_mentions_retry(self, store, user_a, processor, transport, make_content):
        """Test retryable failures say they will be retried."""
        content = await make_content(status=ContentStatus.APPROVED)
        await processor.notify_failed(content, "Rate limited", will_retry=True)
        assert "Reason: Rate limited" in transport.last["text"]
        assert "retried on the next run" in transport.last["text"]

    @pytest.mark.asyncio
    async def test_conflict_notice_links_live_post(self, store, user_a, processor, transport, make_content):
        """Test the owner learns about a post whose content changed meanwhile."""
        content = await make_content(status=ContentStatus.REJECTED)
        assert await processor.notify_post_conflict(content, "https://twitter.com/i/status/77") is True
        assert "now rejected" in transport.last["text"]
        assert "https://twitter.com/i/status/77" in transport.last["text"]
