"""Chat-based human approval of generated content."""
from .commands import ParsedCommand, parse_callback, parse_message, parse_text
from .processor import ApprovalProcessor, Reply, approval_buttons, slot_buttons
from .scheduling import SLOT_LABELS, resolve_slot
from .transport import Button, ChatMessage, ChatTransport

__all__ = [
    "SLOT_LABELS",
    "ApprovalProcessor",
    "Button",
    "ChatMessage",
    "ChatTransport",
    "ParsedCommand",
    "Reply",
    "approval_buttons",
    "parse_callback",
    "parse_message",
    "parse_text",
    "resolve_slot",
    "slot_buttons",
]
