"""
Chat command grammar.

Text commands look like ``/verb arg...``; button presses carry
``verb:content_id[:arg]`` callback payloads.
"""
from dataclasses import dataclass
from typing import Optional

from ..core.errors import CommandError
from .transport import ChatMessage

# Commands that take no arguments
BARE_COMMANDS = frozenset({"start", "help"})

# Commands that act on a content id
CONTENT_COMMANDS = frozenset({"approve", "reject", "edit", "schedule"})

CALLBACK_VERBS = CONTENT_COMMANDS

HELP_HINT = "Type /help to see available commands."


@dataclass
class ParsedCommand:
    """A validated chat command."""
    name: str
    content_id: Optional[str] = None
    argument: Optional[str] = None
    from_callback: bool = False


def parse_callback(data: str) -> ParsedCommand:
    """
    Parse a ``verb:id[:arg]`` button payload.

    Raises:
        CommandError: If the verb is unknown or the id is missing
    """
    verb, _, rest = data.partition(":")
    content_id, _, argument = rest.partition(":")
    if verb not in CALLBACK_VERBS:
        raise CommandError(f"Unknown action: {verb or data}")
    if not content_id:
        raise CommandError("Content ID not provided")
    return ParsedCommand(
        name=verb,
        content_id=content_id,
        argument=argument or None,
        from_callback=True,
    )


def parse_text(text: str) -> ParsedCommand:
    """
    Parse a slash command.

    Raises:
        CommandError: With a message the user can act on
    """
    text = text.strip()
    if not text.startswith("/"):
        raise CommandError(f"I only understand commands. {HELP_HINT}")

    head, _, rest = text.partition(" ")
    # "/approve@DevCastBot" in group chats
    name = head[1:].split("@", 1)[0].lower()
    rest = rest.strip()

    if name in BARE_COMMANDS:
        return ParsedCommand(name=name)

    if name == "register":
        if not rest:
            raise CommandError("User ID not provided. Format: /register YOUR_CODE")
        return ParsedCommand(name=name, argument=rest.split()[0])

    if name == "generate":
        return ParsedCommand(name=name, argument=rest or None)

    if name in CONTENT_COMMANDS:
        content_id, _, argument = rest.partition(" ")
        argument = argument.strip()
        if not content_id:
            if name == "edit":
                raise CommandError(
                    "Please provide both content ID and new text. Format: /edit [id] [new text]"
                )
            raise CommandError("Content ID not provided")
        if name == "edit" and not argument:
            raise CommandError(
                "Please provide both content ID and new text. Format: /edit [id] [new text]"
            )
        return ParsedCommand(name=name, content_id=content_id, argument=argument or None)

    raise CommandError(f"Unknown command: /{name}. {HELP_HINT}")


def parse_message(message: ChatMessage) -> ParsedCommand:
    """Parse an inbound chat message or button press."""
    if message.is_callback:
        return parse_callback(message.callback_data)
    if not message.text:
        raise CommandError(f"Empty message. {HELP_HINT}")
    return parse_text(message.text)
