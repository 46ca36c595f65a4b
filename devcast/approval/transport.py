"""Chat transport abstraction used by the approval loop."""
import abc
from dataclasses import dataclass
from typing import Optional


@dataclass
class Button:
    """An inline button that sends ``callback_data`` back when pressed."""
    text: str
    callback_data: str


@dataclass
class ChatMessage:
    """
    An inbound chat message or button press.

    Exactly one of ``text`` and ``callback_data`` is set.
    """
    chat_id: str
    text: Optional[str] = None
    callback_data: Optional[str] = None
    from_handle: Optional[str] = None
    callback_id: Optional[str] = None

    @property
    def is_callback(self) -> bool:
        return self.callback_data is not None


class ChatTransport(abc.ABC):
    """Abstract base class for chat transports."""

    @abc.abstractmethod
    async def send(
        self,
        chat_id: str,
        text: str,
        *,
        buttons: Optional[list[list[Button]]] = None,
        formatting: Optional[str] = None,
    ) -> bool:
        """
        Send a message.

        Args:
            chat_id: Destination chat
            text: Message body
            buttons: Rows of inline buttons
            formatting: Markup mode understood by the transport, e.g. "Markdown"

        Returns:
            True if the transport accepted the message
        """
        pass
