"""
Telegram Bot API integration.

Sends approval prompts and replies, and converts inbound webhook updates
into ChatMessage objects for the approval processor.
"""
import logging
from typing import Optional

import httpx

from ..approval.transport import Button, ChatMessage, ChatTransport

logger = logging.getLogger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"


class TelegramTransport(ChatTransport):
    """
    Chat transport backed by the Telegram Bot API.

    Delivery is best effort: failures are logged and reported as False.
    """

    def __init__(
        self,
        bot_token: Optional[str],
        *,
        base_url: str = TELEGRAM_API_BASE,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self.bot_token = bot_token or ""
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = http_client
        self._owns_client = http_client is None

    @property
    def is_configured(self) -> bool:
        return bool(self.bot_token)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    def _method_url(self, method: str) -> str:
        return f"{self.base_url}/bot{self.bot_token}/{method}"

    async def _call(self, method: str, payload: dict) -> bool:
        if not self.is_configured:
            logger.warning(f"Telegram bot token not configured, dropping {method}")
            return False

        client = await self._get_client()
        try:
            response = await client.post(self._method_url(method), json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Telegram {method} failed: {e}")
            return False
        return bool(response.json().get("ok", False))

    async def send(
        self,
        chat_id: str,
        text: str,
        *,
        buttons: Optional[list[list[Button]]] = None,
        formatting: Optional[str] = None,
    ) -> bool:
        payload: dict = {"chat_id": chat_id, "text": text}
        if formatting:
            payload["parse_mode"] = formatting
        if buttons:
            payload["reply_markup"] = {
                "inline_keyboard": [
                    [{"text": b.text, "callback_data": b.callback_data} for b in row]
                    for row in buttons
                ]
            }
        return await self._call("sendMessage", payload)

    async def answer_callback(self, callback_id: str, text: Optional[str] = None) -> bool:
        """Dismiss the loading indicator on a pressed button."""
        payload: dict = {"callback_query_id": callback_id}
        if text:
            payload["text"] = text[:200]
        return await self._call("answerCallbackQuery", payload)

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None


def parse_update(update: dict) -> Optional[ChatMessage]:
    """
    Convert a Telegram update into a ChatMessage.

    Returns:
        ChatMessage, or None for updates that carry no command or button press
    """
    callback = update.get("callback_query")
    if callback:
        message = callback.get("message") or {}
        chat = message.get("chat") or {}
        sender = callback.get("from") or {}
        if "id" not in chat or not callback.get("data"):
            return None
        return ChatMessage(
            chat_id=str(chat["id"]),
            callback_data=callback["data"],
            from_handle=sender.get("username"),
            callback_id=callback.get("id"),
        )

    message = update.get("message") or update.get("edited_message")
    if not message or not message.get("text"):
        return None
    chat = message.get("chat") or {}
    if "id" not in chat:
        return None
    sender = message.get("from") or {}
    return ChatMessage(
        chat_id=str(chat["id"]),
        text=message["text"],
        from_handle=sender.get("username"),
    )
