"""Telegram Bot API delivery for notifications."""

import logging
from typing import Any, Optional

import httpx

from shopwatch import metrics
from shopwatch.config import settings
from shopwatch.notify.events import Notification
from shopwatch.notify.formatters import format_notification

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """
    Sends notifications to a chat through the Telegram Bot API.

    Delivery failures are logged and counted, never raised: a chat that
    cannot be reached must not stop the scan from persisting its state.
    """

    def __init__(
        self,
        bot_token: Optional[str] = None,
        api_base: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.bot_token = bot_token if bot_token is not None else settings.telegram_bot_token
        self.api_base = (api_base or settings.telegram_api_base).rstrip("/")
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=30.0, transport=self._transport)
        return self._http_client

    async def close(self):
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    def _url(self, method: str) -> str:
        return f"{self.api_base}/bot{self.bot_token}/{method}"

    async def _call(self, method: str, **kwargs: Any) -> Optional[dict]:
        client = await self._get_client()
        response = await client.post(self._url(method), **kwargs)
        if response.status_code != 200:
            logger.warning(f"Telegram {method} failed: {response.status_code} - {response.text[:300]}")
            return None
        data = response.json()
        if not data.get("ok"):
            logger.warning(f"Telegram {method} rejected: {data.get('description')}")
            return None
        return data.get("result") or {}

    async def send(self, notification: Notification) -> Optional[int]:
        """
        Deliver a notification, followed by its attachment if any.

        Returns:
            Telegram message id of the text message, or None on failure
        """
        kind = notification.kind.value
        if not self.enabled:
            logger.debug(f"Telegram disabled, dropping {kind} notification for chat {notification.chat_id}")
            return None

        message_id: Optional[int] = None
        try:
            result = await self._call(
                "sendMessage",
                json={
                    "chat_id": notification.chat_id,
                    "text": format_notification(notification),
                    "parse_mode": "HTML",
                    "disable_web_page_preview": True,
                },
            )
            if result is not None:
                message_id = result.get("message_id")

            if notification.attachment is not None:
                await self._call(
                    "sendDocument",
                    data={"chat_id": notification.chat_id},
                    files={
                        "document": (
                            notification.attachment.filename,
                            notification.attachment.content,
                            "text/plain",
                        )
                    },
                )
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Telegram send failed for chat {notification.chat_id} ({kind}): {e}")

        metrics.record_notification(kind, message_id is not None)
        return message_id

    async def delete(self, chat_id: str, message_id: int) -> bool:
        """Delete a message; failures (already deleted, too old) are expected."""
        if not self.enabled:
            return False
        try:
            result = await self._call(
                "deleteMessage",
                json={"chat_id": chat_id, "message_id": message_id},
            )
        except httpx.HTTPError as e:
            logger.debug(f"Telegram deleteMessage failed for chat {chat_id}: {e}")
            return False
        return result is not None


# Global notifier instance
telegram_notifier = TelegramNotifier()
