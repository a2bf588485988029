from __future__ import annotations

import logging
from typing import Protocol

import httpx

from silkbot.security.redaction import sanitize_text

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"


class Notifier(Protocol):
    def send(self, text: str) -> bool: ...


class NullNotifier:
    """Notifier used when no delivery channel is configured."""

    def send(self, text: str) -> bool:
        logger.info("notification_skipped", extra={"extra": {"reason": "not_configured"}})
        return False


class TelegramNotifier:
    """Fire-and-forget delivery through the Telegram Bot API; never raises."""

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        *,
        base_url: str = TELEGRAM_API,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._bot_token = bot_token
        self.chat_id = chat_id
        self.client = httpx.Client(base_url=base_url, timeout=timeout, transport=transport)

    def send(self, text: str) -> bool:
        try:
            response = self.client.post(
                f"/bot{self._bot_token}/sendMessage",
                json={"chat_id": self.chat_id, "text": text, "parse_mode": "Markdown"},
            )
        except httpx.HTTPError as exc:
            logger.warning(
                "notification_delivery_failed",
                extra={"extra": {"error_type": type(exc).__name__}},
            )
            return False
        if response.status_code >= 400:
            logger.warning(
                "notification_delivery_failed",
                extra={
                    "extra": {
                        "status": response.status_code,
                        "body": sanitize_text(
                            response.text[:200], known_secrets=(self._bot_token,)
                        ),
                    }
                },
            )
            return False
        return True

    def close(self) -> None:
        self.client.close()
