"""
Blocking Bot API client for Celery workers (broadcast, notifications).
The bot process itself talks to Telegram through aiogram.
"""
import logging
import time

import httpx

from creditgate.core.config import settings
from creditgate.utils.metrics import telegram_request_duration_seconds, telegram_requests_total

logger = logging.getLogger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"


class TelegramAPIError(Exception):
    def __init__(self, method: str, error_code: int, description: str) -> None:
        super().__init__(f"{method} -> {error_code}: {description}")
        self.method = method
        self.error_code = error_code
        self.description = description


class TelegramClient:
    def __init__(self, client: httpx.Client | None = None) -> None:
        self._base_url = f"{TELEGRAM_API_BASE}/bot{settings.telegram_bot_token}"
        self._client = client

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=settings.http_client_timeout)
        return self._client

    def _api_call(self, method: str, payload: dict) -> dict:
        """POST a Bot API method; a response with ok=false raises TelegramAPIError."""
        start = time.time()
        status = "error"
        try:
            body = self.client.post(f"{self._base_url}/{method}", json=payload).json()
            if not body.get("ok"):
                raise TelegramAPIError(method, body.get("error_code", 0), body.get("description", "unknown error"))
            status = "success"
            return body
        finally:
            telegram_requests_total.labels(method=method, status=status).inc()
            telegram_request_duration_seconds.labels(method=method).observe(time.time() - start)

    def send_message(self, chat_id: str, text: str, disable_web_page_preview: bool = True) -> dict:
        try:
            return self._api_call(
                "sendMessage",
                {
                    "chat_id": int(chat_id),
                    "text": text,
                    "disable_web_page_preview": disable_web_page_preview,
                },
            )
        except (httpx.HTTPError, TelegramAPIError) as e:
            logger.warning("telegram_send_failed", extra={"chat_id": chat_id, "error": str(e)})
            raise

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
