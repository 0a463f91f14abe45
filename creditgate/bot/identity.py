"""
Process-wide bot identity (id + username), resolved once at startup via getMe
and read-only afterwards.
"""
from __future__ import annotations

import threading

from creditgate.core.config import settings


class BotIdentity:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._bot_id: int | None = None
        self._username: str | None = None

    def set_once(self, bot_id: int, username: str) -> None:
        with self._lock:
            if self._bot_id is not None:
                if (self._bot_id, self._username) != (bot_id, username):
                    raise RuntimeError("bot identity already initialized")
                return
            self._bot_id = bot_id
            self._username = username

    @property
    def is_resolved(self) -> bool:
        return self._bot_id is not None

    @property
    def bot_id(self) -> int | None:
        return self._bot_id

    @property
    def username(self) -> str:
        return self._username or settings.telegram_bot_username.lstrip("@")

    def deep_link(self, payload: str) -> str:
        return f"https://t.me/{self.username}?start={payload}"


bot_identity = BotIdentity()
