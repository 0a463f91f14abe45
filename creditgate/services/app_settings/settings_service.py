"""Runtime switches controlled by admins (bot on/off)."""
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from creditgate.models.app_settings import AppSettings


class AppSettingsService:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self) -> AppSettings | None:
        return self.db.query(AppSettings).filter(AppSettings.id == 1).first()

    def get_or_create(self) -> AppSettings:
        row = self.get()
        if row:
            return row
        row = AppSettings(id=1, bot_active=True)
        self.db.add(row)
        self.db.flush()
        return row

    def is_bot_active(self) -> bool:
        row = self.get()
        return True if row is None else bool(row.bot_active)

    def toggle_bot(self) -> bool:
        """Flip bot_active and return the new value."""
        row = self.get_or_create()
        row.bot_active = not row.bot_active
        row.updated_at = datetime.now(timezone.utc)
        self.db.add(row)
        self.db.flush()
        return row.bot_active

    def as_dict(self) -> dict[str, Any]:
        row = self.get_or_create()
        return {
            "bot_active": row.bot_active,
            "updated_at": row.updated_at.isoformat() if row.updated_at else None,
        }

    def update(self, data: dict[str, Any]) -> dict[str, Any]:
        row = self.get_or_create()
        if data.get("bot_active") is not None:
            row.bot_active = bool(data["bot_active"])
        row.updated_at = datetime.now(timezone.utc)
        self.db.add(row)
        self.db.flush()
        return self.as_dict()
