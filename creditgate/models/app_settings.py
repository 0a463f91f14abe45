from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer

from creditgate.db.base import Base


class AppSettings(Base):
    """Global runtime switches (single row, id=1), flipped by admins from the bot."""

    __tablename__ = "app_settings"

    id = Column(Integer, primary_key=True, default=1)
    bot_active = Column(Boolean, nullable=False, default=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
