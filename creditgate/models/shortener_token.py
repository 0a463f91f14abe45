from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, String

from creditgate.db.base import Base


class ShortenerToken(Base):
    __tablename__ = "shortener_tokens"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    token = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
