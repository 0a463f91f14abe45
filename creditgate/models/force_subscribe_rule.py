from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, String

from creditgate.db.base import Base


class ForceSubscribeRule(Base):
    __tablename__ = "force_subscribe_rules"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    channel_ref = Column(String, nullable=False)  # @username or -100... chat id
    invite_url = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
