from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Integer, String

from creditgate.db.base import Base


class VerificationToken(Base):
    """One-time token proving a shortener visit. Purpose decides what claiming it yields."""

    __tablename__ = "verification_tokens"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    token = Column(String, unique=True, nullable=False, index=True)
    account_id = Column(String, nullable=False, index=True)
    purpose = Column(String, nullable=False)  # content_unlock, credit_grant
    content_item_id = Column(String, nullable=True, index=True)
    credit_amount = Column(Integer, nullable=True)
    status = Column(String, nullable=False, default="pending")  # pending, verified, expired, used
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    verified_at = Column(DateTime(timezone=True), nullable=True)
    used_at = Column(DateTime(timezone=True), nullable=True)
