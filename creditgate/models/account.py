from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, String

from creditgate.db.base import Base


class Account(Base):
    __tablename__ = "accounts"
    __table_args__ = (CheckConstraint("credits >= 0", name="ck_accounts_credits_non_negative"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    telegram_id = Column(String, unique=True, nullable=False, index=True)
    display_name = Column(String, nullable=True)
    role = Column(String, nullable=False, default="user")  # user, admin
    status = Column(String, nullable=False, default="active")  # active, banned

    credits = Column(Integer, nullable=False, default=0)
    # Start of the current 12h earning cycle; null = never earned.
    last_credit_reset = Column(DateTime(timezone=True), nullable=True)

    # Managed by admins (/premium, /rmpremium); null expiry = never expires.
    is_premium = Column(Boolean, nullable=False, default=False)
    premium_expires_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def is_banned(self) -> bool:
        return self.status == "banned"
