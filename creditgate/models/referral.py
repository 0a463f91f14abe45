from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Integer, String

from creditgate.db.base import Base


class Referral(Base):
    __tablename__ = "referrals"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    referrer_id = Column(String, nullable=False, index=True)
    # An account can be referred at most once.
    referred_id = Column(String, nullable=False, unique=True)
    credits_awarded = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
