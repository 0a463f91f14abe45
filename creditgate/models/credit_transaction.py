from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Integer, String

from creditgate.db.base import Base


class CreditTransaction(Base):
    __tablename__ = "credit_transactions"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    account_id = Column(String, nullable=False, index=True)
    amount = Column(Integer, nullable=False)  # signed: +earn, -spend
    reason = Column(String, nullable=False)  # verification, access, referral, cycle_reset, admin_*
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
