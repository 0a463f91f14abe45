from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, String, UniqueConstraint

from creditgate.db.base import Base


class AccessGrant(Base):
    __tablename__ = "access_grants"
    __table_args__ = (UniqueConstraint("account_id", "content_item_id", name="uq_access_grant_account_item"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    account_id = Column(String, nullable=False, index=True)
    content_item_id = Column(String, nullable=False, index=True)
    unlocked_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
