from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import JSON, BigInteger, Column, DateTime, Integer, String, Text

from creditgate.db.base import Base


class ContentItem(Base):
    __tablename__ = "content_items"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    search_key = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    status = Column(String, nullable=False, default="draft")  # draft, published
    # Legacy plain links, delivered after assets when an item has no link assets.
    links = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def short_id(self) -> str:
        return self.id[:8]


class ContentAsset(Base):
    __tablename__ = "content_assets"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    content_item_id = Column(String, nullable=False, index=True)
    # link, document, video, photo, audio, animation, voice, sticker
    asset_type = Column(String, nullable=False)
    url = Column(Text, nullable=True)
    telegram_file_id = Column(String, nullable=True)
    file_name = Column(String, nullable=True)
    mime_type = Column(String, nullable=True)
    file_size = Column(BigInteger, nullable=True)
    caption = Column(Text, nullable=True)
    order_index = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
