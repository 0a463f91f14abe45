import logging

from sqlalchemy.orm import Session

from creditgate.entitlement.errors import ContentNotFoundError
from creditgate.models.content import ContentAsset, ContentItem
from creditgate.services.access.service import AccessService
from creditgate.services.tokens.service import VerificationTokenService

logger = logging.getLogger(__name__)

ASSET_TYPES = ("link", "document", "video", "photo", "audio", "animation", "voice", "sticker")
SHORT_ID_LENGTH = 8


def normalize_search_key(value: str) -> str:
    return " ".join(value.lower().split())


class ContentService:
    def __init__(self, db: Session):
        self.db = db

    def get(self, item_id: str) -> ContentItem | None:
        return self.db.query(ContentItem).filter(ContentItem.id == item_id).one_or_none()

    def find_by_ref(self, ref: str) -> ContentItem | None:
        """
        Resolve a full id or a short id prefix (deep links carry 8 chars).
        An ambiguous prefix resolves to nothing.
        """
        ref = (ref or "").strip()
        if not ref:
            return None
        item = self.get(ref)
        if item:
            return item
        matches = (
            self.db.query(ContentItem)
            .filter(ContentItem.id.startswith(ref, autoescape=True))
            .limit(2)
            .all()
        )
        if len(matches) != 1:
            return None
        return matches[0]

    def require_by_ref(self, ref: str) -> ContentItem:
        item = self.find_by_ref(ref)
        if item is None:
            raise ContentNotFoundError(ref)
        return item

    def create(self, search_key: str, title: str, links: list[str] | None = None) -> ContentItem:
        item = ContentItem(
            search_key=normalize_search_key(search_key),
            title=title.strip(),
            links=list(links or []),
            status="draft",
        )
        self.db.add(item)
        self.db.flush()
        logger.info("content_item_created", extra={"content_id": item.id})
        return item

    def add_asset(
        self,
        item: ContentItem,
        asset_type: str,
        url: str | None = None,
        telegram_file_id: str | None = None,
        file_name: str | None = None,
        mime_type: str | None = None,
        file_size: int | None = None,
        caption: str | None = None,
    ) -> ContentAsset:
        if asset_type not in ASSET_TYPES:
            raise ValueError(f"unknown asset type: {asset_type}")
        if asset_type == "link" and not url:
            raise ValueError("link asset needs a url")
        if asset_type != "link" and not telegram_file_id:
            raise ValueError("file asset needs a telegram_file_id")
        asset = ContentAsset(
            content_item_id=item.id,
            asset_type=asset_type,
            url=url,
            telegram_file_id=telegram_file_id,
            file_name=file_name,
            mime_type=mime_type,
            file_size=file_size,
            caption=caption,
            order_index=self.count_assets(item),
        )
        self.db.add(asset)
        self.db.flush()
        return asset

    def count_assets(self, item: ContentItem) -> int:
        return self.db.query(ContentAsset).filter(ContentAsset.content_item_id == item.id).count()

    def list_assets(self, item: ContentItem) -> list[ContentAsset]:
        return (
            self.db.query(ContentAsset)
            .filter(ContentAsset.content_item_id == item.id)
            .order_by(ContentAsset.order_index, ContentAsset.created_at)
            .all()
        )

    def publish(self, item: ContentItem) -> ContentItem:
        item.status = "published"
        self.db.add(item)
        self.db.flush()
        return item

    def unpublish(self, item: ContentItem) -> ContentItem:
        item.status = "draft"
        self.db.add(item)
        self.db.flush()
        return item

    def list_recent(self, limit: int = 20, include_drafts: bool = True) -> list[ContentItem]:
        q = self.db.query(ContentItem)
        if not include_drafts:
            q = q.filter(ContentItem.status == "published")
        return q.order_by(ContentItem.created_at.desc()).limit(limit).all()

    def count(self) -> int:
        return self.db.query(ContentItem).count()

    def delete(self, item: ContentItem) -> None:
        """Remove the item with its assets, grants and open verification tokens."""
        item_id = item.id
        self.db.query(ContentAsset).filter(ContentAsset.content_item_id == item_id).delete(
            synchronize_session=False
        )
        AccessService(self.db).delete_for_content(item_id)
        VerificationTokenService(self.db).purge_for_content(item_id)
        self.db.delete(item)
        self.db.flush()
        logger.info("content_item_deleted", extra={"content_id": item_id})
