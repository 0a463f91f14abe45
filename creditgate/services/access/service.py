"""
AccessService: per (account, content item) unlock timestamps and the 12h validity window.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from creditgate.entitlement.config import get_access_validity
from creditgate.models.access_grant import AccessGrant
from creditgate.models.account import Account
from creditgate.models.content import ContentItem
from creditgate.utils.time import as_utc


@dataclass(frozen=True)
class AccessValidity:
    valid: bool
    hours_remaining: int = 0
    minutes_remaining: int = 0


def is_access_valid(unlocked_at: datetime | None, now: datetime | None = None) -> AccessValidity:
    """Valid iff less than the validity window elapsed. Remaining time floored to the minute."""
    if unlocked_at is None:
        return AccessValidity(valid=False)
    now = now or datetime.now(timezone.utc)
    window = get_access_validity()
    elapsed = now - as_utc(unlocked_at)
    if elapsed >= window:
        return AccessValidity(valid=False)
    remaining_minutes = max(0, int((window - elapsed).total_seconds() // 60))
    return AccessValidity(
        valid=True,
        hours_remaining=remaining_minutes // 60,
        minutes_remaining=remaining_minutes % 60,
    )


def is_available(item: ContentItem, is_admin: bool, validity: AccessValidity | None = None) -> bool:
    """Drafts stay reachable for admins and for holders of a still-valid grant."""
    if item.status == "published" or is_admin:
        return True
    return bool(validity and validity.valid)


class AccessService:
    def __init__(self, db: Session):
        self.db = db

    def get(self, account: Account, item: ContentItem) -> AccessGrant | None:
        return (
            self.db.query(AccessGrant)
            .filter(AccessGrant.account_id == account.id, AccessGrant.content_item_id == item.id)
            .one_or_none()
        )

    def validity(self, account: Account, item: ContentItem, now: datetime | None = None) -> AccessValidity:
        grant = self.get(account, item)
        return is_access_valid(grant.unlocked_at if grant else None, now)

    def grant_or_renew(self, account: Account, item: ContentItem, now: datetime | None = None) -> AccessGrant:
        """Upsert keyed by (account, item): renewal just moves unlocked_at forward."""
        now = now or datetime.now(timezone.utc)
        if self._renew(account, item, now):
            return self.get(account, item)
        grant = AccessGrant(account_id=account.id, content_item_id=item.id, unlocked_at=now)
        try:
            with self.db.begin_nested():
                self.db.add(grant)
                self.db.flush()
        except IntegrityError:
            # Concurrent first unlock inserted the row; renew it instead.
            self._renew(account, item, now)
            return self.get(account, item)
        return grant

    def _renew(self, account: Account, item: ContentItem, now: datetime) -> bool:
        result = self.db.execute(
            update(AccessGrant)
            .where(AccessGrant.account_id == account.id, AccessGrant.content_item_id == item.id)
            .values(unlocked_at=now)
            .execution_options(synchronize_session="fetch")
        )
        self.db.flush()
        return result.rowcount > 0

    def list_for_account(self, account: Account) -> list[tuple[AccessGrant, ContentItem]]:
        """Library view: every unlocked item, most recent first."""
        return (
            self.db.query(AccessGrant, ContentItem)
            .join(ContentItem, ContentItem.id == AccessGrant.content_item_id)
            .filter(AccessGrant.account_id == account.id)
            .order_by(AccessGrant.unlocked_at.desc())
            .all()
        )

    def delete_for_content(self, content_item_id: str) -> int:
        deleted = (
            self.db.query(AccessGrant)
            .filter(AccessGrant.content_item_id == content_item_id)
            .delete(synchronize_session=False)
        )
        self.db.flush()
        return deleted
