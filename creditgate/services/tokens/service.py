"""
VerificationTokenService: one-time tokens proving a shortener visit.

Lifecycle: pending -> verified -> used, with pending/verified -> expired once the
token outlives its TTL. Every transition is a conditional UPDATE so concurrent
callers can never move a token twice.
"""
from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import update
from sqlalchemy.orm import Session

from creditgate.entitlement.config import get_token_ttl
from creditgate.models.account import Account
from creditgate.models.verification_token import VerificationToken
from creditgate.utils.metrics import verification_tokens_claimed_total, verification_tokens_minted_total
from creditgate.utils.time import as_utc

logger = logging.getLogger(__name__)

PURPOSE_CONTENT_UNLOCK = "content_unlock"
PURPOSE_CREDIT_GRANT = "credit_grant"

OPEN_STATUSES = ("pending", "verified")


class TokenOutcome(str, Enum):
    NOT_FOUND = "not_found"
    NOT_OWNER = "not_owner"
    EXPIRED = "expired"
    STILL_PENDING = "still_pending"
    ALREADY_USED = "already_used"
    READY = "ready"


class MarkOutcome(str, Enum):
    VERIFIED = "verified"
    ALREADY_VERIFIED = "already_verified"
    ALREADY_USED = "already_used"
    EXPIRED = "expired"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class TokenCheck:
    outcome: TokenOutcome
    token: VerificationToken | None = None


def generate_token() -> str:
    """128 bits of randomness, hex encoded."""
    return secrets.token_hex(16)


class VerificationTokenService:
    def __init__(self, db: Session):
        self.db = db

    def get(self, token: str) -> VerificationToken | None:
        return self.db.query(VerificationToken).filter(VerificationToken.token == token).one_or_none()

    def mint(
        self,
        account: Account,
        purpose: str,
        content_item_id: str | None = None,
        credit_amount: int | None = None,
    ) -> VerificationToken:
        if purpose == PURPOSE_CONTENT_UNLOCK and not content_item_id:
            raise ValueError("content_unlock token needs a content_item_id")
        if purpose == PURPOSE_CREDIT_GRANT and not credit_amount:
            raise ValueError("credit_grant token needs a credit_amount")
        row = VerificationToken(
            token=generate_token(),
            account_id=account.id,
            purpose=purpose,
            content_item_id=content_item_id,
            credit_amount=credit_amount,
            status="pending",
        )
        self.db.add(row)
        self.db.flush()
        verification_tokens_minted_total.labels(purpose=purpose).inc()
        logger.info(
            "verification_token_minted",
            extra={"account_id": account.id, "purpose": purpose, "content_id": content_item_id},
        )
        return row

    def _is_past_ttl(self, row: VerificationToken, now: datetime) -> bool:
        return now - as_utc(row.created_at) > get_token_ttl()

    def _expire(self, row: VerificationToken) -> None:
        self.db.execute(
            update(VerificationToken)
            .where(VerificationToken.id == row.id, VerificationToken.status.in_(OPEN_STATUSES))
            .values(status="expired")
        )
        self.db.flush()
        self.db.refresh(row)

    def check(
        self,
        token: str,
        requester: Account,
        purpose: str,
        now: datetime | None = None,
    ) -> TokenCheck:
        """Classify a token for its requester. May move a stale token to expired."""
        now = now or datetime.now(timezone.utc)
        row = self.get(token)
        if row is None or row.purpose != purpose:
            return TokenCheck(TokenOutcome.NOT_FOUND)
        if row.account_id != requester.id:
            return TokenCheck(TokenOutcome.NOT_OWNER, row)
        if row.status == "used":
            return TokenCheck(TokenOutcome.ALREADY_USED, row)
        if row.status == "expired":
            return TokenCheck(TokenOutcome.EXPIRED, row)
        if self._is_past_ttl(row, now):
            self._expire(row)
            # A concurrent claim may have won between our read and the update.
            if row.status == "used":
                return TokenCheck(TokenOutcome.ALREADY_USED, row)
            return TokenCheck(TokenOutcome.EXPIRED, row)
        if row.status == "pending":
            return TokenCheck(TokenOutcome.STILL_PENDING, row)
        return TokenCheck(TokenOutcome.READY, row)

    def claim(self, row: VerificationToken, now: datetime | None = None) -> bool:
        """verified -> used. False means another caller claimed (or expired) it first."""
        now = now or datetime.now(timezone.utc)
        result = self.db.execute(
            update(VerificationToken)
            .where(VerificationToken.id == row.id, VerificationToken.status == "verified")
            .values(status="used", used_at=now)
        )
        self.db.flush()
        self.db.refresh(row)
        claimed = result.rowcount > 0
        verification_tokens_claimed_total.labels(
            purpose=row.purpose, outcome="claimed" if claimed else "lost_race"
        ).inc()
        return claimed

    def mark_verified(self, token: str, now: datetime | None = None) -> MarkOutcome:
        """pending -> verified; never grants anything by itself. Safe to repeat."""
        now = now or datetime.now(timezone.utc)
        row = self.get(token)
        if row is None:
            return MarkOutcome.NOT_FOUND
        if row.status == "used":
            return MarkOutcome.ALREADY_USED
        if row.status == "expired":
            return MarkOutcome.EXPIRED
        if self._is_past_ttl(row, now):
            self._expire(row)
            return MarkOutcome.ALREADY_USED if row.status == "used" else MarkOutcome.EXPIRED
        if row.status == "verified":
            return MarkOutcome.ALREADY_VERIFIED

        result = self.db.execute(
            update(VerificationToken)
            .where(VerificationToken.id == row.id, VerificationToken.status == "pending")
            .values(status="verified", verified_at=now)
        )
        self.db.flush()
        self.db.refresh(row)
        if result.rowcount > 0:
            logger.info(
                "verification_token_verified",
                extra={"account_id": row.account_id, "purpose": row.purpose},
            )
            return MarkOutcome.VERIFIED
        # Lost to a concurrent transition; report where it ended up.
        if row.status == "verified":
            return MarkOutcome.ALREADY_VERIFIED
        if row.status == "used":
            return MarkOutcome.ALREADY_USED
        return MarkOutcome.EXPIRED

    def purge_for_content(self, content_item_id: str) -> int:
        """Drop open tokens of a deleted content item. Used tokens stay as history."""
        deleted = (
            self.db.query(VerificationToken)
            .filter(
                VerificationToken.content_item_id == content_item_id,
                VerificationToken.status.in_(OPEN_STATUSES + ("expired",)),
            )
            .delete(synchronize_session=False)
        )
        self.db.flush()
        return deleted

    def expire_stale(self, now: datetime | None = None) -> int:
        """Bulk pending/verified -> expired for tokens past their TTL."""
        now = now or datetime.now(timezone.utc)
        cutoff = now - get_token_ttl()
        result = self.db.execute(
            update(VerificationToken)
            .where(
                VerificationToken.status.in_(OPEN_STATUSES),
                VerificationToken.created_at < cutoff,
            )
            .values(status="expired")
            .execution_options(synchronize_session=False)
        )
        self.db.flush()
        return result.rowcount
