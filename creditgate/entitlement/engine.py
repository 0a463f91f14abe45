"""
EntitlementEngine: decides whether an account gets a content item now, must verify,
or is refused, and applies the effects of claimed verification tokens.

Precedence for a content request:
banned -> force-subscribe -> availability -> deliverable assets -> admin -> premium
-> valid grant -> (optional) credit spend -> verification token.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from creditgate.entitlement.config import (
    get_credit_earn_amount,
    get_credit_spend_amount,
    get_verify_credits_url,
    get_verify_url,
)
from creditgate.entitlement.errors import ExternalServiceError
from creditgate.entitlement.models import ChannelPrompt, Decision, DecisionKind, DeliveryAsset, ItemCard
from creditgate.models.account import Account
from creditgate.models.content import ContentItem
from creditgate.referral.service import ReferralService
from creditgate.services.access.service import AccessService, AccessValidity, is_available
from creditgate.services.accounts.service import AccountService
from creditgate.services.content.service import ContentService
from creditgate.services.credits.service import CreditService
from creditgate.services.force_subscribe.service import ForceSubscribeService, MembershipChecker
from creditgate.services.shortener.service import ShortenerClient, ShortenerTokenService
from creditgate.services.tokens.service import (
    PURPOSE_CONTENT_UNLOCK,
    PURPOSE_CREDIT_GRANT,
    MarkOutcome,
    TokenOutcome,
    VerificationTokenService,
)
from creditgate.utils.metrics import access_decisions_total

logger = logging.getLogger(__name__)

_TOKEN_OUTCOME_KIND = {
    TokenOutcome.NOT_FOUND: DecisionKind.NOT_FOUND,
    TokenOutcome.NOT_OWNER: DecisionKind.NOT_OWNER,
    TokenOutcome.EXPIRED: DecisionKind.TOKEN_EXPIRED,
    TokenOutcome.STILL_PENDING: DecisionKind.TOKEN_NOT_READY,
    TokenOutcome.ALREADY_USED: DecisionKind.TOKEN_ALREADY_USED,
}


class EntitlementEngine:
    def __init__(
        self,
        db: Session,
        shortener: ShortenerClient | None = None,
        membership_checker: MembershipChecker | None = None,
    ):
        self.db = db
        self.shortener = shortener or ShortenerClient()
        self.accounts = AccountService(db)
        self.credits = CreditService(db)
        self.tokens = VerificationTokenService(db)
        self.access = AccessService(db)
        self.content = ContentService(db)
        self.gate = ForceSubscribeService(db, membership_checker)

    def _record(self, operation: str, decision: Decision, account: Account | None = None) -> Decision:
        access_decisions_total.labels(operation=operation, kind=decision.kind.value).inc()
        logger.info(
            "entitlement_decision",
            extra={
                "account_id": account.id if account else None,
                "content_id": decision.content_id,
                "decision": decision.kind.value,
                "outcome": decision.reason,
            },
        )
        return decision

    def _delivery_assets(self, item: ContentItem) -> list[DeliveryAsset]:
        assets = [
            DeliveryAsset(
                asset_type=a.asset_type,
                url=a.url,
                telegram_file_id=a.telegram_file_id,
                file_name=a.file_name,
                caption=a.caption,
            )
            for a in self.content.list_assets(item)
        ]
        if not any(a.asset_type == "link" for a in assets):
            assets.extend(DeliveryAsset(asset_type="link", url=url) for url in (item.links or []))
        return assets

    def _has_deliverables(self, item: ContentItem) -> bool:
        return bool(item.links) or self.content.count_assets(item) > 0

    @staticmethod
    def _no_content(item: ContentItem) -> Decision:
        return Decision(kind=DecisionKind.NO_CONTENT, content_id=item.id, title=item.title)

    def _granted(self, item: ContentItem, reason: str, validity: AccessValidity | None = None) -> Decision:
        return Decision(
            kind=DecisionKind.GRANTED,
            reason=reason,
            content_id=item.id,
            title=item.title,
            assets=self._delivery_assets(item),
            admin_preview=reason == "admin",
            hours_remaining=validity.hours_remaining if validity else 0,
            minutes_remaining=validity.minutes_remaining if validity else 0,
        )

    async def _gate_decision(self, account: Account) -> Decision | None:
        gate = await self.gate.check_gate(account.telegram_id)
        if gate.all_satisfied:
            return None
        return Decision(
            kind=DecisionKind.NEEDS_SUBSCRIPTION,
            channels=[ChannelPrompt(channel_ref=c.channel_ref, invite_url=c.invite_url) for c in gate.missing],
        )

    async def _shorten(self, long_url: str) -> str:
        api_token = ShortenerTokenService(self.db).get_active()
        return await self.shortener.shorten(api_token, long_url)

    # ------------------------------------------------------------------
    # Content access
    # ------------------------------------------------------------------

    async def request_access(
        self,
        account: Account,
        item_ref: str,
        use_credit: bool = False,
        now: datetime | None = None,
    ) -> Decision:
        now = now or datetime.now(timezone.utc)
        op = "request_access"

        if self.accounts.is_banned(account):
            return self._record(op, Decision(kind=DecisionKind.DENIED, reason="banned"), account)

        is_admin = self.accounts.is_admin(account.telegram_id)
        if not is_admin:
            gate_decision = await self._gate_decision(account)
            if gate_decision:
                return self._record(op, gate_decision, account)

        item = self.content.find_by_ref(item_ref)
        if item is None:
            return self._record(op, Decision(kind=DecisionKind.NOT_FOUND), account)
        validity = self.access.validity(account, item, now)
        if not is_available(item, is_admin, validity):
            return self._record(op, Decision(kind=DecisionKind.NOT_FOUND, content_id=item.id), account)
        if not self._has_deliverables(item):
            return self._record(op, self._no_content(item), account)

        if is_admin:
            return self._record(op, self._granted(item, "admin"), account)

        if self.accounts.is_premium_active(account, now):
            if not validity.valid:
                self.access.grant_or_renew(account, item, now)
                validity = self.access.validity(account, item, now)
            return self._record(op, self._granted(item, "premium", validity), account)

        if validity.valid:
            return self._record(op, self._granted(item, "grant", validity), account)

        if use_credit:
            spent = self.credits.spend(account, get_credit_spend_amount(), reason="access")
            if spent.success:
                self.access.grant_or_renew(account, item, now)
                decision = self._granted(item, "credit", self.access.validity(account, item, now))
                return self._record(op, decision.model_copy(update={"balance": spent.balance}), account)

        row = self.tokens.mint(account, PURPOSE_CONTENT_UNLOCK, content_item_id=item.id)
        try:
            short_url = await self._shorten(get_verify_url(row.token))
        except ExternalServiceError as e:
            decision = Decision(kind=DecisionKind.EXTERNAL_SERVICE_FAILURE, reason=e.service, content_id=item.id)
            return self._record(op, decision, account)
        decision = Decision(
            kind=DecisionKind.NEEDS_VERIFICATION,
            content_id=item.id,
            title=item.title,
            token=row.token,
            verification_url=short_url,
            balance=account.credits,
        )
        return self._record(op, decision, account)

    async def unlock_with_credit(self, account: Account, item_ref: str, now: datetime | None = None) -> Decision:
        """Pay for an item with a credit, no verification fallback."""
        now = now or datetime.now(timezone.utc)
        op = "unlock_with_credit"
        if self.accounts.is_banned(account):
            return self._record(op, Decision(kind=DecisionKind.DENIED, reason="banned"), account)
        is_admin = self.accounts.is_admin(account.telegram_id)
        if not is_admin:
            gate_decision = await self._gate_decision(account)
            if gate_decision:
                return self._record(op, gate_decision, account)
        item = self.content.find_by_ref(item_ref)
        validity = self.access.validity(account, item, now) if item else None
        if item is None or not is_available(item, is_admin, validity):
            return self._record(op, Decision(kind=DecisionKind.NOT_FOUND), account)
        if not self._has_deliverables(item):
            return self._record(op, self._no_content(item), account)
        if is_admin:
            return self._record(op, self._granted(item, "admin"), account)
        if self.accounts.is_premium_active(account, now) or validity.valid:
            return await self.request_access(account, item.id, now=now)

        spent = self.credits.spend(account, get_credit_spend_amount(), reason="access")
        if not spent.success:
            decision = Decision(kind=DecisionKind.INSUFFICIENT_BALANCE, content_id=item.id, balance=spent.balance)
            return self._record(op, decision, account)
        self.access.grant_or_renew(account, item, now)
        decision = self._granted(item, "credit", self.access.validity(account, item, now))
        return self._record(op, decision.model_copy(update={"balance": spent.balance}), account)

    def describe_item(self, account: Account, item_ref: str, now: datetime | None = None) -> ItemCard | None:
        """Item card for /get_<ref>. None when the account may not see the item."""
        now = now or datetime.now(timezone.utc)
        if self.accounts.is_banned(account):
            return None
        item = self.content.find_by_ref(item_ref)
        if item is None:
            return None
        is_admin = self.accounts.is_admin(account.telegram_id)
        validity = self.access.validity(account, item, now)
        if not is_available(item, is_admin, validity):
            return None

        assets = self.content.list_assets(item)
        file_count = sum(1 for a in assets if a.asset_type != "link")
        link_count = (len(assets) - file_count) or len(item.links or [])
        return ItemCard(
            content_id=item.id,
            short_id=item.short_id,
            title=item.title,
            file_count=file_count,
            link_count=link_count,
            balance=account.credits,
            credit_cost=get_credit_spend_amount(),
            admin=is_admin,
            premium=self.accounts.is_premium_active(account, now),
            hours_remaining=validity.hours_remaining,
            minutes_remaining=validity.minutes_remaining,
            has_access=validity.valid,
        )

    def claim_content_token(self, token: str, requester: Account, now: datetime | None = None) -> Decision:
        now = now or datetime.now(timezone.utc)
        op = "claim_content_token"
        if self.accounts.is_banned(requester):
            return self._record(op, Decision(kind=DecisionKind.DENIED, reason="banned"), requester)

        check = self.tokens.check(token, requester, PURPOSE_CONTENT_UNLOCK, now)
        if check.outcome != TokenOutcome.READY:
            return self._record(op, Decision(kind=_TOKEN_OUTCOME_KIND[check.outcome]), requester)

        item = self.content.get(check.token.content_item_id)
        if item is None:
            return self._record(op, Decision(kind=DecisionKind.NOT_FOUND), requester)
        if not self.tokens.claim(check.token, now):
            return self._record(op, Decision(kind=DecisionKind.TOKEN_ALREADY_USED), requester)

        self.access.grant_or_renew(requester, item, now)
        decision = self._granted(item, "verification", self.access.validity(requester, item, now))
        return self._record(op, decision, requester)

    # ------------------------------------------------------------------
    # Credit earning
    # ------------------------------------------------------------------

    async def request_credit_grant(self, account: Account, now: datetime | None = None) -> Decision:
        now = now or datetime.now(timezone.utc)
        op = "request_credit_grant"
        if self.accounts.is_banned(account):
            return self._record(op, Decision(kind=DecisionKind.DENIED, reason="banned"), account)
        if not self.accounts.is_admin(account.telegram_id):
            gate_decision = await self._gate_decision(account)
            if gate_decision:
                return self._record(op, gate_decision, account)

        eligibility = self.credits.can_earn(account, now)
        if not eligibility.allowed:
            decision = Decision(
                kind=DecisionKind.COOLDOWN_ACTIVE,
                hours_remaining=eligibility.hours_remaining,
                minutes_remaining=eligibility.minutes_remaining,
                balance=account.credits,
            )
            return self._record(op, decision, account)

        row = self.tokens.mint(account, PURPOSE_CREDIT_GRANT, credit_amount=get_credit_earn_amount())
        try:
            short_url = await self._shorten(get_verify_credits_url(row.token))
        except ExternalServiceError as e:
            return self._record(
                op, Decision(kind=DecisionKind.EXTERNAL_SERVICE_FAILURE, reason=e.service), account
            )
        decision = Decision(
            kind=DecisionKind.NEEDS_VERIFICATION,
            token=row.token,
            verification_url=short_url,
            balance=account.credits,
        )
        return self._record(op, decision, account)

    def claim_credit_token(self, token: str, requester: Account, now: datetime | None = None) -> Decision:
        now = now or datetime.now(timezone.utc)
        op = "claim_credit_token"
        if self.accounts.is_banned(requester):
            return self._record(op, Decision(kind=DecisionKind.DENIED, reason="banned"), requester)

        check = self.tokens.check(token, requester, PURPOSE_CREDIT_GRANT, now)
        if check.outcome != TokenOutcome.READY:
            return self._record(op, Decision(kind=_TOKEN_OUTCOME_KIND[check.outcome]), requester)
        if not self.tokens.claim(check.token, now):
            return self._record(op, Decision(kind=DecisionKind.TOKEN_ALREADY_USED), requester)

        balance = self.credits.earn(requester, check.token.credit_amount, reason="verification", now=now)
        return self._record(op, Decision(kind=DecisionKind.CREDITS_GRANTED, balance=balance), requester)

    # ------------------------------------------------------------------
    # Verification callback
    # ------------------------------------------------------------------

    def mark_verified(self, token: str, now: datetime | None = None) -> MarkOutcome:
        return self.tokens.mark_verified(token, now)

    # ------------------------------------------------------------------
    # Referral
    # ------------------------------------------------------------------

    def register_referral_for_new_account(
        self,
        new_account: Account,
        is_new: bool,
        referrer_telegram_id: str | None,
    ) -> Account | None:
        """Returns the credited referrer, or None when the referral does not apply."""
        if not is_new or not referrer_telegram_id:
            return None
        if str(referrer_telegram_id) == new_account.telegram_id:
            return None
        referrer = self.accounts.get_by_telegram_id(str(referrer_telegram_id))
        if referrer is None or self.accounts.is_banned(referrer):
            return None
        if not ReferralService(self.db).register_referral(referrer, new_account):
            return None
        return referrer
