"""
ReferralService: one-time attribution of a new account to its referrer and the credit award.
"""
from __future__ import annotations

import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from creditgate.models.account import Account
from creditgate.models.referral import Referral
from creditgate.referral.config import get_award_credits
from creditgate.services.credits.service import CreditService
from creditgate.utils.metrics import referrals_registered_total

logger = logging.getLogger(__name__)


class ReferralService:
    def __init__(self, db: Session):
        self.db = db

    def register_referral(self, referrer: Account, referred: Account, award_amount: int | None = None) -> bool:
        """
        Record referrer -> referred and credit the referrer.
        An account can only be referred once; a duplicate returns False and awards nothing.
        """
        if referrer.id == referred.id:
            return False
        award_amount = get_award_credits() if award_amount is None else award_amount
        try:
            with self.db.begin_nested():
                self.db.add(
                    Referral(
                        referrer_id=referrer.id,
                        referred_id=referred.id,
                        credits_awarded=award_amount,
                    )
                )
                self.db.flush()
        except IntegrityError:
            referrals_registered_total.labels(outcome="duplicate").inc()
            logger.info(
                "referral_duplicate",
                extra={"referrer_id": referrer.id, "referred_id": referred.id},
            )
            return False

        if award_amount > 0:
            CreditService(self.db).top_up(referrer, award_amount, reason="referral")
        referrals_registered_total.labels(outcome="awarded").inc()
        logger.info(
            "referral_registered",
            extra={"referrer_id": referrer.id, "referred_id": referred.id, "amount": award_amount},
        )
        return True

    def get_referrer_of(self, referred: Account) -> Account | None:
        row = self.db.query(Referral).filter(Referral.referred_id == referred.id).one_or_none()
        if row is None:
            return None
        return self.db.query(Account).filter(Account.id == row.referrer_id).one_or_none()

    def count_referrals(self, account: Account) -> int:
        return self.db.query(Referral).filter(Referral.referrer_id == account.id).count()

    def get_referral_stats(self, account: Account) -> dict:
        count, earned = (
            self.db.query(func.count(Referral.id), func.coalesce(func.sum(Referral.credits_awarded), 0))
            .filter(Referral.referrer_id == account.id)
            .one()
        )
        return {"referrals": int(count), "credits_earned": int(earned)}
