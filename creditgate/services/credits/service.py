"""
CreditService: per-account credit balance, 12h earning cycle, spend.

Every balance change goes through a conditional UPDATE and is mirrored by a
credit_transactions row, so the cached balance always equals the sum of the log.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from creditgate.entitlement.config import (
    get_credit_cycle,
    get_credit_cycle_cap,
    get_credit_earn_amount,
    get_credit_spend_amount,
)
from creditgate.models.account import Account
from creditgate.models.credit_transaction import CreditTransaction
from creditgate.utils.metrics import credit_operations_total
from creditgate.utils.time import as_utc

logger = logging.getLogger(__name__)

MAX_CAS_ATTEMPTS = 5


@dataclass(frozen=True)
class EarnEligibility:
    allowed: bool
    hours_remaining: int = 0
    minutes_remaining: int = 0


@dataclass(frozen=True)
class SpendResult:
    success: bool
    balance: int


class CreditService:
    def __init__(self, db: Session):
        self.db = db

    def get_balance(self, account: Account) -> int:
        return self.db.query(Account.credits).filter(Account.id == account.id).scalar() or 0

    def ledger_sum(self, account: Account) -> int:
        return (
            self.db.query(func.coalesce(func.sum(CreditTransaction.amount), 0))
            .filter(CreditTransaction.account_id == account.id)
            .scalar()
        )

    def can_earn(self, account: Account, now: datetime | None = None) -> EarnEligibility:
        """
        Elapsed >= cycle (or never earned): start a new cycle, zeroing the balance.
        Otherwise earning is blocked once the balance reached the cycle cap.
        """
        now = now or datetime.now(timezone.utc)
        cycle = get_credit_cycle()
        for _ in range(MAX_CAS_ATTEMPTS):
            self.db.refresh(account)
            last_reset = as_utc(account.last_credit_reset)
            if last_reset is not None and now - last_reset < cycle:
                break
            if self._reset_cycle(account, now):
                return EarnEligibility(allowed=True)
        else:
            raise RuntimeError(f"credit cycle reset kept racing for account {account.id}")

        if account.credits >= get_credit_cycle_cap():
            remaining = cycle - (now - last_reset)
            total_minutes = int(remaining.total_seconds() // 60)
            return EarnEligibility(
                allowed=False,
                hours_remaining=total_minutes // 60,
                minutes_remaining=total_minutes % 60,
            )
        return EarnEligibility(allowed=True)

    def _reset_cycle(self, account: Account, now: datetime) -> bool:
        # Only the caller that still sees the old reset time and balance performs the reset.
        condition = (
            Account.last_credit_reset.is_(None)
            if account.last_credit_reset is None
            else Account.last_credit_reset == account.last_credit_reset
        )
        previous = account.credits
        result = self.db.execute(
            update(Account)
            .where(Account.id == account.id, Account.credits == previous, condition)
            .values(credits=0, last_credit_reset=now)
        )
        if result.rowcount > 0 and previous:
            self.db.add(CreditTransaction(account_id=account.id, amount=-previous, reason="cycle_reset"))
        self.db.flush()
        self.db.refresh(account)
        if result.rowcount > 0:
            credit_operations_total.labels(operation="reset").inc()
            logger.info(
                "credit_cycle_reset",
                extra={"account_id": account.id, "amount": previous},
            )
        return result.rowcount > 0

    def earn(
        self,
        account: Account,
        amount: int | None = None,
        reason: str = "verification",
        now: datetime | None = None,
    ) -> int:
        """Add credits and return the new balance. Starts the cycle clock if it never ran."""
        amount = get_credit_earn_amount() if amount is None else amount
        now = now or datetime.now(timezone.utc)
        self.db.execute(
            update(Account)
            .where(Account.id == account.id)
            .values(credits=Account.credits + amount)
        )
        self.db.execute(
            update(Account)
            .where(Account.id == account.id, Account.last_credit_reset.is_(None))
            .values(last_credit_reset=now)
        )
        self.db.add(CreditTransaction(account_id=account.id, amount=amount, reason=reason))
        self.db.flush()
        self.db.refresh(account)
        credit_operations_total.labels(operation="earn").inc()
        logger.info(
            "credits_earned",
            extra={"account_id": account.id, "amount": amount, "balance": account.credits},
        )
        return account.credits

    def spend(self, account: Account, amount: int | None = None, reason: str = "access") -> SpendResult:
        """Atomic debit; an insufficient balance is a normal unsuccessful result."""
        amount = get_credit_spend_amount() if amount is None else amount
        result = self.db.execute(
            update(Account)
            .where(Account.id == account.id, Account.credits >= amount)
            .values(credits=Account.credits - amount)
        )
        if result.rowcount == 0:
            self.db.refresh(account)
            credit_operations_total.labels(operation="spend_rejected").inc()
            return SpendResult(success=False, balance=account.credits)
        self.db.add(CreditTransaction(account_id=account.id, amount=-amount, reason=reason))
        self.db.flush()
        self.db.refresh(account)
        credit_operations_total.labels(operation="spend").inc()
        logger.info(
            "credits_spent",
            extra={"account_id": account.id, "amount": amount, "balance": account.credits},
        )
        return SpendResult(success=True, balance=account.credits)

    def top_up(self, account: Account, amount: int, reason: str = "admin_top_up") -> int:
        """Admin adjustment; does not touch the earning cycle."""
        if amount <= 0:
            raise ValueError("amount must be positive")
        self.db.execute(
            update(Account)
            .where(Account.id == account.id)
            .values(credits=Account.credits + amount)
        )
        self.db.add(CreditTransaction(account_id=account.id, amount=amount, reason=reason))
        self.db.flush()
        self.db.refresh(account)
        credit_operations_total.labels(operation="top_up").inc()
        return account.credits

    def zero(self, account: Account, reason: str = "admin_reset") -> None:
        """Admin /reset: clear balance and cycle."""
        for _ in range(MAX_CAS_ATTEMPTS):
            self.db.refresh(account)
            previous = account.credits
            result = self.db.execute(
                update(Account)
                .where(Account.id == account.id, Account.credits == previous)
                .values(credits=0, last_credit_reset=None)
            )
            if result.rowcount > 0:
                break
        else:
            raise RuntimeError(f"credit reset kept racing for account {account.id}")
        if previous:
            self.db.add(CreditTransaction(account_id=account.id, amount=-previous, reason=reason))
        self.db.flush()
        self.db.refresh(account)

    def list_transactions(self, account: Account, limit: int = 20) -> list[CreditTransaction]:
        return (
            self.db.query(CreditTransaction)
            .filter(CreditTransaction.account_id == account.id)
            .order_by(CreditTransaction.created_at.desc())
            .limit(limit)
            .all()
        )
