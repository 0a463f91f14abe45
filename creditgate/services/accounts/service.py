from datetime import datetime, timedelta, timezone

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from creditgate.core.config import settings
from creditgate.models.account import Account
from creditgate.utils.time import as_utc

PLACEHOLDER_NAME_PREFIX = "Admin_"


class AccountService:
    def __init__(self, db: Session):
        self.db = db

    def get_or_create(self, telegram_id: str, display_name: str | None = None) -> tuple[Account, bool]:
        """
        Idempotent upsert keyed by telegram_id. Returns (account, is_new).
        A concurrent insert that loses the unique race re-reads the winner's row.
        """
        telegram_id = str(telegram_id)
        account = self.get_by_telegram_id(telegram_id)
        if account:
            self._refresh_profile(account, display_name)
            return account, False

        role = "admin" if telegram_id in settings.admin_ids_set else "user"
        account = Account(telegram_id=telegram_id, display_name=display_name, role=role)
        try:
            with self.db.begin_nested():
                self.db.add(account)
                self.db.flush()
        except IntegrityError:
            account = self.get_by_telegram_id(telegram_id)
            if account is None:
                raise
            return account, False
        return account, True

    def _refresh_profile(self, account: Account, display_name: str | None) -> None:
        changed = False
        # Accounts created by /addadmin before the person ever wrote to the bot.
        if display_name and (
            not account.display_name or account.display_name.startswith(PLACEHOLDER_NAME_PREFIX)
        ):
            account.display_name = display_name
            changed = True
        if account.role != "admin" and account.telegram_id in settings.admin_ids_set:
            account.role = "admin"
            changed = True
        if changed:
            self.db.add(account)
            self.db.flush()

    def get_by_telegram_id(self, telegram_id: str) -> Account | None:
        return self.db.query(Account).filter(Account.telegram_id == str(telegram_id)).one_or_none()

    def get(self, account_id: str) -> Account | None:
        return self.db.query(Account).filter(Account.id == account_id).one_or_none()

    def refresh(self, account: Account) -> Account:
        self.db.refresh(account)
        return account

    def is_admin(self, telegram_id: str) -> bool:
        telegram_id = str(telegram_id)
        if telegram_id in settings.admin_ids_set:
            return True
        account = self.get_by_telegram_id(telegram_id)
        return bool(account and account.role == "admin")

    @staticmethod
    def is_banned(account: Account) -> bool:
        return account.status == "banned"

    @staticmethod
    def is_premium_active(account: Account, now: datetime | None = None) -> bool:
        if not account.is_premium:
            return False
        expires_at = as_utc(account.premium_expires_at)
        if expires_at is None:
            return True
        return expires_at > (now or datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # Admin mutations
    # ------------------------------------------------------------------

    def grant_premium(self, account: Account, days: int, now: datetime | None = None) -> Account:
        now = now or datetime.now(timezone.utc)
        account.is_premium = True
        account.premium_expires_at = now + timedelta(days=days)
        self.db.add(account)
        self.db.flush()
        return account

    def revoke_premium(self, account: Account) -> Account:
        account.is_premium = False
        account.premium_expires_at = None
        self.db.add(account)
        self.db.flush()
        return account

    def ban(self, account: Account) -> bool:
        """Returns False when the account was already banned."""
        result = self.db.execute(
            update(Account)
            .where(Account.id == account.id, Account.status != "banned")
            .values(status="banned")
        )
        self.db.flush()
        self.db.refresh(account)
        return result.rowcount > 0

    def unban(self, account: Account) -> bool:
        result = self.db.execute(
            update(Account)
            .where(Account.id == account.id, Account.status == "banned")
            .values(status="active")
        )
        self.db.flush()
        self.db.refresh(account)
        return result.rowcount > 0

    def promote_admin(self, telegram_id: str) -> Account:
        """Make telegram_id an admin, creating a placeholder account if needed."""
        account, _ = self.get_or_create(str(telegram_id), f"{PLACEHOLDER_NAME_PREFIX}{telegram_id}")
        account.role = "admin"
        self.db.add(account)
        self.db.flush()
        return account

    def list_banned(self) -> list[Account]:
        return self.db.query(Account).filter(Account.status == "banned").order_by(Account.created_at).all()

    def list_admins(self) -> list[Account]:
        return self.db.query(Account).filter(Account.role == "admin").order_by(Account.created_at).all()

    def list_active_telegram_ids(self) -> list[str]:
        rows = self.db.query(Account.telegram_id).filter(Account.status != "banned").all()
        return [r[0] for r in rows]

    def stats(self) -> dict[str, int]:
        total = self.db.query(Account).count()
        banned = self.db.query(Account).filter(Account.status == "banned").count()
        premium = self.db.query(Account).filter(Account.is_premium.is_(True)).count()
        return {"accounts": total, "banned": banned, "premium": premium}
