"""Tests for AccountService: idempotent registration, roles, premium, bans."""
from datetime import timedelta
from unittest.mock import MagicMock

from creditgate.services.accounts.service import AccountService


class TestGetOrCreate:
    def test_new_then_existing(self, db):
        svc = AccountService(db)
        first, is_new = svc.get_or_create("555", "Ann")
        again, is_new_again = svc.get_or_create("555", "Ann")

        assert is_new is True
        assert is_new_again is False
        assert first.id == again.id
        assert first.credits == 0

    def test_configured_admin_gets_admin_role(self, db):
        account, _ = AccountService(db).get_or_create("900001", "Boss")
        assert account.role == "admin"

    def test_placeholder_name_is_replaced(self, db):
        svc = AccountService(db)
        svc.promote_admin("777")
        account, is_new = svc.get_or_create("777", "Real Name")

        assert is_new is False
        assert account.display_name == "Real Name"
        assert svc.is_admin("777") is True

    def test_existing_name_is_kept(self, db):
        svc = AccountService(db)
        svc.get_or_create("556", "First")
        account, _ = svc.get_or_create("556", "Second")
        assert account.display_name == "First"


class TestPremium:
    def _account(self, is_premium, expires_at=None):
        account = MagicMock()
        account.is_premium = is_premium
        account.premium_expires_at = expires_at
        return account

    def test_not_premium(self, now):
        assert AccountService.is_premium_active(self._account(False), now) is False

    def test_expired_premium(self, now):
        assert AccountService.is_premium_active(self._account(True, now - timedelta(seconds=1)), now) is False

    def test_active_premium(self, now):
        assert AccountService.is_premium_active(self._account(True, now + timedelta(days=1)), now) is True

    def test_grant_and_revoke(self, db, make_account, now):
        svc = AccountService(db)
        account = make_account()

        svc.grant_premium(account, 30, now)
        assert svc.is_premium_active(account, now + timedelta(days=29)) is True
        assert svc.is_premium_active(account, now + timedelta(days=31)) is False

        svc.revoke_premium(account)
        assert svc.is_premium_active(account, now) is False


class TestBan:
    def test_ban_is_conditional(self, db, make_account):
        svc = AccountService(db)
        account = make_account()

        assert svc.ban(account) is True
        assert svc.ban(account) is False
        assert svc.is_banned(account) is True
        assert [a.id for a in svc.list_banned()] == [account.id]
        assert account.telegram_id not in svc.list_active_telegram_ids()

        assert svc.unban(account) is True
        assert svc.unban(account) is False

    def test_stats(self, db, make_account, now):
        svc = AccountService(db)
        make_account()
        banned = make_account()
        svc.ban(banned)
        svc.grant_premium(make_account(), 1, now)

        assert svc.stats() == {"accounts": 3, "banned": 1, "premium": 1}
