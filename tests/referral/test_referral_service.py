"""Tests for ReferralService: one-time attribution and the referrer award."""
from unittest.mock import MagicMock

from creditgate.referral.service import ReferralService
from creditgate.services.credits.service import CreditService


class TestRegisterReferral:
    def test_awards_referrer(self, db, make_account):
        referrer, referred = make_account(), make_account()

        assert ReferralService(db).register_referral(referrer, referred) is True

        credits = CreditService(db)
        assert credits.get_balance(referrer) == 1
        assert credits.get_balance(referred) == 0
        assert [t.reason for t in credits.list_transactions(referrer)] == ["referral"]

    def test_second_referrer_loses(self, db, make_account):
        """Two referrers racing for the same account: only the first one is credited."""
        first, second, referred = make_account(), make_account(), make_account()
        svc = ReferralService(db)

        assert svc.register_referral(first, referred) is True
        assert svc.register_referral(second, referred) is False

        assert CreditService(db).get_balance(second) == 0
        assert svc.get_referrer_of(referred).id == first.id

    def test_self_referral_rejected(self, db, make_account):
        account = make_account()
        assert ReferralService(db).register_referral(account, account) is False
        assert CreditService(db).get_balance(account) == 0

    def test_zero_award_records_referral_only(self, db, make_account):
        referrer, referred = make_account(), make_account()
        svc = ReferralService(db)

        assert svc.register_referral(referrer, referred, award_amount=0) is True
        assert CreditService(db).get_balance(referrer) == 0
        assert svc.count_referrals(referrer) == 1

    def test_stats(self, db, make_account):
        referrer = make_account()
        svc = ReferralService(db)
        svc.register_referral(referrer, make_account())
        svc.register_referral(referrer, make_account(), award_amount=3)

        assert svc.get_referral_stats(referrer) == {"referrals": 2, "credits_earned": 4}

    def test_no_referrer(self, db, make_account):
        assert ReferralService(db).get_referrer_of(make_account()) is None


class TestNotifyReferrer:
    def test_missing_referrer(self, monkeypatch):
        db = MagicMock()
        db.query.return_value.filter.return_value.one_or_none.return_value = None
        telegram = MagicMock()

        from creditgate.referral import tasks

        monkeypatch.setattr(tasks, "SessionLocal", lambda: db)
        monkeypatch.setattr(tasks, "TelegramClient", lambda: telegram)

        assert tasks.notify_referrer.run("acc-1", "Bob", 1) == {"sent": False, "reason": "referrer_not_found"}
        telegram.send_message.assert_not_called()
        db.close.assert_called_once()

    def test_sends_message(self, monkeypatch):
        referrer = MagicMock(telegram_id="42", credits=3)
        db = MagicMock()
        db.query.return_value.filter.return_value.one_or_none.return_value = referrer
        telegram = MagicMock()

        from creditgate.referral import tasks

        monkeypatch.setattr(tasks, "SessionLocal", lambda: db)
        monkeypatch.setattr(tasks, "TelegramClient", lambda: telegram)

        assert tasks.notify_referrer.run("acc-1", "Bob", 1) == {"sent": True}
        chat_id, text = telegram.send_message.call_args.args
        assert chat_id == "42"
        assert "Bob" in text
        assert "Balance: 3" in text
