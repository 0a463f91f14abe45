"""Tests for the force-subscribe gate: rule management and live membership checks."""
import asyncio
from unittest.mock import AsyncMock, MagicMock

from conftest import FakeMembershipChecker

from creditgate.services.force_subscribe.service import (
    ForceSubscribeService,
    TelegramMembershipChecker,
    channel_ref_from_url,
)


class TestChannelRef:
    def test_tme_url(self):
        assert channel_ref_from_url("https://t.me/moviesdaily") == "@moviesdaily"
        assert channel_ref_from_url("t.me/moviesdaily/") == "@moviesdaily"

    def test_passthrough(self):
        assert channel_ref_from_url("@moviesdaily") == "@moviesdaily"
        assert channel_ref_from_url("-1001234567890") == "-1001234567890"
        assert channel_ref_from_url("https://t.me/+AbCdEf123") == "https://t.me/+AbCdEf123"


class TestRules:
    def test_add_derives_invite_url(self, db):
        rule = ForceSubscribeService(db).add_rule("@moviesdaily")
        assert rule.channel_ref == "@moviesdaily"
        assert rule.invite_url == "https://t.me/moviesdaily"

    def test_add_private_channel_with_invite(self, db):
        rule = ForceSubscribeService(db).add_rule("-1001234567890", "https://t.me/+secret")
        assert rule.invite_url == "https://t.me/+secret"

    def test_remove_by_username_variants(self, db):
        svc = ForceSubscribeService(db)
        svc.add_rule("@moviesdaily")
        svc.add_rule("@otherchan")

        removed = svc.remove_rule("moviesdaily")

        assert [r.channel_ref for r in removed] == ["@moviesdaily"]
        assert [r.channel_ref for r in svc.list_active()] == ["@otherchan"]

    def test_remove_by_chat_id(self, db):
        svc = ForceSubscribeService(db)
        svc.add_rule("-1001234567890", "https://t.me/+secret")
        assert len(svc.remove_rule("-1001234567890")) == 1

    def test_remove_nothing(self, db):
        svc = ForceSubscribeService(db)
        svc.add_rule("@moviesdaily")
        assert svc.remove_rule("   ") == []
        assert svc.remove_rule("@unknownchan") == []


class TestCheckGate:
    def test_no_rules_is_satisfied(self, db):
        result = asyncio.run(ForceSubscribeService(db, FakeMembershipChecker()).check_gate("1"))
        assert result.all_satisfied is True
        assert result.missing == []

    def test_missing_channels_are_listed(self, db):
        checker = FakeMembershipChecker(joined={"@a_chan"})
        svc = ForceSubscribeService(db, checker)
        svc.add_rule("@a_chan")
        svc.add_rule("@b_chan")

        result = asyncio.run(svc.check_gate("1"))

        assert result.all_satisfied is False
        assert [c.channel_ref for c in result.missing] == ["@b_chan"]
        assert len(checker.calls) == 2

    def test_checker_error_counts_as_not_joined(self, db):
        svc = ForceSubscribeService(db, FakeMembershipChecker(joined={"@a_chan"}, error_for={"@a_chan"}))
        svc.add_rule("@a_chan")
        assert asyncio.run(svc.check_gate("1")).all_satisfied is False

    def test_timeout_counts_as_not_joined(self, db):
        class SlowChecker:
            async def is_member(self, channel_ref, telegram_id):
                await asyncio.sleep(1)
                return True

        svc = ForceSubscribeService(db, SlowChecker(), timeout=0.01)
        svc.add_rule("@a_chan")
        assert asyncio.run(svc.check_gate("1")).all_satisfied is False

    def test_membership_is_not_cached(self, db):
        checker = FakeMembershipChecker()
        svc = ForceSubscribeService(db, checker)
        svc.add_rule("@a_chan")
        assert asyncio.run(svc.check_gate("1")).all_satisfied is False

        checker.joined.add("@a_chan")
        assert asyncio.run(svc.check_gate("1")).all_satisfied is True


class TestTelegramMembershipChecker:
    def test_statuses(self):
        bot = MagicMock()
        bot.get_chat_member = AsyncMock(return_value=MagicMock(status="administrator"))
        checker = TelegramMembershipChecker(bot)

        assert asyncio.run(checker.is_member("@a_chan", "42")) is True
        bot.get_chat_member.assert_awaited_once_with(chat_id="@a_chan", user_id=42)

        bot.get_chat_member = AsyncMock(return_value=MagicMock(status="left"))
        assert asyncio.run(checker.is_member("@a_chan", "42")) is False
