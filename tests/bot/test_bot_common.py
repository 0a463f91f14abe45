"""Tests for bot plumbing: payload parsing, keyboards, rendering, delivery, identity."""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from creditgate.bot.common import (
    CB_CHECK_VERIFY,
    CB_UNLOCK_CREDIT,
    decision_text,
    deliver_assets,
    display_name_of,
    granted_header,
    item_card_text,
    parse_card_ref,
    parse_getlink_ref,
    parse_item_ref,
    parse_start_raw_arg,
    verification_keyboard,
)
from creditgate.bot.identity import BotIdentity
from creditgate.bot.ingest import extract_file
from creditgate.entitlement.models import Decision, DecisionKind, DeliveryAsset, ItemCard


class TestParsing:
    def test_start_arg(self):
        assert parse_start_raw_arg("/start ref_123") == "ref_123"
        assert parse_start_raw_arg("/start") is None
        assert parse_start_raw_arg("  ") is None

    def test_item_ref(self):
        assert parse_item_ref("item_1a2b3c4d") == "1a2b3c4d"
        assert parse_item_ref("item_") is None
        assert parse_item_ref("ref_1") is None
        assert parse_item_ref(None) is None

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("/getlink_1a2b3c4d", "1a2b3c4d"),
            ("/getlink_1a2b3c4d@creditgate_test_bot", "1a2b3c4d"),
            ("/getlink_", None),
            ("/start", None),
            ("", None),
        ],
    )
    def test_getlink_ref(self, text, expected):
        assert parse_getlink_ref(text) == expected

    def test_card_ref(self):
        assert parse_card_ref("/get_1a2b3c4d") == "1a2b3c4d"
        assert parse_card_ref("/get_1a2b3c4d@creditgate_test_bot") == "1a2b3c4d"
        assert parse_card_ref("/getlink_1a2b3c4d") is None
        assert parse_card_ref("/get_") is None

    def test_display_name(self):
        assert display_name_of(MagicMock(first_name="Ann", last_name=None, username="ann")) == "Ann"
        assert display_name_of(MagicMock(first_name=None, last_name=None, username="ann")) == "ann"
        assert display_name_of(None) is None


class TestRendering:
    def _verification(self, balance):
        return Decision(
            kind=DecisionKind.NEEDS_VERIFICATION,
            content_id="item-1",
            title="Movie",
            token="tok",
            verification_url="https://short.example/1",
            balance=balance,
        )

    def test_keyboard_offers_credit_only_with_balance(self):
        with_credit = verification_keyboard(self._verification(1), CB_CHECK_VERIFY, "1a2b3c4d")
        without = verification_keyboard(self._verification(0), CB_CHECK_VERIFY, "1a2b3c4d")

        assert with_credit.inline_keyboard[1][0].callback_data == f"{CB_CHECK_VERIFY}tok"
        assert with_credit.inline_keyboard[2][0].callback_data == f"{CB_UNLOCK_CREDIT}1a2b3c4d"
        assert len(without.inline_keyboard) == 2

    def test_cooldown_text(self):
        text = decision_text(Decision(kind=DecisionKind.COOLDOWN_ACTIVE, hours_remaining=3, minutes_remaining=7))
        assert "3h 7m" in text

    def test_every_non_granted_kind_has_text(self):
        for kind in DecisionKind:
            if kind != DecisionKind.GRANTED:
                assert decision_text(Decision(kind=kind))

    def test_granted_header(self):
        credit = Decision(kind=DecisionKind.GRANTED, reason="credit", title="Movie", hours_remaining=12, balance=0)
        assert granted_header(credit) == "✅ «Movie»\nAccess valid for 12h 0m.\n1 credit used. Balance: 0."

        preview = Decision(kind=DecisionKind.GRANTED, reason="admin", title="Movie", admin_preview=True)
        assert granted_header(preview).startswith("🛠 Admin preview")


class TestDelivery:
    def test_files_in_order_then_links(self):
        bot = MagicMock()
        bot.send_message = AsyncMock()
        bot.send_document = AsyncMock()
        bot.send_photo = AsyncMock(side_effect=RuntimeError("file gone"))
        decision = Decision(
            kind=DecisionKind.GRANTED,
            title="Movie",
            assets=[
                DeliveryAsset(asset_type="document", telegram_file_id="F1", caption="part 1"),
                DeliveryAsset(asset_type="link", url="https://a.example"),
                DeliveryAsset(asset_type="photo", telegram_file_id="P1"),
                DeliveryAsset(asset_type="link", url="https://b.example"),
            ],
        )

        asyncio.run(deliver_assets(bot, 42, decision))

        bot.send_document.assert_awaited_once_with(chat_id=42, document="F1", caption="part 1")
        bot.send_photo.assert_awaited_once()
        last_text = bot.send_message.await_args_list[-1].args[1]
        assert last_text == "🔗 https://a.example\n🔗 https://b.example"

    def test_empty_item(self):
        bot = MagicMock()
        bot.send_message = AsyncMock()
        asyncio.run(deliver_assets(bot, 42, Decision(kind=DecisionKind.GRANTED, title="Empty")))
        assert bot.send_message.await_args_list[-1].args[1] == "This item has no files yet."


class TestExtractFile:
    def _message(self, **media):
        message = MagicMock()
        for name in ("animation", "document", "video", "photo", "audio", "voice", "sticker"):
            setattr(message, name, media.get(name))
        message.caption = media.get("caption")
        return message

    def test_document(self):
        doc = MagicMock(file_id="D1", file_name="a.pdf", mime_type="application/pdf", file_size=10)
        info = extract_file(self._message(document=doc, caption="cap"))
        assert info["asset_type"] == "document"
        assert info["telegram_file_id"] == "D1"
        assert info["caption"] == "cap"

    def test_largest_photo(self):
        small, large = MagicMock(file_id="S", file_size=1), MagicMock(file_id="L", file_size=9)
        assert extract_file(self._message(photo=[small, large]))["telegram_file_id"] == "L"

    def test_text_message(self):
        assert extract_file(self._message()) is None


class TestBotIdentity:
    def test_falls_back_to_configured_username(self):
        identity = BotIdentity()
        assert identity.is_resolved is False
        assert identity.deep_link("item_1") == "https://t.me/creditgate_test_bot?start=item_1"

    def test_set_once(self):
        identity = BotIdentity()
        identity.set_once(1, "real_bot")
        identity.set_once(1, "real_bot")
        assert identity.username == "real_bot"

        with pytest.raises(RuntimeError):
            identity.set_once(2, "other_bot")


class TestItemCard:
    def _card(self, **fields):
        base = {"content_id": "1a2b3c4d-0000", "short_id": "1a2b3c4d", "title": "Movie", "file_count": 2}
        return ItemCard(**{**base, **fields})

    def test_counts_and_balance(self):
        text = item_card_text(self._card(link_count=1, balance=4))
        assert "📁 Files: 2" in text
        assert "🔗 Links: 1" in text
        assert "💳 Your credits: 4" in text
        assert "Pay 1 credit or pass a short verification." in text
        assert "/getlink_1a2b3c4d" in text

    def test_no_credits_points_to_earning(self):
        text = item_card_text(self._card())
        assert "🔗 Links" not in text
        assert "/earncredits" in text

    def test_premium_and_valid_grant(self):
        assert "🌟 Premium" in item_card_text(self._card(premium=True))
        text = item_card_text(self._card(has_access=True, hours_remaining=3, minutes_remaining=5))
        assert "✅ Unlocked, 3h 5m left" in text

    def test_empty_item_has_no_download(self):
        text = item_card_text(self._card(file_count=0, premium=True, balance=5))
        assert "No files or links" in text
        assert "/getlink_" not in text
