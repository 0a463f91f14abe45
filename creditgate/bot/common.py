"""
Shared bot plumbing: DB session scope, texts, keyboards, decision rendering and asset delivery.
"""
import logging
from contextlib import contextmanager
from typing import Generator

from aiogram import Bot
from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup, TelegramObject
from sqlalchemy.orm import Session

from creditgate.db.session import SessionLocal
from creditgate.entitlement.models import Decision, DecisionKind, DeliveryAsset, ItemCard

logger = logging.getLogger("bot")

ITEM_START_PREFIX = "item_"
GETLINK_PREFIX = "/getlink_"
CARD_PREFIX = "/get_"

CB_CHECK_VERIFY = "checkverify:"
CB_CHECK_CREDIT = "checkcredit:"
CB_UNLOCK_CREDIT = "unlock_credit:"
CB_VERIFY_JOIN = "verifyjoin"

ERROR_TEXT = "⚠️ Something went wrong. Please try again later."

_FILE_SENDERS = {
    "document": ("send_document", "document"),
    "video": ("send_video", "video"),
    "photo": ("send_photo", "photo"),
    "audio": ("send_audio", "audio"),
    "animation": ("send_animation", "animation"),
    "voice": ("send_voice", "voice"),
    "sticker": ("send_sticker", "sticker"),
}


# ===========================================
# Database session context manager
# ===========================================
@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """
    Context manager for database sessions.
    Handles commit on success and rollback on error.
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def event_user_id(event: TelegramObject) -> str | None:
    if hasattr(event, "from_user") and event.from_user:
        return str(event.from_user.id)
    if hasattr(event, "message") and event.message and event.message.from_user:
        return str(event.message.from_user.id)
    return None


def display_name_of(user) -> str | None:
    if user is None:
        return None
    parts = [p for p in (user.first_name, user.last_name) if p]
    if parts:
        return " ".join(parts)
    return user.username


def parse_start_raw_arg(text: str | None) -> str | None:
    """Extract raw argument from /start command. E.g. '/start ref_123' -> 'ref_123'."""
    if not text or not text.strip():
        return None
    parts = text.strip().split()
    if len(parts) < 2:
        return None
    return parts[1]


def parse_item_ref(start_arg: str | None) -> str | None:
    """'/start item_1a2b3c4d' deep link payload -> '1a2b3c4d'."""
    if start_arg and start_arg.startswith(ITEM_START_PREFIX):
        return start_arg[len(ITEM_START_PREFIX):] or None
    return None


def _command_ref(text: str | None, prefix: str) -> str | None:
    if not text or not text.strip():
        return None
    command = text.strip().split()[0]
    if not command.startswith(prefix):
        return None
    return command[len(prefix):].split("@", 1)[0] or None


def parse_getlink_ref(text: str | None) -> str | None:
    """'/getlink_1a2b3c4d' (optionally '@botname' suffixed) -> '1a2b3c4d'."""
    return _command_ref(text, GETLINK_PREFIX)


def parse_card_ref(text: str | None) -> str | None:
    """'/get_1a2b3c4d' -> '1a2b3c4d'."""
    return _command_ref(text, CARD_PREFIX)


def format_remaining(hours: int, minutes: int) -> str:
    return f"{hours}h {minutes}m"


# ===========================================
# Keyboards
# ===========================================
def subscription_keyboard(decision: Decision) -> InlineKeyboardMarkup:
    rows = [
        [InlineKeyboardButton(text=f"📢 Join {c.channel_ref}", url=c.invite_url)]
        for c in decision.channels
    ]
    rows.append([InlineKeyboardButton(text="✅ I've joined", callback_data=CB_VERIFY_JOIN)])
    return InlineKeyboardMarkup(inline_keyboard=rows)


def verification_keyboard(decision: Decision, check_prefix: str, credit_ref: str | None = None) -> InlineKeyboardMarkup:
    rows = [
        [InlineKeyboardButton(text="🔗 Open verification link", url=decision.verification_url)],
        [InlineKeyboardButton(text="✅ I've completed it", callback_data=f"{check_prefix}{decision.token}")],
    ]
    if credit_ref and (decision.balance or 0) > 0:
        rows.append(
            [InlineKeyboardButton(text="💳 Use 1 credit instead", callback_data=f"{CB_UNLOCK_CREDIT}{credit_ref}")]
        )
    return InlineKeyboardMarkup(inline_keyboard=rows)


# ===========================================
# Decision rendering
# ===========================================
_PLAIN_TEXTS = {
    DecisionKind.DENIED: "🚫 Your account is blocked.",
    DecisionKind.NOT_FOUND: "❌ Not found. The link may be wrong or the item was removed.",
    DecisionKind.NO_CONTENT: "📭 No files or links are available for this item yet.",
    DecisionKind.TOKEN_NOT_READY: "⏳ Not verified yet. Open the link, finish the steps, then tap the button again.",
    DecisionKind.TOKEN_EXPIRED: "⌛ This verification link expired. Request a new one.",
    DecisionKind.TOKEN_ALREADY_USED: "ℹ️ This verification was already used.",
    DecisionKind.NOT_OWNER: "❌ This verification link belongs to another user.",
    DecisionKind.EXTERNAL_SERVICE_FAILURE: "⚠️ Could not create a verification link right now. Please try again in a minute.",
}


def decision_text(decision: Decision) -> str:
    """Text for every non-delivery outcome."""
    kind = decision.kind
    if kind in _PLAIN_TEXTS:
        return _PLAIN_TEXTS[kind]
    if kind == DecisionKind.NEEDS_SUBSCRIPTION:
        return "📢 Please join the channel(s) below first, then tap «I've joined»."
    if kind == DecisionKind.INSUFFICIENT_BALANCE:
        return f"💳 Not enough credits (balance: {decision.balance or 0}). Use /earncredits to get more."
    if kind == DecisionKind.COOLDOWN_ACTIVE:
        return (
            "⏳ You already collected this cycle's credits.\n"
            f"Come back in {format_remaining(decision.hours_remaining, decision.minutes_remaining)}."
        )
    if kind == DecisionKind.CREDITS_GRANTED:
        return f"🎉 Credits added! Balance: {decision.balance}."
    if kind == DecisionKind.NEEDS_VERIFICATION:
        if decision.content_id:
            return (
                f"🔐 «{decision.title}» is locked.\n\n"
                "Open the link below and complete the steps (valid for 1 hour), "
                "then tap «I've completed it»."
            )
        return (
            "🪙 Earn credits: open the link below and complete the steps (valid for 1 hour), "
            "then tap «I've completed it»."
        )
    return ERROR_TEXT


def item_card_text(card: ItemCard) -> str:
    lines = [f"🎬 «{card.title}»", ""]
    if card.file_count:
        lines.append(f"📁 Files: {card.file_count}")
    if card.link_count:
        lines.append(f"🔗 Links: {card.link_count}")
    lines += [f"💳 Your credits: {card.balance}", ""]
    getlink = f"{GETLINK_PREFIX}{card.short_id}"
    if not card.has_content:
        lines.append("📭 No files or links are available for this item yet.")
    elif card.admin:
        lines.append(f"🛠 Admin preview: {getlink}")
    elif card.premium:
        lines.append(f"🌟 Premium: instant access\n📥 Download: {getlink}")
    elif card.has_access:
        lines.append(
            f"✅ Unlocked, {format_remaining(card.hours_remaining, card.minutes_remaining)} left\n📥 Download: {getlink}"
        )
    elif card.can_pay_credit:
        lines.append(f"📥 Download: {getlink}\nPay {card.credit_cost} credit or pass a short verification.")
    else:
        lines.append(f"📥 Download: {getlink}\nA short verification is needed. 🪙 /earncredits to skip it next time.")
    return "\n".join(lines)


def granted_header(decision: Decision) -> str:
    if decision.admin_preview:
        return f"🛠 Admin preview: «{decision.title}»"
    lines = [f"✅ «{decision.title}»"]
    if decision.hours_remaining or decision.minutes_remaining:
        lines.append(f"Access valid for {format_remaining(decision.hours_remaining, decision.minutes_remaining)}.")
    if decision.reason == "credit" and decision.balance is not None:
        lines.append(f"1 credit used. Balance: {decision.balance}.")
    return "\n".join(lines)


async def deliver_assets(bot: Bot, chat_id: int, decision: Decision) -> None:
    """Push a GRANTED decision's assets in order. Links are batched into one message."""
    await bot.send_message(chat_id, granted_header(decision))
    links: list[str] = []
    for asset in decision.assets:
        if asset.asset_type == "link":
            if asset.url:
                links.append(asset.url)
            continue
        await _send_file(bot, chat_id, asset)
    if links:
        await bot.send_message(chat_id, "\n".join(f"🔗 {url}" for url in links), disable_web_page_preview=True)
    if not decision.assets:
        await bot.send_message(chat_id, "This item has no files yet.")


async def _send_file(bot: Bot, chat_id: int, asset: DeliveryAsset) -> None:
    method_name, field = _FILE_SENDERS[asset.asset_type]
    kwargs = {"chat_id": chat_id, field: asset.telegram_file_id}
    if asset.asset_type != "sticker" and asset.caption:
        kwargs["caption"] = asset.caption
    try:
        await getattr(bot, method_name)(**kwargs)
    except Exception:
        logger.exception("asset_delivery_failed", extra={"chat_id": chat_id})
