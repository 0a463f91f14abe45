"""
Telegram bot using aiogram 3.x
User-facing flows: deep links, verification checks, credits, library, referrals.
"""
import asyncio
import logging

from aiogram import Bot, Dispatcher, F, Router
from aiogram.filters import Command, CommandStart
from aiogram.fsm.context import FSMContext
from aiogram.fsm.storage.redis import RedisStorage
from aiogram.types import BotCommand, CallbackQuery, ErrorEvent, Message

from creditgate.bot import admin, ingest
from creditgate.bot.common import (
    CARD_PREFIX,
    CB_CHECK_CREDIT,
    CB_CHECK_VERIFY,
    CB_UNLOCK_CREDIT,
    CB_VERIFY_JOIN,
    ERROR_TEXT,
    GETLINK_PREFIX,
    decision_text,
    deliver_assets,
    display_name_of,
    get_db_session,
    item_card_text,
    parse_card_ref,
    parse_getlink_ref,
    parse_item_ref,
    parse_start_raw_arg,
    subscription_keyboard,
    verification_keyboard,
)
from creditgate.bot.identity import bot_identity
from creditgate.bot.middlewares import SecurityMiddleware
from creditgate.core.config import settings
from creditgate.core.logging import configure_logging
from creditgate.entitlement.engine import EntitlementEngine
from creditgate.entitlement.models import Decision, DecisionKind
from creditgate.referral.config import build_referral_link, get_award_credits, parse_referrer_telegram_id
from creditgate.referral.service import ReferralService
from creditgate.referral.tasks import notify_referrer
from creditgate.services.access.service import AccessService, is_access_valid
from creditgate.services.accounts.service import AccountService
from creditgate.services.credits.service import CreditService
from creditgate.services.force_subscribe.service import ForceSubscribeService, TelegramMembershipChecker
from creditgate.services.shortener.service import ShortenerClient

configure_logging()
logger = logging.getLogger("bot")

WELCOME_TEXT = (
    "👋 Welcome!\n\n"
    "Open a content link to unlock it. Each unlock stays valid for "
    f"{settings.access_validity_hours} hours.\n\n"
    "🪙 /earncredits - earn credits to skip verification\n"
    "📚 /library - your unlocked items\n"
    "👤 /profile - balance and status\n"
    "🎁 /refer - invite friends for bonus credits"
)

HELP_TEXT = (
    "ℹ️ How it works\n\n"
    "1. Open a content link (or /getlink_<id>; /get_<id> shows the item card).\n"
    "2. Complete the short verification link, then tap «I've completed it».\n"
    f"3. Access stays valid for {settings.access_validity_hours} hours.\n\n"
    f"💳 Credits: 1 credit unlocks an item without verification. "
    f"Earn {settings.credit_earn_amount} credits per verification, "
    f"up to {settings.credit_cycle_cap} every {settings.credit_cycle_hours} hours.\n\n"
    "Commands: /start /earncredits /credits /library /profile /refer /help"
)

USER_COMMANDS = [
    BotCommand(command="start", description="Start"),
    BotCommand(command="earncredits", description="Earn credits"),
    BotCommand(command="credits", description="Credit balance"),
    BotCommand(command="library", description="Unlocked items"),
    BotCommand(command="profile", description="Your profile"),
    BotCommand(command="refer", description="Invite friends"),
    BotCommand(command="help", description="Help"),
]

shortener = ShortenerClient()

router = Router(name="user")


def _engine(db, bot: Bot) -> EntitlementEngine:
    return EntitlementEngine(db, shortener=shortener, membership_checker=TelegramMembershipChecker(bot))


async def _respond(
    message: Message,
    bot: Bot,
    decision: Decision,
    state: FSMContext | None = None,
    item_ref: str | None = None,
    check_prefix: str = CB_CHECK_VERIFY,
) -> None:
    """Turn an engine decision into chat output."""
    if decision.kind == DecisionKind.GRANTED:
        await deliver_assets(bot, message.chat.id, decision)
        return
    if decision.kind == DecisionKind.NEEDS_SUBSCRIPTION:
        if state is not None:
            await state.update_data(pending_item_ref=item_ref)
        await message.answer(decision_text(decision), reply_markup=subscription_keyboard(decision))
        return
    if decision.kind == DecisionKind.NEEDS_VERIFICATION:
        await message.answer(
            decision_text(decision),
            reply_markup=verification_keyboard(decision, check_prefix, credit_ref=item_ref),
        )
        return
    await message.answer(decision_text(decision))


async def _request_item(
    message: Message,
    bot: Bot,
    telegram_id: str,
    item_ref: str,
    use_credit: bool,
    state: FSMContext | None = None,
) -> None:
    with get_db_session() as db:
        account, _ = AccountService(db).get_or_create(telegram_id)
        decision = await _engine(db, bot).request_access(account, item_ref, use_credit=use_credit)
    await _respond(message, bot, decision, state=state, item_ref=item_ref)


@router.message(CommandStart())
async def cmd_start(message: Message, state: FSMContext, bot: Bot):
    """Handle /start command. Supports deep links: /start item_<id>, /start ref_<telegram_id>."""
    telegram_id = str(message.from_user.id)
    start_arg = parse_start_raw_arg(message.text)
    referred_by = None

    try:
        with get_db_session() as db:
            account, is_new = AccountService(db).get_or_create(telegram_id, display_name_of(message.from_user))
            referrer = _engine(db, bot).register_referral_for_new_account(
                account, is_new, parse_referrer_telegram_id(start_arg)
            )
            if referrer:
                referred_by = referrer.id

        if referred_by:
            notify_referrer.delay(referred_by, display_name_of(message.from_user), get_award_credits())
            logger.info("start_referred", extra={"user_id": telegram_id, "referrer_id": referred_by})

        item_ref = parse_item_ref(start_arg)
        if item_ref:
            await state.clear()
            await _request_item(message, bot, telegram_id, item_ref, use_credit=False, state=state)
            logger.info("start_deeplink_item", extra={"user_id": telegram_id})
            return

        await state.clear()
        await message.answer(WELCOME_TEXT)
        logger.info("start", extra={"user_id": telegram_id})
    except Exception:
        logger.exception("Error in cmd_start", extra={"user_id": telegram_id})
        await message.answer(ERROR_TEXT)


@router.message(F.text.startswith(GETLINK_PREFIX))
async def cmd_getlink(message: Message, state: FSMContext, bot: Bot):
    telegram_id = str(message.from_user.id)
    item_ref = parse_getlink_ref(message.text)
    if not item_ref:
        await message.answer(decision_text(Decision(kind=DecisionKind.NOT_FOUND)))
        return
    try:
        await _request_item(
            message, bot, telegram_id, item_ref,
            use_credit=settings.spend_credit_before_verification, state=state,
        )
    except Exception:
        logger.exception("Error in cmd_getlink", extra={"user_id": telegram_id})
        await message.answer(ERROR_TEXT)


@router.message(F.text.startswith(CARD_PREFIX))
async def cmd_item_card(message: Message, bot: Bot):
    """Item card: asset counts, balance and the way this user can unlock it."""
    telegram_id = str(message.from_user.id)
    item_ref = parse_card_ref(message.text)
    try:
        card = None
        if item_ref:
            with get_db_session() as db:
                account, _ = AccountService(db).get_or_create(telegram_id, display_name_of(message.from_user))
                card = _engine(db, bot).describe_item(account, item_ref)
        if card is None:
            await message.answer(decision_text(Decision(kind=DecisionKind.NOT_FOUND)))
            return
        await message.answer(item_card_text(card))
    except Exception:
        logger.exception("Error in cmd_item_card", extra={"user_id": telegram_id})
        await message.answer(ERROR_TEXT)


@router.callback_query(F.data.startswith(CB_CHECK_VERIFY))
async def cb_check_verify(callback: CallbackQuery, bot: Bot):
    telegram_id = str(callback.from_user.id)
    token = callback.data[len(CB_CHECK_VERIFY):]
    try:
        with get_db_session() as db:
            account, _ = AccountService(db).get_or_create(telegram_id)
            decision = _engine(db, bot).claim_content_token(token, account)
        if decision.kind == DecisionKind.GRANTED:
            await callback.answer("✅ Verified!")
            await deliver_assets(bot, callback.message.chat.id, decision)
        else:
            await callback.answer(decision_text(decision), show_alert=True)
    except Exception:
        logger.exception("Error in cb_check_verify", extra={"user_id": telegram_id})
        await callback.answer(ERROR_TEXT, show_alert=True)


@router.callback_query(F.data.startswith(CB_CHECK_CREDIT))
async def cb_check_credit(callback: CallbackQuery, bot: Bot):
    telegram_id = str(callback.from_user.id)
    token = callback.data[len(CB_CHECK_CREDIT):]
    try:
        with get_db_session() as db:
            account, _ = AccountService(db).get_or_create(telegram_id)
            decision = _engine(db, bot).claim_credit_token(token, account)
        await callback.answer(decision_text(decision), show_alert=True)
        if decision.kind == DecisionKind.CREDITS_GRANTED:
            await callback.message.answer(decision_text(decision))
    except Exception:
        logger.exception("Error in cb_check_credit", extra={"user_id": telegram_id})
        await callback.answer(ERROR_TEXT, show_alert=True)


@router.callback_query(F.data.startswith(CB_UNLOCK_CREDIT))
async def cb_unlock_credit(callback: CallbackQuery, state: FSMContext, bot: Bot):
    telegram_id = str(callback.from_user.id)
    item_ref = callback.data[len(CB_UNLOCK_CREDIT):]
    try:
        with get_db_session() as db:
            account, _ = AccountService(db).get_or_create(telegram_id)
            decision = await _engine(db, bot).unlock_with_credit(account, item_ref)
        await callback.answer()
        await _respond(callback.message, bot, decision, state=state, item_ref=item_ref)
    except Exception:
        logger.exception("Error in cb_unlock_credit", extra={"user_id": telegram_id})
        await callback.answer(ERROR_TEXT, show_alert=True)


@router.callback_query(F.data == CB_VERIFY_JOIN)
async def cb_verify_join(callback: CallbackQuery, state: FSMContext, bot: Bot):
    """Re-check channel membership and resume the request that was blocked by the gate."""
    telegram_id = str(callback.from_user.id)
    try:
        with get_db_session() as db:
            gate = await ForceSubscribeService(db, TelegramMembershipChecker(bot)).check_gate(telegram_id)
        if not gate.all_satisfied:
            missing = ", ".join(c.channel_ref for c in gate.missing)
            await callback.answer(f"Please join first: {missing}", show_alert=True)
            return
        await callback.answer("✅ Thanks for joining!")
        data = await state.get_data()
        item_ref = data.get("pending_item_ref")
        await state.update_data(pending_item_ref=None)
        if item_ref:
            await _request_item(callback.message, bot, telegram_id, item_ref, use_credit=False, state=state)
        else:
            await callback.message.answer(WELCOME_TEXT)
    except Exception:
        logger.exception("Error in cb_verify_join", extra={"user_id": telegram_id})
        await callback.answer(ERROR_TEXT, show_alert=True)


@router.message(Command("earncredits"))
async def cmd_earncredits(message: Message, state: FSMContext, bot: Bot):
    telegram_id = str(message.from_user.id)
    try:
        with get_db_session() as db:
            account, _ = AccountService(db).get_or_create(telegram_id)
            decision = await _engine(db, bot).request_credit_grant(account)
        await _respond(message, bot, decision, state=state, check_prefix=CB_CHECK_CREDIT)
    except Exception:
        logger.exception("Error in cmd_earncredits", extra={"user_id": telegram_id})
        await message.answer(ERROR_TEXT)


@router.message(Command("credits"))
async def cmd_credits(message: Message):
    telegram_id = str(message.from_user.id)
    try:
        with get_db_session() as db:
            account, _ = AccountService(db).get_or_create(telegram_id)
            balance = CreditService(db).get_balance(account)
        await message.answer(
            f"💳 Credits: {balance}\n\n1 credit unlocks one item for {settings.access_validity_hours}h.\n"
            "Use /earncredits to get more."
        )
    except Exception:
        logger.exception("Error in cmd_credits", extra={"user_id": telegram_id})
        await message.answer(ERROR_TEXT)


@router.message(Command("library"))
async def cmd_library(message: Message):
    telegram_id = str(message.from_user.id)
    try:
        with get_db_session() as db:
            account, _ = AccountService(db).get_or_create(telegram_id)
            rows = []
            for grant, item in AccessService(db).list_for_account(account)[:30]:
                validity = is_access_valid(grant.unlocked_at)
                rows.append((item.title, item.short_id, validity))
        if not rows:
            await message.answer("📚 Your library is empty.")
            return
        lines = []
        for title, short_id, validity in rows:
            if validity.valid:
                lines.append(f"🟢 {title} ({validity.hours_remaining}h {validity.minutes_remaining}m left)\n   {GETLINK_PREFIX}{short_id}")
            else:
                lines.append(f"⚪️ {title} (expired)\n   {GETLINK_PREFIX}{short_id}")
        await message.answer("📚 Your library\n\n" + "\n".join(lines))
    except Exception:
        logger.exception("Error in cmd_library", extra={"user_id": telegram_id})
        await message.answer(ERROR_TEXT)


@router.message(Command("profile"))
async def cmd_profile(message: Message, is_admin: bool = False):
    telegram_id = str(message.from_user.id)
    try:
        with get_db_session() as db:
            accounts = AccountService(db)
            account, _ = accounts.get_or_create(telegram_id, display_name_of(message.from_user))
            premium = accounts.is_premium_active(account)
            expires = account.premium_expires_at
            referrals = ReferralService(db).count_referrals(account)
            text = (
                f"👤 {account.display_name or telegram_id}\n"
                f"🆔 {telegram_id}\n"
                f"💳 Credits: {account.credits}\n"
                f"🌟 Premium: {'yes' if premium else 'no'}"
                + (f" (until {expires.strftime('%Y-%m-%d')})" if premium and expires else "")
                + f"\n🎁 Referrals: {referrals}"
                + ("\n🛠 Role: admin" if is_admin else "")
            )
        await message.answer(text)
    except Exception:
        logger.exception("Error in cmd_profile", extra={"user_id": telegram_id})
        await message.answer(ERROR_TEXT)


@router.message(Command("refer"))
async def cmd_refer(message: Message):
    telegram_id = str(message.from_user.id)
    try:
        with get_db_session() as db:
            account, _ = AccountService(db).get_or_create(telegram_id)
            stats = ReferralService(db).get_referral_stats(account)
        link = build_referral_link(bot_identity.username, telegram_id)
        await message.answer(
            "🎁 Invite friends!\n\n"
            f"You get {get_award_credits()} credit(s) for every new user who joins with your link:\n{link}\n\n"
            f"👥 Invited: {stats['referrals']}\n💳 Earned: {stats['credits_earned']}"
        )
    except Exception:
        logger.exception("Error in cmd_refer", extra={"user_id": telegram_id})
        await message.answer(ERROR_TEXT)


@router.message(Command("help"))
async def cmd_help(message: Message):
    await message.answer(HELP_TEXT)


async def on_error(event: ErrorEvent, *args, **kwargs):
    """Global error handler."""
    logger.exception(
        "Error in handler",
        extra={"error": str(event.exception)},
    )


async def main():
    """Start the bot."""
    logger.info("Starting bot...")

    bot = Bot(token=settings.telegram_bot_token)

    # Redis FSM storage; the TTL bounds abandoned ingestion wizards.
    storage = RedisStorage.from_url(
        settings.redis_url,
        state_ttl=settings.ingest_state_ttl,
        data_ttl=settings.ingest_state_ttl,
    )
    dp = Dispatcher(storage=storage)

    dp.errors.register(on_error)

    dp.message.middleware(SecurityMiddleware())
    dp.callback_query.middleware(SecurityMiddleware())

    # Admin and wizard routers first so wizard input is not taken by user handlers.
    dp.include_router(admin.router)
    dp.include_router(ingest.router)
    dp.include_router(router)

    me = await bot.get_me()
    bot_identity.set_once(me.id, me.username)
    await bot.set_my_commands(USER_COMMANDS)
    await bot.delete_webhook(drop_pending_updates=True)

    logger.info("Bot started successfully!")

    try:
        await dp.start_polling(bot, allowed_updates=["message", "callback_query"])
    finally:
        shortener.close()
        await bot.session.close()


if __name__ == "__main__":
    asyncio.run(main())
