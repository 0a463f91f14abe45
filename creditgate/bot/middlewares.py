import logging

from aiogram import BaseMiddleware
from aiogram.types import Message, TelegramObject

from creditgate.bot.common import event_user_id, get_db_session
from creditgate.services.accounts.service import AccountService
from creditgate.services.app_settings.settings_service import AppSettingsService

logger = logging.getLogger("bot")


class SecurityMiddleware(BaseMiddleware):
    """
    Runs before every handler:
    1. Banned accounts are blocked
    2. While the bot is switched off (/myswitch) only admins get through
    Admins are resolved here and passed to handlers as data["is_admin"].
    """

    async def __call__(self, handler, event: TelegramObject, data: dict):
        user_id = event_user_id(event)
        if not user_id:
            return await handler(event, data)

        try:
            with get_db_session() as db:
                accounts = AccountService(db)
                is_admin = accounts.is_admin(user_id)
                account = accounts.get_by_telegram_id(user_id)
                banned = bool(account and accounts.is_banned(account))
                bot_active = AppSettingsService(db).is_bot_active()
        except Exception as e:
            logger.warning(f"Security middleware error: {e}")
            # Allow on error - fail open
            return await handler(event, data)

        data["is_admin"] = is_admin
        msg = event if isinstance(event, Message) else getattr(event, "message", None)

        if banned and not is_admin:
            if msg:
                await msg.answer("🚫 Your account is blocked.")
            logger.warning("Blocked banned user", extra={"user_id": user_id})
            return

        if not bot_active and not is_admin:
            if msg:
                await msg.answer("🛠 The bot is paused for maintenance. Please come back later.")
            return

        return await handler(event, data)
