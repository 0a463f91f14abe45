from aiogram.filters import BaseFilter
from aiogram.types import TelegramObject

from creditgate.bot.common import event_user_id, get_db_session
from creditgate.services.accounts.service import AccountService


class AdminFilter(BaseFilter):
    """Passes admins only. Uses the flag set by SecurityMiddleware when present."""

    async def __call__(self, event: TelegramObject, is_admin: bool | None = None) -> bool:
        if is_admin is not None:
            return is_admin
        user_id = event_user_id(event)
        if not user_id:
            return False
        with get_db_session() as db:
            return AccountService(db).is_admin(user_id)
