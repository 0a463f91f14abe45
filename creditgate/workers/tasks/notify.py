"""
One-off user notifications sent from admin actions (premium granted/removed).
Best effort: a failed send is logged, never retried.
"""
import logging

from creditgate.core.celery_app import celery_app
from creditgate.services.telegram.client import TelegramClient

logger = logging.getLogger(__name__)


@celery_app.task(name="creditgate.workers.tasks.notify.notify_user")
def notify_user(telegram_id: str, text: str) -> dict:
    telegram = TelegramClient()
    try:
        telegram.send_message(telegram_id, text)
        return {"sent": True}
    except Exception as e:
        logger.warning("notify_user_fail", extra={"chat_id": telegram_id, "error": str(e)})
        return {"sent": False}
    finally:
        telegram.close()
