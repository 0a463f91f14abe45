"""
Mass broadcast to bot users via Telegram.
Respects rate limits and excludes banned accounts.
"""
import logging
import time

from sqlalchemy.orm import Session

from creditgate.core.celery_app import celery_app
from creditgate.db.session import SessionLocal
from creditgate.services.accounts.service import AccountService
from creditgate.services.telegram.client import TelegramClient

logger = logging.getLogger("broadcast")

# Telegram: ~30 msg/sec, we use 5/sec to be safe
DELAY_BETWEEN_MESSAGES = 0.2
MAX_MESSAGE_LENGTH = 4096


@celery_app.task(bind=True, name="creditgate.workers.tasks.broadcast.broadcast_message")
def broadcast_message(self, message_text: str) -> dict:
    """Send message to every account that is not banned."""
    if not message_text or not message_text.strip():
        return {"sent": 0, "failed": 0, "error": "empty_message"}

    text = message_text.strip()
    if len(text) > MAX_MESSAGE_LENGTH:
        return {"sent": 0, "failed": 0, "error": "message_too_long"}

    db: Session = SessionLocal()
    telegram = TelegramClient()

    try:
        to_send = AccountService(db).list_active_telegram_ids()
        total = len(to_send)
        sent = 0
        failed = 0

        for i, telegram_id in enumerate(to_send):
            try:
                telegram.send_message(str(telegram_id), text)
                sent += 1
                if (i + 1) % 50 == 0:
                    logger.info("broadcast_progress", extra={"amount": sent})
            except Exception as e:
                failed += 1
                logger.warning(
                    "broadcast_fail",
                    extra={"chat_id": telegram_id, "error": str(e)},
                )

            if i < len(to_send) - 1:
                time.sleep(DELAY_BETWEEN_MESSAGES)

        result = {"sent": sent, "failed": failed, "total_recipients": total}
        logger.info("broadcast_completed", extra={"amount": sent})
        return result
    finally:
        db.close()
        telegram.close()
