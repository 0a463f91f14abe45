"""
Celery task: tell a referrer their invite was counted.
"""
import logging

from creditgate.core.celery_app import celery_app
from creditgate.db.session import SessionLocal
from creditgate.models.account import Account
from creditgate.services.telegram.client import TelegramClient

logger = logging.getLogger(__name__)


@celery_app.task(name="creditgate.referral.tasks.notify_referrer")
def notify_referrer(referrer_id: str, referred_name: str | None, award_amount: int) -> dict:
    db = SessionLocal()
    telegram = TelegramClient()
    try:
        referrer = db.query(Account).filter(Account.id == referrer_id).one_or_none()
        if not referrer:
            return {"sent": False, "reason": "referrer_not_found"}
        who = referred_name or "Someone"
        try:
            telegram.send_message(
                referrer.telegram_id,
                f"🎉 {who} joined using your referral link!\n"
                f"+{award_amount} credit(s) added. Balance: {referrer.credits}.",
            )
        except Exception:
            logger.exception("referral_notify_fail", extra={"referrer_id": referrer_id})
            return {"sent": False, "reason": "telegram_error"}
        return {"sent": True}
    finally:
        db.close()
        telegram.close()
