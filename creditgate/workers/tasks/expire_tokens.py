"""
Periodic sweeper: mark verification tokens past their TTL as expired.
Checks already expire lazily; this keeps the table honest for reporting.
"""
import logging

from creditgate.core.celery_app import celery_app
from creditgate.db.session import SessionLocal
from creditgate.services.tokens.service import VerificationTokenService

logger = logging.getLogger(__name__)


@celery_app.task(name="creditgate.workers.tasks.expire_tokens.expire_stale_tokens")
def expire_stale_tokens() -> dict:
    db = SessionLocal()
    try:
        expired = VerificationTokenService(db).expire_stale()
        db.commit()
        logger.info("expire_stale_tokens_done", extra={"amount": expired})
        return {"expired": expired}
    except Exception:
        db.rollback()
        logger.exception("expire_stale_tokens_error")
        return {"expired": 0, "error": "exception"}
    finally:
        db.close()
