import logging
import secrets

from fastapi import Header, HTTPException

from creditgate.core.config import settings

logger = logging.getLogger(__name__)


def require_admin(x_admin_key: str | None = Header(default=None)) -> None:
    """Admin routes are closed unless ADMIN_API_KEY is configured and matches."""
    if not settings.admin_api_key:
        logger.warning("admin_api_key_not_configured")
        raise HTTPException(status_code=401, detail="unauthorized")
    if not x_admin_key or not secrets.compare_digest(x_admin_key.encode(), settings.admin_api_key.encode()):
        raise HTTPException(status_code=401, detail="unauthorized")
