"""Create tables for every model. Used by scripts/init_db.py and the test suite."""
from sqlalchemy.engine import Engine

from creditgate.db.base import Base

# Model modules register their tables on Base.metadata at import time.
from creditgate.models import (  # noqa: F401
    access_grant,
    account,
    app_settings,
    audit_log,
    content,
    credit_transaction,
    force_subscribe_rule,
    referral,
    shortener_token,
    verification_token,
)


def create_all(bind: Engine) -> None:
    Base.metadata.create_all(bind=bind)
