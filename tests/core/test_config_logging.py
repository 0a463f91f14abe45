"""Tests for settings validation and the JSON log formatter."""
import json
import logging

import pytest
from pydantic import ValidationError

from creditgate.core.config import Settings
from creditgate.core.logging import JsonFormatter

REQUIRED = {
    "database_url": "sqlite://",
    "redis_url": "redis://localhost:6379/0",
    "celery_broker_url": "memory://",
    "celery_result_backend": "cache+memory://",
    "telegram_bot_token": "1:x",
}


class TestSettings:
    def test_defaults(self):
        s = Settings(**REQUIRED, admin_ids="1, 2")
        assert s.admin_ids_set == {"1", "2"}
        assert s.access_validity_hours == 12
        assert s.credit_cycle_cap == 2
        assert s.verification_token_ttl_minutes == 60

    def test_admin_ids_must_be_numeric(self):
        with pytest.raises(ValidationError):
            Settings(**REQUIRED, admin_ids="1,bob")

    def test_credit_amounts_must_be_positive(self):
        with pytest.raises(ValidationError):
            Settings(**REQUIRED, credit_spend_amount=0)


class TestJsonFormatter:
    def test_whitelisted_extras_only(self):
        record = logging.LogRecord("creditgate", logging.INFO, __file__, 1, "credits_spent", None, None)
        record.account_id = "acc-1"
        record.balance = 0
        record.secret = "nope"

        payload = json.loads(JsonFormatter().format(record))

        assert payload["message"] == "credits_spent"
        assert payload["account_id"] == "acc-1"
        assert payload["balance"] == 0
        assert "secret" not in payload
