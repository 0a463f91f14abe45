"""Tests for Celery tasks: token sweeper, broadcast, notifications, Telegram client."""
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import httpx
import pytest

from creditgate.services.tokens.service import PURPOSE_CREDIT_GRANT, VerificationTokenService


class TestExpireStaleTokens:
    def test_sweeps_old_tokens(self, db, make_account, monkeypatch):
        from creditgate.workers.tasks import expire_tokens

        svc = VerificationTokenService(db)
        old = svc.mint(make_account(), PURPOSE_CREDIT_GRANT, credit_amount=2)
        old.created_at = datetime.now(timezone.utc) - timedelta(hours=2)
        fresh = svc.mint(make_account(), PURPOSE_CREDIT_GRANT, credit_amount=2)
        db.flush()
        old_token, fresh_token = old.token, fresh.token
        monkeypatch.setattr(expire_tokens, "SessionLocal", lambda: db)

        assert expire_tokens.expire_stale_tokens.run() == {"expired": 1}
        db.expire_all()
        assert svc.get(old_token).status == "expired"
        assert svc.get(fresh_token).status == "pending"

    def test_error_is_reported(self, monkeypatch):
        from creditgate.workers.tasks import expire_tokens

        db = MagicMock()
        db.execute.side_effect = RuntimeError("db down")
        monkeypatch.setattr(expire_tokens, "SessionLocal", lambda: db)

        assert expire_tokens.expire_stale_tokens.run() == {"expired": 0, "error": "exception"}
        db.rollback.assert_called_once()


class TestBroadcast:
    def test_skips_banned_and_counts_failures(self, db, make_account, monkeypatch):
        from creditgate.services.accounts.service import AccountService
        from creditgate.workers.tasks import broadcast

        make_account()
        broken, banned = make_account(), make_account()
        AccountService(db).ban(banned)
        telegram = MagicMock()

        def send(chat_id, text):
            if chat_id == broken.telegram_id:
                raise RuntimeError("bot was blocked by the user")
            return {"ok": True}

        telegram.send_message.side_effect = send
        monkeypatch.setattr(broadcast, "SessionLocal", lambda: db)
        monkeypatch.setattr(broadcast, "TelegramClient", lambda: telegram)
        monkeypatch.setattr(broadcast, "DELAY_BETWEEN_MESSAGES", 0)

        result = broadcast.broadcast_message.run("  hello  ")

        assert result == {"sent": 1, "failed": 1, "total_recipients": 2}
        sent_to = {c.args[0] for c in telegram.send_message.call_args_list}
        assert banned.telegram_id not in sent_to
        assert all(c.args[1] == "hello" for c in telegram.send_message.call_args_list)

    @pytest.mark.parametrize("text,error", [("   ", "empty_message"), ("x" * 5000, "message_too_long")])
    def test_rejects_bad_text(self, text, error):
        from creditgate.workers.tasks import broadcast

        assert broadcast.broadcast_message.run(text)["error"] == error


class TestNotifyUser:
    def test_failure_is_swallowed(self, monkeypatch):
        from creditgate.workers.tasks import notify

        telegram = MagicMock()
        telegram.send_message.side_effect = RuntimeError("blocked by user")
        monkeypatch.setattr(notify, "TelegramClient", lambda: telegram)

        assert notify.notify_user.run("42", "hi") == {"sent": False}
        telegram.close.assert_called_once()


class TestTelegramClient:
    def test_send_message(self):
        from creditgate.services.telegram.client import TelegramClient

        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = request.content
            return httpx.Response(200, json={"ok": True, "result": {"message_id": 1}})

        client = TelegramClient(client=httpx.Client(transport=httpx.MockTransport(handler)))
        assert client.send_message("42", "hi")["ok"] is True
        assert seen["path"].endswith("/sendMessage")
        assert b'"chat_id":42' in seen["body"].replace(b" ", b"")

    def test_api_error(self):
        from creditgate.services.telegram.client import TelegramAPIError, TelegramClient

        def handler(request):
            return httpx.Response(403, json={"ok": False, "error_code": 403, "description": "Forbidden"})

        client = TelegramClient(client=httpx.Client(transport=httpx.MockTransport(handler)))
        with pytest.raises(TelegramAPIError) as exc:
            client.send_message("42", "hi")
        assert exc.value.error_code == 403
