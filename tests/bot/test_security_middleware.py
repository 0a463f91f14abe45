"""Tests for SecurityMiddleware: bans, maintenance switch, admin flag."""
import asyncio
from contextlib import contextmanager
from unittest.mock import AsyncMock, MagicMock

import pytest

from creditgate.bot import middlewares
from creditgate.services.accounts.service import AccountService
from creditgate.services.app_settings.settings_service import AppSettingsService


@pytest.fixture
def patched_session(db, monkeypatch):
    @contextmanager
    def _session():
        yield db

    monkeypatch.setattr(middlewares, "get_db_session", _session)
    return db


def _event(user_id):
    event = MagicMock()
    event.from_user.id = user_id
    event.message.answer = AsyncMock()
    return event


def _run(event):
    handler = AsyncMock(return_value="handled")
    data = {}
    result = asyncio.run(middlewares.SecurityMiddleware()(handler, event, data))
    return result, handler, data


class TestSecurityMiddleware:
    def test_regular_user_passes(self, patched_session, make_account):
        account = make_account()
        result, handler, data = _run(_event(int(account.telegram_id)))
        assert result == "handled"
        assert data["is_admin"] is False

    def test_banned_user_blocked(self, patched_session, make_account):
        account = make_account()
        AccountService(patched_session).ban(account)

        result, handler, _ = _run(_event(int(account.telegram_id)))

        assert result is None
        handler.assert_not_awaited()

    def test_paused_bot_lets_admins_through(self, patched_session, make_account):
        AppSettingsService(patched_session).toggle_bot()
        user = make_account()

        blocked, user_handler, _ = _run(_event(int(user.telegram_id)))
        allowed, _, data = _run(_event(900001))

        assert blocked is None
        user_handler.assert_not_awaited()
        assert allowed == "handled"
        assert data["is_admin"] is True

    def test_fails_open(self, monkeypatch):
        @contextmanager
        def _broken():
            raise RuntimeError("db down")
            yield

        monkeypatch.setattr(middlewares, "get_db_session", _broken)
        result, _, _ = _run(_event(5))
        assert result == "handled"
