import os

# Settings are read at import time; provide the required values before any creditgate import.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "123456:TEST")
os.environ.setdefault("TELEGRAM_BOT_USERNAME", "creditgate_test_bot")
os.environ.setdefault("ADMIN_IDS", "900001")
os.environ.setdefault("PUBLIC_BASE_URL", "https://gate.example.com")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")

from datetime import datetime, timezone  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine, event  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from creditgate.db.init_db import create_all  # noqa: E402
from creditgate.entitlement.errors import ExternalServiceError  # noqa: E402


def _enable_savepoints(eng):
    # pysqlite defers BEGIN; emit it ourselves so SAVEPOINTs behave.
    @event.listens_for(eng, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(eng, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    _enable_savepoints(eng)
    create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def file_session_factory(tmp_path):
    """Separate connections per session, for tests that interleave two transactions."""
    eng = create_engine(f"sqlite:///{tmp_path / 'creditgate.db'}")
    _enable_savepoints(eng)
    create_all(eng)
    yield sessionmaker(bind=eng, autocommit=False, autoflush=False, expire_on_commit=False)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def now():
    return datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeShortener:
    """Returns a deterministic short URL and records what it was asked to shorten."""

    def __init__(self):
        self.calls = []

    async def shorten(self, api_token, long_url):
        self.calls.append(long_url)
        return f"https://short.example/{len(self.calls)}"


class FailingShortener:
    async def shorten(self, api_token, long_url):
        raise ExternalServiceError("shortener", "HTTPStatusError")


class FakeMembershipChecker:
    def __init__(self, joined=None, error_for=()):
        self.joined = set(joined or ())
        self.error_for = set(error_for)
        self.calls = []

    async def is_member(self, channel_ref, telegram_id):
        self.calls.append((channel_ref, telegram_id))
        if channel_ref in self.error_for:
            raise RuntimeError("Bad Request: chat not found")
        return channel_ref in self.joined


@pytest.fixture
def shortener():
    return FakeShortener()


@pytest.fixture
def make_account(db):
    from creditgate.services.accounts.service import AccountService

    counter = {"n": 100}

    def _make(telegram_id=None, **fields):
        if telegram_id is None:
            counter["n"] += 1
            telegram_id = str(counter["n"])
        account, _ = AccountService(db).get_or_create(str(telegram_id), fields.pop("display_name", None))
        for key, value in fields.items():
            setattr(account, key, value)
        db.add(account)
        db.flush()
        return account

    return _make


@pytest.fixture
def make_item(db):
    from creditgate.services.content.service import ContentService

    def _make(title="Example Movie", status="published", links=None, files=1):
        svc = ContentService(db)
        item = svc.create(title.lower(), title)
        for n in range(files):
            svc.add_asset(item, "document", telegram_file_id=f"FILE{n}", file_name=f"part{n}.mkv")
        for url in links or []:
            svc.add_asset(item, "link", url=url)
        item.status = status
        db.add(item)
        db.flush()
        return item

    return _make
