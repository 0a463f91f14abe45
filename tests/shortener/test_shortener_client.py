"""Tests for the link shortener client and its token store."""
import asyncio
from unittest.mock import MagicMock

import httpx
import pybreaker
import pytest

from creditgate.entitlement.errors import ExternalServiceError
from creditgate.services.shortener.service import ShortenerClient, ShortenerTokenService, mask_token


def _client(handler, fail_max=5):
    breaker = pybreaker.CircuitBreaker(fail_max=fail_max, reset_timeout=60)
    http = httpx.Client(transport=httpx.MockTransport(handler))
    return ShortenerClient(api_url="https://short.example/api", client=http, breaker=breaker)


class TestShortenerClient:
    def test_success_sends_text_request(self):
        seen = {}

        def handler(request):
            seen.update(request.url.params)
            return httpx.Response(200, text="https://gpl.ink/xyz\n")

        client = _client(handler)
        assert client.shorten_sync("secret", "https://gate.example.com/verify?token=t") == "https://gpl.ink/xyz"
        assert seen == {"api": "secret", "url": "https://gate.example.com/verify?token=t", "format": "text"}

    def test_async_wrapper(self):
        client = _client(lambda request: httpx.Response(200, text="https://gpl.ink/a"))
        assert asyncio.run(client.shorten("secret", "https://x")) == "https://gpl.ink/a"

    def test_missing_token(self):
        client = _client(lambda request: httpx.Response(200, text="https://gpl.ink/a"))
        with pytest.raises(ExternalServiceError) as exc:
            client.shorten_sync(None, "https://x")
        assert exc.value.service == "shortener"

    def test_http_error(self):
        client = _client(lambda request: httpx.Response(502, text="bad gateway"))
        with pytest.raises(ExternalServiceError):
            client.shorten_sync("secret", "https://x")

    def test_garbage_body(self):
        client = _client(lambda request: httpx.Response(200, text='{"status":"error"}'))
        with pytest.raises(ExternalServiceError):
            client.shorten_sync("secret", "https://x")

    def test_circuit_opens_after_failures(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("refused", request=request)

        client = _client(handler, fail_max=2)
        for _ in range(3):
            with pytest.raises(ExternalServiceError):
                client.shorten_sync("secret", "https://x")

        assert len(calls) == 2
        assert client.breaker.current_state == pybreaker.STATE_OPEN


class TestShortenerTokens:
    def test_falls_back_to_settings(self, db, monkeypatch):
        from creditgate.core.config import settings

        monkeypatch.setattr(settings, "shortener_api_token", "from-env")
        assert ShortenerTokenService(db).get_active() == "from-env"

    def test_rotate_keeps_single_active(self, db):
        svc = ShortenerTokenService(db)
        svc.rotate("first-token")
        svc.rotate("second-token")

        assert svc.get_active() == "second-token"
        assert sum(1 for t in svc.list_all() if t.is_active) == 1

    def test_rotate_rejects_empty(self, db):
        with pytest.raises(ValueError):
            ShortenerTokenService(db).rotate("  ")

    def test_mask(self):
        assert mask_token("abcdefghijkl") == "abcd…ijkl"
        assert mask_token("short") == "*****"


class TestRedisBreakerStorage:
    def _storage(self, values=None):
        from creditgate.services.circuit_breaker import RedisCircuitBreakerStorage

        client = MagicMock()
        client.get.side_effect = lambda key: (values or {}).get(key)
        return RedisCircuitBreakerStorage("shortener", client=client), client

    def test_defaults(self):
        storage, _ = self._storage()
        assert storage.state == pybreaker.STATE_CLOSED
        assert storage.counter == 0
        assert storage.opened_at is None

    def test_reads_shared_state(self):
        storage, _ = self._storage({"cb:shortener:state": "open", "cb:shortener:counter": "3"})
        assert storage.state == pybreaker.STATE_OPEN
        assert storage.counter == 3

    def test_failure_counter_expires(self):
        storage, client = self._storage()
        storage.increment_counter()
        client.incr.assert_called_once_with("cb:shortener:counter")
        client.expire.assert_called_once()
