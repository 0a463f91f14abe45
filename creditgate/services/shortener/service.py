"""
Link shortener client (GPLinks-compatible text API) and the admin-managed API token store.

Every verification URL goes through the shortener; failures surface as
ExternalServiceError so callers can tell the user the link could not be made.
"""
from __future__ import annotations

import asyncio
import logging
import time

import httpx
import pybreaker
from sqlalchemy import update
from sqlalchemy.orm import Session

from creditgate.core.config import settings
from creditgate.entitlement.errors import ExternalServiceError
from creditgate.models.shortener_token import ShortenerToken
from creditgate.services.circuit_breaker import get_circuit_breaker
from creditgate.utils.metrics import shortener_request_duration_seconds, shortener_requests_total

logger = logging.getLogger(__name__)

SERVICE_NAME = "shortener"


class ShortenerTokenService:
    def __init__(self, db: Session):
        self.db = db

    def get_active(self) -> str | None:
        row = (
            self.db.query(ShortenerToken)
            .filter(ShortenerToken.is_active.is_(True))
            .order_by(ShortenerToken.created_at.desc())
            .first()
        )
        if row:
            return row.token
        return settings.shortener_api_token or None

    def rotate(self, token: str) -> ShortenerToken:
        """New token becomes the only active one."""
        token = token.strip()
        if not token:
            raise ValueError("empty shortener token")
        self.db.execute(
            update(ShortenerToken)
            .where(ShortenerToken.is_active.is_(True))
            .values(is_active=False)
            .execution_options(synchronize_session="fetch")
        )
        row = ShortenerToken(token=token, is_active=True)
        self.db.add(row)
        self.db.flush()
        return row

    def list_all(self) -> list[ShortenerToken]:
        return self.db.query(ShortenerToken).order_by(ShortenerToken.created_at.desc()).all()


def mask_token(token: str) -> str:
    if len(token) <= 8:
        return "*" * len(token)
    return f"{token[:4]}…{token[-4:]}"


class ShortenerClient:
    """
    Sync httpx client guarded by a circuit breaker.
    The bot calls shorten() from its event loop; the HTTP round-trip runs in a worker thread.
    """

    def __init__(
        self,
        api_url: str | None = None,
        client: httpx.Client | None = None,
        breaker: pybreaker.CircuitBreaker | None = None,
    ) -> None:
        self.api_url = api_url or settings.shortener_api_url
        self._client = client
        self._breaker = breaker

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=settings.shortener_timeout)
        return self._client

    @property
    def breaker(self) -> pybreaker.CircuitBreaker:
        if self._breaker is None:
            self._breaker = get_circuit_breaker(SERVICE_NAME)
        return self._breaker

    def _request(self, api_token: str, long_url: str) -> str:
        resp = self.client.get(
            self.api_url,
            params={"api": api_token, "url": long_url, "format": "text"},
        )
        resp.raise_for_status()
        short_url = resp.text.strip()
        if not short_url.startswith(("http://", "https://")):
            raise ValueError(f"unexpected shortener response: {short_url[:80]!r}")
        return short_url

    def shorten_sync(self, api_token: str | None, long_url: str) -> str:
        if not api_token:
            shortener_requests_total.labels(status="no_token").inc()
            raise ExternalServiceError(SERVICE_NAME, "no active API token")
        start = time.time()
        try:
            short_url = self.breaker.call(self._request, api_token, long_url)
        except pybreaker.CircuitBreakerError as e:
            shortener_requests_total.labels(status="circuit_open").inc()
            raise ExternalServiceError(SERVICE_NAME, "circuit open") from e
        except (httpx.HTTPError, ValueError) as e:
            shortener_requests_total.labels(status="error").inc()
            logger.warning("shortener_request_failed", extra={"error": str(e)})
            raise ExternalServiceError(SERVICE_NAME, type(e).__name__) from e
        finally:
            shortener_request_duration_seconds.observe(time.time() - start)
        shortener_requests_total.labels(status="success").inc()
        return short_url

    async def shorten(self, api_token: str | None, long_url: str) -> str:
        return await asyncio.to_thread(self.shorten_sync, api_token, long_url)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
