"""Tests for the /verify and /verify-credits callbacks."""
import pytest
from fastapi.testclient import TestClient

from creditgate.db.session import get_db
from creditgate.main import app
from creditgate.services.tokens.service import (
    PURPOSE_CONTENT_UNLOCK,
    PURPOSE_CREDIT_GRANT,
    VerificationTokenService,
)


@pytest.fixture
def client(db):
    def _override():
        yield db

    app.dependency_overrides[get_db] = _override
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_db, None)


class TestVerifyCallbacks:
    def test_content_token_becomes_verified(self, client, db, make_account):
        row = VerificationTokenService(db).mint(make_account(), PURPOSE_CONTENT_UNLOCK, content_item_id="item")

        resp = client.get("/verify", params={"token": row.token})

        assert resp.status_code == 200
        assert "Verified" in resp.text
        assert "https://t.me/creditgate_test_bot" in resp.text
        db.refresh(row)
        assert row.status == "verified"

    def test_repeat_visit_is_harmless(self, client, db, make_account):
        row = VerificationTokenService(db).mint(make_account(), PURPOSE_CREDIT_GRANT, credit_amount=2)
        client.get("/verify-credits", params={"token": row.token})

        resp = client.get("/verify-credits", params={"token": row.token})

        assert resp.status_code == 200
        assert "Already verified" in resp.text

    def test_wrong_endpoint_for_purpose(self, client, db, make_account):
        row = VerificationTokenService(db).mint(make_account(), PURPOSE_CREDIT_GRANT, credit_amount=2)

        resp = client.get("/verify", params={"token": row.token})

        assert resp.status_code == 404
        db.refresh(row)
        assert row.status == "pending"

    @pytest.mark.parametrize("params", [{"token": "0" * 32}, {"token": "abc"}, {"token": ""}, {}])
    def test_bad_token_gets_invalid_link_page(self, client, params):
        resp = client.get("/verify", params=params)

        assert resp.status_code == 404
        assert resp.headers["content-type"].startswith("text/html")
        assert "Invalid link" in resp.text

    def test_used_token(self, client, db, make_account):
        svc = VerificationTokenService(db)
        row = svc.mint(make_account(), PURPOSE_CREDIT_GRANT, credit_amount=2)
        svc.mark_verified(row.token)
        svc.claim(row)

        resp = client.get("/verify-credits", params={"token": row.token})

        assert "Already used" in resp.text
