"""
Verification callbacks: the shortener redirects users here once they passed it.
Only moves the token pending -> verified; the user claims the benefit in the bot.
"""
import html
import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import HTMLResponse
from sqlalchemy.orm import Session

from creditgate.bot.identity import bot_identity
from creditgate.db.session import get_db
from creditgate.services.tokens.service import (
    PURPOSE_CONTENT_UNLOCK,
    PURPOSE_CREDIT_GRANT,
    MarkOutcome,
    VerificationTokenService,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["verification"])

_MESSAGES = {
    MarkOutcome.VERIFIED: ("✅ Verified", "Go back to the bot and tap the check button."),
    MarkOutcome.ALREADY_VERIFIED: ("✅ Already verified", "Go back to the bot and tap the check button."),
    MarkOutcome.ALREADY_USED: ("ℹ️ Already used", "This link was already redeemed."),
    MarkOutcome.EXPIRED: ("⌛ Link expired", "Request a new link in the bot."),
    MarkOutcome.NOT_FOUND: ("❌ Invalid link", "This verification link is not valid."),
}


def _page(outcome: MarkOutcome) -> HTMLResponse:
    title, body = _MESSAGES[outcome]
    username = bot_identity.username
    back = (
        f'<p><a href="https://t.me/{html.escape(username)}">Open @{html.escape(username)}</a></p>'
        if username
        else ""
    )
    status_code = 404 if outcome == MarkOutcome.NOT_FOUND else 200
    return HTMLResponse(
        f"<!doctype html><html><head><meta charset='utf-8'><title>{title}</title></head>"
        f"<body><h1>{title}</h1><p>{body}</p>{back}</body></html>",
        status_code=status_code,
    )


def _verify(db: Session, token: str, purpose: str) -> HTMLResponse:
    svc = VerificationTokenService(db)
    row = svc.get(token)
    if row is None or row.purpose != purpose:
        return _page(MarkOutcome.NOT_FOUND)
    outcome = svc.mark_verified(token)
    db.commit()
    logger.info("verification_callback", extra={"purpose": purpose, "outcome": outcome.value})
    return _page(outcome)


@router.get("/verify", response_class=HTMLResponse)
def verify_content(token: str = Query(""), db: Session = Depends(get_db)) -> HTMLResponse:
    return _verify(db, token, PURPOSE_CONTENT_UNLOCK)


@router.get("/verify-credits", response_class=HTMLResponse)
def verify_credits(token: str = Query(""), db: Session = Depends(get_db)) -> HTMLResponse:
    return _verify(db, token, PURPOSE_CREDIT_GRANT)
