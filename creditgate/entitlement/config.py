"""
Entitlement config: typed wrapper over creditgate.core.config for the access/credit policy.
"""
from __future__ import annotations

from datetime import timedelta

from creditgate.core.config import settings


def get_access_validity() -> timedelta:
    return timedelta(hours=settings.access_validity_hours)


def get_credit_cycle() -> timedelta:
    return timedelta(hours=settings.credit_cycle_hours)


def get_credit_cycle_cap() -> int:
    return settings.credit_cycle_cap


def get_credit_earn_amount() -> int:
    return settings.credit_earn_amount


def get_credit_spend_amount() -> int:
    return settings.credit_spend_amount


def get_token_ttl() -> timedelta:
    return timedelta(minutes=settings.verification_token_ttl_minutes)


def get_verify_url(token: str) -> str:
    return f"{settings.public_base_url.rstrip('/')}/verify?token={token}"


def get_verify_credits_url(token: str) -> str:
    return f"{settings.public_base_url.rstrip('/')}/verify-credits?token={token}"
