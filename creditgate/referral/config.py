"""
Referral program config: typed wrappers over creditgate.core.config.settings.
"""
from __future__ import annotations

from creditgate.core.config import settings

REFERRAL_START_PREFIX = "ref_"


def get_award_credits() -> int:
    return settings.referral_award_credits


def build_referral_link(bot_username: str, telegram_id: str) -> str:
    return f"https://t.me/{bot_username}?start={REFERRAL_START_PREFIX}{telegram_id}"


def parse_referrer_telegram_id(start_arg: str | None) -> str | None:
    """Extract the referrer's telegram id from a /start payload like ref_123456."""
    if not start_arg or not start_arg.startswith(REFERRAL_START_PREFIX):
        return None
    raw = start_arg[len(REFERRAL_START_PREFIX):].strip()
    if not raw.isdigit():
        return None
    return raw
