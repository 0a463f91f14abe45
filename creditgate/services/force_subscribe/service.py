"""
Force-subscribe gate: content is withheld until the user joined every active channel.
Membership is asked live on each check; results are never stored.
"""
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Protocol

from sqlalchemy.orm import Session

from creditgate.core.config import settings
from creditgate.models.force_subscribe_rule import ForceSubscribeRule

logger = logging.getLogger(__name__)

JOINED_STATUSES = frozenset({"member", "administrator", "creator"})
_TME_RE = re.compile(r"^(?:https?://)?(?:t\.me|telegram\.me)/([A-Za-z0-9_]{4,})/?$")


class MembershipChecker(Protocol):
    async def is_member(self, channel_ref: str, telegram_id: str) -> bool: ...


class TelegramMembershipChecker:
    """Asks Telegram via getChatMember. Any error counts as not joined."""

    def __init__(self, bot) -> None:
        self.bot = bot

    async def is_member(self, channel_ref: str, telegram_id: str) -> bool:
        member = await self.bot.get_chat_member(chat_id=channel_ref, user_id=int(telegram_id))
        status = getattr(member.status, "value", member.status)
        return status in JOINED_STATUSES


@dataclass(frozen=True)
class ChannelStatus:
    channel_ref: str
    invite_url: str
    joined: bool


@dataclass(frozen=True)
class GateResult:
    all_satisfied: bool
    channels: list[ChannelStatus] = field(default_factory=list)

    @property
    def missing(self) -> list[ChannelStatus]:
        return [c for c in self.channels if not c.joined]


def channel_ref_from_url(value: str) -> str:
    """Turn https://t.me/name into @name; keep @name and -100 ids as they are."""
    value = value.strip()
    m = _TME_RE.match(value)
    if m:
        return f"@{m.group(1)}"
    return value


class ForceSubscribeService:
    def __init__(self, db: Session, checker: MembershipChecker | None = None, timeout: float | None = None):
        self.db = db
        self.checker = checker
        self.timeout = settings.membership_check_timeout if timeout is None else timeout

    def list_active(self) -> list[ForceSubscribeRule]:
        return (
            self.db.query(ForceSubscribeRule)
            .filter(ForceSubscribeRule.is_active.is_(True))
            .order_by(ForceSubscribeRule.created_at)
            .all()
        )

    def add_rule(self, channel: str, invite_url: str | None = None) -> ForceSubscribeRule:
        channel = channel.strip()
        channel_ref = channel_ref_from_url(channel)
        if invite_url is None:
            invite_url = channel if channel.startswith("http") else f"https://t.me/{channel_ref.lstrip('@')}"
        rule = ForceSubscribeRule(channel_ref=channel_ref, invite_url=invite_url.strip(), is_active=True)
        self.db.add(rule)
        self.db.flush()
        logger.info("force_subscribe_rule_added", extra={"chat_id": channel_ref})
        return rule

    def remove_rule(self, query: str) -> list[ForceSubscribeRule]:
        """
        Deactivate rules matching query: exact ref or url, @username, -100 chat id,
        or a fragment of the invite link.
        """
        query = query.strip()
        if not query:
            return []
        normalized = channel_ref_from_url(query)
        bare = normalized.lstrip("@").lower()
        removed = []
        for rule in self.list_active():
            ref = rule.channel_ref.lower()
            url = rule.invite_url.lower()
            if (
                query.lower() in (ref, url)
                or normalized.lower() == ref
                or (bare and ref.lstrip("@") == bare)
                or (query.startswith("-100") and ref == query)
                or (len(bare) >= 4 and bare in url)
            ):
                rule.is_active = False
                self.db.add(rule)
                removed.append(rule)
        self.db.flush()
        return removed

    async def _is_member(self, channel_ref: str, telegram_id: str) -> bool:
        if self.checker is None:
            return False
        try:
            return await asyncio.wait_for(self.checker.is_member(channel_ref, telegram_id), timeout=self.timeout)
        except Exception as e:
            logger.warning(
                "membership_check_failed",
                extra={"chat_id": channel_ref, "user_id": telegram_id, "error": type(e).__name__},
            )
            return False

    async def check_gate(self, telegram_id: str) -> GateResult:
        rules = self.list_active()
        if not rules:
            return GateResult(all_satisfied=True)
        results = await asyncio.gather(*(self._is_member(r.channel_ref, str(telegram_id)) for r in rules))
        channels = [
            ChannelStatus(channel_ref=r.channel_ref, invite_url=r.invite_url, joined=joined)
            for r, joined in zip(rules, results)
        ]
        return GateResult(all_satisfied=all(results), channels=channels)
