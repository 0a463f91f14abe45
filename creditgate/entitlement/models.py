"""
Entitlement DTOs: Decision (the single result type of every engine operation) and delivery assets.
"""
from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class DecisionKind(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"
    NEEDS_SUBSCRIPTION = "needs_subscription"
    NOT_FOUND = "not_found"
    NO_CONTENT = "no_content"
    NEEDS_VERIFICATION = "needs_verification"
    TOKEN_NOT_READY = "token_not_ready"
    TOKEN_EXPIRED = "token_expired"
    TOKEN_ALREADY_USED = "token_already_used"
    NOT_OWNER = "not_owner"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    COOLDOWN_ACTIVE = "cooldown_active"
    CREDITS_GRANTED = "credits_granted"
    EXTERNAL_SERVICE_FAILURE = "external_service_failure"


class DeliveryAsset(BaseModel):
    """One thing to push to the user: a link or a Telegram file."""

    asset_type: str
    url: str | None = None
    telegram_file_id: str | None = None
    file_name: str | None = None
    caption: str | None = None

    model_config = {"frozen": True}


class ChannelPrompt(BaseModel):
    channel_ref: str
    invite_url: str

    model_config = {"frozen": True}


class Decision(BaseModel):
    """Result of an entitlement operation. Expected outcomes never raise."""

    kind: DecisionKind
    reason: str | None = Field(None, description="Machine-readable detail, e.g. banned, premium, credit")
    content_id: str | None = None
    title: str | None = None
    assets: list[DeliveryAsset] = Field(default_factory=list, description="Ordered delivery assets for GRANTED")
    admin_preview: bool = False
    hours_remaining: int = Field(0, description="Grant validity left (GRANTED) or cooldown left (COOLDOWN_ACTIVE)")
    minutes_remaining: int = 0
    token: str | None = None
    verification_url: str | None = Field(None, description="Shortened URL the user must visit (NEEDS_VERIFICATION)")
    balance: int | None = None
    channels: list[ChannelPrompt] = Field(default_factory=list)

    model_config = {"frozen": True}

    @property
    def is_granted(self) -> bool:
        return self.kind == DecisionKind.GRANTED


class ItemCard(BaseModel):
    """Read-only summary of an item and of how the account could unlock it."""

    content_id: str
    short_id: str
    title: str
    file_count: int = 0
    link_count: int = 0
    balance: int = 0
    credit_cost: int = 1
    admin: bool = False
    premium: bool = False
    hours_remaining: int = 0
    minutes_remaining: int = 0
    has_access: bool = False

    model_config = {"frozen": True}

    @property
    def has_content(self) -> bool:
        return self.file_count + self.link_count > 0

    @property
    def can_pay_credit(self) -> bool:
        return self.balance >= self.credit_cost
