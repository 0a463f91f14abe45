"""
Entitlement result types and errors shared by services, bot and API.
The orchestrator lives in creditgate.entitlement.engine.
"""
from creditgate.entitlement.errors import ContentNotFoundError, EntitlementError, ExternalServiceError
from creditgate.entitlement.models import ChannelPrompt, Decision, DecisionKind, DeliveryAsset, ItemCard

__all__ = [
    "ChannelPrompt",
    "ContentNotFoundError",
    "Decision",
    "DecisionKind",
    "DeliveryAsset",
    "EntitlementError",
    "ExternalServiceError",
    "ItemCard",
]
