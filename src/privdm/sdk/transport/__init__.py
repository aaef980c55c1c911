"""privdm relay transport layer."""

from privdm.sdk.transport.base import (
    CLOSED_BY_CALLER,
    PublishResult,
    RelayTransport,
    Subscription,
    SubscriptionHandlers,
    collect_events,
)
from privdm.sdk.transport.websocket import RelayPool


__all__ = [
    "CLOSED_BY_CALLER",
    "PublishResult",
    "RelayTransport",
    "Subscription",
    "SubscriptionHandlers",
    "collect_events",
    "RelayPool",
]
