"""privdm SDK -- the client side: storage, relays, and the two ingestion pipelines."""

from privdm.sdk.messenger import Messenger, RecipientDelivery, SendResult
from privdm.sdk.message import BackfillStatus, Conversation, DecryptedMessage
from privdm.sdk.config import MessengerConfig

__all__ = [
    "Messenger",
    "RecipientDelivery",
    "SendResult",
    "BackfillStatus",
    "Conversation",
    "DecryptedMessage",
    "MessengerConfig",
]
