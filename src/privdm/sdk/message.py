"""Data objects produced by the pipelines and returned by the message store."""

from __future__ import annotations

from dataclasses import dataclass

from privdm.protocol.rumor import Rumor
from privdm.protocol.unwrap import UnwrappedMessage


@dataclass(frozen=True)
class DecryptedMessage:
    """A decoded message together with the id of the wrap it arrived in.

    The rumor is kept verbatim; ``content`` and ``created_at`` mirror its
    fields for convenient sorting and display.
    """

    id: str
    conversation_id: str
    sender_pubkey: str
    content: str
    created_at: int
    rumor: Rumor
    wrap_id: str

    @classmethod
    def from_unwrapped(cls, unwrapped: UnwrappedMessage, wrap_id: str) -> DecryptedMessage:
        return cls(
            id=unwrapped.rumor.id,
            conversation_id=unwrapped.conversation_id,
            sender_pubkey=unwrapped.sender_pubkey,
            content=unwrapped.rumor.content,
            created_at=unwrapped.rumor.created_at,
            rumor=unwrapped.rumor,
            wrap_id=wrap_id,
        )

    def __str__(self) -> str:
        return f"Message {self.id[:8]} from {self.sender_pubkey[:8]} at {self.created_at}"


@dataclass(frozen=True)
class Conversation:
    """A thread and its aggregate state."""

    id: str
    participants: list[str]
    last_message: DecryptedMessage
    message_count: int


@dataclass(frozen=True)
class BackfillStatus:
    complete: bool
    completed_at: int | None
