"""The rumor: the unsigned, content-addressed core of a direct message.

A rumor has an id but deliberately carries no signature, so anyone who later
obtains it cannot prove who wrote it.  Authorship is proven only by the seal,
which is discarded once the message has been opened.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from privdm.protocol.crypto import compute_event_id
from privdm.protocol.errors import InvalidEventError
from privdm.protocol.types import EventKind, now_seconds


@dataclass(frozen=True)
class Recipient:
    """A message recipient, optionally with a relay where they can be reached."""

    pubkey: str
    relay_hint: str | None = None


@dataclass(frozen=True)
class ReplyTo:
    """Reference to the message being replied to."""

    event_id: str
    relay_hint: str | None = None


@dataclass(frozen=True)
class Rumor:
    """An unsigned chat message with a content-addressed id."""

    id: str
    pubkey: str
    created_at: int
    kind: int
    tags: list[list[str]] = field(default_factory=list)
    content: str = ""

    @property
    def recipients(self) -> list[Recipient]:
        return [
            Recipient(t[1], t[2] if len(t) > 2 and t[2] else None)
            for t in self.tags
            if len(t) >= 2 and t[0] == "p" and t[1]
        ]

    @property
    def reply_to(self) -> ReplyTo | None:
        for t in self.tags:
            if len(t) >= 2 and t[0] == "e" and t[1]:
                return ReplyTo(t[1], t[2] if len(t) > 2 and t[2] else None)
        return None

    @property
    def subject(self) -> str | None:
        for t in self.tags:
            if len(t) >= 2 and t[0] == "subject":
                return t[1]
        return None

    def to_dict(self) -> dict:
        """Serialize to the JSON object encrypted inside a seal (no ``sig``)."""
        return {
            "id": self.id,
            "pubkey": self.pubkey,
            "created_at": self.created_at,
            "kind": self.kind,
            "tags": [list(t) for t in self.tags],
            "content": self.content,
        }

    @classmethod
    def from_dict(cls, d: dict) -> Rumor:
        """Restore a rumor, recomputing its id from the canonical fields.

        Raises:
            InvalidEventError: If fields are missing, mistyped, or the stated
                id is not the content address of the fields.
        """
        if not isinstance(d, dict):
            raise InvalidEventError("Rumor must be a JSON object")
        try:
            pubkey = d["pubkey"]
            created_at = d["created_at"]
            kind = d["kind"]
            tags = d["tags"]
            content = d["content"]
        except KeyError as exc:
            raise InvalidEventError(f"Rumor missing field {exc}") from exc

        if not isinstance(pubkey, str) or not isinstance(content, str):
            raise InvalidEventError("Rumor pubkey and content must be strings")
        if not all(isinstance(v, int) and not isinstance(v, bool) for v in (created_at, kind)):
            raise InvalidEventError("Rumor created_at and kind must be integers")
        if not isinstance(tags, list) or not all(
            isinstance(t, list) and all(isinstance(v, str) for v in t) for t in tags
        ):
            raise InvalidEventError("Rumor tags must be a list of string lists")

        rumor_id = compute_event_id(pubkey, created_at, kind, tags, content)
        if d.get("id") is not None and d["id"] != rumor_id:
            raise InvalidEventError("Rumor id does not match content")
        return cls(
            id=rumor_id,
            pubkey=pubkey,
            created_at=created_at,
            kind=kind,
            tags=[list(t) for t in tags],
            content=content,
        )


def create_rumor(
    sender_pubkey: str,
    recipients: list[Recipient],
    message: str,
    *,
    reply_to: ReplyTo | None = None,
    subject: str | None = None,
    created_at: int | None = None,
) -> Rumor:
    """Build the unsigned chat message for *recipients*.

    Tag order: one ``p`` tag per recipient, then the optional ``e`` reply
    reference, then the optional ``subject``.
    """
    tags: list[list[str]] = [
        ["p", r.pubkey, r.relay_hint] if r.relay_hint else ["p", r.pubkey]
        for r in recipients
    ]

    if reply_to is not None:
        if reply_to.relay_hint:
            tags.append(["e", reply_to.event_id, reply_to.relay_hint])
        else:
            tags.append(["e", reply_to.event_id])

    if subject:
        tags.append(["subject", subject])

    if created_at is None:
        created_at = now_seconds()
    kind = int(EventKind.CHAT_MESSAGE)

    return Rumor(
        id=compute_event_id(sender_pubkey, created_at, kind, tags, message),
        pubkey=sender_pubkey,
        created_at=created_at,
        kind=kind,
        tags=tags,
        content=message,
    )
