"""Signed events -- creation, signing, verification, wire format.

Every layer of a direct message travels as an event: the seal and the wrap
are signed events, the inner message (rumor) has an id but no signature.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from nacl.signing import SigningKey

from privdm.protocol.crypto import (
    compute_event_id,
    public_key_hex,
    sign_event_id,
    verify_event_signature,
)
from privdm.protocol.errors import InvalidEventError, SignatureVerificationError
from privdm.protocol.types import now_seconds


_REQUIRED_WIRE_FIELDS = frozenset(
    ["id", "pubkey", "created_at", "kind", "tags", "content", "sig"]
)


@dataclass(frozen=True)
class EventTemplate:
    """An event before it has an author, id, and signature."""

    kind: int
    content: str
    tags: list[list[str]] = field(default_factory=list)
    created_at: int | None = None


@dataclass(frozen=True)
class Event:
    """A signed event as it appears on the wire."""

    id: str
    pubkey: str
    created_at: int
    kind: int
    tags: list[list[str]]
    content: str
    sig: str

    def tag_values(self, name: str) -> list[str]:
        """Return the first value of every tag called *name*."""
        return [t[1] for t in self.tags if len(t) >= 2 and t[0] == name]


def _validate_tags(tags) -> list[list[str]]:
    if not isinstance(tags, list):
        raise InvalidEventError("tags must be a list")
    for tag in tags:
        if not isinstance(tag, list) or not all(isinstance(v, str) for v in tag):
            raise InvalidEventError(f"Malformed tag: {tag!r}")
    return [list(t) for t in tags]


def to_wire_dict(event: Event) -> dict:
    """Convert an event to its wire-format dict."""
    return {
        "id": event.id,
        "pubkey": event.pubkey,
        "created_at": event.created_at,
        "kind": event.kind,
        "tags": [list(t) for t in event.tags],
        "content": event.content,
        "sig": event.sig,
    }


def from_wire_dict(d: dict) -> Event:
    """Restore an event from a wire-format dict.

    Only the shape is checked here; use :func:`verify_event` for the id and
    signature.

    Raises:
        InvalidEventError: If a required field is missing or has the wrong type.
    """
    if not isinstance(d, dict):
        raise InvalidEventError("Event must be a JSON object")
    missing = _REQUIRED_WIRE_FIELDS - set(d.keys())
    if missing:
        raise InvalidEventError(f"Missing required fields: {sorted(missing)}")

    for name in ("id", "pubkey", "content", "sig"):
        if not isinstance(d[name], str):
            raise InvalidEventError(f"Field {name!r} must be a string")
    for name in ("created_at", "kind"):
        if not isinstance(d[name], int) or isinstance(d[name], bool):
            raise InvalidEventError(f"Field {name!r} must be an integer")

    return Event(
        id=d["id"],
        pubkey=d["pubkey"],
        created_at=d["created_at"],
        kind=d["kind"],
        tags=_validate_tags(d["tags"]),
        content=d["content"],
        sig=d["sig"],
    )


def finalize_event(template: EventTemplate, signing_key: SigningKey) -> Event:
    """Assign author, id, and signature to *template*.

    A template without ``created_at`` is stamped with the current time.
    """
    pubkey = public_key_hex(signing_key)
    created_at = template.created_at if template.created_at is not None else now_seconds()
    tags = [list(t) for t in template.tags]
    event_id = compute_event_id(pubkey, created_at, template.kind, tags, template.content)
    return Event(
        id=event_id,
        pubkey=pubkey,
        created_at=created_at,
        kind=template.kind,
        tags=tags,
        content=template.content,
        sig=sign_event_id(event_id, signing_key),
    )


def verify_event(event: Event) -> None:
    """Check that the event id matches its content and the signature is valid.

    Raises:
        SignatureVerificationError: If either check fails.
    """
    expected = compute_event_id(
        event.pubkey, event.created_at, event.kind, event.tags, event.content
    )
    if expected != event.id:
        raise SignatureVerificationError("Event id does not match content")
    verify_event_signature(event.id, event.sig, event.pubkey)


def is_valid_event(event: Event) -> bool:
    """Boolean form of :func:`verify_event`."""
    try:
        verify_event(event)
    except SignatureVerificationError:
        return False
    return True
