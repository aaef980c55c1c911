"""Conversation identity derived from a message's participants."""

from __future__ import annotations

from typing import Iterable

from privdm.protocol.rumor import Rumor


def conversation_id_for(pubkeys: Iterable[str]) -> str:
    """Join the sorted, deduplicated participant keys with ``+``."""
    return "+".join(sorted({pk for pk in pubkeys if pk}))


def get_conversation_id(rumor: Rumor) -> str:
    """Derive the thread key from the rumor author plus every ``p`` tag.

    The result does not depend on who sent the message or on tag order, so
    every participant converges on the same key from their own decode.
    """
    pubkeys = [rumor.pubkey]
    pubkeys.extend(t[1] for t in rumor.tags if len(t) >= 2 and t[0] == "p" and t[1])
    return conversation_id_for(pubkeys)


def participants_of(conversation_id: str) -> list[str]:
    """Split a conversation id back into its participant keys."""
    return conversation_id.split("+")
