"""Encrypted read-state payload for cross-device synchronisation.

The read-state map (conversation id -> last read timestamp) is stored on
relays as an application-data event encrypted to its own author.
"""

from __future__ import annotations

import json

from privdm.protocol.errors import DecodeError
from privdm.protocol.event import EventTemplate
from privdm.protocol.signer import Signer
from privdm.protocol.types import EventKind, now_seconds

READ_STATE_D_TAG = "privdm/read-state"

ReadStateMap = dict[str, int]


async def encrypt_read_state(signer: Signer, my_pubkey: str, read_state: ReadStateMap) -> str:
    """Encrypt *read_state* to the signer's own identity."""
    payload = json.dumps(read_state, separators=(",", ":"), sort_keys=True)
    return await signer.encrypt(my_pubkey, payload)


async def decrypt_read_state(signer: Signer, my_pubkey: str, ciphertext: str) -> ReadStateMap:
    """Decrypt a read-state payload.

    Entries whose value is not an integer timestamp are dropped.

    Raises:
        DecodeError: If the plaintext is not a JSON object.
    """
    plaintext = await signer.decrypt(my_pubkey, ciphertext)
    try:
        data = json.loads(plaintext)
    except ValueError as exc:
        raise DecodeError("Read-state payload is not valid JSON") from exc
    if not isinstance(data, dict):
        raise DecodeError("Read-state payload is not a JSON object")
    return {
        str(k): v
        for k, v in data.items()
        if isinstance(v, int) and not isinstance(v, bool)
    }


def create_read_state_template(ciphertext: str, created_at: int | None = None) -> EventTemplate:
    """Replaceable app-data event carrying the encrypted read state."""
    return EventTemplate(
        kind=int(EventKind.APP_DATA),
        content=ciphertext,
        tags=[["d", READ_STATE_D_TAG]],
        created_at=created_at if created_at is not None else now_seconds(),
    )


def read_state_filter(pubkey: str) -> dict:
    return {
        "kinds": [int(EventKind.APP_DATA)],
        "authors": [pubkey],
        "#d": [READ_STATE_D_TAG],
    }
