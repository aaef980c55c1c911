"""Opening gift wraps -- the inverse of :mod:`privdm.protocol.giftwrap`.

:func:`unwrap_gift_wrap` raises on failure.  :func:`decode_gift_wrap` is what
the pipelines call: it turns the outcome into a tagged result so that the
routine "this wrap is not for me" case is distinguishable from a signer that
could not answer, without the caller sniffing exception types.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Union

from privdm.protocol.conversation import get_conversation_id
from privdm.protocol.errors import (
    AntiImpersonationError,
    DecodeError,
    DecryptionError,
    InvalidEventError,
    SealVerificationError,
    SignatureVerificationError,
    SignerError,
)
from privdm.protocol.event import Event, from_wire_dict, verify_event
from privdm.protocol.rumor import Rumor
from privdm.protocol.signer import Signer
from privdm.protocol.types import EventKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UnwrappedMessage:
    """A message recovered from a wrap.

    Only the unsigned rumor survives; the seal that proved authorship is
    dropped here.
    """

    rumor: Rumor
    sender_pubkey: str
    conversation_id: str


@dataclass(frozen=True)
class Decoded:
    message: UnwrappedMessage


@dataclass(frozen=True)
class Skipped:
    """The wrap was not readable by this identity, or malformed."""

    reason: str


@dataclass(frozen=True)
class Failed:
    """The signer failed while opening the wrap; worth logging."""

    error: BaseException


DecodeResult = Union[Decoded, Skipped, Failed]


def _parse_json(text: str, layer: str) -> dict:
    try:
        value = json.loads(text)
    except ValueError as exc:
        raise DecodeError(f"{layer} is not valid JSON") from exc
    if not isinstance(value, dict):
        raise DecodeError(f"{layer} is not a JSON object")
    return value


async def unwrap_gift_wrap(signer: Signer, wrap: Event) -> UnwrappedMessage:
    """Open *wrap* with *signer*'s identity.

    Steps:
        1. Decrypt the wrap under recipient <-> wrap-author key -> seal
        2. Verify the seal's signature against its own author
        3. Decrypt the seal under recipient <-> seal-author key -> rumor
        4. Require seal author == rumor author
        5. Derive the conversation id

    Raises:
        DecodeError: If any layer is undecryptable or malformed.
        SealVerificationError: If the seal signature does not verify.
        AntiImpersonationError: If the seal and rumor authors differ.
        SignerError: If the signer itself failed (propagated unchanged).
    """
    if wrap.kind != EventKind.GIFT_WRAP:
        raise DecodeError(f"Unexpected wrap kind {wrap.kind}")

    # Step 1: wrap -> seal
    try:
        seal_json = await signer.decrypt(wrap.pubkey, wrap.content)
    except DecryptionError as exc:
        raise DecodeError(f"Cannot decrypt wrap: {exc}") from exc
    try:
        seal = from_wire_dict(_parse_json(seal_json, "seal"))
    except InvalidEventError as exc:
        raise DecodeError(f"Malformed seal: {exc}") from exc
    if seal.kind != EventKind.SEAL:
        raise DecodeError(f"Unexpected seal kind {seal.kind}")

    # Step 2: seal signature
    try:
        verify_event(seal)
    except SignatureVerificationError as exc:
        raise SealVerificationError("seal signature verification failed") from exc

    # Step 3: seal -> rumor
    try:
        rumor_json = await signer.decrypt(seal.pubkey, seal.content)
    except DecryptionError as exc:
        raise DecodeError(f"Cannot decrypt seal: {exc}") from exc
    try:
        rumor = Rumor.from_dict(_parse_json(rumor_json, "rumor"))
    except InvalidEventError as exc:
        raise DecodeError(f"Malformed rumor: {exc}") from exc

    # Step 4: the seal is the only signed proof of authorship
    if seal.pubkey != rumor.pubkey:
        raise AntiImpersonationError(
            f"Anti-impersonation check failed: seal.pubkey ({seal.pubkey}) "
            f"!= rumor.pubkey ({rumor.pubkey})"
        )

    return UnwrappedMessage(
        rumor=rumor,
        sender_pubkey=rumor.pubkey,
        conversation_id=get_conversation_id(rumor),
    )


async def decode_gift_wrap(signer: Signer, wrap: Event) -> DecodeResult:
    """Open *wrap* and classify the outcome instead of raising."""
    try:
        return Decoded(await unwrap_gift_wrap(signer, wrap))
    except DecodeError as exc:
        return Skipped(str(exc))
    except (SignerError, asyncio.TimeoutError) as exc:
        return Failed(exc)
