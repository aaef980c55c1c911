"""Seal and gift-wrap construction.

A message leaves the device in three layers:

1. the rumor -- unsigned, content addressed, deniable;
2. the seal -- the rumor encrypted to one recipient and signed by the real
   sender, with no tags so nothing about the recipient leaks;
3. the wrap -- the seal encrypted again under a single-use key, signed by
   that throwaway key, tagged with the recipient only.

One wrap is produced per recipient plus one addressed back to the sender
(the self-wrap) so sent messages can be recovered from relays later.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from nacl.signing import SigningKey

from privdm.protocol.crypto import encrypt_payload
from privdm.protocol.event import Event, EventTemplate, finalize_event, to_wire_dict
from privdm.protocol.rumor import Recipient, ReplyTo, Rumor, create_rumor
from privdm.protocol.signer import Signer
from privdm.protocol.types import EventKind, random_past_timestamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GiftWrapResult:
    """Output of :func:`create_gift_wraps`.

    ``wraps[i]`` is addressed to the i-th recipient; ``self_wrap`` is
    addressed to the sender.
    """

    rumor: Rumor
    wraps: list[Event]
    self_wrap: Event


def _compact_json(obj: dict) -> str:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


async def create_seal(signer: Signer, rumor: Rumor, recipient_pubkey: str) -> Event:
    """Encrypt *rumor* to *recipient_pubkey* and sign it as the sender.

    Seal tags are always empty.
    """
    encrypted = await signer.encrypt(recipient_pubkey, _compact_json(rumor.to_dict()))
    return await signer.sign_event(
        EventTemplate(
            kind=int(EventKind.SEAL),
            content=encrypted,
            tags=[],
            created_at=random_past_timestamp(),
        )
    )


def wrap_seal(seal: Event, recipient_pubkey: str) -> Event:
    """Wrap *seal* for *recipient_pubkey* under a freshly generated key.

    The ephemeral key exists only for the duration of this call.
    """
    ephemeral_key = SigningKey.generate()
    encrypted = encrypt_payload(
        _compact_json(to_wire_dict(seal)), ephemeral_key, recipient_pubkey
    )
    return finalize_event(
        EventTemplate(
            kind=int(EventKind.GIFT_WRAP),
            content=encrypted,
            tags=[["p", recipient_pubkey]],
            created_at=random_past_timestamp(),
        ),
        ephemeral_key,
    )


async def wrap_rumor(
    signer: Signer,
    rumor: Rumor,
    recipients: list[Recipient],
) -> GiftWrapResult:
    """Seal and wrap an existing *rumor* for every recipient and the sender."""
    sender_pubkey = await signer.get_public_key()

    wraps: list[Event] = []
    for recipient in recipients:
        seal = await create_seal(signer, rumor, recipient.pubkey)
        wraps.append(wrap_seal(seal, recipient.pubkey))

    self_seal = await create_seal(signer, rumor, sender_pubkey)
    self_wrap = wrap_seal(self_seal, sender_pubkey)

    logger.debug(
        "Wrapped message %s for %d recipient(s) plus self", rumor.id, len(wraps)
    )
    return GiftWrapResult(rumor=rumor, wraps=wraps, self_wrap=self_wrap)


async def create_gift_wraps(
    signer: Signer,
    recipients: list[Recipient],
    message: str,
    *,
    reply_to: ReplyTo | None = None,
    subject: str | None = None,
) -> GiftWrapResult:
    """Build a rumor from *message* and wrap it for all recipients plus self."""
    sender_pubkey = await signer.get_public_key()
    rumor = create_rumor(
        sender_pubkey, recipients, message, reply_to=reply_to, subject=subject
    )
    return await wrap_rumor(signer, rumor, recipients)


def gift_wrap_filter(
    pubkey: str,
    *,
    since: int | None = None,
    until: int | None = None,
    limit: int | None = None,
) -> dict:
    """Relay filter for wraps addressed to *pubkey*."""
    f: dict = {"kinds": [int(EventKind.GIFT_WRAP)], "#p": [pubkey]}
    if since is not None:
        f["since"] = since
    if until is not None:
        f["until"] = until
    if limit is not None:
        f["limit"] = limit
    return f
