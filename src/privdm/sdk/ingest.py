"""Decode-and-store step shared by the live and backfill pipelines."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

from privdm.protocol.event import Event
from privdm.protocol.signer import Signer
from privdm.protocol.unwrap import Decoded, Failed, decode_gift_wrap
from privdm.sdk.message import DecryptedMessage
from privdm.sdk.message_store import MessageStore

logger = logging.getLogger(__name__)


class IngestStatus(enum.Enum):
    SAVED = "saved"
    DUPLICATE = "duplicate"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class IngestOutcome:
    status: IngestStatus
    message: DecryptedMessage | None = None


async def ingest_gift_wrap(signer: Signer, store: MessageStore, wrap: Event) -> IngestOutcome:
    """Decode *wrap* and persist the message it carries.

    Never raises for undecodable wraps: those come back as ``SKIPPED`` (not
    for us) or ``FAILED`` (the signer broke).  Store errors propagate.
    """
    result = await decode_gift_wrap(signer, wrap)

    if isinstance(result, Failed):
        logger.warning("Signer failed on wrap %s: %s", wrap.id, result.error)
        return IngestOutcome(IngestStatus.FAILED)
    if not isinstance(result, Decoded):
        logger.debug("Skipped wrap %s: %s", wrap.id, result.reason)
        return IngestOutcome(IngestStatus.SKIPPED)

    message = DecryptedMessage.from_unwrapped(result.message, wrap.id)
    if not await store.save_message(message, wrap.created_at):
        logger.debug("Duplicate message %s in wrap %s", message.id, wrap.id)
        return IngestOutcome(IngestStatus.DUPLICATE, message)
    return IngestOutcome(IngestStatus.SAVED, message)
