"""Paginated retrieval of historical gift wraps.

Pages walk backwards in time with ``until = min(created_at) - 1``.  While one
page is decoded and stored, the query for the next is already in flight.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from privdm.protocol.event import Event
from privdm.protocol.giftwrap import gift_wrap_filter
from privdm.protocol.signer import Signer
from privdm.protocol.types import is_rate_limited
from privdm.sdk.ingest import IngestStatus, ingest_gift_wrap
from privdm.sdk.message import DecryptedMessage
from privdm.sdk.message_store import MessageStore
from privdm.sdk.transport.base import RelayTransport, collect_events

logger = logging.getLogger(__name__)

BACKFILL_RETRY_DELAYS = (2.0, 4.0, 8.0)
DEFAULT_PAGE_SIZE = 100
QUERY_MAX_WAIT = 15.0


@dataclass(frozen=True)
class BackfillResult:
    complete: bool
    events_processed: int
    pages: int = 0
    decode_failures: int = 0
    duplicates: int = 0


async def _interruptible_sleep(delay: float, cancel: asyncio.Event | None) -> bool:
    """Sleep for *delay* seconds.  Returns True if *cancel* fired first."""
    if cancel is None:
        await asyncio.sleep(delay)
        return False
    try:
        await asyncio.wait_for(cancel.wait(), timeout=delay)
        return True
    except asyncio.TimeoutError:
        return False


async def query_with_retry(
    transport: RelayTransport,
    relays: list[str],
    filter: dict,
    *,
    retry_delays: tuple[float, ...] = BACKFILL_RETRY_DELAYS,
    cancel: asyncio.Event | None = None,
    max_wait: float = QUERY_MAX_WAIT,
) -> list[Event]:
    """Run one query, repeating it while relays answer with a rate limit.

    After ``len(retry_delays)`` retries the last result is returned as is,
    possibly empty.
    """
    attempt = 0
    while True:
        events, close_reasons = await collect_events(
            transport, relays, filter, max_wait=max_wait
        )
        if not is_rate_limited(close_reasons) or attempt >= len(retry_delays):
            return events

        delay = retry_delays[attempt]
        attempt += 1
        logger.warning(
            "Backfill rate limited, retrying in %.1fs (attempt %d/%d)",
            delay,
            attempt,
            len(retry_delays),
        )
        if await _interruptible_sleep(delay, cancel):
            return events


async def backfill_gift_wraps(
    *,
    transport: RelayTransport,
    signer: Signer,
    store: MessageStore,
    user_pubkey: str,
    relays: list[str],
    processed_wrap_ids: set[str],
    cancel: asyncio.Event | None = None,
    page_size: int = DEFAULT_PAGE_SIZE,
    retry_delays: tuple[float, ...] = BACKFILL_RETRY_DELAYS,
    max_wait: float = QUERY_MAX_WAIT,
    on_message: Callable[[DecryptedMessage], Awaitable[None]] | None = None,
) -> BackfillResult:
    """Page through every wrap addressed to *user_pubkey*.

    Wrap ids already in *processed_wrap_ids* are skipped without decoding, and
    every id handled here is added to it.  Setting *cancel* stops between
    pages (and between events) with ``complete=False``.

    Marking the backfill complete in the store is left to the caller.
    """

    def fetch(until: int | None) -> asyncio.Future:
        return asyncio.ensure_future(
            query_with_retry(
                transport,
                relays,
                gift_wrap_filter(user_pubkey, until=until, limit=page_size),
                retry_delays=retry_delays,
                cancel=cancel,
                max_wait=max_wait,
            )
        )

    def cancelled() -> bool:
        return cancel is not None and cancel.is_set()

    logger.info("Backfill starting on %d relay(s), page size %d", len(relays), page_size)

    processed = 0
    decode_failures = 0
    duplicates = 0
    page = 0
    cursor: int | None = None

    next_fetch = fetch(None)
    try:
        events = await next_fetch
        while not cancelled():
            if not events:
                logger.debug("Backfill page %d empty (until=%s), done", page, cursor)
                break

            cursor = min(e.created_at for e in events) - 1
            logger.debug(
                "Backfill page %d: %d event(s), next until=%d", page, len(events), cursor
            )
            next_fetch = fetch(cursor)

            for event in events:
                if cancelled():
                    break
                if event.id in processed_wrap_ids:
                    continue
                processed_wrap_ids.add(event.id)

                outcome = await ingest_gift_wrap(signer, store, event)
                if outcome.status is IngestStatus.SAVED:
                    processed += 1
                    if on_message is not None:
                        try:
                            await on_message(outcome.message)
                        except Exception:
                            logger.exception(
                                "on_message callback failed for %s", outcome.message.id
                            )
                elif outcome.status is IngestStatus.DUPLICATE:
                    duplicates += 1
                else:
                    decode_failures += 1

            page += 1
            if cancelled():
                break
            events = await next_fetch
    finally:
        if not next_fetch.done():
            next_fetch.cancel()

    complete = not cancelled()
    logger.info(
        "Backfill %s: %d new message(s) across %d page(s), %d undecodable, %d duplicate",
        "complete" if complete else "cancelled",
        processed,
        page,
        decode_failures,
        duplicates,
    )
    return BackfillResult(
        complete=complete,
        events_processed=processed,
        pages=page,
        decode_failures=decode_failures,
        duplicates=duplicates,
    )
