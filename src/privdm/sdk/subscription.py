"""Live gift-wrap subscription with strictly sequential processing.

Relay callbacks only enqueue.  A single drain task pops events one at a time
and runs decode + store for each before looking at the next, so store writes
happen in arrival order and never overlap.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import random
from collections import deque
from typing import Awaitable, Callable, Iterable

from privdm.protocol.event import Event
from privdm.protocol.giftwrap import gift_wrap_filter
from privdm.protocol.signer import Signer
from privdm.protocol.types import THREE_DAYS, is_rate_limited, now_seconds
from privdm.sdk.ingest import IngestStatus, ingest_gift_wrap
from privdm.sdk.message import DecryptedMessage
from privdm.sdk.message_store import MessageStore
from privdm.sdk.transport.base import (
    CLOSED_BY_CALLER,
    RelayTransport,
    Subscription,
    SubscriptionHandlers,
)

logger = logging.getLogger(__name__)

RATE_LIMIT_RESTART_DELAY = 5.0

# Reconnection constants
BASE_DELAY = 1.0    # Initial delay in seconds
MAX_DELAY = 60.0    # Maximum delay cap
JITTER_RANGE = 1.0  # Random jitter 0 to JITTER_RANGE


class SubscriptionState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    RESTARTING = "restarting"
    STOPPED = "stopped"


class GiftWrapSubscription:
    """Long-lived subscription to wraps addressed to one identity.

    Usage::

        live = GiftWrapSubscription(transport, signer, store, on_message=notify)
        live.seed_processed_wrap_ids(await store.get_wrap_ids())
        live.start(my_pubkey, relays, since=since)
        ...
        await live.stop()
    """

    def __init__(
        self,
        transport: RelayTransport,
        signer: Signer,
        store: MessageStore,
        *,
        on_message: Callable[[DecryptedMessage], Awaitable[None]] | None = None,
        restart_delay: float = RATE_LIMIT_RESTART_DELAY,
    ) -> None:
        self._transport = transport
        self._signer = signer
        self._store = store
        self._on_message = on_message
        self._restart_delay = restart_delay

        self.state = SubscriptionState.IDLE
        self._sub: Subscription | None = None
        self._generation = 0
        self._user_pubkey: str | None = None
        self._relays: list[str] = []
        self._since: int | None = None
        self._restart_handle: asyncio.TimerHandle | None = None
        self._reconnect_attempt = 0

        self._queue: deque[Event] = deque()
        self._processed: set[str] = set()
        self._draining = False
        self._drain_task: asyncio.Task | None = None
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def is_running(self) -> bool:
        return self.state is SubscriptionState.RUNNING

    @property
    def processed_count(self) -> int:
        return len(self._processed)

    @property
    def processed_wrap_ids(self) -> set[str]:
        """The live dedup set.  Shared by reference with backfill."""
        return self._processed

    def seed_processed_wrap_ids(self, wrap_ids: Iterable[str]) -> None:
        """Mark already-stored wraps as seen before the first subscribe."""
        self._processed.update(wrap_ids)

    # -- Lifecycle -----------------------------------------------------------

    def start(self, user_pubkey: str, relays: list[str], since: int | None = None) -> None:
        """Open the subscription, replacing any current one.

        Queued events are dropped; the dedup set is kept.
        """
        self._user_pubkey = user_pubkey
        self._relays = list(relays)
        self._since = since
        self._queue.clear()
        self._open()
        logger.info(
            "Live subscription started on %d relay(s) (since=%s)", len(self._relays), since
        )

    def restart(self) -> None:
        """Resubscribe with the since floor recomputed from the current time."""
        if self._user_pubkey is None or self.state is SubscriptionState.STOPPED:
            return
        self._since = now_seconds() - THREE_DAYS
        self._queue.clear()
        self._open()
        logger.info("Live subscription restarted (since=%s)", self._since)

    async def stop(self) -> None:
        """Close the subscription and forget every seen wrap id.

        Queued events are discarded.  An event already being processed is
        allowed to finish first.
        """
        self._generation += 1
        self._cancel_restart()
        if self._sub is not None:
            self._sub.close()
            self._sub = None
        self._queue.clear()
        await self._idle.wait()
        self._processed.clear()
        self.state = SubscriptionState.STOPPED
        logger.info("Live subscription stopped")

    async def wait_idle(self) -> None:
        """Wait until the queue is empty and nothing is in flight."""
        await self._idle.wait()

    def _open(self) -> None:
        # Bumping the generation first makes the old subscription's close a no-op
        self._generation += 1
        generation = self._generation
        self._cancel_restart()
        if self._sub is not None:
            self._sub.close()
            self._sub = None

        self.state = SubscriptionState.RUNNING
        self._sub = self._transport.subscribe(
            self._relays,
            gift_wrap_filter(self._user_pubkey, since=self._since),
            SubscriptionHandlers(
                on_event=lambda event: self._on_event(generation, event),
                on_close=lambda reasons: self._on_close(generation, reasons),
            ),
        )

    def _cancel_restart(self) -> None:
        if self._restart_handle is not None:
            self._restart_handle.cancel()
            self._restart_handle = None

    def _schedule_restart(self, delay: float) -> None:
        generation = self._generation
        self.state = SubscriptionState.RESTARTING
        self._restart_handle = asyncio.get_running_loop().call_later(
            delay, self._scheduled_restart, generation
        )

    def _scheduled_restart(self, generation: int) -> None:
        self._restart_handle = None
        if generation != self._generation:
            return
        self.restart()

    def _reconnect_delay(self) -> float:
        delay = min(BASE_DELAY * (2 ** self._reconnect_attempt), MAX_DELAY)
        self._reconnect_attempt += 1
        return delay + random.uniform(0, JITTER_RANGE)

    # -- Relay callbacks -----------------------------------------------------

    def _on_close(self, generation: int, reasons: list[str]) -> None:
        if generation != self._generation or self.state is not SubscriptionState.RUNNING:
            return
        self._sub = None

        for reason in reasons:
            if reason and not reason.startswith(CLOSED_BY_CALLER):
                logger.warning("Relay closed gift-wrap subscription: %s", reason)

        if is_rate_limited(reasons):
            logger.warning("Rate limited, restarting in %.1fs", self._restart_delay)
            self._schedule_restart(self._restart_delay)
            return

        if reasons and all(r.startswith(CLOSED_BY_CALLER) for r in reasons):
            self.state = SubscriptionState.IDLE
            return

        delay = self._reconnect_delay()
        logger.warning(
            "Lost all relays, reconnecting in %.1fs (attempt %d)",
            delay,
            self._reconnect_attempt,
        )
        self._schedule_restart(delay)

    def _on_event(self, generation: int, event: Event) -> None:
        if generation != self._generation:
            return
        self._reconnect_attempt = 0
        self._queue.append(event)
        if not self._draining:
            self._draining = True
            self._idle.clear()
            self._drain_task = asyncio.get_running_loop().create_task(self._drain())

    # -- Queue drain ---------------------------------------------------------

    async def _drain(self) -> None:
        try:
            while self._queue:
                event = self._queue.popleft()
                if event.id in self._processed:
                    logger.debug("Wrap %s already processed", event.id)
                    continue
                self._processed.add(event.id)
                await self._process(event)
        finally:
            self._draining = False
            self._drain_task = None
            self._idle.set()

    async def _process(self, event: Event) -> None:
        try:
            outcome = await ingest_gift_wrap(self._signer, self._store, event)
        except Exception:
            logger.exception("Failed to store message from wrap %s", event.id)
            return

        if outcome.status is IngestStatus.SAVED and self._on_message is not None:
            try:
                await self._on_message(outcome.message)
            except Exception:
                logger.exception("on_message callback failed for %s", outcome.message.id)
