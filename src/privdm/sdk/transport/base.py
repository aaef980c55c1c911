"""Abstract relay transport and the query helper built on it."""

from __future__ import annotations

import abc
import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

from privdm.protocol.event import Event

logger = logging.getLogger(__name__)

CLOSED_BY_CALLER = "closed by caller"


@dataclass
class SubscriptionHandlers:
    """Callbacks for one subscription.

    ``on_eose`` fires once every relay has sent its stored events.
    ``on_close`` fires exactly once, when every relay has closed, with the
    per-relay close reasons.
    """

    on_event: Callable[[Event], None]
    on_eose: Callable[[], None] | None = None
    on_close: Callable[[list[str]], None] | None = None


class Subscription(abc.ABC):
    """Handle to an open subscription."""

    @abc.abstractmethod
    def close(self, reason: str = CLOSED_BY_CALLER) -> None:
        """Close the subscription on every relay.  Idempotent."""


@dataclass(frozen=True)
class PublishResult:
    """Outcome of publishing one event to one relay."""

    relay: str
    ok: bool
    message: str = ""


class RelayTransport(abc.ABC):
    """What the messaging core needs from the relay network.

    Two operations: subscribe with a filter and receive events, and publish
    an event and learn which relays accepted it.
    """

    @abc.abstractmethod
    def subscribe(
        self,
        relays: list[str],
        filter: dict,
        handlers: SubscriptionHandlers,
    ) -> Subscription:
        """Open a subscription on *relays*.  Must be called from the event loop."""

    @abc.abstractmethod
    async def publish(self, relays: list[str], event: Event) -> list[PublishResult]:
        """Publish *event* to *relays*, one result per relay."""

    async def close(self) -> None:
        """Release connections.  No-op by default."""


async def collect_events(
    transport: RelayTransport,
    relays: list[str],
    filter: dict,
    *,
    max_wait: float = 15.0,
) -> tuple[list[Event], list[str]]:
    """Run a one-shot query: gather events until EOSE, close, or *max_wait*.

    Returns:
        ``(events, close_reasons)`` -- one reason per relay once the
        subscription has closed.  A relay that closed before the others sent
        EOSE keeps its own reason; the rest read ``closed by caller``.
    """
    loop = asyncio.get_running_loop()
    finished: asyncio.Future = loop.create_future()
    events: list[Event] = []
    close_reasons: list[str] = []

    def on_eose() -> None:
        if not finished.done():
            finished.set_result(None)

    def on_close(reasons: list[str]) -> None:
        # Also runs after EOSE, when the finally below closes the rest
        for reason in reasons:
            if reason and not reason.startswith(CLOSED_BY_CALLER):
                logger.warning("Relay closed subscription: %s", reason)
            close_reasons.append(reason)
        if not finished.done():
            finished.set_result(None)

    sub = transport.subscribe(
        relays,
        filter,
        SubscriptionHandlers(on_event=events.append, on_eose=on_eose, on_close=on_close),
    )
    try:
        await asyncio.wait_for(finished, timeout=max_wait)
    except asyncio.TimeoutError:
        logger.debug("Query timed out after %.1fs with %d events", max_wait, len(events))
    finally:
        sub.close()
    return events, close_reasons
