"""Multi-relay WebSocket client speaking the relay REQ/EVENT/CLOSE protocol.

One connection per relay URL is opened lazily and shared by every
subscription and publish that targets it.  Reconnection is left to the
callers: when a connection drops, each subscription using it receives a
``connection closed`` reason and the live pipeline decides whether to restart.
"""

from __future__ import annotations

import asyncio
import json
import logging
import secrets

import websockets
from websockets.asyncio.client import connect

from privdm.protocol.errors import InvalidEventError, SignatureVerificationError, TransportError
from privdm.protocol.event import Event, from_wire_dict, to_wire_dict, verify_event
from privdm.sdk.transport.base import (
    CLOSED_BY_CALLER,
    PublishResult,
    RelayTransport,
    Subscription,
    SubscriptionHandlers,
)

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 10.0
PUBLISH_TIMEOUT = 10.0

_CONNECT_ERRORS = (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException)


class PoolSubscription(Subscription):
    """A subscription spanning several relays.

    Events are signature-checked and deduplicated by id across relays before
    they reach ``on_event``.
    """

    def __init__(
        self,
        pool: RelayPool,
        sub_id: str,
        relays: list[str],
        handlers: SubscriptionHandlers,
    ) -> None:
        self.id = sub_id
        self._pool = pool
        self._relays = list(dict.fromkeys(relays))
        self._handlers = handlers
        self._open: set[str] = set(self._relays)
        self._pending_eose: set[str] = set(self._relays)
        self._reasons: dict[str, str] = {}
        self._seen: set[str] = set()
        self._eosed = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self, reason: str = CLOSED_BY_CALLER) -> None:
        if self._closed:
            return
        for relay in list(self._open):
            self._pool._send_close(relay, self.id)
            self._reasons[relay] = reason
        self._open.clear()
        self._finish()

    # -- Called by relay connections ----------------------------------------

    def _relay_event(self, relay: str, raw: dict) -> None:
        if self._closed:
            return
        try:
            event = from_wire_dict(raw)
            verify_event(event)
        except (InvalidEventError, SignatureVerificationError) as exc:
            logger.debug("Dropped invalid event from %s: %s", relay, exc)
            return
        if event.id in self._seen:
            return
        self._seen.add(event.id)
        self._handlers.on_event(event)

    def _relay_eose(self, relay: str) -> None:
        self._pending_eose.discard(relay)
        self._maybe_eose()

    def _relay_closed(self, relay: str, reason: str) -> None:
        if relay not in self._open:
            return
        self._open.discard(relay)
        self._pending_eose.discard(relay)
        self._reasons[relay] = reason
        if self._open:
            self._maybe_eose()
        else:
            self._finish()

    def _maybe_eose(self) -> None:
        if self._eosed or self._pending_eose or self._closed:
            return
        self._eosed = True
        if self._handlers.on_eose:
            self._handlers.on_eose()

    def _finish(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._handlers.on_close:
            self._handlers.on_close([self._reasons.get(r, "") for r in self._relays])


class RelayConnection:
    """A single relay WebSocket shared by the pool."""

    def __init__(self, url: str, *, connect_timeout: float = CONNECT_TIMEOUT) -> None:
        self.url = url
        self._connect_timeout = connect_timeout
        self._ws: websockets.asyncio.client.ClientConnection | None = None
        self._reader_task: asyncio.Task | None = None
        self._lock = asyncio.Lock()
        self._subs: dict[str, PoolSubscription] = {}
        self._ok_waiters: dict[str, asyncio.Future] = {}

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def ensure_connected(self) -> None:
        async with self._lock:
            if self._ws is not None:
                return
            self._ws = await connect(
                self.url,
                ping_interval=20,
                ping_timeout=20,
                open_timeout=self._connect_timeout,
            )
            self._reader_task = asyncio.create_task(self._read_loop(self._ws))
            logger.info("Connected to relay %s", self.url)

    async def send(self, frame: list) -> None:
        if self._ws is None:
            raise TransportError(f"Relay {self.url} not connected")
        await self._ws.send(json.dumps(frame, separators=(",", ":"), ensure_ascii=False))

    def register(self, sub: PoolSubscription) -> None:
        self._subs[sub.id] = sub

    def unregister(self, sub_id: str) -> bool:
        return self._subs.pop(sub_id, None) is not None

    def expect_ok(self, event_id: str) -> asyncio.Future:
        waiter = asyncio.get_running_loop().create_future()
        self._ok_waiters[event_id] = waiter
        return waiter

    def discard_ok(self, event_id: str) -> None:
        self._ok_waiters.pop(event_id, None)

    async def _read_loop(self, ws) -> None:
        reason = "connection closed"
        try:
            async for raw_text in ws:
                try:
                    msg = json.loads(raw_text)
                except ValueError:
                    logger.debug("Ignoring non-JSON frame from %s", self.url)
                    continue
                await self._handle_message(msg)
        except websockets.exceptions.ConnectionClosed as exc:
            reason = f"connection closed: {exc}"
        finally:
            if self._ws is ws:
                self._ws = None
            self._drop_all(reason)

    def _drop_all(self, reason: str) -> None:
        subs = list(self._subs.values())
        self._subs.clear()
        for sub in subs:
            sub._relay_closed(self.url, reason)
        for waiter in self._ok_waiters.values():
            if not waiter.done():
                waiter.set_exception(TransportError(f"{self.url}: {reason}"))
        self._ok_waiters.clear()

    async def _handle_message(self, msg) -> None:
        """Route incoming relay frames by type."""
        if not isinstance(msg, list) or not msg:
            return
        msg_type = msg[0]

        if msg_type == "EVENT" and len(msg) >= 3:
            sub = self._subs.get(msg[1])
            if sub is not None:
                sub._relay_event(self.url, msg[2])

        elif msg_type == "EOSE" and len(msg) >= 2:
            sub = self._subs.get(msg[1])
            if sub is not None:
                sub._relay_eose(self.url)

        elif msg_type == "CLOSED" and len(msg) >= 2:
            sub = self._subs.pop(msg[1], None)
            if sub is not None:
                sub._relay_closed(self.url, msg[2] if len(msg) > 2 else "")

        elif msg_type == "OK" and len(msg) >= 3:
            waiter = self._ok_waiters.pop(msg[1], None)
            if waiter is not None and not waiter.done():
                waiter.set_result((bool(msg[2]), msg[3] if len(msg) > 3 else ""))

        elif msg_type == "NOTICE":
            logger.info("Relay %s notice: %s", self.url, msg[1] if len(msg) > 1 else "")

        elif msg_type == "AUTH":
            logger.debug("Relay %s requested authentication (not supported)", self.url)

    async def close(self) -> None:
        if self._reader_task is not None:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        self._drop_all(CLOSED_BY_CALLER)


class RelayPool(RelayTransport):
    """:class:`RelayTransport` over one WebSocket per relay.

    Usage::

        pool = RelayPool()
        sub = pool.subscribe(relays, filter, SubscriptionHandlers(on_event=print))
        results = await pool.publish(relays, event)
        await pool.close()
    """

    def __init__(
        self,
        *,
        connect_timeout: float = CONNECT_TIMEOUT,
        publish_timeout: float = PUBLISH_TIMEOUT,
    ) -> None:
        self._connect_timeout = connect_timeout
        self._publish_timeout = publish_timeout
        self._connections: dict[str, RelayConnection] = {}
        self._tasks: set[asyncio.Task] = set()

    def _connection(self, url: str) -> RelayConnection:
        conn = self._connections.get(url)
        if conn is None:
            conn = RelayConnection(url, connect_timeout=self._connect_timeout)
            self._connections[url] = conn
        return conn

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # -- Subscriptions -------------------------------------------------------

    def subscribe(
        self,
        relays: list[str],
        filter: dict,
        handlers: SubscriptionHandlers,
    ) -> PoolSubscription:
        sub = PoolSubscription(self, secrets.token_hex(8), relays, handlers)
        for url in sub._relays:
            self._spawn(self._open_on(url, sub, filter))
        return sub

    async def _open_on(self, url: str, sub: PoolSubscription, filter: dict) -> None:
        conn = self._connection(url)
        try:
            await conn.ensure_connected()
            if sub.closed:
                return
            conn.register(sub)
            await conn.send(["REQ", sub.id, filter])
        except (*_CONNECT_ERRORS, TransportError) as exc:
            conn.unregister(sub.id)
            logger.warning("Cannot subscribe on %s: %s", url, exc)
            sub._relay_closed(url, f"connection failed: {exc}")

    def _send_close(self, url: str, sub_id: str) -> None:
        conn = self._connections.get(url)
        if conn is None or not conn.unregister(sub_id) or not conn.connected:
            return
        self._spawn(self._send_quietly(conn, ["CLOSE", sub_id]))

    async def _send_quietly(self, conn: RelayConnection, frame: list) -> None:
        try:
            await conn.send(frame)
        except (*_CONNECT_ERRORS, TransportError) as exc:
            logger.debug("Failed to send %s to %s: %s", frame[0], conn.url, exc)

    # -- Publishing ----------------------------------------------------------

    async def publish(self, relays: list[str], event: Event) -> list[PublishResult]:
        urls = list(dict.fromkeys(relays))
        return list(await asyncio.gather(*(self._publish_one(url, event) for url in urls)))

    async def _publish_one(self, url: str, event: Event) -> PublishResult:
        conn = self._connection(url)
        try:
            await conn.ensure_connected()
            waiter = conn.expect_ok(event.id)
            await conn.send(["EVENT", to_wire_dict(event)])
            ok, message = await asyncio.wait_for(waiter, timeout=self._publish_timeout)
        except asyncio.TimeoutError:
            logger.warning("Relay %s did not acknowledge event %s", url, event.id)
            return PublishResult(url, False, "timed out waiting for OK")
        except (*_CONNECT_ERRORS, TransportError) as exc:
            logger.warning("Publish to %s failed: %s", url, exc)
            return PublishResult(url, False, str(exc))
        finally:
            conn.discard_ok(event.id)

        if not ok:
            logger.warning("Relay %s rejected event %s: %s", url, event.id, message)
        return PublishResult(url, ok, message)

    async def close(self) -> None:
        """Close every relay connection."""
        for task in list(self._tasks):
            task.cancel()
        for conn in list(self._connections.values()):
            await conn.close()
        self._connections.clear()
