"""Messenger -- the primary SDK interface.

Composes identity, relay transport, message store, the live subscription,
the backfill engine, and read-state sync into one object.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from privdm.protocol import (
    PrivDMError,
    Recipient,
    ReplyTo,
    Signer,
    THREE_DAYS,
    create_rumor,
    get_conversation_id,
    now_seconds,
    wrap_rumor,
)
from privdm.sdk.backfill import BackfillResult, backfill_gift_wraps
from privdm.sdk.config import MessengerConfig
from privdm.sdk.key_manager import KeyManager
from privdm.sdk.message import Conversation, DecryptedMessage
from privdm.sdk.message_store import MessageStore, SQLiteMessageStore
from privdm.sdk.read_state_sync import ReadStateSync
from privdm.sdk.subscription import GiftWrapSubscription, SubscriptionState
from privdm.sdk.transport.base import PublishResult, RelayTransport
from privdm.sdk.transport.websocket import RelayPool

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecipientDelivery:
    """Publish outcome for the wrap addressed to one identity."""

    recipient: str
    wrap_id: str
    results: list[PublishResult] = field(default_factory=list)

    @property
    def delivered(self) -> bool:
        return any(r.ok for r in self.results)


@dataclass(frozen=True)
class SendResult:
    message: DecryptedMessage
    deliveries: list[RecipientDelivery]
    self_delivery: RecipientDelivery

    @property
    def failed_recipients(self) -> list[str]:
        """Recipients whose wrap no relay accepted."""
        return [d.recipient for d in self.deliveries if not d.delivered]


class Messenger:
    """A private direct-messaging client for one identity.

    Usage::

        messenger = Messenger("alice")
        await messenger.connect()
        await messenger.start()
        result = await messenger.send([bob_pubkey], "Hello Bob!")
        conversations = await messenger.conversations()
        await messenger.close()

    Async context manager::

        async with Messenger("alice") as messenger:
            print(messenger.public_key)
    """

    def __init__(
        self,
        name: str = "default",
        *,
        config: MessengerConfig | None = None,
        signer: Signer | None = None,
        transport: RelayTransport | None = None,
        store: MessageStore | None = None,
        on_message: Callable[[DecryptedMessage], Awaitable[None]] | None = None,
    ) -> None:
        """Create a Messenger.  No I/O happens here -- call ``connect()`` to initialize."""
        self._config = config or MessengerConfig(name=name)
        self._signer = signer
        self._transport = transport
        self._store = store
        self._owns_transport = transport is None
        self._owns_store = store is None
        self._on_message = on_message

        self._public_key: str | None = None
        self._connected = False
        self._live: GiftWrapSubscription | None = None
        self._read_sync: ReadStateSync | None = None
        self._backfill_task: asyncio.Task | None = None
        self._backfill_cancel: asyncio.Event | None = None

    # -- Properties ----------------------------------------------------------

    @property
    def config(self) -> MessengerConfig:
        return self._config

    @property
    def public_key(self) -> str:
        """Hex identity of this messenger."""
        if self._public_key is None:
            raise RuntimeError("Messenger not yet connected. Call await messenger.connect() first.")
        return self._public_key

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def store(self) -> MessageStore:
        self._ensure_connected()
        return self._store

    @property
    def live(self) -> GiftWrapSubscription:
        self._ensure_connected()
        return self._live

    # -- Lifecycle -----------------------------------------------------------

    async def connect(self) -> None:
        """Load the identity, open the store, prepare the pipelines.

        Idempotent -- calling twice is safe.
        """
        if self._connected:
            return

        if self._signer is None:
            key_manager = KeyManager(self._config.key_dir)
            if key_manager.load_or_generate(self._config.name):
                logger.info("Generated new identity for profile '%s'", self._config.name)
            self._signer = key_manager.signer()
        self._public_key = await self._signer.get_public_key()

        if self._store is None:
            # One database per profile, beside its <name>.key
            self._store = SQLiteMessageStore(
                self._config.data_dir, filename=f"{self._config.name}.db"
            )
        if self._owns_store:
            await self._store.open()

        if self._transport is None:
            self._transport = RelayPool(publish_timeout=self._config.publish_timeout)

        self._live = GiftWrapSubscription(
            self._transport,
            self._signer,
            self._store,
            on_message=self._dispatch,
            restart_delay=self._config.rate_limit_restart_delay,
        )
        self._read_sync = ReadStateSync(
            self._transport,
            self._signer,
            self._store,
            self._config.metadata_relays,
            max_wait=self._config.query_max_wait,
        )
        self._connected = True

    async def close(self) -> None:
        """Stop the pipelines and release what this messenger opened."""
        if not self._connected:
            return
        try:
            await self.stop()
        finally:
            if self._owns_transport:
                await self._transport.close()
            if self._owns_store:
                await self._store.close()
            self._connected = False

    async def __aenter__(self) -> Messenger:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _ensure_connected(self) -> None:
        if not self._connected:
            raise RuntimeError("Messenger not connected. Call connect() first.")

    async def _dispatch(self, message: DecryptedMessage) -> None:
        if self._on_message is not None:
            await self._on_message(message)

    # -- Receiving -----------------------------------------------------------

    async def start(self, *, backfill: bool = True) -> None:
        """Start the live subscription and, unless history is fresh, a backfill.

        The live ``since`` floor is the store's floor, but never later than
        three days ago, so the timestamp randomisation window is always
        covered.
        """
        self._ensure_connected()
        self._live.seed_processed_wrap_ids(await self._store.get_wrap_ids())

        floor = now_seconds() - THREE_DAYS
        since = await self._store.get_since_timestamp()
        since = floor if since is None else min(since, floor)
        self._live.start(self.public_key, self._config.dm_relays, since=since)

        if not backfill:
            return
        if self._backfill_task is not None and not self._backfill_task.done():
            logger.debug("Backfill already running")
            return
        if await self._store.is_backfill_fresh(self._config.backfill_freshness):
            logger.info("Backfill completed recently, skipping")
            return
        self._backfill_cancel = asyncio.Event()
        self._backfill_task = asyncio.create_task(self._run_backfill(self._backfill_cancel))

    async def _run_backfill(self, cancel: asyncio.Event) -> BackfillResult | None:
        try:
            return await self.backfill(cancel=cancel)
        except PrivDMError as exc:
            logger.warning("Backfill failed: %s", exc)
            return None

    async def backfill(self, *, cancel: asyncio.Event | None = None) -> BackfillResult:
        """Run one backfill now, sharing the live dedup set.

        On completion the store is marked fresh and conversations that have
        never been read are marked read at their latest message.
        """
        self._ensure_connected()
        result = await backfill_gift_wraps(
            transport=self._transport,
            signer=self._signer,
            store=self._store,
            user_pubkey=self.public_key,
            relays=self._config.dm_relays,
            processed_wrap_ids=self._live.processed_wrap_ids,
            cancel=cancel,
            page_size=self._config.page_size,
            retry_delays=self._config.backfill_retry_delays,
            max_wait=self._config.query_max_wait,
            on_message=self._dispatch,
        )
        if result.complete:
            await self._store.set_backfill_complete()
            await self._mark_history_read()
        return result

    async def wait_for_backfill(self) -> BackfillResult | None:
        """Wait for the background backfill started by :meth:`start`, if any."""
        if self._backfill_task is None:
            return None
        return await self._backfill_task

    async def _mark_history_read(self) -> None:
        read_state = await self._store.get_read_state()
        for conversation in await self._store.load_conversations():
            if conversation.id not in read_state:
                await self._store.mark_read(
                    conversation.id, conversation.last_message.created_at
                )

    async def stop(self) -> None:
        """Cancel a running backfill, then stop the live subscription."""
        try:
            await self._cancel_backfill()
        finally:
            if self._live is not None and self._live.state is not SubscriptionState.IDLE:
                await self._live.stop()

    async def _cancel_backfill(self) -> None:
        task, cancel = self._backfill_task, self._backfill_cancel
        self._backfill_task = None
        self._backfill_cancel = None
        if task is None:
            return
        cancel.set()
        try:
            await task
        except Exception:
            logger.exception("Background backfill failed")

    async def logout(self) -> None:
        """Stop everything and erase this identity's local history."""
        self._ensure_connected()
        await self.stop()
        await self._store.clear()
        logger.info("Local message history cleared")

    # -- Sending -------------------------------------------------------------

    async def send(
        self,
        recipients: list[str | Recipient],
        body: str,
        *,
        reply_to: str | ReplyTo | None = None,
        subject: str | None = None,
    ) -> SendResult:
        """Send *body* to *recipients*.

        The message is stored before anything is published, and the
        conversation is marked read at its timestamp.  Publishing failures
        are reported per recipient in the result and never raised.
        """
        self._ensure_connected()
        recipient_list = [r if isinstance(r, Recipient) else Recipient(r) for r in recipients]
        if not recipient_list:
            raise ValueError("At least one recipient is required")
        if isinstance(reply_to, str):
            reply_to = ReplyTo(reply_to)

        rumor = create_rumor(
            self.public_key, recipient_list, body, reply_to=reply_to, subject=subject
        )
        message = DecryptedMessage(
            id=rumor.id,
            conversation_id=get_conversation_id(rumor),
            sender_pubkey=self.public_key,
            content=body,
            created_at=rumor.created_at,
            rumor=rumor,
            wrap_id=f"optimistic-{rumor.id}",
        )
        await self._store.save_message(message, rumor.created_at)
        await self._store.mark_read(message.conversation_id, rumor.created_at)

        wrapped = await wrap_rumor(self._signer, rumor, recipient_list)

        publishes = [
            self._deliver(recipient.pubkey, wrap, self._relays_for(recipient))
            for recipient, wrap in zip(recipient_list, wrapped.wraps)
        ]
        publishes.append(
            self._deliver(self.public_key, wrapped.self_wrap, list(self._config.dm_relays))
        )
        *deliveries, self_delivery = await asyncio.gather(*publishes)

        result = SendResult(message=message, deliveries=deliveries, self_delivery=self_delivery)
        if result.failed_recipients:
            logger.warning(
                "Message %s reached no relay for %d recipient(s)",
                message.id,
                len(result.failed_recipients),
            )
        return result

    def _relays_for(self, recipient: Recipient) -> list[str]:
        relays = list(self._config.dm_relays)
        if recipient.relay_hint and recipient.relay_hint not in relays:
            relays.append(recipient.relay_hint)
        return relays

    async def _deliver(self, recipient: str, wrap, relays: list[str]) -> RecipientDelivery:
        try:
            results = await self._transport.publish(relays, wrap)
        except PrivDMError as exc:
            logger.warning("Publishing wrap %s failed: %s", wrap.id, exc)
            results = [PublishResult(relay, False, str(exc)) for relay in relays]
        return RecipientDelivery(recipient=recipient, wrap_id=wrap.id, results=results)

    # -- History and read state ----------------------------------------------

    async def conversations(self) -> list[Conversation]:
        self._ensure_connected()
        return await self._store.load_conversations()

    async def messages(self, conversation_id: str) -> list[DecryptedMessage]:
        self._ensure_connected()
        return await self._store.load_messages(conversation_id)

    async def mark_read(self, conversation_id: str, timestamp: int | None = None) -> bool:
        """Mark *conversation_id* read up to *timestamp* (default: its latest message)."""
        self._ensure_connected()
        if timestamp is None:
            messages = await self._store.load_messages(conversation_id)
            timestamp = messages[-1].created_at if messages else now_seconds()
        return await self._store.mark_read(conversation_id, timestamp)

    async def unread_conversations(self) -> list[Conversation]:
        """Conversations with a newer message from someone else than the read mark."""
        self._ensure_connected()
        read_state = await self._store.get_read_state()
        return [
            c
            for c in await self._store.load_conversations()
            if c.last_message.sender_pubkey != self.public_key
            and c.last_message.created_at > read_state.get(c.id, 0)
        ]

    async def sync_read_state(self) -> None:
        """Pull the remote read state, merge it, then push the result back."""
        self._ensure_connected()
        await self._read_sync.pull()
        await self._read_sync.push()
