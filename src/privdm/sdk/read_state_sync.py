"""Cross-device read-state sync over an encrypted app-data event.

Best effort in both directions: failures are logged and the local store
stays authoritative.
"""

from __future__ import annotations

import asyncio
import json
import logging

from privdm.protocol.errors import PrivDMError
from privdm.protocol.readstate import (
    ReadStateMap,
    create_read_state_template,
    decrypt_read_state,
    encrypt_read_state,
    read_state_filter,
)
from privdm.protocol.signer import Signer
from privdm.sdk.message_store import MessageStore
from privdm.sdk.transport.base import RelayTransport, collect_events

logger = logging.getLogger(__name__)


class ReadStateSync:
    """Pulls the remote read-state map into the store and pushes local changes."""

    def __init__(
        self,
        transport: RelayTransport,
        signer: Signer,
        store: MessageStore,
        relays: list[str],
        *,
        max_wait: float = 15.0,
    ) -> None:
        self._transport = transport
        self._signer = signer
        self._store = store
        self._relays = relays
        self._max_wait = max_wait
        self._last_pushed = ""

    async def pull(self) -> ReadStateMap | None:
        """Fetch the newest remote map and max-merge it into the store.

        Returns the merged map, or ``None`` if nothing was found or the
        fetch failed.
        """
        try:
            pubkey = await self._signer.get_public_key()
            events, _ = await collect_events(
                self._transport,
                self._relays,
                read_state_filter(pubkey),
                max_wait=self._max_wait,
            )
            events = [e for e in events if e.pubkey == pubkey]
            if not events:
                logger.debug("No remote read state found")
                return None
            newest = max(events, key=lambda e: e.created_at)
            remote = await decrypt_read_state(self._signer, pubkey, newest.content)
            merged = await self._store.bulk_merge_read_state(remote)
        except (PrivDMError, asyncio.TimeoutError) as exc:
            logger.warning("Read-state pull failed: %s", exc)
            return None
        # What we just merged is already on the relays
        self._last_pushed = json.dumps(merged, sort_keys=True) if merged == remote else ""
        return merged

    async def push(self) -> bool:
        """Publish the local map unless it is unchanged since the last push."""
        current = await self._store.get_read_state()
        serialized = json.dumps(current, sort_keys=True)
        if serialized == self._last_pushed:
            return False

        try:
            pubkey = await self._signer.get_public_key()
            ciphertext = await encrypt_read_state(self._signer, pubkey, current)
            event = await self._signer.sign_event(create_read_state_template(ciphertext))
            results = await self._transport.publish(self._relays, event)
        except (PrivDMError, asyncio.TimeoutError) as exc:
            logger.warning("Read-state push failed: %s", exc)
            return False

        if not any(r.ok for r in results):
            logger.warning("No relay accepted the read-state update")
            return False
        self._last_pushed = serialized
        logger.debug("Pushed read state (%d conversation(s))", len(current))
        return True
