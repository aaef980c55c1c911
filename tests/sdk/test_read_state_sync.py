"""Tests for cross-device read-state sync."""

from __future__ import annotations

import pytest

from privdm.protocol.readstate import (
    create_read_state_template,
    decrypt_read_state,
    encrypt_read_state,
)
from privdm.protocol.types import EventKind
from privdm.sdk.read_state_sync import ReadStateSync


@pytest.fixture()
def sync(transport, alice, store, relays):
    return ReadStateSync(transport, alice, store, relays, max_wait=1.0)


@pytest.fixture()
def remote_state(transport):
    """Put a read-state event authored by *signer* on the relays."""

    async def _publish(signer, state, created_at):
        ciphertext = await encrypt_read_state(signer, signer.pubkey, state)
        event = await signer.sign_event(create_read_state_template(ciphertext, created_at))
        transport.events.append(event)
        return event

    return _publish


class TestPull:
    async def test_nothing_remote(self, sync, store):
        assert await sync.pull() is None
        assert await store.get_read_state() == {}

    async def test_max_merge(self, sync, store, alice, remote_state):
        await store.mark_read("c1", 1000)
        await store.mark_read("c2", 900)
        await remote_state(alice, {"c1": 2000, "c2": 500, "c3": 10}, 100)

        merged = await sync.pull()

        assert merged == {"c1": 2000, "c2": 900, "c3": 10}
        assert await store.get_read_state() == merged

    async def test_newest_event_wins(self, sync, alice, remote_state):
        await remote_state(alice, {"c1": 1}, 100)
        await remote_state(alice, {"c1": 5}, 200)
        assert await sync.pull() == {"c1": 5}

    async def test_other_authors_ignored(self, sync, transport, bob, remote_state):
        forged = await remote_state(bob, {"c1": 99}, 100)
        transport.events.clear()
        transport.responses.append([forged])

        assert await sync.pull() is None

    async def test_undecryptable_payload_is_logged_not_raised(self, sync, transport, alice, caplog):
        event = await alice.sign_event(create_read_state_template("garbage", 100))
        transport.events.append(event)

        assert await sync.pull() is None
        assert "Read-state pull failed" in caplog.text


class TestPush:
    async def test_publishes_encrypted_map(self, sync, transport, alice, store, relays):
        await store.mark_read("c1", 1000)

        assert await sync.push() is True

        [(published_relays, event)] = transport.published
        assert published_relays == relays
        assert event.kind == EventKind.APP_DATA
        assert event.pubkey == alice.pubkey
        assert "c1" not in event.content
        assert await decrypt_read_state(alice, alice.pubkey, event.content) == {"c1": 1000}

    async def test_unchanged_state_not_republished(self, sync, transport, store):
        await store.mark_read("c1", 1000)
        assert await sync.push() is True
        assert await sync.push() is False
        await store.mark_read("c1", 2000)
        assert await sync.push() is True
        assert len(transport.published) == 2

    async def test_pulled_state_not_echoed(self, sync, transport, alice, remote_state):
        await remote_state(alice, {"c1": 1000}, 100)
        await sync.pull()
        assert await sync.push() is False
        assert transport.published == []

    async def test_merged_state_pushed_back(self, sync, transport, alice, store, remote_state):
        await store.mark_read("c2", 50)
        await remote_state(alice, {"c1": 1000}, 100)
        await sync.pull()
        assert await sync.push() is True

    async def test_rejected_everywhere_is_retried(self, sync, transport, store, relays):
        await store.mark_read("c1", 1000)
        transport.failing_relays.update(relays)
        assert await sync.push() is False

        transport.failing_relays.clear()
        assert await sync.push() is True
