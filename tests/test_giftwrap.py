"""Tests for seal and gift-wrap construction."""

from __future__ import annotations

import json

from privdm.protocol.event import from_wire_dict, is_valid_event
from privdm.protocol.giftwrap import (
    create_gift_wraps,
    create_seal,
    gift_wrap_filter,
    wrap_rumor,
    wrap_seal,
)
from privdm.protocol.rumor import Recipient, ReplyTo, create_rumor
from privdm.protocol.types import TWO_DAYS, now_seconds


async def _open_wrap(signer, wrap):
    """Peel the wrap layer by hand and return the seal event."""
    return from_wire_dict(json.loads(await signer.decrypt(wrap.pubkey, wrap.content)))


class TestSeal:
    async def test_seal_is_signed_by_sender_with_no_tags(self, alice, bob):
        rumor = create_rumor(alice.pubkey, [Recipient(bob.pubkey)], "hi")
        seal = await create_seal(alice, rumor, bob.pubkey)
        assert seal.kind == 13
        assert seal.pubkey == alice.pubkey
        assert seal.tags == []
        assert is_valid_event(seal)

    async def test_seal_timestamp_is_in_the_past_window(self, alice, bob):
        rumor = create_rumor(alice.pubkey, [Recipient(bob.pubkey)], "hi")
        seal = await create_seal(alice, rumor, bob.pubkey)
        now = now_seconds()
        assert now - TWO_DAYS < seal.created_at <= now

    async def test_seal_content_decrypts_to_rumor(self, alice, bob):
        rumor = create_rumor(alice.pubkey, [Recipient(bob.pubkey)], "hi")
        seal = await create_seal(alice, rumor, bob.pubkey)
        plaintext = await bob.decrypt(alice.pubkey, seal.content)
        assert json.loads(plaintext) == rumor.to_dict()


class TestWrap:
    async def test_wrap_uses_ephemeral_key(self, alice, bob):
        rumor = create_rumor(alice.pubkey, [Recipient(bob.pubkey)], "hi")
        seal = await create_seal(alice, rumor, bob.pubkey)
        w1 = wrap_seal(seal, bob.pubkey)
        w2 = wrap_seal(seal, bob.pubkey)
        assert w1.kind == 1059
        assert w1.pubkey not in (alice.pubkey, bob.pubkey)
        assert w1.pubkey != w2.pubkey
        assert w1.tags == [["p", bob.pubkey]]
        assert is_valid_event(w1)

    async def test_wrap_carries_the_seal(self, alice, bob):
        rumor = create_rumor(alice.pubkey, [Recipient(bob.pubkey)], "hi")
        seal = await create_seal(alice, rumor, bob.pubkey)
        wrap = wrap_seal(seal, bob.pubkey)
        assert await _open_wrap(bob, wrap) == seal


class TestCreateGiftWraps:
    async def test_one_wrap_per_recipient_plus_self(self, alice, bob, carol):
        result = await create_gift_wraps(
            alice, [Recipient(bob.pubkey), Recipient(carol.pubkey)], "group hello"
        )
        assert len(result.wraps) == 2
        assert result.wraps[0].tag_values("p") == [bob.pubkey]
        assert result.wraps[1].tag_values("p") == [carol.pubkey]
        assert result.self_wrap.tag_values("p") == [alice.pubkey]
        assert result.rumor.content == "group hello"

    async def test_wrap_timestamps_are_randomised(self, alice, bob):
        now = now_seconds()
        result = await create_gift_wraps(alice, [Recipient(bob.pubkey)], "hi")
        for wrap in (*result.wraps, result.self_wrap):
            assert now - TWO_DAYS < wrap.created_at <= now_seconds()
        # The rumor keeps the real creation time
        assert result.rumor.created_at >= now

    async def test_options_reach_the_rumor(self, alice, bob):
        result = await create_gift_wraps(
            alice,
            [Recipient(bob.pubkey)],
            "re",
            reply_to=ReplyTo("ee" * 32),
            subject="Topic",
        )
        assert result.rumor.subject == "Topic"
        assert result.rumor.reply_to == ReplyTo("ee" * 32)

    async def test_wrap_rumor_keeps_message_id(self, alice, bob):
        rumor = create_rumor(alice.pubkey, [Recipient(bob.pubkey)], "optimistic")
        result = await wrap_rumor(alice, rumor, [Recipient(bob.pubkey)])
        assert result.rumor.id == rumor.id
        seal = await _open_wrap(bob, result.wraps[0])
        inner = json.loads(await bob.decrypt(seal.pubkey, seal.content))
        assert inner["id"] == rumor.id


class TestFilter:
    def test_minimal(self):
        assert gift_wrap_filter("ab") == {"kinds": [1059], "#p": ["ab"]}

    def test_all_bounds(self):
        f = gift_wrap_filter("ab", since=10, until=20, limit=5)
        assert f == {"kinds": [1059], "#p": ["ab"], "since": 10, "until": 20, "limit": 5}
