"""Tests for the encrypted read-state payload."""

from __future__ import annotations

import json

import pytest

from privdm.protocol.errors import DecodeError, DecryptionError
from privdm.protocol.readstate import (
    READ_STATE_D_TAG,
    create_read_state_template,
    decrypt_read_state,
    encrypt_read_state,
    read_state_filter,
)


class TestPayload:
    async def test_roundtrip(self, alice):
        state = {"a+b": 100, "a+c": 200}
        ciphertext = await encrypt_read_state(alice, alice.pubkey, state)
        assert await decrypt_read_state(alice, alice.pubkey, ciphertext) == state

    async def test_other_identity_cannot_read(self, alice, bob):
        ciphertext = await encrypt_read_state(alice, alice.pubkey, {"x": 1})
        with pytest.raises(DecryptionError):
            await decrypt_read_state(bob, bob.pubkey, ciphertext)

    async def test_non_integer_values_dropped(self, alice):
        payload = json.dumps({"ok": 5, "str": "5", "float": 1.5, "bool": True, "null": None})
        ciphertext = await alice.encrypt(alice.pubkey, payload)
        assert await decrypt_read_state(alice, alice.pubkey, ciphertext) == {"ok": 5}

    async def test_non_object_rejected(self, alice):
        ciphertext = await alice.encrypt(alice.pubkey, "[1, 2]")
        with pytest.raises(DecodeError):
            await decrypt_read_state(alice, alice.pubkey, ciphertext)


class TestEventShape:
    def test_template(self):
        template = create_read_state_template("ciphertext", created_at=123)
        assert template.kind == 30078
        assert template.tags == [["d", READ_STATE_D_TAG]]
        assert template.content == "ciphertext"
        assert template.created_at == 123

    def test_filter(self):
        assert read_state_filter("ab") == {
            "kinds": [30078],
            "authors": ["ab"],
            "#d": ["privdm/read-state"],
        }
