"""Tests for privdm.protocol.event -- finalize, verify, wire format."""

from __future__ import annotations

from dataclasses import replace

import pytest
from nacl.signing import SigningKey

from privdm.protocol.crypto import public_key_hex
from privdm.protocol.errors import InvalidEventError, SignatureVerificationError
from privdm.protocol.event import (
    EventTemplate,
    finalize_event,
    from_wire_dict,
    is_valid_event,
    to_wire_dict,
    verify_event,
)


@pytest.fixture()
def signing_key() -> SigningKey:
    return SigningKey.generate()


@pytest.fixture()
def event(signing_key):
    return finalize_event(
        EventTemplate(kind=1059, content="opaque", tags=[["p", "ab" * 32]], created_at=1000),
        signing_key,
    )


class TestFinalize:
    def test_fields(self, event, signing_key):
        assert event.pubkey == public_key_hex(signing_key)
        assert event.created_at == 1000
        assert event.kind == 1059
        assert len(event.id) == 64
        assert len(event.sig) == 128

    def test_missing_created_at_is_stamped(self, signing_key):
        ev = finalize_event(EventTemplate(kind=1, content="x"), signing_key)
        assert ev.created_at > 1_600_000_000

    def test_tag_values(self, event):
        assert event.tag_values("p") == ["ab" * 32]
        assert event.tag_values("e") == []


class TestVerify:
    def test_valid(self, event):
        verify_event(event)
        assert is_valid_event(event)

    def test_altered_content_fails(self, event):
        tampered = replace(event, content="other")
        with pytest.raises(SignatureVerificationError, match="id"):
            verify_event(tampered)
        assert not is_valid_event(tampered)

    def test_reassigned_author_fails(self, event):
        other = public_key_hex(SigningKey.generate())
        tampered = replace(event, pubkey=other)
        assert not is_valid_event(tampered)

    def test_signature_from_other_key_fails(self, event):
        forged = finalize_event(
            EventTemplate(kind=event.kind, content=event.content, tags=event.tags,
                          created_at=event.created_at),
            SigningKey.generate(),
        )
        assert not is_valid_event(replace(event, sig=forged.sig))


class TestWireFormat:
    def test_roundtrip(self, event):
        assert from_wire_dict(to_wire_dict(event)) == event

    def test_missing_field(self, event):
        d = to_wire_dict(event)
        del d["sig"]
        with pytest.raises(InvalidEventError, match="sig"):
            from_wire_dict(d)

    def test_wrong_types(self, event):
        d = to_wire_dict(event)
        d["created_at"] = "1000"
        with pytest.raises(InvalidEventError):
            from_wire_dict(d)

    def test_bool_is_not_an_int(self, event):
        d = to_wire_dict(event)
        d["kind"] = True
        with pytest.raises(InvalidEventError):
            from_wire_dict(d)

    def test_malformed_tags(self, event):
        d = to_wire_dict(event)
        d["tags"] = [["p", 5]]
        with pytest.raises(InvalidEventError, match="tag"):
            from_wire_dict(d)

    def test_not_a_dict(self):
        with pytest.raises(InvalidEventError):
            from_wire_dict(["EVENT"])
