"""Local-key signer backed by an in-memory Ed25519 signing key."""

from __future__ import annotations

from nacl.signing import SigningKey

from privdm.protocol.crypto import (
    decrypt_payload,
    encrypt_payload,
    public_key_hex,
    signing_key_from_hex,
)
from privdm.protocol.event import Event, EventTemplate, finalize_event
from privdm.protocol.signer import Signer


class LocalSigner(Signer):
    """Signer holding its secret key in process memory.

    Usage::

        signer = LocalSigner.generate()
        pubkey = await signer.get_public_key()
    """

    def __init__(self, signing_key: SigningKey) -> None:
        self._signing_key = signing_key
        self._pubkey = public_key_hex(signing_key)

    @classmethod
    def generate(cls) -> LocalSigner:
        return cls(SigningKey.generate())

    @classmethod
    def from_hex(cls, secret_hex: str) -> LocalSigner:
        """Build a signer from a hex-encoded 32-byte seed."""
        return cls(signing_key_from_hex(secret_hex))

    @property
    def pubkey(self) -> str:
        """Synchronous access to the hex identity (no I/O for local keys)."""
        return self._pubkey

    async def get_public_key(self) -> str:
        return self._pubkey

    async def sign_event(self, template: EventTemplate) -> Event:
        return finalize_event(template, self._signing_key)

    async def encrypt(self, peer_pubkey: str, plaintext: str) -> str:
        return encrypt_payload(plaintext, self._signing_key, peer_pubkey)

    async def decrypt(self, peer_pubkey: str, ciphertext: str) -> str:
        return decrypt_payload(ciphertext, self._signing_key, peer_pubkey)

    def __repr__(self) -> str:
        return f"LocalSigner(pubkey={self._pubkey!r})"
