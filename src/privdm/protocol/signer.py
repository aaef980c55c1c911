"""Abstract signer capability consumed by the envelope codec."""

from __future__ import annotations

import abc

from privdm.protocol.event import Event, EventTemplate


class Signer(abc.ABC):
    """The opaque identity capability the codec requires.

    Backends may hold a local key or forward to a remote signer; the codec
    never inspects how these operations are carried out.  Implementations
    that talk to a remote service are responsible for bounding their own
    latency and should raise :class:`~privdm.protocol.errors.SignerError`
    when they cannot answer.  :meth:`decrypt` raises
    :class:`~privdm.protocol.errors.DecryptionError` when the ciphertext is
    not readable with this identity.
    """

    @abc.abstractmethod
    async def get_public_key(self) -> str:
        """Return the hex identity of this signer."""

    @abc.abstractmethod
    async def sign_event(self, template: EventTemplate) -> Event:
        """Author, id, and sign *template*."""

    @abc.abstractmethod
    async def encrypt(self, peer_pubkey: str, plaintext: str) -> str:
        """Encrypt *plaintext* under the pairwise key shared with *peer_pubkey*."""

    @abc.abstractmethod
    async def decrypt(self, peer_pubkey: str, ciphertext: str) -> str:
        """Decrypt *ciphertext* under the pairwise key shared with *peer_pubkey*."""
