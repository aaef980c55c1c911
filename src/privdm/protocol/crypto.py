"""Cryptographic primitives for the privdm protocol.

Wraps PyNaCl (libsodium) for Ed25519 identities and signatures, and NaCl Box
over the Curve25519 conversions of those identities for pairwise encryption.

This module never hand-rolls crypto -- every operation delegates to PyNaCl.
"""

from __future__ import annotations

import hashlib
import json

import nacl.exceptions
from nacl.public import Box
from nacl.signing import SigningKey, VerifyKey

from privdm.protocol.errors import (
    DecryptionError,
    EncryptionError,
    InvalidKeyError,
    SignatureVerificationError,
)
from privdm.protocol.types import b64_decode, b64_encode


PAYLOAD_VERSION = 1
MIN_PLAINTEXT_SIZE = 1
MAX_PLAINTEXT_SIZE = 65535


# ---------------------------------------------------------------------------
# Key generation and serialization
# ---------------------------------------------------------------------------

def generate_keypair() -> tuple[SigningKey, VerifyKey]:
    """Generate an Ed25519 keypair.

    Returns:
        A ``(signing_key, verify_key)`` tuple.
    """
    sk = SigningKey.generate()
    return sk, sk.verify_key


def public_key_hex(key: SigningKey | VerifyKey) -> str:
    """Return the 64-character hex identity for a signing or verify key."""
    if isinstance(key, SigningKey):
        key = key.verify_key
    return key.encode().hex()


def secret_key_hex(key: SigningKey) -> str:
    """Serialize a signing key to hex (32-byte seed)."""
    return key.encode().hex()


def signing_key_from_hex(s: str) -> SigningKey:
    """Restore a signing key from its hex-encoded seed.

    Raises:
        InvalidKeyError: If *s* is not a 32-byte hex seed.
    """
    try:
        return SigningKey(bytes.fromhex(s.strip()))
    except (ValueError, nacl.exceptions.CryptoError) as exc:
        raise InvalidKeyError(f"Invalid secret key: {exc}") from exc


def verify_key_from_hex(s: str) -> VerifyKey:
    """Restore a verify key from its hex identity.

    Raises:
        InvalidKeyError: If *s* is not a 32-byte hex public key.
    """
    try:
        return VerifyKey(bytes.fromhex(s))
    except (ValueError, TypeError, nacl.exceptions.CryptoError) as exc:
        raise InvalidKeyError(f"Invalid public key: {exc}") from exc


# ---------------------------------------------------------------------------
# Canonical event id
# ---------------------------------------------------------------------------

def serialize_event(
    pubkey: str,
    created_at: int,
    kind: int,
    tags: list[list[str]],
    content: str,
) -> bytes:
    """Produce the canonical bytes an event id is computed over.

    A compact JSON array ``[0, pubkey, created_at, kind, tags, content]``
    with no whitespace, encoded as UTF-8.
    """
    return json.dumps(
        [0, pubkey, created_at, kind, tags, content],
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


def compute_event_id(
    pubkey: str,
    created_at: int,
    kind: int,
    tags: list[list[str]],
    content: str,
) -> str:
    """Return the hex SHA-256 content address of an event's canonical form."""
    return hashlib.sha256(
        serialize_event(pubkey, created_at, kind, tags, content)
    ).hexdigest()


# ---------------------------------------------------------------------------
# Signing and verification
# ---------------------------------------------------------------------------

def sign_event_id(event_id: str, signing_key: SigningKey) -> str:
    """Sign the raw bytes of *event_id* with *signing_key*.

    Returns:
        The 64-byte signature as hex.
    """
    return signing_key.sign(bytes.fromhex(event_id)).signature.hex()


def verify_event_signature(event_id: str, sig_hex: str, pubkey: str) -> None:
    """Verify an Ed25519 signature over an event id.

    Raises:
        SignatureVerificationError: If the key, id, or signature is malformed
            or the signature does not match.
    """
    try:
        verify_key = verify_key_from_hex(pubkey)
        verify_key.verify(bytes.fromhex(event_id), bytes.fromhex(sig_hex))
    except (InvalidKeyError, ValueError, nacl.exceptions.CryptoError) as exc:
        raise SignatureVerificationError(str(exc)) from exc


# ---------------------------------------------------------------------------
# Length padding
#
# Plaintext is length-prefixed and padded to a bucket size before encryption
# so ciphertext length reveals only a coarse size class.
# ---------------------------------------------------------------------------

def calc_padded_len(unpadded_len: int) -> int:
    """Return the bucket size a plaintext of *unpadded_len* bytes pads to."""
    if unpadded_len <= 32:
        return 32
    next_power = 1 << (unpadded_len - 1).bit_length()
    chunk = 32 if next_power <= 256 else next_power // 8
    return chunk * ((unpadded_len - 1) // chunk + 1)


def pad(plaintext: bytes) -> bytes:
    """Prefix *plaintext* with its u16 length and zero-pad it to its bucket.

    Raises:
        EncryptionError: If the plaintext is empty or longer than 65535 bytes.
    """
    size = len(plaintext)
    if size < MIN_PLAINTEXT_SIZE or size > MAX_PLAINTEXT_SIZE:
        raise EncryptionError(
            f"Plaintext size {size} outside {MIN_PLAINTEXT_SIZE}..{MAX_PLAINTEXT_SIZE} bytes"
        )
    return size.to_bytes(2, "big") + plaintext + bytes(calc_padded_len(size) - size)


def unpad(padded: bytes) -> bytes:
    """Inverse of :func:`pad`.

    Raises:
        DecryptionError: If the length prefix or padding is inconsistent.
    """
    if len(padded) < 2:
        raise DecryptionError("Padded payload too short")
    size = int.from_bytes(padded[:2], "big")
    body = padded[2:]
    if size < MIN_PLAINTEXT_SIZE or len(body) != calc_padded_len(size):
        raise DecryptionError("Invalid padding")
    return body[:size]


# ---------------------------------------------------------------------------
# Pairwise NaCl Box encryption
#
# Box(a_secret, b_public) and Box(b_secret, a_public) derive the same key,
# so either party decrypts with its own secret and the peer's public key.
# ---------------------------------------------------------------------------

def _pairwise_box(signing_key: SigningKey, peer_pubkey: str) -> Box:
    peer = verify_key_from_hex(peer_pubkey)
    return Box(
        signing_key.to_curve25519_private_key(),
        peer.to_curve25519_public_key(),
    )


def encrypt_payload(plaintext: str, signing_key: SigningKey, peer_pubkey: str) -> str:
    """Encrypt *plaintext* under the pairwise key of *signing_key* and *peer_pubkey*.

    Returns:
        URL-safe base64 of ``version || nonce || ciphertext``.

    Raises:
        EncryptionError: On a bad peer key, oversized plaintext, or libsodium error.
    """
    try:
        box = _pairwise_box(signing_key, peer_pubkey)
        ciphertext = box.encrypt(pad(plaintext.encode("utf-8")))
    except InvalidKeyError as exc:
        raise EncryptionError(str(exc)) from exc
    except nacl.exceptions.CryptoError as exc:
        raise EncryptionError(str(exc)) from exc
    return b64_encode(bytes([PAYLOAD_VERSION]) + bytes(ciphertext))


def decrypt_payload(payload: str, signing_key: SigningKey, peer_pubkey: str) -> str:
    """Decrypt a payload produced by :func:`encrypt_payload`.

    Returns:
        The original plaintext string.

    Raises:
        DecryptionError: On any failure (wrong keys, tampered data, bad
            encoding, unknown version).
    """
    try:
        raw = b64_decode(payload)
    except (ValueError, TypeError) as exc:
        raise DecryptionError(f"Invalid payload encoding: {exc}") from exc
    if not raw or raw[0] != PAYLOAD_VERSION:
        raise DecryptionError("Unknown payload version")
    try:
        box = _pairwise_box(signing_key, peer_pubkey)
        padded = box.decrypt(raw[1:])
    except InvalidKeyError as exc:
        raise DecryptionError(str(exc)) from exc
    except nacl.exceptions.CryptoError as exc:
        raise DecryptionError(str(exc)) from exc
    try:
        return unpad(padded).decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecryptionError("Payload is not valid UTF-8") from exc
