"""privdm exception hierarchy.

All package-specific exceptions inherit from :class:`PrivDMError`.

Only :class:`SignerError` and :class:`TransportError` describe conditions
worth reporting to a user.  Every :class:`DecodeError` is routine on a
shared relay ("not addressed to me" looks exactly like "corrupted") and
the pipelines skip such events silently.
"""

from __future__ import annotations


class PrivDMError(Exception):
    """Base exception for all privdm errors."""


class InvalidEventError(PrivDMError):
    """Raised when an event dict fails schema validation."""


class InvalidKeyError(PrivDMError):
    """Raised when a public or secret key cannot be parsed."""


class SignatureError(PrivDMError):
    """Raised on signing failures."""


class SignatureVerificationError(SignatureError):
    """Raised when an event id or signature does not verify."""


class EncryptionError(PrivDMError):
    """Raised on encryption failures."""


class DecryptionError(EncryptionError):
    """Raised on decryption failures (wrong key, tampered or malformed data)."""


class DecodeError(PrivDMError):
    """Raised when a gift wrap cannot be opened into a message."""


class SealVerificationError(DecodeError):
    """Raised when the seal inside a wrap carries an invalid signature."""


class AntiImpersonationError(DecodeError):
    """Raised when the seal author differs from the message author."""


class SignerError(PrivDMError):
    """Raised by a signer capability that could not complete an operation."""


class TransportError(PrivDMError):
    """Raised on relay publish/subscribe failures."""


class StoreError(PrivDMError):
    """Raised when the message store is used incorrectly (e.g. not open)."""
