"""Tests for privdm.protocol.errors module."""

from __future__ import annotations

import pytest

from privdm.protocol.errors import (
    AntiImpersonationError,
    DecodeError,
    DecryptionError,
    EncryptionError,
    InvalidEventError,
    InvalidKeyError,
    PrivDMError,
    SealVerificationError,
    SignatureError,
    SignatureVerificationError,
    SignerError,
    StoreError,
    TransportError,
)


class TestHierarchy:
    @pytest.mark.parametrize(
        "exc",
        [
            InvalidEventError,
            InvalidKeyError,
            SignatureError,
            EncryptionError,
            DecodeError,
            SignerError,
            TransportError,
            StoreError,
        ],
    )
    def test_is_privdm_error(self, exc):
        assert issubclass(exc, PrivDMError)

    def test_signature_verification_is_signature_error(self):
        assert issubclass(SignatureVerificationError, SignatureError)

    def test_decryption_is_encryption_error(self):
        assert issubclass(DecryptionError, EncryptionError)

    def test_seal_verification_is_decode_error(self):
        assert issubclass(SealVerificationError, DecodeError)

    def test_anti_impersonation_is_decode_error(self):
        assert issubclass(AntiImpersonationError, DecodeError)

    def test_signer_error_is_not_decode_error(self):
        assert not issubclass(SignerError, DecodeError)


class TestMessages:
    def test_message_preserved(self):
        assert str(SealVerificationError("seal signature verification failed")) == (
            "seal signature verification failed"
        )

    def test_no_message(self):
        assert str(PrivDMError()) == ""


class TestCatchability:
    def test_catch_anti_impersonation_as_decode_error(self):
        with pytest.raises(DecodeError):
            raise AntiImpersonationError("test")

    def test_catch_decryption_as_encryption_error(self):
        with pytest.raises(EncryptionError):
            raise DecryptionError("test")
