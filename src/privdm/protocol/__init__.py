"""privdm protocol -- the pure, I/O-free envelope codec.

Public API re-exports for ``privdm.protocol``.
"""

from privdm.protocol.types import (
    EventKind,
    ONE_DAY,
    TWO_DAYS,
    THREE_DAYS,
    RATE_LIMIT_PREFIX,
    now_seconds,
    random_past_timestamp,
    is_rate_limited,
)

from privdm.protocol.errors import (
    PrivDMError,
    InvalidEventError,
    InvalidKeyError,
    SignatureError,
    SignatureVerificationError,
    EncryptionError,
    DecryptionError,
    DecodeError,
    SealVerificationError,
    AntiImpersonationError,
    SignerError,
    TransportError,
    StoreError,
)

from privdm.protocol.crypto import (
    generate_keypair,
    public_key_hex,
    secret_key_hex,
    signing_key_from_hex,
    verify_key_from_hex,
    compute_event_id,
    encrypt_payload,
    decrypt_payload,
)

from privdm.protocol.event import (
    Event,
    EventTemplate,
    finalize_event,
    verify_event,
    is_valid_event,
    to_wire_dict,
    from_wire_dict,
)

from privdm.protocol.rumor import Recipient, ReplyTo, Rumor, create_rumor
from privdm.protocol.conversation import (
    conversation_id_for,
    get_conversation_id,
    participants_of,
)
from privdm.protocol.signer import Signer
from privdm.protocol.giftwrap import (
    GiftWrapResult,
    create_seal,
    wrap_seal,
    wrap_rumor,
    create_gift_wraps,
    gift_wrap_filter,
)
from privdm.protocol.unwrap import (
    UnwrappedMessage,
    Decoded,
    Skipped,
    Failed,
    DecodeResult,
    unwrap_gift_wrap,
    decode_gift_wrap,
)
from privdm.protocol.readstate import (
    READ_STATE_D_TAG,
    ReadStateMap,
    encrypt_read_state,
    decrypt_read_state,
    create_read_state_template,
    read_state_filter,
)

__all__ = [
    # Types
    "EventKind",
    "ONE_DAY",
    "TWO_DAYS",
    "THREE_DAYS",
    "RATE_LIMIT_PREFIX",
    "now_seconds",
    "random_past_timestamp",
    "is_rate_limited",
    # Errors
    "PrivDMError",
    "InvalidEventError",
    "InvalidKeyError",
    "SignatureError",
    "SignatureVerificationError",
    "EncryptionError",
    "DecryptionError",
    "DecodeError",
    "SealVerificationError",
    "AntiImpersonationError",
    "SignerError",
    "TransportError",
    "StoreError",
    # Crypto
    "generate_keypair",
    "public_key_hex",
    "secret_key_hex",
    "signing_key_from_hex",
    "verify_key_from_hex",
    "compute_event_id",
    "encrypt_payload",
    "decrypt_payload",
    # Events
    "Event",
    "EventTemplate",
    "finalize_event",
    "verify_event",
    "is_valid_event",
    "to_wire_dict",
    "from_wire_dict",
    # Rumor / conversation
    "Recipient",
    "ReplyTo",
    "Rumor",
    "create_rumor",
    "conversation_id_for",
    "get_conversation_id",
    "participants_of",
    # Codec
    "Signer",
    "GiftWrapResult",
    "create_seal",
    "wrap_seal",
    "wrap_rumor",
    "create_gift_wraps",
    "gift_wrap_filter",
    "UnwrappedMessage",
    "Decoded",
    "Skipped",
    "Failed",
    "DecodeResult",
    "unwrap_gift_wrap",
    "decode_gift_wrap",
    # Read-state sync
    "READ_STATE_D_TAG",
    "ReadStateMap",
    "encrypt_read_state",
    "decrypt_read_state",
    "create_read_state_template",
    "read_state_filter",
]
