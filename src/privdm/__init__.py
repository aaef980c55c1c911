"""privdm -- private direct messages over gift-wrapped relay events.

Top-level convenience re-exports::

    from privdm import Messenger, DecryptedMessage
    from privdm.protocol import create_gift_wraps, unwrap_gift_wrap  # codec functions
"""

__version__ = "0.1.0"

from privdm.sdk.messenger import Messenger
from privdm.sdk.message import DecryptedMessage

__all__ = ["__version__", "Messenger", "DecryptedMessage"]
