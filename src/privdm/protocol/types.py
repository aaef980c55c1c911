"""Core types, constants, and utility functions for the privdm protocol."""

from __future__ import annotations

import base64
import secrets
import time
from enum import IntEnum


class EventKind(IntEnum):
    """Event kinds used by the direct-message envelope.

    Using ``IntEnum`` so that ``EventKind.GIFT_WRAP == 1059`` is True and
    kinds serialize as plain integers on the wire.
    """

    SEAL = 13
    CHAT_MESSAGE = 14
    GIFT_WRAP = 1059
    APP_DATA = 30078


ONE_DAY = 24 * 60 * 60
TWO_DAYS = 2 * ONE_DAY

# 2-day wrap timestamp randomization window + 1-day safety margin
THREE_DAYS = 3 * ONE_DAY

# Close reasons starting with this prefix are the relay's backpressure signal
RATE_LIMIT_PREFIX = "rate-limited:"


def now_seconds() -> int:
    """Return the current unix time in whole seconds."""
    return int(time.time())


def random_past_timestamp(now: int | None = None) -> int:
    """Return a timestamp uniformly drawn from the past two days.

    Seals and wraps are back-dated independently so that the visible
    timestamp on the wire says nothing about when the message was sent.
    """
    if now is None:
        now = now_seconds()
    return now - secrets.randbelow(TWO_DAYS)


def is_rate_limited(reasons: list[str] | tuple[str, ...]) -> bool:
    """Return True if any relay close reason carries the rate-limit marker."""
    return any(r and r.startswith(RATE_LIMIT_PREFIX) for r in reasons)


def b64_encode(data: bytes) -> str:
    """URL-safe base64 encode *data*, stripping padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64_decode(s: str) -> bytes:
    """URL-safe base64 decode *s*, tolerating missing padding."""
    padding = 4 - len(s) % 4
    if padding != 4:
        s += "=" * padding
    return base64.urlsafe_b64decode(s)
