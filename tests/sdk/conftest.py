"""Shared fixtures for privdm SDK tests."""

from __future__ import annotations

import pytest

from privdm.protocol.conversation import get_conversation_id
from privdm.protocol.rumor import Recipient, create_rumor
from privdm.sdk.message import DecryptedMessage
from privdm.sdk.message_store import SQLiteMessageStore


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep tests away from the real ~/.privdm and any relay env vars."""
    monkeypatch.setenv("PRIVDM_HOME", str(tmp_path / ".privdm"))
    monkeypatch.delenv("PRIVDM_RELAYS", raising=False)
    monkeypatch.delenv("PRIVDM_METADATA_RELAYS", raising=False)


@pytest.fixture()
async def store(tmp_path):
    """An open SQLite message store in a temporary directory."""
    s = SQLiteMessageStore(tmp_path)
    await s.open()
    try:
        yield s
    finally:
        await s.close()


@pytest.fixture()
def make_message():
    """Build a DecryptedMessage with explicit timestamps."""

    def _make(
        sender: str = "a1" * 32,
        recipients: tuple[str, ...] = ("b2" * 32,),
        content: str = "hello",
        created_at: int = 1_700_000_000,
        wrap_id: str | None = None,
    ) -> DecryptedMessage:
        rumor = create_rumor(
            sender, [Recipient(r) for r in recipients], content, created_at=created_at
        )
        return DecryptedMessage(
            id=rumor.id,
            conversation_id=get_conversation_id(rumor),
            sender_pubkey=sender,
            content=content,
            created_at=created_at,
            rumor=rumor,
            wrap_id=wrap_id or f"wrap-{rumor.id[:16]}",
        )

    return _make
