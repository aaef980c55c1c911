"""privdm CLI -- private direct messages from the command line.

Thin wrapper around the Python SDK using click.
Each command runs one coroutine with ``asyncio.run``.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

import click

from privdm.protocol import PrivDMError, ReplyTo
from privdm.sdk.config import MessengerConfig
from privdm.sdk.key_manager import KeyManager
from privdm.sdk.message import DecryptedMessage
from privdm.sdk.messenger import Messenger


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _error(msg: str) -> None:
    """Print an error message to stderr and exit 1."""
    click.echo(msg, err=True)
    raise SystemExit(1)


def _config(ctx: click.Context) -> MessengerConfig:
    try:
        return MessengerConfig(name=ctx.obj["name"])
    except ValueError as exc:
        _error(f"Invalid configuration: {exc}")


def _require_identity(cfg: MessengerConfig) -> None:
    if not KeyManager(cfg.key_dir).exists(cfg.name):
        _error("No identity initialized. Run `privdm init` first.")


def _short(pubkey: str) -> str:
    return pubkey[:12]


def _format_time(ts: int) -> str:
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M")


def _format_message(msg: DecryptedMessage) -> str:
    return f"[{_format_time(msg.created_at)}] {_short(msg.sender_pubkey)}: {msg.content}"


def _run(coro):
    """Run *coro*, turning library errors into a one-line message."""
    try:
        return asyncio.run(coro)
    except PrivDMError as exc:
        _error(f"Error: {exc}")


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="privdm")
@click.option("--name", "-n", default="default", help="Identity profile name.")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def cli(ctx: click.Context, name: str, verbose: bool) -> None:
    """privdm -- private direct messages over relays."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["name"] = name


# ---------------------------------------------------------------------------
# privdm init / whoami
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--import-key", "secret_hex", default=None, help="Use an existing hex secret key.")
@click.pass_context
def init(ctx: click.Context, secret_hex: str | None) -> None:
    """Create (or import) the identity key for this profile."""
    cfg = _config(ctx)
    km = KeyManager(cfg.key_dir)

    try:
        if secret_hex is not None:
            km.import_key(cfg.name, secret_hex)
            click.echo(f"Imported identity: {km.public_key}")
        elif km.load_or_generate(cfg.name):
            click.echo(f"Initialized identity: {km.public_key}")
        else:
            click.echo(f"Identity already initialized: {km.public_key}")
    except PrivDMError as exc:
        _error(f"Error: {exc}")


@cli.command()
@click.pass_context
def whoami(ctx: click.Context) -> None:
    """Display this profile's public key (offline)."""
    cfg = _config(ctx)
    _require_identity(cfg)

    km = KeyManager(cfg.key_dir)
    km.load_or_generate(cfg.name)
    click.echo(f"Public key: {km.public_key}")
    click.echo(f"Key file:   {km.key_path(cfg.name)}")
    click.echo(f"Relays:     {', '.join(cfg.dm_relays)}")


# ---------------------------------------------------------------------------
# privdm send
# ---------------------------------------------------------------------------


async def _send(
    cfg: MessengerConfig,
    recipients: list[str],
    text: str,
    subject: str | None,
    reply_to: str | None,
):
    async with Messenger(config=cfg) as messenger:
        return await messenger.send(
            recipients,
            text,
            subject=subject,
            reply_to=ReplyTo(reply_to) if reply_to else None,
        )


@cli.command()
@click.argument("recipients", nargs=-1, required=True)
@click.option("--message", "-m", "text", required=True, help="Message text.")
@click.option("--subject", default=None, help="Conversation subject.")
@click.option("--reply-to", default=None, help="Id of the message being answered.")
@click.pass_context
def send(
    ctx: click.Context,
    recipients: tuple[str, ...],
    text: str,
    subject: str | None,
    reply_to: str | None,
) -> None:
    """Send a message to one or more public keys."""
    cfg = _config(ctx)
    _require_identity(cfg)

    result = _run(_send(cfg, list(recipients), text, subject, reply_to))
    click.echo(f"Message stored (id: {result.message.id})")
    for delivery in result.deliveries:
        accepted = sum(1 for r in delivery.results if r.ok)
        click.echo(f"  {_short(delivery.recipient)}: accepted by {accepted} relay(s)")
    if result.failed_recipients:
        for pubkey in result.failed_recipients:
            click.echo(f"No relay accepted the message for {pubkey}", err=True)
        raise SystemExit(1)


# ---------------------------------------------------------------------------
# privdm sync
# ---------------------------------------------------------------------------


async def _sync(cfg: MessengerConfig, duration: float) -> tuple[int, object]:
    received = 0

    async def on_message(msg: DecryptedMessage) -> None:
        nonlocal received
        received += 1
        click.echo(_format_message(msg))

    loop = asyncio.get_running_loop()
    async with Messenger(config=cfg, on_message=on_message) as messenger:
        deadline = loop.time() + duration
        await messenger.start()
        try:
            result = await asyncio.wait_for(
                asyncio.shield(messenger.wait_for_backfill()), timeout=duration
            )
        except asyncio.TimeoutError:
            result = None
        # Keep listening for the rest of the window
        await asyncio.sleep(max(0.0, deadline - loop.time()))
        await messenger.sync_read_state()
    return received, result


@cli.command()
@click.option(
    "--duration", "-d", default=30.0, show_default=True, help="Seconds to stay connected."
)
@click.pass_context
def sync(ctx: click.Context, duration: float) -> None:
    """Fetch history and listen for new messages."""
    cfg = _config(ctx)
    _require_identity(cfg)

    received, result = _run(_sync(cfg, duration))
    if result is not None and not result.complete:
        click.echo("History fetch did not finish; run sync again to resume.")
    click.echo(f"{received} new message(s).")


# ---------------------------------------------------------------------------
# privdm conversations / messages / read
# ---------------------------------------------------------------------------


async def _conversations(cfg: MessengerConfig):
    async with Messenger(config=cfg) as messenger:
        conversations = await messenger.conversations()
        unread = {c.id for c in await messenger.unread_conversations()}
        return conversations, unread


@cli.command()
@click.pass_context
def conversations(ctx: click.Context) -> None:
    """List conversations, most recent first."""
    cfg = _config(ctx)
    _require_identity(cfg)

    rows, unread = _run(_conversations(cfg))
    if not rows:
        click.echo("No conversations yet.")
        return

    for conv in rows:
        marker = "*" if conv.id in unread else " "
        click.echo(f"{marker} {conv.id}")
        click.echo(
            f"    {conv.message_count} message(s), last {_format_time(conv.last_message.created_at)}: "
            f"{conv.last_message.content[:60]}"
        )


async def _messages(cfg: MessengerConfig, conversation_id: str):
    async with Messenger(config=cfg) as messenger:
        return await messenger.messages(conversation_id)


@cli.command()
@click.argument("conversation_id")
@click.pass_context
def messages(ctx: click.Context, conversation_id: str) -> None:
    """Show the messages of one conversation, oldest first."""
    cfg = _config(ctx)
    _require_identity(cfg)

    rows = _run(_messages(cfg, conversation_id))
    if not rows:
        click.echo("No messages in this conversation.")
        return
    for msg in rows:
        click.echo(_format_message(msg))


async def _mark_read(cfg: MessengerConfig, conversation_id: str) -> bool:
    async with Messenger(config=cfg) as messenger:
        return await messenger.mark_read(conversation_id)


@cli.command()
@click.argument("conversation_id")
@click.pass_context
def read(ctx: click.Context, conversation_id: str) -> None:
    """Mark a conversation as read up to its latest message."""
    cfg = _config(ctx)
    _require_identity(cfg)

    if _run(_mark_read(cfg, conversation_id)):
        click.echo("Marked as read.")
    else:
        click.echo("Already read.")


# ---------------------------------------------------------------------------
# privdm logout
# ---------------------------------------------------------------------------


async def _logout(cfg: MessengerConfig) -> None:
    async with Messenger(config=cfg) as messenger:
        await messenger.logout()


@cli.command()
@click.confirmation_option(prompt="Erase all locally stored messages for this profile?")
@click.pass_context
def logout(ctx: click.Context) -> None:
    """Erase local message history (the identity key is kept)."""
    cfg = _config(ctx)
    _require_identity(cfg)

    _run(_logout(cfg))
    click.echo("Local history cleared.")


if __name__ == "__main__":
    cli()
