"""Messenger configuration via dataclass (no pydantic -- instant construction)."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_DM_RELAYS = [
    "wss://relay.damus.io",
    "wss://nos.lol",
    "wss://inbox.nostr.wine",
    "wss://auth.nostr1.com",
    "wss://relay.primal.net",
]

DEFAULT_METADATA_RELAYS = [
    "wss://purplepag.es",
    "wss://user.kindpag.es",
    "wss://relay.nos.social",
    "wss://relay.damus.io",
    "wss://relay.primal.net",
]


def _split_relays(value: str) -> list[str]:
    return [r.strip() for r in value.split(",") if r.strip()]


@dataclass
class MessengerConfig:
    """Configuration for a :class:`~privdm.sdk.messenger.Messenger`.

    All fields have sensible defaults.  Relay lists can be overridden via
    environment variables (``PRIVDM_RELAYS``, ``PRIVDM_METADATA_RELAYS``) or
    constructor arguments.

    Priority (highest wins): constructor arg > env var > config.toml > default.
    """

    name: str = "default"
    dm_relays: list[str] | None = None
    metadata_relays: list[str] | None = None
    data_dir: Path | str | None = None
    key_dir: Path | str | None = None
    page_size: int | None = None
    backfill_freshness: int = 24 * 60 * 60
    rate_limit_restart_delay: float = 5.0
    backfill_retry_delays: tuple[float, ...] = (2.0, 4.0, 8.0)
    query_max_wait: float = 15.0
    publish_timeout: float = 10.0

    def __post_init__(self) -> None:
        # PRIVDM_HOME env var overrides ~/.privdm (useful for testing / isolation).
        privdm_home = os.getenv("PRIVDM_HOME")
        default_home = Path(privdm_home) if privdm_home else Path.home() / ".privdm"

        self.data_dir = Path(self.data_dir) if self.data_dir is not None else default_home
        self.key_dir = (
            Path(self.key_dir) if self.key_dir is not None else Path(self.data_dir) / "keys"
        )

        # Load optional config.toml (lowest priority -- only fills unset fields)
        config_path = Path(self.data_dir) / "config.toml"
        if config_path.exists():
            self._load_config_file(config_path)

        if self.dm_relays is None:
            env_relays = os.getenv("PRIVDM_RELAYS")
            self.dm_relays = _split_relays(env_relays) if env_relays else list(DEFAULT_DM_RELAYS)

        if self.metadata_relays is None:
            env_meta = os.getenv("PRIVDM_METADATA_RELAYS") or os.getenv("PRIVDM_RELAYS")
            self.metadata_relays = (
                _split_relays(env_meta) if env_meta else list(DEFAULT_METADATA_RELAYS)
            )

        if self.page_size is None:
            self.page_size = 100

        self._validate()

    def _validate(self) -> None:
        if not self.dm_relays:
            raise ValueError("dm_relays must contain at least one relay URL")
        for url in [*self.dm_relays, *self.metadata_relays]:
            if not url.startswith(("ws://", "wss://")):
                raise ValueError(f"Invalid relay URL '{url}': must start with ws:// or wss://")
        if self.page_size < 1:
            raise ValueError(f"page_size must be positive, got {self.page_size}")
        if self.backfill_freshness < 0:
            raise ValueError("backfill_freshness must not be negative")

    def _load_config_file(self, path: Path) -> None:
        """Load optional config.toml, applying values for fields still unset."""
        try:
            import tomllib
        except ModuleNotFoundError:
            import tomli as tomllib  # type: ignore[no-redef]  # Python 3.10 fallback

        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except Exception:
            logger.warning("Failed to load config file %s", path, exc_info=True)
            return

        relays = data.get("relays", {})
        # Environment variables outrank the file
        if self.dm_relays is None and "dm" in relays and not os.getenv("PRIVDM_RELAYS"):
            self.dm_relays = list(relays["dm"])
        if (
            self.metadata_relays is None
            and "metadata" in relays
            and not (os.getenv("PRIVDM_METADATA_RELAYS") or os.getenv("PRIVDM_RELAYS"))
        ):
            self.metadata_relays = list(relays["metadata"])

        backfill = data.get("backfill", {})
        if self.page_size is None and "page_size" in backfill:
            self.page_size = int(backfill["page_size"])
