"""Identity key generation, storage, and loading.

Keys live in ``<key_dir>/<name>.key`` (hex seed, mode 600) with the public
identity alongside in ``<name>.pub``.
"""

from __future__ import annotations

import os
import platform
import stat
import warnings
from pathlib import Path

from nacl.signing import SigningKey

from privdm.protocol import (
    generate_keypair,
    public_key_hex,
    secret_key_hex,
    signing_key_from_hex,
)
from privdm.sdk.signer import LocalSigner


class KeyManager:
    """Manages the local identity key for a named profile.

    First-run: generates a key, writes it to disk, sets 600 permissions.
    Returning user: loads from disk, warns if permissions are too permissive.
    """

    def __init__(self, key_dir: Path | str) -> None:
        self._key_dir = Path(key_dir)
        self._signing_key: SigningKey | None = None

    @property
    def signing_key(self) -> SigningKey:
        """Access the loaded signing key.  Raises if not loaded."""
        if self._signing_key is None:
            raise RuntimeError("No key loaded. Call load_or_generate() first.")
        return self._signing_key

    @property
    def public_key(self) -> str:
        """Hex identity of the loaded key."""
        return public_key_hex(self.signing_key)

    def key_path(self, name: str) -> Path:
        return self._key_dir / f"{name}.key"

    def exists(self, name: str) -> bool:
        return self.key_path(name).exists()

    def load_or_generate(self, name: str) -> bool:
        """Load the key for *name*, generating one on first run.

        Returns:
            ``True`` if a new key was generated.
        """
        self._key_dir.mkdir(parents=True, exist_ok=True)
        key_path = self.key_path(name)

        if key_path.exists():
            self._check_permissions(key_path)
            self._signing_key = signing_key_from_hex(key_path.read_text())
            return False

        self._signing_key, _ = generate_keypair()
        key_path.write_text(secret_key_hex(self._signing_key))
        self._set_permissions(key_path)
        (self._key_dir / f"{name}.pub").write_text(self.public_key)
        return True

    def import_key(self, name: str, secret_hex: str) -> None:
        """Store an existing hex seed under *name*, replacing any previous key."""
        self._key_dir.mkdir(parents=True, exist_ok=True)
        self._signing_key = signing_key_from_hex(secret_hex)
        key_path = self.key_path(name)
        key_path.write_text(secret_key_hex(self._signing_key))
        self._set_permissions(key_path)
        (self._key_dir / f"{name}.pub").write_text(self.public_key)

    def signer(self) -> LocalSigner:
        """Return a :class:`LocalSigner` for the loaded key."""
        return LocalSigner(self.signing_key)

    def _set_permissions(self, path: Path) -> None:
        if platform.system() != "Windows":
            os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)

    def _check_permissions(self, path: Path) -> None:
        if platform.system() == "Windows":
            return  # Cannot reliably check on Windows
        mode = path.stat().st_mode & 0o777
        if mode != 0o600:
            warnings.warn(
                f"Key file {path} has permissions {oct(mode)} (expected 0o600). "
                f"Run: chmod 600 {path}",
                stacklevel=2,
            )
