"""
Session store — durable holder of the single Xero credential bundle.

Every write replaces the whole bundle; there is no partial-update API.
The file-backed store writes to a temporary sibling file and renames it over
the target, so readers observe either the previous bundle or the new one in
full, never a mix.

Optional at-rest encryption uses Fernet with a key derived from a per-install
salt and the host name, the same scheme as machine-bound token storage:
the session is then only readable on the host that wrote it.
"""

from __future__ import annotations

import asyncio
import base64
import copy
import json
import logging
import os
import socket
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from xeropay.auth.tokens import CredentialBundle
from xeropay.errors import NotInitialized, SessionStoreError

logger = logging.getLogger("xeropay.auth.session_store")


# ---------------------------------------------------------------------------
# Encryption helpers
# ---------------------------------------------------------------------------

def _derive_key(salt_file: Path) -> bytes:
    """Derive a Fernet key from a stored salt and the host name."""
    if salt_file.exists():
        salt = salt_file.read_bytes()
    else:
        salt = os.urandom(16)
        salt_file.parent.mkdir(parents=True, exist_ok=True)
        salt_file.write_bytes(salt)
        salt_file.chmod(0o600)

    password = socket.gethostname().encode() + b"xeropay-v1"
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=480000,
    )
    return base64.urlsafe_b64encode(kdf.derive(password))


# ---------------------------------------------------------------------------
# Store contract
# ---------------------------------------------------------------------------

class SessionStore(ABC):
    """Single-slot durable store for the credential bundle.

    Implementations must guarantee that ``load`` after a completed ``save``
    returns the saved bundle in full.
    """

    @abstractmethod
    async def load(self) -> CredentialBundle:
        """Return the persisted bundle.

        Raises:
            NotInitialized: If no bundle has ever been saved.
            SessionStoreError: If the stored record is unreadable.
        """
        ...

    @abstractmethod
    async def save(self, bundle: CredentialBundle) -> None:
        """Replace the persisted bundle with ``bundle``."""
        ...

    @abstractmethod
    async def exists(self) -> bool:
        """Check whether a bundle has been persisted."""
        ...


class InMemorySessionStore(SessionStore):
    """Process-local store. Keeps a private copy of the serialized bundle."""

    def __init__(self, bundle: CredentialBundle | None = None) -> None:
        self._data: dict[str, Any] | None = None
        self.save_count = 0
        if bundle is not None:
            self._data = copy.deepcopy(bundle.to_dict())

    async def load(self) -> CredentialBundle:
        if self._data is None:
            raise NotInitialized()
        return CredentialBundle.from_dict(copy.deepcopy(self._data))

    async def save(self, bundle: CredentialBundle) -> None:
        self._data = copy.deepcopy(bundle.to_dict())
        self.save_count += 1

    async def exists(self) -> bool:
        return self._data is not None


class JSONFileSessionStore(SessionStore):
    """Stores the bundle as a human-readable JSON file (or Fernet-encrypted).

    Usage::

        store = JSONFileSessionStore(Path("./data/xeroSession"))
        await store.save(bundle)
        bundle = await store.load()
    """

    def __init__(self, path: Path | str, *, encrypt: bool = False) -> None:
        self.path = Path(path)
        self.encrypt = encrypt
        self._fernet: Fernet | None = None

    @property
    def _salt_file(self) -> Path:
        return self.path.with_name(f".{self.path.name}.salt")

    def _cipher(self) -> Fernet:
        if self._fernet is None:
            self._fernet = Fernet(_derive_key(self._salt_file))
        return self._fernet

    # ------------------------------------------------------------------
    # Sync primitives (run in a worker thread)
    # ------------------------------------------------------------------

    def _read(self) -> CredentialBundle:
        try:
            content = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise NotInitialized() from None
        except OSError as e:
            raise SessionStoreError(f"Could not read session file {self.path}: {e.strerror}") from e

        if self.encrypt:
            try:
                content = self._cipher().decrypt(content.encode()).decode()
            except InvalidToken as e:
                raise SessionStoreError(
                    f"Session file {self.path} could not be decrypted on this host"
                ) from e

        try:
            return CredentialBundle.from_dict(json.loads(content))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise SessionStoreError(f"Session file {self.path} is corrupt: {e}") from e

    def _write(self, bundle: CredentialBundle) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        content = json.dumps(bundle.to_dict(), indent="\t")
        if self.encrypt:
            content = self._cipher().encrypt(content.encode()).decode()

        fd, tmp_name = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise SessionStoreError(f"Could not write session file {self.path}: {e.strerror}") from e

    # ------------------------------------------------------------------
    # Async API
    # ------------------------------------------------------------------

    async def load(self) -> CredentialBundle:
        bundle = await asyncio.to_thread(self._read)
        logger.debug("Loaded session from %s", self.path)
        return bundle

    async def save(self, bundle: CredentialBundle) -> None:
        await asyncio.to_thread(self._write, bundle)
        logger.debug("Saved session to %s", self.path)

    async def exists(self) -> bool:
        return await asyncio.to_thread(self.path.exists)
