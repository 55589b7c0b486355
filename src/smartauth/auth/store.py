"""
Credentials store: the single owner of the on-disk credentials file.

One ``CredentialsStore`` is created per process with :func:`init_store`
and shared by reference with every authenticator. Besides file access it
holds the per-profile locks and the in-flight login registry, so separate
authenticator instances for the same profile serialize through it.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
import threading
import weakref
from pathlib import Path
from typing import Any, Awaitable, Callable

from smartauth.auth.credentials import Credentials
from smartauth.exceptions import ConfigurationError, StoreCorrupt

logger = logging.getLogger("smartauth.auth.store")


class CredentialsStore:
    """Loads and atomically saves profile -> credentials in one JSON file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()
        self._file_lock = threading.Lock()
        self._profile_locks: weakref.WeakKeyDictionary[
            asyncio.AbstractEventLoop, dict[str, asyncio.Lock]
        ] = weakref.WeakKeyDictionary()
        self._logins: dict[str, asyncio.Task[Credentials]] = {}

    def __repr__(self) -> str:
        return f"CredentialsStore(path={str(self.path)!r})"

    # ------------------------------------------------------------------
    # File access
    # ------------------------------------------------------------------

    def _read_raw(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}

        try:
            content = self.path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise StoreCorrupt(str(self.path), f"not UTF-8 text ({e})") from e
        if not content.strip():
            return {}

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise StoreCorrupt(str(self.path), f"invalid JSON ({e})") from e

        if not isinstance(data, dict):
            raise StoreCorrupt(str(self.path), "top level is not an object")
        return data

    def _write_raw(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".credentials.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=4, sort_keys=True)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    @staticmethod
    def _parse_entry(path: Path, profile: str, entry: Any) -> Credentials:
        if not isinstance(entry, dict):
            raise StoreCorrupt(str(path), f"entry for profile '{profile}' is not an object")
        try:
            return Credentials.from_dict(entry)
        except (KeyError, TypeError, ValueError) as e:
            raise StoreCorrupt(str(path), f"entry for profile '{profile}' is invalid ({e})") from e

    def load(self, profile: str) -> Credentials | None:
        """Return the stored credentials for ``profile``, or None.

        Raises:
            StoreCorrupt: If the file exists but cannot be parsed.
        """
        with self._file_lock:
            data = self._read_raw()
        if profile not in data:
            return None
        return self._parse_entry(self.path, profile, data[profile])

    def load_all(self) -> dict[str, Credentials]:
        """Return credentials for every stored profile."""
        with self._file_lock:
            data = self._read_raw()
        return {name: self._parse_entry(self.path, name, entry) for name, entry in data.items()}

    def save(self, profile: str, credentials: Credentials) -> None:
        """Store ``credentials`` under ``profile``, keeping all other profiles."""
        with self._file_lock:
            data = self._read_raw()
            data[profile] = credentials.to_dict()
            self._write_raw(data)
        logger.debug("Saved credentials for profile '%s' to %s", profile, self.path)

    def delete(self, profile: str) -> bool:
        """Remove ``profile`` from the file.

        Returns:
            True if credentials were removed, False if none were stored.
        """
        with self._file_lock:
            data = self._read_raw()
            if profile not in data:
                return False
            del data[profile]
            self._write_raw(data)
        logger.info("Deleted credentials for profile '%s'", profile)
        return True

    # ------------------------------------------------------------------
    # Per-profile coordination
    # ------------------------------------------------------------------

    def lock(self, profile: str) -> asyncio.Lock:
        """Get or create the lock guarding refresh/login for ``profile``.

        Locks are kept per running event loop, so a store reused across
        several ``asyncio.run`` calls never hands out a lock bound to a
        loop that has already finished.
        """
        loop = asyncio.get_running_loop()
        with self._file_lock:
            locks = self._profile_locks.setdefault(loop, {})
            if profile not in locks:
                locks[profile] = asyncio.Lock()
            return locks[profile]

    def last_login(self, profile: str) -> asyncio.Task[Credentials] | None:
        """Return the most recent login task for ``profile``, finished or not."""
        return self._logins.get(profile)

    def login_in_flight(self, profile: str) -> asyncio.Task[Credentials] | None:
        """Return the login currently running for ``profile``, if any."""
        task = self._logins.get(profile)
        if task is None or task.done():
            return None
        return task

    def login_task(
        self, profile: str, start: Callable[[], Awaitable[Credentials]]
    ) -> asyncio.Task[Credentials]:
        """Return the login in flight for ``profile``, starting one if there is none."""
        task = self.login_in_flight(profile)
        if task is not None:
            logger.debug("Joining login already in progress for profile '%s'", profile)
            return task

        task = asyncio.ensure_future(start())
        self._logins[profile] = task
        return task


# ---------------------------------------------------------------------------
# Process-wide store
# ---------------------------------------------------------------------------

_store: CredentialsStore | None = None


def init_store(path: str | Path) -> CredentialsStore:
    """Set the process-wide credentials file. Calling again replaces the store."""
    global _store
    _store = CredentialsStore(path)
    logger.debug("Credentials file set to %s", _store.path)
    return _store


def get_store() -> CredentialsStore:
    """Return the process-wide store.

    Raises:
        ConfigurationError: If :func:`init_store` has not been called.
    """
    if _store is None:
        raise ConfigurationError(
            "LoginAuthenticator credentials file not set. Call init_store() "
            "with the path of the credentials file first."
        )
    return _store


def reset_store() -> None:
    """Forget the process-wide store."""
    global _store
    _store = None
