"""Pluggable key/value storage areas backing the session tiers.

Provides the StorageArea ABC and concrete implementations for
in-memory, JSON file, and OS keyring persistence. Each area holds
string values under the key names the session store uses
(``user``, ``authTimestamp``, ``jwt_token``, ``google_credential``).
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile

from abc import ABC, abstractmethod
from pathlib import Path

import keyring
import keyring.errors


logger = logging.getLogger("notesauth.session")


class StorageArea(ABC):
    """Abstract base class for a string key/value storage area.

    All methods are async so file and keyring access never block the
    event loop for long.
    """

    name: str = "storage"

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the value stored under ``key``, or None."""

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""

    @abstractmethod
    async def remove(self, *keys: str) -> None:
        """Remove ``keys``; missing keys are ignored."""

    async def set_many(self, values: dict[str, str]) -> None:
        """Store several values.

        Backends that can write all values in one operation override this.
        """
        for key, value in values.items():
            await self.set(key, value)


class MemoryStorage(StorageArea):
    """In-process storage area; contents vanish when the process exits.

    Guarded by an asyncio.Lock.
    """

    def __init__(self, name: str = "memory") -> None:
        """Initialize the memory storage area."""
        self.name = name
        self._data: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> str | None:
        """Get a value from memory."""
        async with self._lock:
            return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        """Set a value in memory."""
        async with self._lock:
            self._data[key] = value

    async def remove(self, *keys: str) -> None:
        """Remove values from memory."""
        async with self._lock:
            for key in keys:
                self._data.pop(key, None)

    async def set_many(self, values: dict[str, str]) -> None:
        """Set several values under one lock acquisition."""
        async with self._lock:
            self._data.update(values)

    def snapshot(self) -> dict[str, str]:
        """Return a copy of the stored values."""
        return dict(self._data)


class FileStorage(StorageArea):
    """JSON-file storage area.

    The whole area is one JSON object; every write replaces the file
    atomically (temp file + ``os.replace``) so a crash never leaves a
    half-written session behind.

    Parameters
    ----------
    path : str or Path
        Location of the JSON file. Parent directories are created on write.
    name : str
        Label used in log messages.
    """

    def __init__(self, path: str | Path, name: str = "file") -> None:
        """Initialize the file storage area."""
        self.path = Path(path).expanduser()
        self.name = name
        self._lock = asyncio.Lock()

    def _read(self) -> dict[str, str]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding corrupt session file %s", self.path)
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _write(self, data: dict[str, str]) -> None:
        if not data:
            self.path.unlink(missing_ok=True)
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=str(self.path.parent), prefix=".session-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    async def get(self, key: str) -> str | None:
        """Get a value from the file."""
        async with self._lock:
            return self._read().get(key)

    async def set(self, key: str, value: str) -> None:
        """Set a value in the file."""
        await self.set_many({key: value})

    async def set_many(self, values: dict[str, str]) -> None:
        """Set several values with a single file replacement."""
        async with self._lock:
            data = self._read()
            data.update(values)
            self._write(data)

    async def remove(self, *keys: str) -> None:
        """Remove values from the file."""
        async with self._lock:
            data = self._read()
            if not any(key in data for key in keys):
                return
            for key in keys:
                data.pop(key, None)
            self._write(data)


class KeyringStorage(StorageArea):
    """OS keyring-backed storage area.

    Each key is stored as a separate keyring entry under ``service_name``.
    The keyring API is blocking, so calls run in the default executor.

    Parameters
    ----------
    service_name : str
        Service name for keyring storage (default "notesauth").
    """

    def __init__(self, service_name: str = "notesauth", name: str = "keyring") -> None:
        """Initialize the keyring storage area."""
        self._service_name = service_name
        self.name = name

    async def get(self, key: str) -> str | None:
        """Get a value from the OS keyring."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, keyring.get_password, self._service_name, key)

    async def set(self, key: str, value: str) -> None:
        """Set a value in the OS keyring."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, keyring.set_password, self._service_name, key, value)

    async def remove(self, *keys: str) -> None:
        """Delete values from the OS keyring."""
        loop = asyncio.get_running_loop()
        for key in keys:
            try:
                await loop.run_in_executor(
                    None, keyring.delete_password, self._service_name, key
                )
            except keyring.errors.PasswordDeleteError:
                pass


def create_storage(
    backend: str,
    *,
    path: str | None = None,
    service_name: str = "notesauth",
    name: str | None = None,
) -> StorageArea:
    """Factory function for storage areas.

    Parameters
    ----------
    backend : str
        Storage backend: "memory", "file", or "keyring".
    path : str, optional
        JSON file path (required for "file").
    service_name : str
        Keyring service name (used by "keyring").
    name : str, optional
        Label for log messages; defaults to the backend name.

    Returns
    -------
    StorageArea
        A configured storage area.
    """
    label = name or backend
    if backend == "memory":
        return MemoryStorage(name=label)
    if backend == "file":
        if not path:
            msg = "File storage requires a path"
            raise ValueError(msg)
        return FileStorage(path, name=label)
    if backend == "keyring":
        return KeyringStorage(service_name=service_name, name=label)
    msg = f"Unknown storage backend: {backend}"
    raise ValueError(msg)
