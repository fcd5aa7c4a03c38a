# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

"""Local persistence of private keys.

Three layers, each usable on its own:

``StorageAdapter``
    Raw byte blobs keyed by name. :class:`MemoryStorageAdapter` and
    :class:`FileSystemStorageAdapter` are provided; any object with the same
    coroutines can be plugged in. ``store`` must raise
    :class:`~types.StorageEntryExistsError` when the key is taken.
``KeyEntryStorage``
    Named entries with a value, optional string metadata and timestamps,
    serialized as JSON on top of an adapter.
``PrivateKeyStorage``
    Private keys exported to bytes through a
    :class:`~crypto.PrivateKeyExporter` and saved as key entries. Names are
    never overwritten.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

import structlog

from .crypto import PrivateKeyExporter
from .snapshot import decode_base64, encode_base64
from .types import (
    InvalidKeyEntryError,
    KeyEntry,
    KeyEntryDoesNotExistError,
    KeyEntryExistsError,
    KeyMeta,
    ParseError,
    PrivateKeyEntry,
    PrivateKeyExistsError,
    StorageEntryExistsError,
    ValidationError,
)

logger = structlog.get_logger(__name__)

DEFAULT_STORAGE_DIR = ".keycard_key_entries"


class StorageAdapter(Protocol):
    async def store(self, key: str, data: bytes) -> None: ...

    async def load(self, key: str) -> bytes | None: ...

    async def exists(self, key: str) -> bool: ...

    async def remove(self, key: str) -> bool: ...

    async def update(self, key: str, data: bytes) -> None: ...

    async def clear(self) -> None: ...

    async def list(self) -> list[bytes]: ...


class MemoryStorageAdapter:
    """Process-local adapter backed by a dict."""

    def __init__(self) -> None:
        self._entries: dict[str, bytes] = {}

    async def store(self, key: str, data: bytes) -> None:
        if key in self._entries:
            raise StorageEntryExistsError(f"storage entry {key!r} already exists")
        self._entries[key] = bytes(data)

    async def load(self, key: str) -> bytes | None:
        return self._entries.get(key)

    async def exists(self, key: str) -> bool:
        return key in self._entries

    async def remove(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    async def update(self, key: str, data: bytes) -> None:
        if key not in self._entries:
            raise KeyEntryDoesNotExistError(f"storage entry {key!r} does not exist")
        self._entries[key] = bytes(data)

    async def clear(self) -> None:
        self._entries.clear()

    async def list(self) -> list[bytes]:
        return list(self._entries.values())


class FileSystemStorageAdapter:
    """Stores one file per key under *directory*.

    File names are the SHA-256 hex digest of the key, so any key string is
    safe to use. Blocking file I/O runs in a worker thread.
    """

    def __init__(self, directory: str | Path = DEFAULT_STORAGE_DIR) -> None:
        self._dir = Path(directory).resolve()
        self._dir.mkdir(parents=True, exist_ok=True)

    async def store(self, key: str, data: bytes) -> None:
        await asyncio.to_thread(self._store_sync, key, data)

    async def load(self, key: str) -> bytes | None:
        return await asyncio.to_thread(self._read, self._path(key))

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self._path(key).is_file)

    async def remove(self, key: str) -> bool:
        return await asyncio.to_thread(self._remove_sync, key)

    async def update(self, key: str, data: bytes) -> None:
        await asyncio.to_thread(self._update_sync, key, data)

    async def clear(self) -> None:
        await asyncio.to_thread(self._clear_sync)

    async def list(self) -> list[bytes]:
        return await asyncio.to_thread(self._list_sync)

    def _path(self, key: str) -> Path:
        return self._dir / hashlib.sha256(key.encode("utf-8")).hexdigest()

    def _store_sync(self, key: str, data: bytes) -> None:
        try:
            # "xb" fails if the file already exists.
            with self._path(key).open("xb") as handle:
                handle.write(data)
        except FileExistsError as exc:
            raise StorageEntryExistsError(f"storage entry {key!r} already exists") from exc

    def _update_sync(self, key: str, data: bytes) -> None:
        path = self._path(key)
        if not path.is_file():
            raise KeyEntryDoesNotExistError(f"storage entry {key!r} does not exist")
        path.write_bytes(data)

    def _remove_sync(self, key: str) -> bool:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            return False
        return True

    def _clear_sync(self) -> None:
        for path in self._dir.iterdir():
            if path.is_file():
                path.unlink()

    def _list_sync(self) -> list[bytes]:
        entries = (self._read(path) for path in sorted(self._dir.iterdir()))
        return [entry for entry in entries if entry is not None]

    @staticmethod
    def _read(path: Path) -> bytes | None:
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None


class KeyEntryStorage:
    """Named key entries persisted through a :class:`StorageAdapter`.

    Parameters
    ----------
    adapter:
        Backend for the serialized entries. Defaults to a
        :class:`FileSystemStorageAdapter` in :data:`DEFAULT_STORAGE_DIR`.
    """

    def __init__(self, adapter: StorageAdapter | None = None) -> None:
        self._adapter = adapter if adapter is not None else FileSystemStorageAdapter()

    async def save(self, name: str, value: bytes, meta: KeyMeta | None = None) -> KeyEntry:
        """Persist a new entry.

        Raises
        ------
        KeyEntryExistsError
            If an entry named *name* already exists.
        """
        _require_name(name)
        if not value:
            raise ValidationError("KeyEntryStorage.save: value is required")

        now = datetime.now(tz=timezone.utc)
        entry = KeyEntry(
            name=name,
            value=bytes(value),
            meta=dict(meta) if meta is not None else None,
            creation_date=now,
            modification_date=now,
        )
        try:
            await self._adapter.store(name, _serialize_entry(entry))
        except StorageEntryExistsError as exc:
            raise KeyEntryExistsError(f"key entry named {name!r} already exists") from exc

        logger.info("key_entry_saved", name=name)
        return entry

    async def load(self, name: str) -> KeyEntry | None:
        """Return the entry named *name*, or ``None`` if there is none."""
        _require_name(name)
        data = await self._adapter.load(name)
        if data is None:
            return None
        return _deserialize_entry(data)

    async def exists(self, name: str) -> bool:
        _require_name(name)
        return await self._adapter.exists(name)

    async def remove(self, name: str) -> bool:
        """Delete the entry; returns ``False`` if it did not exist."""
        _require_name(name)
        removed = await self._adapter.remove(name)
        logger.info("key_entry_removed", name=name, existed=removed)
        return removed

    async def list(self) -> list[KeyEntry]:
        return [_deserialize_entry(data) for data in await self._adapter.list()]

    async def update(
        self,
        name: str,
        value: bytes | None = None,
        meta: KeyMeta | None = None,
    ) -> KeyEntry:
        """Replace the value and/or metadata of an existing entry.

        Raises
        ------
        KeyEntryDoesNotExistError
            If no entry named *name* exists.
        """
        _require_name(name)
        if not (value or meta):
            raise ValidationError(
                "KeyEntryStorage.update: either value or meta is required"
            )

        data = await self._adapter.load(name)
        if data is None:
            raise KeyEntryDoesNotExistError(f"key entry named {name!r} does not exist")

        current = _deserialize_entry(data)
        updated = KeyEntry(
            name=current.name,
            value=bytes(value) if value else current.value,
            meta=dict(meta) if meta else current.meta,
            creation_date=current.creation_date,
            modification_date=datetime.now(tz=timezone.utc),
        )
        await self._adapter.update(name, _serialize_entry(updated))
        logger.info("key_entry_updated", name=name)
        return updated

    async def clear(self) -> None:
        await self._adapter.clear()
        logger.info("key_entries_cleared")


class PrivateKeyStorage:
    """Stores private keys under unique names.

    Parameters
    ----------
    private_key_exporter:
        Converts keys to bytes on :meth:`store` and back on :meth:`load`.
    key_entry_storage:
        Persistence backend. Defaults to a file-backed
        :class:`KeyEntryStorage`.
    """

    def __init__(
        self,
        private_key_exporter: PrivateKeyExporter,
        key_entry_storage: KeyEntryStorage | None = None,
    ) -> None:
        if private_key_exporter is None:
            raise ValidationError("PrivateKeyStorage: private_key_exporter is required")
        self._exporter = private_key_exporter
        self._storage = key_entry_storage if key_entry_storage is not None else KeyEntryStorage()

    async def store(self, name: str, private_key: Any, meta: KeyMeta | None = None) -> None:
        """Persist *private_key* under *name*.

        Raises
        ------
        PrivateKeyExistsError
            If a key named *name* is already stored.
        """
        private_key_data = self._exporter.export_private_key(private_key)
        try:
            await self._storage.save(name, private_key_data, meta)
        except KeyEntryExistsError as exc:
            raise PrivateKeyExistsError(
                f"private key with the name {name!r} already exists"
            ) from exc

    async def load(self, name: str) -> PrivateKeyEntry | None:
        """Return the key stored under *name*, or ``None`` if there is none."""
        entry = await self._storage.load(name)
        if entry is None:
            return None
        return PrivateKeyEntry(
            private_key=self._exporter.import_private_key(entry.value),
            meta=entry.meta,
        )

    async def delete(self, name: str) -> None:
        """Remove the key stored under *name*. Missing names are ignored."""
        await self._storage.remove(name)


# ------------------------------------------------------------------
# Internal helpers
# ------------------------------------------------------------------


def _require_name(name: str) -> None:
    if not name:
        raise ValidationError("key entry name is required")


def _serialize_entry(entry: KeyEntry) -> bytes:
    doc = {
        "name": entry.name,
        "value": encode_base64(entry.value),
        "meta": entry.meta,
        "creation_date": entry.creation_date.isoformat(),
        "modification_date": entry.modification_date.isoformat(),
    }
    return json.dumps(doc, separators=(",", ":")).encode("utf-8")


def _deserialize_entry(data: bytes) -> KeyEntry:
    try:
        doc = json.loads(data.decode("utf-8"))
        return KeyEntry(
            name=doc["name"],
            value=decode_base64(doc["value"]),
            meta=doc.get("meta"),
            creation_date=datetime.fromisoformat(doc["creation_date"]),
            modification_date=datetime.fromisoformat(doc["modification_date"]),
        )
    except (ValueError, KeyError, TypeError, ParseError) as exc:
        raise InvalidKeyEntryError("loaded key entry was in invalid format") from exc
