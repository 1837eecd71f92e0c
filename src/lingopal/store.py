"""Concrete implementations for the persistent store pillar.

A store is a small durable key/value space. The application uses two named
slots, one per persisted list, and always writes a slot as a whole serialized
value. Every store accepts an optional byte quota; a write that would exceed it
raises StorageQuotaError and leaves the previous value in place.
"""

import os
import re
import sqlite3
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

from .errors import StorageQuotaError

CONVERSATIONS_SLOT = "savedConversations"
WORDS_SLOT = "savedWords"

_SLOT_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def _size(value: str) -> int:
    return len(value.encode("utf-8"))


def _check_quota(quota: Optional[int], slot: str, total: int) -> None:
    if quota is not None and total > quota:
        raise StorageQuotaError(
            f"Writing slot '{slot}' needs {total} bytes, quota is {quota} bytes."
        )


class Store(ABC):
    """Interface for durable key/value storage."""

    @abstractmethod
    def get(self, slot: str) -> Optional[str]:
        """Returns the value stored in ``slot``, or None if it was never set."""
        pass

    @abstractmethod
    def set(self, slot: str, value: str) -> None:
        """Replaces the value of ``slot``.

        Raises
        ------
        StorageQuotaError
            If the write would take the store over its quota.
        """
        pass


class InMemory(Store):
    """Keeps slots in a dictionary. Nothing survives the process."""

    def __init__(self, quota: Optional[int] = None):
        self._store: Dict[str, str] = {}
        self.quota = quota

    def get(self, slot: str) -> Optional[str]:
        return self._store.get(slot)

    def set(self, slot: str, value: str) -> None:
        others = sum(_size(v) for k, v in self._store.items() if k != slot)
        _check_quota(self.quota, slot, others + _size(value))
        self._store[slot] = value


class File(Store):
    """Stores each slot as ``<slot>.json`` inside a directory."""

    def __init__(self, base_dir: str, quota: Optional[int] = None):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.quota = quota

    def _path(self, slot: str) -> Path:
        if not _SLOT_PATTERN.match(slot):
            raise ValueError(f"Invalid slot name: {slot!r}")
        return self.base_dir / f"{slot}.json"

    def get(self, slot: str) -> Optional[str]:
        path = self._path(slot)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, slot: str, value: str) -> None:
        path = self._path(slot)
        if self.quota is not None:
            others = sum(
                p.stat().st_size for p in self.base_dir.glob("*.json") if p != path
            )
            _check_quota(self.quota, slot, others + _size(value))

        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(value, encoding="utf-8")
        os.replace(tmp_path, path)


class SQLite(Store):
    """Stores slots as rows of a single key/value table."""

    def __init__(self, db_path: str, quota: Optional[int] = None):
        self.db_path = db_path
        self.quota = quota
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS slots (
                    slot TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
                """
            )

    def get(self, slot: str) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT value FROM slots WHERE slot = ?", (slot,)
            ).fetchone()
        return row[0] if row else None

    def set(self, slot: str, value: str) -> None:
        with self._connect() as conn:
            if self.quota is not None:
                (others,) = conn.execute(
                    "SELECT COALESCE(SUM(LENGTH(CAST(value AS BLOB))), 0) "
                    "FROM slots WHERE slot != ?",
                    (slot,),
                ).fetchone()
                _check_quota(self.quota, slot, others + _size(value))
            conn.execute(
                """
                INSERT INTO slots (slot, value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(slot) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (slot, value),
            )
