# otphaven Vault - Storage Gateway
#
# Persists the opaque envelope text under one well-known key of a
# key/value store and estimates space usage against a fixed quota.
#
# Stores:
#   - SQLiteKeyValueStore: on-disk store (WAL mode, one row per key)
#   - MemoryKeyValueStore: in-process dict (tests, ephemeral vaults)
#
# There is no writer coordination: the last put() wins. A read-modify-write
# done from two places at once silently drops one side's changes.

import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterator, Optional, Tuple, Union

logger = logging.getLogger(__name__)

VAULT_KEY = "otphaven_vault"

QUOTA_BYTES = 5 * 1024 * 1024  # informative 5 MiB ceiling
HEADROOM_BYTES = 1 * 1024 * 1024  # below this, new accounts are refused
BYTES_PER_CHAR = 2  # wide-character storage cost


# ── Key/value stores ─────────────────────────────────────────────────


class KeyValueStore(ABC):
    """Minimal text key/value store the gateway persists into."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the value for key, or None."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Insert or replace the value for key."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete key. Returns True if it existed."""

    @abstractmethod
    def items(self) -> Iterator[Tuple[str, str]]:
        """Iterate over every (key, value) held in the store."""


class MemoryKeyValueStore(KeyValueStore):
    """Dict-backed store. Contents vanish with the process."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def items(self) -> Iterator[Tuple[str, str]]:
        with self._lock:
            snapshot = list(self._data.items())
        return iter(snapshot)


class SQLiteKeyValueStore(KeyValueStore):
    """SQLite key/value store.

    Args:
        db_path: Path to SQLite file. Parent directories are created.
    """

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()

    def _connect(self) -> sqlite3.Connection:
        """Open a connection with WAL journaling and a busy timeout."""
        conn = sqlite3.connect(str(self.db_path))
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        conn.row_factory = sqlite3.Row
        return conn

    def _init_database(self):
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.commit()

    def get(self, key: str) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT value FROM kv_store WHERE key = ?", (key,)
            ).fetchone()
        return None if row is None else row["value"]

    def set(self, key: str, value: str) -> None:
        now = datetime.now(timezone.utc).isoformat()
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO kv_store (key, value, updated_at)
                   VALUES (?, ?, ?)
                   ON CONFLICT(key) DO UPDATE SET
                       value = excluded.value,
                       updated_at = excluded.updated_at""",
                (key, value, now),
            )
            conn.commit()

    def delete(self, key: str) -> bool:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            conn.commit()
            return cur.rowcount > 0

    def items(self) -> Iterator[Tuple[str, str]]:
        with self._connect() as conn:
            rows = conn.execute("SELECT key, value FROM kv_store ORDER BY key").fetchall()
        return iter([(row["key"], row["value"]) for row in rows])


# ── Gateway ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class StorageUsage:
    """Estimated footprint of the store against the quota."""

    used_bytes: int
    limit_bytes: int = QUOTA_BYTES

    @property
    def percent(self) -> float:
        return self.used_bytes / self.limit_bytes * 100

    @property
    def remaining_bytes(self) -> int:
        return self.limit_bytes - self.used_bytes

    @property
    def is_low(self) -> bool:
        """True when less than the headroom threshold remains."""
        return self.remaining_bytes < HEADROOM_BYTES

    @property
    def formatted(self) -> str:
        return f"{self.used_bytes / 1024:.2f} KB / {self.limit_bytes / 1024 / 1024:.1f} MB"

    def to_dict(self) -> dict:
        return {
            "usedBytes": self.used_bytes,
            "limitBytes": self.limit_bytes,
            "percent": self.percent,
            "formatted": self.formatted,
        }


class StorageGateway:
    """Reads and writes the vault envelope under a single key."""

    def __init__(self, store: KeyValueStore, key: str = VAULT_KEY):
        self.store = store
        self.key = key

    def put(self, data: Union[str, bytes]) -> None:
        """Replace the stored envelope."""
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        self.store.set(self.key, data)

    def get(self) -> Optional[str]:
        """Return the stored envelope, or None if nothing is stored."""
        return self.store.get(self.key) or None

    def exists(self) -> bool:
        return bool(self.store.get(self.key))

    def clear(self) -> None:
        if self.store.delete(self.key):
            logger.info("Vault envelope removed from storage")

    def usage(self) -> StorageUsage:
        """Estimate usage over everything in the store, not just the vault key."""
        used = sum(
            (len(key) + len(value)) * BYTES_PER_CHAR
            for key, value in self.store.items()
        )
        return StorageUsage(used_bytes=used)
