"""
Key-value persistence for the learning stores.

Stores never touch a concrete backend directly: they receive a
KeyValueBackend (in-memory for tests, SQLite for production). Values are
JSON blobs carrying a ``version`` field; a version mismatch or malformed
JSON resets the blob to empty and is logged, never raised.

Location: ~/.intent_engine/state.db (user-level)
"""

import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from intent_engine.config import IntentEngineError, get_storage_config

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1.0.0"

SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_info (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);
"""


class StorageError(IntentEngineError):
    """Raised by a backend when it cannot read or write."""
    pass


def get_default_db_path() -> Path:
    """Get the default database path (~/.intent_engine/state.db)."""
    return Path.home() / ".intent_engine" / "state.db"


class KeyValueBackend(ABC):
    """Minimal string key-value interface the stores depend on."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored value or None."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key`` (last writer wins)."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove ``key`` if present."""

    @abstractmethod
    def keys(self) -> List[str]:
        """All stored keys."""


class MemoryBackend(KeyValueBackend):
    """Process-local backend used by tests and ephemeral sessions."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._data)


class SQLiteBackend(KeyValueBackend):
    """SQLite-backed key-value store."""

    def __init__(self, db_path: Path | str | None = None):
        """Initialize database connection.

        Args:
            db_path: Explicit path to database file (default: get_default_db_path()).
        """
        self.db_path = Path(db_path) if db_path else get_default_db_path()
        self._ensure_db_exists()

    def _ensure_db_exists(self) -> None:
        """Create database and schema if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self.connection() as conn:
            conn.executescript(SCHEMA)
            conn.execute(
                "INSERT OR REPLACE INTO schema_info (key, value) VALUES (?, ?)",
                ("schema_version", SCHEMA_VERSION),
            )

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database connections.

        Yields:
            sqlite3.Connection with row_factory set to sqlite3.Row
        """
        conn = sqlite3.connect(self.db_path, timeout=10.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode = WAL")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def get(self, key: str) -> Optional[str]:
        try:
            with self.connection() as conn:
                row = conn.execute(
                    "SELECT value FROM kv_store WHERE key = ?", (key,)
                ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot read {key}: {e}") from e
        return row["value"] if row else None

    def set(self, key: str, value: str) -> None:
        try:
            with self.connection() as conn:
                conn.execute(
                    """
                    INSERT INTO kv_store (key, value, updated_at)
                    VALUES (?, ?, datetime('now'))
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    (key, value),
                )
        except sqlite3.Error as e:
            raise StorageError(f"Cannot write {key}: {e}") from e

    def delete(self, key: str) -> None:
        try:
            with self.connection() as conn:
                conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        except sqlite3.Error as e:
            raise StorageError(f"Cannot delete {key}: {e}") from e

    def keys(self) -> List[str]:
        try:
            with self.connection() as conn:
                rows = conn.execute("SELECT key FROM kv_store ORDER BY key").fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot list keys: {e}") from e
        return [row["key"] for row in rows]

    def get_stats(self) -> dict:
        """Get database statistics for diagnostics."""
        stats = {
            "schema_version": SCHEMA_VERSION,
            "database_path": str(self.db_path),
            "database_exists": self.db_path.exists(),
        }
        try:
            with self.connection() as conn:
                row = conn.execute("SELECT COUNT(*) AS cnt FROM kv_store").fetchone()
            stats["key_count"] = row["cnt"] if row else 0
            stats["database_size_bytes"] = self.db_path.stat().st_size
        except sqlite3.OperationalError as e:
            stats["error"] = str(e)
        return stats


def create_backend(config: Optional[Dict[str, Any]] = None) -> KeyValueBackend:
    """Build the backend named in the storage config."""
    storage = get_storage_config(config)
    if storage["backend"] == "memory":
        return MemoryBackend()
    return SQLiteBackend(storage.get("db_path"))


# =============================================================================
# Versioned JSON blobs
# =============================================================================


def load_versioned_blob(
    backend: KeyValueBackend,
    key: str,
    version: int,
    empty: Callable[[], Dict[str, Any]],
    fields: Optional[Dict[str, type]] = None,
) -> Dict[str, Any]:
    """
    Load a versioned JSON blob, resetting to ``empty()`` on any problem.

    Args:
        backend: Storage backend
        key: Storage key
        version: Expected blob version
        empty: Factory for the empty state
        fields: Required top-level fields and their JSON container types

    Returns:
        Parsed blob, or a fresh empty state
    """
    try:
        raw = backend.get(key)
    except Exception as e:
        logger.warning(f"Failed to read {key}, using empty state: {e}")
        return empty()

    if raw is None:
        return empty()

    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.warning(f"Malformed JSON in {key}, resetting: {e}")
        return empty()

    if not isinstance(data, dict) or data.get("version") != version:
        found = data.get("version") if isinstance(data, dict) else type(data).__name__
        logger.warning(f"Version mismatch in {key} (found {found}, expected {version}), resetting")
        return empty()

    for name, expected in (fields or {}).items():
        if not isinstance(data.get(name), expected):
            logger.warning(f"Unexpected shape in {key} (field {name!r}), resetting")
            return empty()

    return data


def save_versioned_blob(backend: KeyValueBackend, key: str, data: Dict[str, Any]) -> bool:
    """Persist a blob. Returns False (and logs) when the backend fails."""
    try:
        backend.set(key, json.dumps(data, ensure_ascii=False))
        return True
    except Exception as e:
        logger.warning(f"Failed to save {key}: {e}")
        return False


def delete_blob(backend: KeyValueBackend, key: str) -> bool:
    try:
        backend.delete(key)
        return True
    except Exception as e:
        logger.warning(f"Failed to delete {key}: {e}")
        return False
