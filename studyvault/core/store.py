"""
Key-value store backends the sweep engine runs against.

Every backend is synchronous and unbuffered: a write is visible to the next read.
"""

import json
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Generator, List, Optional

from .config import DB_PATH, ensure_db_directory
from util.logging import logger


class StoreError(Exception):
    """Raised when a store backend cannot complete an operation."""
    pass


class KeyValueStore(ABC):
    """Flat string-keyed store. Values are conventionally JSON but untyped."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    @abstractmethod
    def keys(self) -> List[str]:
        pass

    def count(self) -> int:
        return len(self.keys())

    def items(self) -> Dict[str, str]:
        """Snapshot of every key and value."""
        snapshot = {}
        for key in self.keys():
            value = self.get(key)
            if value is not None:
                snapshot[key] = value
        return snapshot


class MemoryStore(KeyValueStore):
    """Dict-backed store, used for tests and embedding."""

    def __init__(self, initial: Dict[str, str] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._data.keys())

    def count(self) -> int:
        return len(self._data)


class SQLiteStore(KeyValueStore):
    """Store backed by a single SQLite `kv` table."""

    def __init__(self, db_path: str = None):
        self.db_path = db_path or DB_PATH
        ensure_db_directory(self.db_path)
        self.init_db()

    @contextmanager
    def _connect(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a SQLite connection; backend errors surface as StoreError."""
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open store at {self.db_path}: {e}") from e
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"SQLite store error at {self.db_path}: {e}")
            raise StoreError(str(e)) from e
        finally:
            conn.close()

    def init_db(self):
        """Initialize the database with the kv table."""
        with self._connect() as conn:
            conn.execute('''
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            ''')

    def get(self, key: str) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO kv (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP",
                (key, value)
            )
        logger.log_kv_operation("set", key, value)

    def delete(self, key: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        logger.log_kv_operation("delete", key)

    def keys(self) -> List[str]:
        with self._connect() as conn:
            rows = conn.execute("SELECT key FROM kv ORDER BY rowid").fetchall()
        return [row[0] for row in rows]

    def count(self) -> int:
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM kv").fetchone()[0]

    def health_check(self) -> bool:
        """Check that the kv table is reachable."""
        try:
            with self._connect() as conn:
                tables = conn.execute(
                    "SELECT name FROM sqlite_master WHERE type='table'"
                ).fetchall()
            return "kv" in [table[0] for table in tables]
        except StoreError:
            return False


class JsonFileStore(KeyValueStore):
    """
    Store backed by a JSON object on disk, such as an exported browser storage dump.

    The file is rewritten on every mutation.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._data: Dict[str, str] = {}
        if self.path.exists():
            self._load()

    def _load(self):
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise StoreError(f"Cannot read snapshot {self.path}: {e}") from e

        if not isinstance(raw, dict):
            raise StoreError(f"Snapshot {self.path} must contain a JSON object")

        # Non-string values are stored back as their JSON text
        self._data = {
            str(k): v if isinstance(v, str) else json.dumps(v)
            for k, v in raw.items()
        }

    def _flush(self, data: Dict[str, str]):
        try:
            encoded = json.dumps(data, ensure_ascii=False, indent=2).encode("utf-8")
        except UnicodeEncodeError:
            # Lone surrogates only survive as \u escapes
            encoded = json.dumps(data, indent=2).encode("ascii")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_bytes(encoded)
        except OSError as e:
            raise StoreError(f"Cannot write snapshot {self.path}: {e}") from e

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        data = dict(self._data)
        data[key] = value
        self._flush(data)
        self._data = data

    def delete(self, key: str) -> None:
        if key in self._data:
            data = {k: v for k, v in self._data.items() if k != key}
            self._flush(data)
            self._data = data

    def keys(self) -> List[str]:
        return list(self._data.keys())

    def count(self) -> int:
        return len(self._data)
