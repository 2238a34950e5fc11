"""Key-value stores with change subscriptions."""

import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import Callable
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

Subscriber = Callable[[str, Any], None]


class KeyValueStore(ABC):
    """Interface for persisting JSON-compatible values by key."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Subscriber]] = defaultdict(list)

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """Return the stored value for ``key`` or ``default``."""
        pass

    @abstractmethod
    def _write(self, key: str, value: Any) -> None:
        pass

    @abstractmethod
    def _remove(self, key: str) -> None:
        pass

    def set(self, key: str, value: Any) -> None:
        self._write(key, value)
        self._notify(key, value)

    def delete(self, key: str) -> None:
        self._remove(key)
        self._notify(key, None)

    def subscribe(self, key: str, callback: Subscriber) -> Callable[[], None]:
        """Call ``callback(key, value)`` after every change to ``key``.

        Returns:
            A function that removes the subscription.
        """
        self._subscribers[key].append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers[key]:
                self._subscribers[key].remove(callback)

        return unsubscribe

    def _notify(self, key: str, value: Any) -> None:
        for callback in list(self._subscribers.get(key, ())):
            try:
                callback(key, value)
            except Exception as e:
                logger.error(f"Store subscriber for {key!r} failed: {e}")


class InMemoryStore(KeyValueStore):
    """Keeps values in a dictionary; values are copied through JSON."""

    def __init__(self) -> None:
        super().__init__()
        self._data: dict[str, str] = {}

    def get(self, key: str, default: Any = None) -> Any:
        raw = self._data.get(key)
        return default if raw is None else json.loads(raw)

    def _write(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value)

    def _remove(self, key: str) -> None:
        self._data.pop(key, None)


class SqliteStore(KeyValueStore):
    """Stores JSON text in a single SQLite table.

    Why SQLite:
    - Survives server restarts
    - Zero-config, single file
    """

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._path), check_same_thread=False)
        self._conn.execute("CREATE TABLE IF NOT EXISTS kv (key TEXT PRIMARY KEY, value TEXT NOT NULL)")
        self._conn.commit()

    def get(self, key: str, default: Any = None) -> Any:
        row = self._conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return default if row is None else json.loads(row[0])

    def _write(self, key: str, value: Any) -> None:
        self._conn.execute(
            "INSERT INTO kv (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, json.dumps(value)),
        )
        self._conn.commit()

    def _remove(self, key: str) -> None:
        self._conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()
