"""
Key-value stores for autopilot state.

All per-account state (config, signals, approvals, audit log, change ledger,
emergency state, cycle history) lives behind a KeyValueStore so nothing in the
core depends on process-wide singletons. Every mutating operation is atomic
per key: read-modify-write happens under that key's lock.

Values must be JSON-compatible (dicts, lists, strings, numbers, booleans,
None). Models convert themselves with to_dict()/from_dict().
"""

import copy
import json
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote, unquote


class KeyValueStore(ABC):
    """Abstract store with atomic per-key operations."""

    def __init__(self):
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, key: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @abstractmethod
    def _read(self, key: str) -> Any:
        """Return the raw stored value, or _MISSING."""

    @abstractmethod
    def _write(self, key: str, value: Any):
        """Persist a value."""

    @abstractmethod
    def _remove(self, key: str) -> bool:
        """Remove a key; return True if it existed."""

    @abstractmethod
    def _all_keys(self) -> List[str]:
        """List every stored key."""

    def get(self, key: str, default: Any = None) -> Any:
        """Get a copy of the value at key, or default."""
        with self._lock_for(key):
            value = self._read(key)
        if value is _MISSING:
            return default
        return copy.deepcopy(value)

    def view(self, key: str, fn: Callable[[Any], Any], default: Any = None) -> Any:
        """
        Apply fn to the stored value under the key lock, without copying it.

        fn must not mutate its argument. Only its return value is copied, so
        a small projection of a large list stays cheap.
        """
        with self._lock_for(key):
            value = self._read(key)
            return copy.deepcopy(fn(default if value is _MISSING else value))

    def set(self, key: str, value: Any):
        with self._lock_for(key):
            self._write(key, copy.deepcopy(value))

    def delete(self, key: str) -> bool:
        with self._lock_for(key):
            return self._remove(key)

    def update(self, key: str, fn: Callable[[Any], Any], default: Any = None) -> Any:
        """
        Atomically replace the value at key with fn(current).

        Args:
            key: Store key
            fn: Function receiving a copy of the current value (or default)
                and returning the new value
            default: Value passed to fn when the key is absent

        Returns:
            The new value
        """
        with self._lock_for(key):
            current = self._read(key)
            current = copy.deepcopy(default) if current is _MISSING else copy.deepcopy(current)
            new_value = fn(current)
            self._write(key, copy.deepcopy(new_value))
            return copy.deepcopy(new_value)

    def append(self, key: str, item: Any, max_items: Optional[int] = None) -> int:
        """
        Atomically append an item to the list at key.

        When max_items is set, the oldest items are evicted so the list never
        exceeds it.

        Returns:
            List length after the append
        """
        def _append(items):
            items = list(items or [])
            items.append(item)
            if max_items is not None and len(items) > max_items:
                items = items[-max_items:]
            return items

        return len(self.update(key, _append, default=[]))

    def increment(self, key: str, amount: int = 1) -> int:
        """Atomically increment the integer at key and return the new value."""
        return self.update(key, lambda value: int(value or 0) + amount, default=0)

    def keys(self, prefix: str = "") -> List[str]:
        """List keys starting with prefix, sorted."""
        return sorted(k for k in self._all_keys() if k.startswith(prefix))


class _Missing:
    def __repr__(self):
        return "<missing>"


_MISSING = _Missing()


class InMemoryStore(KeyValueStore):
    """
    Thread-safe in-memory store.

    Values are deep-copied on read and write so callers never hold live
    references to shared state.
    """

    def __init__(self):
        super().__init__()
        self._data: Dict[str, Any] = {}

    def _read(self, key: str) -> Any:
        return self._data.get(key, _MISSING)

    def _write(self, key: str, value: Any):
        self._data[key] = value

    def _remove(self, key: str) -> bool:
        return self._data.pop(key, _MISSING) is not _MISSING

    def _all_keys(self) -> List[str]:
        return list(self._data.keys())

    def append(self, key: str, item: Any, max_items: Optional[int] = None) -> int:
        """Append in place; only the new item is copied."""
        with self._lock_for(key):
            items = self._data.get(key)
            if items is None:
                items = self._data[key] = []
            items.append(copy.deepcopy(item))
            if max_items is not None and len(items) > max_items:
                del items[:len(items) - max_items]
            return len(items)


class JsonFileStore(KeyValueStore):
    """
    Store that keeps one JSON file per key under a directory.

    Writes go to a temp file first and are moved into place with os.replace,
    so a reader never sees a half-written file.
    """

    def __init__(self, store_dir: str = "autopilot_state"):
        """
        Initialize file store.

        Args:
            store_dir: Directory for state files (created if missing)
        """
        super().__init__()
        self.store_dir = Path(store_dir)
        self.store_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.store_dir / f"{quote(key, safe='')}.json"

    def _read(self, key: str) -> Any:
        filepath = self._path(key)
        if not filepath.exists():
            return _MISSING
        with open(filepath, "r") as f:
            return json.load(f)

    def _write(self, key: str, value: Any):
        fd, tmp_path = tempfile.mkstemp(dir=self.store_dir, suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(value, f, indent=2)
            os.replace(tmp_path, self._path(key))
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def _remove(self, key: str) -> bool:
        filepath = self._path(key)
        if filepath.exists():
            filepath.unlink()
            return True
        return False

    def _all_keys(self) -> List[str]:
        return [unquote(p.name[:-len(".json")]) for p in self.store_dir.glob("*.json")]
