"""Key-value storage for per-account autopilot state."""

from autopilot.storage.store import KeyValueStore, InMemoryStore, JsonFileStore
from autopilot.storage import keys

__all__ = ["KeyValueStore", "InMemoryStore", "JsonFileStore", "keys"]
