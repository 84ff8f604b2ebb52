"""Local persistence backends for TrackBridge."""

from trackbridge.storage.kv import (
    InMemoryKeyValueStore,
    KeyValueStore,
    SQLiteKeyValueStore,
)
from trackbridge.storage.tokens import TokenStore
from trackbridge.storage.watch_history import (
    SQLiteWatchHistoryStore,
    WatchHistoryStore,
)

__all__ = [
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "SQLiteKeyValueStore",
    "SQLiteWatchHistoryStore",
    "TokenStore",
    "WatchHistoryStore",
]
