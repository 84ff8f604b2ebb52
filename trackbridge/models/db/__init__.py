"""Models for TrackBridge database tables."""

from trackbridge.models.db.base import Base
from trackbridge.models.db.key_value import KeyValue
from trackbridge.models.db.watch_history import WatchHistory

__all__ = ["Base", "KeyValue", "WatchHistory"]
