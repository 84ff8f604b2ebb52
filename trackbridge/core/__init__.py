"""Core components of TrackBridge."""

from trackbridge.core.bridge import BridgeClient
from trackbridge.core.debouncer import TrackingSyncDebouncer
from trackbridge.core.mapper import ServiceIdMapper
from trackbridge.core.sched import SyncScheduler
from trackbridge.core.sync import TrackingSyncService

__all__ = [
    "BridgeClient",
    "ServiceIdMapper",
    "SyncScheduler",
    "TrackingSyncDebouncer",
    "TrackingSyncService",
]
