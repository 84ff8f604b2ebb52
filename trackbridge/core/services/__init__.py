"""Tracking service adapters."""

from trackbridge.core.services.anilist import AniListAdapter
from trackbridge.core.services.base import TrackingServiceAdapter
from trackbridge.core.services.factory import build_adapter, build_adapters
from trackbridge.core.services.mal import MyAnimeListAdapter
from trackbridge.core.services.simkl import SimklAdapter

__all__ = [
    "AniListAdapter",
    "MyAnimeListAdapter",
    "SimklAdapter",
    "TrackingServiceAdapter",
    "build_adapter",
    "build_adapters",
]
