"""Tracking service models.

Service-agnostic representations of search results, watchlist items and
progress snapshots exchanged between the tracking service adapters and the
resolution and sync layers.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "Capability",
    "MediaRef",
    "MediaType",
    "OAuthToken",
    "ProgressLookup",
    "ProgressLookupStatus",
    "TrackingMediaItem",
    "TrackingProgress",
    "TrackingProgressUpdate",
    "TrackingSearchResult",
    "TrackingService",
    "TrackingStatus",
    "TrackingUserProfile",
    "canonical_key",
]


class TrackingService(StrEnum):
    """Tracking services known to the application.

    LOCAL is the on-device store; it needs no authentication and never takes
    part in ID resolution or sync.
    """

    ANILIST = "anilist"
    MAL = "mal"
    SIMKL = "simkl"
    LOCAL = "local"

    @property
    def is_remote(self) -> bool:
        """Whether the service is a remote, authenticated tracker."""
        return self is not TrackingService.LOCAL


def canonical_key(service: TrackingService) -> str:
    """Return the conventional lowercase key of a service in `service_ids` maps.

    Args:
        service (TrackingService): Service to look up

    Returns:
        str: 'anilist', 'mal' or 'simkl' for the remote services
    """
    match service:
        case TrackingService.ANILIST:
            return "anilist"
        case TrackingService.MAL:
            return "mal"
        case TrackingService.SIMKL:
            return "simkl"
        case _:
            return service.name.lower()


class MediaType(StrEnum):
    """Kinds of trackable media."""

    ANIME = "anime"
    MANGA = "manga"
    NOVEL = "novel"
    MOVIE = "movie"
    TV_SHOW = "tv_show"

    @property
    def is_video(self) -> bool:
        """Progress is counted in episodes."""
        return self in (MediaType.ANIME, MediaType.MOVIE, MediaType.TV_SHOW)

    @property
    def is_reading(self) -> bool:
        """Progress is counted in chapters."""
        return self in (MediaType.MANGA, MediaType.NOVEL)


class TrackingStatus(StrEnum):
    """Shared list status vocabulary; adapters map their own terms onto it."""

    PLANNING = "planning"
    WATCHING = "watching"
    COMPLETED = "completed"
    ON_HOLD = "on_hold"
    DROPPED = "dropped"


class Capability(StrEnum):
    """Operations an adapter may support. Callers check before calling."""

    AUTHENTICATE = "authenticate"
    SEARCH = "search"
    PROGRESS = "progress"
    WATCHLIST = "watchlist"
    RATING = "rating"


class MediaRef(BaseModel):
    """Identity of a piece of trackable media as known locally."""

    model_config = ConfigDict(frozen=True)

    local_id: str
    title: str
    media_type: MediaType = MediaType.ANIME
    release_year: int | None = None


class TrackingSearchResult(BaseModel):
    """One candidate returned by a service search.

    `service_ids` may carry cross-linked IDs for other services, keyed by the
    canonical service key.
    """

    id: str
    title: str
    alternative_titles: dict[str, str] | None = None
    cover_image: str | None = None
    media_type: MediaType = MediaType.ANIME
    year: int | None = None
    service_ids: dict[str, str] = Field(default_factory=dict)


class TrackingMediaItem(BaseModel):
    """An item on a user's watchlist."""

    id: str
    title: str
    media_type: MediaType = MediaType.ANIME
    cover_image: str | None = None
    year: int | None = None
    status: TrackingStatus | None = None
    rating: float | None = None
    episodes_watched: int | None = None
    total_episodes: int | None = None
    chapters_read: int | None = None
    total_chapters: int | None = None
    service_ids: dict[str, str] = Field(default_factory=dict)


class TrackingProgress(BaseModel):
    """Remote progress snapshot for one item on one service."""

    media_id: str
    media_type: MediaType = MediaType.ANIME
    current_episode: int | None = None
    current_chapter: int | None = None
    completed: bool | None = None
    last_updated: datetime | None = None


class ProgressLookupStatus(StrEnum):
    """Outcome of a remote progress lookup."""

    FOUND = "found"  # The service returned a progress record
    NOT_FOUND = "not_found"  # The service has no record for the ID
    ERROR = "error"  # The call failed (network, auth, parse)


class ProgressLookup(BaseModel):
    """Result of `get_progress`, distinguishing a missing record from a failure."""

    status: ProgressLookupStatus
    progress: TrackingProgress | None = None
    error: str | None = None

    @classmethod
    def found(cls, progress: TrackingProgress) -> ProgressLookup:
        return cls(status=ProgressLookupStatus.FOUND, progress=progress)

    @classmethod
    def not_found(cls) -> ProgressLookup:
        return cls(status=ProgressLookupStatus.NOT_FOUND)

    @classmethod
    def failed(cls, error: str) -> ProgressLookup:
        return cls(status=ProgressLookupStatus.ERROR, error=error)


class TrackingProgressUpdate(BaseModel):
    """Progress to push to a remote service."""

    media_id: str
    media_title: str
    media_type: MediaType = MediaType.ANIME
    episode: int | None = None
    chapter: int | None = None
    completed: bool = False


class TrackingUserProfile(BaseModel):
    """The authenticated user on a tracking service."""

    id: str
    username: str
    avatar: str | None = None


class OAuthToken(BaseModel):
    """A bearer token held for one service."""

    access_token: str
    refresh_token: str | None = None
    token_type: str = "Bearer"
    expires_at: datetime | None = None

    @property
    def is_expired(self) -> bool:
        """Whether the token has a known expiry that has passed."""
        if self.expires_at is None:
            return False
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        return expires_at <= datetime.now(UTC)
