"""Synchronization Models Module."""

from __future__ import annotations

import re
from datetime import UTC, datetime

from pydantic import BaseModel, Field

from trackbridge.models.tracking import MediaRef, MediaType

__all__ = ["CacheStats", "SyncResult", "WatchHistoryEntry"]

_NON_WORD_PATTERN = re.compile(r"[^\w\s]")


class WatchHistoryEntry(BaseModel):
    """A locally persisted watch/read history record.

    An entry is considered tracked when it carries a `normalized_id`; entries
    without one are never reconciled against tracking services.
    """

    id: str
    media_id: str
    normalized_id: str | None = None
    media_type: MediaType
    title: str
    cover_image: str | None = None
    source_id: str = ""
    source_name: str = ""
    release_year: int | None = None
    episode_number: int | None = None
    chapter_number: int | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    last_played_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None

    @property
    def is_tracked(self) -> bool:
        return self.normalized_id is not None

    def to_media_ref(self) -> MediaRef:
        """Build the immutable media identity used for ID resolution."""
        return MediaRef(
            local_id=self.media_id,
            title=self.title,
            media_type=self.media_type,
            release_year=self.release_year,
        )

    @staticmethod
    def generate_normalized_id(
        title: str, media_type: MediaType, year: int | None = None
    ) -> str:
        """Generate a source-independent ID for matching the same media.

        Args:
            title (str): Media title
            media_type (MediaType): Media type
            year (int | None): Release year, appended when known

        Returns:
            str: ID of the form `{type}_{normalized_title}[_{year}]`
        """
        normalized = "_".join(_NON_WORD_PATTERN.sub("", title.lower()).split())
        suffix = f"_{year}" if year is not None else ""
        return f"{media_type.value}_{normalized}{suffix}"

    @staticmethod
    def generate_id(media_type: MediaType, media_id: str, source_id: str) -> str:
        """Generate the unique entry ID for a media item from one source."""
        return f"{media_type.value}_{media_id}_{source_id}"


class SyncResult(BaseModel):
    """Summary of one batch sync."""

    total_processed: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[str] = Field(default_factory=list)

    def __str__(self) -> str:
        return (
            f"processed: {self.total_processed}, updated: {self.updated}, "
            f"skipped: {self.skipped}, errors: {len(self.errors)}"
        )


class CacheStats(BaseModel):
    """Entry counts of the service ID resolution cache."""

    total: int = 0
    expired: int = 0
    valid: int = 0
