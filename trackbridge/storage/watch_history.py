"""Watch history persistence."""

from datetime import UTC, datetime
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from trackbridge import log
from trackbridge.config.database import TrackBridgeDB
from trackbridge.exceptions import WatchHistoryLoadError
from trackbridge.models.db.watch_history import WatchHistory
from trackbridge.models.sync import WatchHistoryEntry

__all__ = ["SQLiteWatchHistoryStore", "WatchHistoryStore"]


class WatchHistoryStore(Protocol):
    """Source of truth for local watch/read progress."""

    async def get_all_entries(self) -> list[WatchHistoryEntry]:
        """Load every entry.

        Raises:
            WatchHistoryLoadError: If the entries cannot be read
        """
        ...

    async def upsert_entry(self, entry: WatchHistoryEntry) -> bool:
        """Insert or replace an entry, returning whether the write succeeded."""
        ...


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back out
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class SQLiteWatchHistoryStore:
    """Watch history store backed by the `watch_history` table."""

    def __init__(self, db: TrackBridgeDB) -> None:
        self.db = db

    @staticmethod
    def _to_entry(row: WatchHistory) -> WatchHistoryEntry:
        data = row.model_dump()
        for field in ("created_at", "last_played_at", "completed_at"):
            data[field] = _as_utc(data[field])
        return WatchHistoryEntry.model_validate(data)

    async def get_all_entries(self) -> list[WatchHistoryEntry]:
        """Load every entry, most recently played first.

        Returns:
            list[WatchHistoryEntry]: All stored entries

        Raises:
            WatchHistoryLoadError: If the database cannot be read
        """
        try:
            with self.db as ctx:
                rows = (
                    ctx.session.execute(
                        select(WatchHistory).order_by(
                            WatchHistory.last_played_at.desc()
                        )
                    )
                    .scalars()
                    .all()
                )
                return [self._to_entry(row) for row in rows]
        except SQLAlchemyError as e:
            raise WatchHistoryLoadError(f"Failed to load watch history: {e}") from e

    async def get_entry(self, entry_id: str) -> WatchHistoryEntry | None:
        """Fetch a single entry by its ID."""
        with self.db as ctx:
            row = ctx.session.get(WatchHistory, entry_id)
            return self._to_entry(row) if row is not None else None

    async def upsert_entry(self, entry: WatchHistoryEntry) -> bool:
        """Insert or replace an entry.

        Args:
            entry (WatchHistoryEntry): Entry to persist

        Returns:
            bool: True if the entry was written, False if the write failed
        """
        try:
            with self.db as ctx:
                ctx.session.merge(WatchHistory(**entry.model_dump()))
                ctx.session.commit()
        except SQLAlchemyError:
            log.error(
                f"Failed to write watch history entry $$'{entry.title}'$$ "
                f"$${{id: {entry.id}}}$$",
                exc_info=True,
            )
            return False
        return True
