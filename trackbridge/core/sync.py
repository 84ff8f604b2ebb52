"""Tracking Sync Service Module."""

from collections.abc import Callable, Sequence
from datetime import UTC, datetime

from trackbridge import log
from trackbridge.core.mapper import ServiceIdMapper
from trackbridge.core.services.base import TrackingServiceAdapter
from trackbridge.exceptions import (
    ProgressFetchError,
    WatchHistoryLoadError,
    WatchHistoryWriteError,
)
from trackbridge.models.sync import SyncResult, WatchHistoryEntry
from trackbridge.models.tracking import (
    Capability,
    ProgressLookupStatus,
    TrackingProgress,
)
from trackbridge.storage.watch_history import WatchHistoryStore

__all__ = ["TrackingSyncService", "merge_progress"]


def _now() -> datetime:
    return datetime.now(UTC)


def merge_progress(
    entry: WatchHistoryEntry, progress: TrackingProgress, now: datetime
) -> WatchHistoryEntry | None:
    """Merge remote progress into a local entry.

    Episode (video) and chapter (reading) counters only ever move forward:
    the remote value is taken when it is strictly greater. A remote completion
    stamps `completed_at` with `now` only when the entry has no completion yet,
    and a remote non-completion never clears it.

    Args:
        entry (WatchHistoryEntry): Local entry
        progress (TrackingProgress): Remote snapshot
        now (datetime): Timestamp used for a new completion

    Returns:
        WatchHistoryEntry | None: The merged copy, or None if nothing changed
    """
    changes: dict = {}

    if entry.media_type.is_video and progress.current_episode is not None:
        if progress.current_episode > (entry.episode_number or 0):
            changes["episode_number"] = progress.current_episode
    elif entry.media_type.is_reading and progress.current_chapter is not None:
        if progress.current_chapter > (entry.chapter_number or 0):
            changes["chapter_number"] = progress.current_chapter

    if progress.completed and entry.completed_at is None:
        changes["completed_at"] = now

    if not changes:
        return None
    return entry.model_copy(update=changes)


class TrackingSyncService:
    """Reconciles tracked watch history with every authenticated service.

    Entries are processed one at a time, and services one at a time per entry.
    A failure against one service is recorded and the next service is tried,
    so a single bad service or entry never aborts the batch.
    """

    def __init__(
        self,
        store: WatchHistoryStore,
        available_services: Sequence[TrackingServiceAdapter],
        mapper: ServiceIdMapper,
        *,
        dry_run: bool = False,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        """Initialize the sync service.

        Args:
            store (WatchHistoryStore): Local watch history
            available_services (Sequence[TrackingServiceAdapter]): Service adapters
            mapper (ServiceIdMapper): Service ID resolver
            dry_run (bool): Log merges without writing them
            clock (Callable[[], datetime]): Source of the current time
        """
        self.store = store
        self.available_services = list(available_services)
        self.mapper = mapper
        self.dry_run = dry_run
        self.clock = clock

    def _authenticated_services(self) -> list[TrackingServiceAdapter]:
        return [
            s
            for s in self.available_services
            if s.is_authenticated and s.service.is_remote
        ]

    async def sync_all_tracked_items(self) -> SyncResult:
        """Merge remote progress into every tracked local entry.

        Returns:
            SyncResult: Counts of processed, updated and skipped entries and the
                errors met along the way
        """
        result = SyncResult()

        try:
            entries = await self.store.get_all_entries()
        except WatchHistoryLoadError as e:
            log.error(f"Failed to load watch history: {e}", exc_info=True)
            result.errors.append(f"Failed to load watch history: {e}")
            return result

        result.total_processed = len(entries)
        tracked = [entry for entry in entries if entry.is_tracked]
        log.info(
            f"Syncing {len(tracked)} tracked of {len(entries)} watch history entries"
            f"{' $${dry_run: true}$$' if self.dry_run else ''}"
        )

        for entry in tracked:
            if await self._sync_entry(entry, result):
                result.updated += 1
            else:
                result.skipped += 1

        log.success(f"Sync finished $${{{result}}}$$")
        return result

    async def _sync_entry(self, entry: WatchHistoryEntry, result: SyncResult) -> bool:
        """Sync one entry against every authenticated service.

        Returns:
            bool: True if any service changed the entry
        """
        services = self._authenticated_services()
        if not services:
            log.debug(f"No authenticated services for $$'{entry.title}'$$")
            return False

        changed = False
        for service in services:
            try:
                merged = await self._sync_entry_with_service(entry, service)
            except Exception as e:
                log.error(
                    f"Failed to sync $$'{entry.title}'$$ with {service.service}",
                    exc_info=True,
                )
                result.errors.append(f"{entry.title} ({service.service}): {e}")
                continue
            if merged is not None:
                entry = merged
                changed = True
        return changed

    async def _sync_entry_with_service(
        self, entry: WatchHistoryEntry, service: TrackingServiceAdapter
    ) -> WatchHistoryEntry | None:
        """Resolve, fetch and merge one entry against one service.

        Returns:
            WatchHistoryEntry | None: The merged entry if it changed

        Raises:
            ProgressFetchError: If the service failed to report progress
            WatchHistoryWriteError: If the merged entry could not be stored
        """
        if not service.supports(Capability.PROGRESS):
            return None

        service_id = await self.mapper.get_service_id(
            entry.to_media_ref(),
            service.service,
            self.available_services,
            release_year=entry.release_year,
        )
        if service_id is None:
            log.debug(f"No {service.service} ID for $$'{entry.title}'$$")
            return None

        lookup = await service.get_progress(service_id, entry.media_type)
        match lookup.status:
            case ProgressLookupStatus.NOT_FOUND:
                log.debug(
                    f"{service.service} has no progress for $$'{entry.title}'$$ "
                    f"$${{id: {service_id}}}$$"
                )
                return None
            case ProgressLookupStatus.ERROR:
                raise ProgressFetchError(lookup.error or "unknown error")

        merged = merge_progress(entry, lookup.progress, self.clock())
        if merged is None:
            log.debug(f"$$'{entry.title}'$$ is up to date with {service.service}")
            return None

        changes = {
            field: (getattr(entry, field), getattr(merged, field))
            for field in ("episode_number", "chapter_number", "completed_at")
            if getattr(entry, field) != getattr(merged, field)
        }
        if self.dry_run:
            log.info(
                f"[DRY RUN] Would update $$'{entry.title}'$$ from "
                f"{service.service} $${{{changes}}}$$"
            )
            return None

        if not await self.store.upsert_entry(merged):
            raise WatchHistoryWriteError(f"Failed to save {entry.title}")
        log.success(
            f"Updated $$'{entry.title}'$$ from {service.service} $${{{changes}}}$$"
        )
        return merged
