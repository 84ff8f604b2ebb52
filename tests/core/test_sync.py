"""Tests for the tracking sync service."""

from datetime import UTC, datetime

import pytest

from trackbridge.core.mapper import ServiceIdMapper
from trackbridge.core.sync import TrackingSyncService, merge_progress
from trackbridge.models.tracking import (
    MediaType,
    TrackingProgress,
    TrackingSearchResult,
    TrackingService,
)
from trackbridge.storage import InMemoryKeyValueStore

from tests.core.fakes import FakeAdapter, FakeWatchHistoryStore, make_entry

NOW = datetime(2025, 1, 1, 12, tzinfo=UTC)
EARLIER = datetime(2024, 6, 1, tzinfo=UTC)


def _adapter(
    service: TrackingService = TrackingService.ANILIST,
    *,
    service_id: str = "154587",
    title: str = "Frieren",
    **kwargs,
) -> FakeAdapter:
    """Adapter whose search resolves `title` to `service_id`."""
    return FakeAdapter(
        service,
        search_results=[
            TrackingSearchResult(
                id=service_id,
                title=title,
                year=2023,
                service_ids={service.value: service_id},
            )
        ],
        **kwargs,
    )


def _service(store, adapters, **kwargs) -> TrackingSyncService:
    mapper = ServiceIdMapper(InMemoryKeyValueStore(), clock=lambda: NOW)
    return TrackingSyncService(store, adapters, mapper, clock=lambda: NOW, **kwargs)


def test_merge_takes_greater_episode() -> None:
    """Remote progress only wins when strictly ahead."""
    entry = make_entry(episode=5)

    merged = merge_progress(
        entry, TrackingProgress(media_id="1", current_episode=7), NOW
    )
    assert merged is not None and merged.episode_number == 7

    for episode in (5, 3):
        progress = TrackingProgress(media_id="1", current_episode=episode)
        assert merge_progress(entry, progress, NOW) is None


def test_merge_uses_chapters_for_reading_media() -> None:
    """Reading media merges chapters and ignores episodes."""
    entry = make_entry("Berserk", media_type=MediaType.MANGA, chapter=10)
    progress = TrackingProgress(
        media_id="1", media_type=MediaType.MANGA, current_episode=99, current_chapter=12
    )

    merged = merge_progress(entry, progress, NOW)

    assert merged is not None
    assert merged.chapter_number == 12
    assert merged.episode_number is None


def test_merge_completion_is_sticky() -> None:
    """A remote completion never overwrites or clears a local one."""
    completed = make_entry(episode=12, completed_at=EARLIER)

    assert (
        merge_progress(
            completed, TrackingProgress(media_id="1", completed=False), NOW
        )
        is None
    )
    assert (
        merge_progress(completed, TrackingProgress(media_id="1", completed=True), NOW)
        is None
    )

    merged = merge_progress(
        make_entry(episode=11), TrackingProgress(media_id="1", completed=True), NOW
    )
    assert merged is not None and merged.completed_at == NOW


@pytest.mark.asyncio
async def test_sync_updates_entry_from_remote_progress() -> None:
    """Newer remote progress is merged and written back."""
    entry = make_entry(episode=3)
    store = FakeWatchHistoryStore([entry])
    anilist = _adapter(
        progress={
            "154587": TrackingProgress(
                media_id="154587", current_episode=8, completed=False
            )
        }
    )

    result = await _service(store, [anilist]).sync_all_tracked_items()

    assert (result.total_processed, result.updated, result.skipped) == (1, 1, 0)
    assert result.errors == []
    assert store.entries[entry.id].episode_number == 8
    assert anilist.progress_calls == ["154587"]


@pytest.mark.asyncio
async def test_untracked_entries_are_counted_but_not_synced() -> None:
    """Entries without a normalized ID only count toward the raw total."""
    store = FakeWatchHistoryStore(
        [make_entry(tracked=False), make_entry("Dandadan", media_id="local-2")]
    )
    anilist = _adapter(title="Dandadan")

    result = await _service(store, [anilist]).sync_all_tracked_items()

    assert result.total_processed == 2
    assert result.updated + result.skipped == 1
    assert anilist.search_calls == ["Dandadan"]


@pytest.mark.asyncio
async def test_equal_remote_progress_is_skipped() -> None:
    """Equal progress leaves the entry untouched and counts it skipped."""
    store = FakeWatchHistoryStore([make_entry(episode=5)])
    anilist = _adapter(
        progress={"154587": TrackingProgress(media_id="154587", current_episode=5)}
    )

    result = await _service(store, [anilist]).sync_all_tracked_items()

    assert (result.updated, result.skipped) == (0, 1)
    assert store.upserts == []


@pytest.mark.asyncio
async def test_not_found_progress_is_not_an_error() -> None:
    """A missing remote record is a no-op."""
    store = FakeWatchHistoryStore([make_entry(episode=5)])

    result = await _service(store, [_adapter()]).sync_all_tracked_items()

    assert result.skipped == 1
    assert result.errors == []


@pytest.mark.asyncio
async def test_progress_error_is_reported_and_next_service_tried() -> None:
    """A failed lookup is recorded while other services still sync."""
    store = FakeWatchHistoryStore([make_entry(episode=2)])
    anilist = _adapter(progress_error=RuntimeError("HTTP 500"))
    mal = _adapter(
        TrackingService.MAL,
        service_id="52991",
        progress={"52991": TrackingProgress(media_id="52991", current_episode=4)},
    )

    result = await _service(store, [anilist, mal]).sync_all_tracked_items()

    assert len(result.errors) == 1
    assert "anilist" in result.errors[0]
    assert result.updated == 1
    assert next(iter(store.entries.values())).episode_number == 4


@pytest.mark.asyncio
async def test_merged_state_carries_to_next_service() -> None:
    """Each service merges on top of the previous service's result."""
    entry = make_entry(episode=2)
    store = FakeWatchHistoryStore([entry])
    anilist = _adapter(
        progress={"154587": TrackingProgress(media_id="154587", current_episode=6)}
    )
    mal = _adapter(
        TrackingService.MAL,
        service_id="52991",
        progress={
            "52991": TrackingProgress(
                media_id="52991", current_episode=4, completed=True
            )
        },
    )

    result = await _service(store, [anilist, mal]).sync_all_tracked_items()

    final = store.entries[entry.id]
    assert result.updated == 1
    assert final.episode_number == 6
    assert final.completed_at == NOW
    assert len(store.upserts) == 2


@pytest.mark.asyncio
async def test_load_failure_returns_single_error() -> None:
    """A store that cannot load produces one error and no processing."""
    store = FakeWatchHistoryStore(fail_load=True)

    result = await _service(store, [_adapter()]).sync_all_tracked_items()

    assert result.total_processed == 0
    assert len(result.errors) == 1


@pytest.mark.asyncio
async def test_write_failure_is_reported() -> None:
    """An upsert the store rejects is recorded as an error."""
    store = FakeWatchHistoryStore([make_entry(episode=1)], fail_writes=True)
    anilist = _adapter(
        progress={"154587": TrackingProgress(media_id="154587", current_episode=2)}
    )

    result = await _service(store, [anilist]).sync_all_tracked_items()

    assert len(result.errors) == 1
    assert result.skipped == 1


@pytest.mark.asyncio
async def test_no_authenticated_services_skips_without_errors() -> None:
    """Entries are skipped quietly when no service is logged in."""
    store = FakeWatchHistoryStore([make_entry(episode=1)])
    anilist = _adapter(authenticated=False)

    result = await _service(store, [anilist]).sync_all_tracked_items()

    assert (result.total_processed, result.skipped, result.errors) == (1, 1, [])
    assert anilist.search_calls == []


@pytest.mark.asyncio
async def test_dry_run_does_not_write() -> None:
    """Dry runs log the change without storing it."""
    entry = make_entry(episode=1)
    store = FakeWatchHistoryStore([entry])
    anilist = _adapter(
        progress={"154587": TrackingProgress(media_id="154587", current_episode=9)}
    )

    result = await _service(store, [anilist], dry_run=True).sync_all_tracked_items()

    assert (result.updated, result.skipped) == (0, 1)
    assert store.upserts == []
    assert store.entries[entry.id].episode_number == 1
