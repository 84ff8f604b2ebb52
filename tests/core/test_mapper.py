"""Tests for the service ID mapper."""

import json
from datetime import UTC, datetime, timedelta

import pytest

from trackbridge.core.mapper import ServiceIdMapper
from trackbridge.models.tracking import (
    Capability,
    MediaRef,
    TrackingMediaItem,
    TrackingSearchResult,
    TrackingService,
)
from trackbridge.storage import InMemoryKeyValueStore

from tests.core.fakes import FakeAdapter

NOW = datetime(2025, 1, 1, 12, tzinfo=UTC)

FRIEREN = MediaRef(local_id="local-1", title="Frieren", release_year=2023)


def _mapper(cache: InMemoryKeyValueStore | None = None, **kwargs) -> ServiceIdMapper:
    return ServiceIdMapper(
        cache if cache is not None else InMemoryKeyValueStore(),
        clock=lambda: NOW,
        **kwargs,
    )


def _cache_value(service_id: str, cached_at: datetime) -> str:
    return json.dumps({"service_id": service_id, "cached_at": cached_at.isoformat()})


def _result(
    title: str,
    year: int | None = None,
    service_ids: dict[str, str] | None = None,
    alternative_titles: dict[str, str] | None = None,
    result_id: str = "1",
) -> TrackingSearchResult:
    return TrackingSearchResult(
        id=result_id,
        title=title,
        year=year,
        service_ids=service_ids or {},
        alternative_titles=alternative_titles,
    )


@pytest.mark.asyncio
async def test_exact_title_and_year_match_wins() -> None:
    """Pick the exact title+year result over a later partial match."""
    mal = FakeAdapter(
        TrackingService.MAL,
        search_results=[
            _result("Frieren", 2023, {"mal": "12345"}),
            _result("Frieren: Beyond", 2024, {"mal": "99999"}),
        ],
    )

    service_id = await _mapper().get_service_id(FRIEREN, TrackingService.MAL, [mal])

    assert service_id == "12345"


@pytest.mark.asyncio
async def test_no_available_services_returns_none() -> None:
    """Return None without any lookups when nothing can be searched."""
    anilist = FakeAdapter(TrackingService.ANILIST, authenticated=False)

    mapper = _mapper()
    assert await mapper.get_service_id(FRIEREN, TrackingService.ANILIST, []) is None
    assert (
        await mapper.get_service_id(FRIEREN, TrackingService.ANILIST, [anilist])
        is None
    )
    assert anilist.search_calls == []
    assert anilist.watchlist_calls == 0


@pytest.mark.asyncio
async def test_local_target_is_never_resolved() -> None:
    """The local pseudo-service has no remote IDs."""
    simkl = FakeAdapter(
        TrackingService.SIMKL, search_results=[_result("Frieren", 2023)]
    )

    mapper = _mapper()
    assert await mapper.get_service_id(FRIEREN, TrackingService.LOCAL, [simkl]) is None
    assert simkl.search_calls == []


@pytest.mark.asyncio
async def test_search_stops_at_first_resolving_service() -> None:
    """Later services are never searched once one resolves the ID."""
    anilist = FakeAdapter(TrackingService.ANILIST, search_results=[])
    simkl = FakeAdapter(
        TrackingService.SIMKL,
        search_results=[
            _result("Frieren", 2023, {"simkl": "77", "anilist": "154587"})
        ],
    )
    mal = FakeAdapter(
        TrackingService.MAL,
        search_results=[_result("Frieren", 2023, {"anilist": "000"})],
    )

    service_id = await _mapper().get_service_id(
        FRIEREN, TrackingService.ANILIST, [mal, anilist, simkl]
    )

    assert service_id == "154587"
    assert anilist.search_calls == ["Frieren"]
    assert simkl.search_calls == ["Frieren"]
    assert mal.search_calls == []


@pytest.mark.asyncio
async def test_watchlist_match_skips_title_search() -> None:
    """A watchlist hit on the target service reuses the local ID."""
    anilist = FakeAdapter(
        TrackingService.ANILIST,
        watchlist=[TrackingMediaItem(id="154587", title="frieren")],
        search_results=[_result("Frieren", 2023, {"anilist": "1"})],
    )
    simkl = FakeAdapter(
        TrackingService.SIMKL,
        search_results=[_result("Frieren", 2023, {"anilist": "2"})],
    )

    service_id = await _mapper().get_service_id(
        FRIEREN, TrackingService.ANILIST, [simkl, anilist]
    )

    assert service_id == "local-1"
    assert anilist.watchlist_calls == 1
    assert anilist.search_calls == []
    assert simkl.search_calls == []


@pytest.mark.asyncio
async def test_fresh_cache_entry_is_used() -> None:
    """A cache entry younger than the expiration skips resolution."""
    cache = InMemoryKeyValueStore(
        {"local-1_anilist": _cache_value("42", NOW - timedelta(days=6))}
    )
    anilist = FakeAdapter(
        TrackingService.ANILIST, search_results=[_result("Frieren", 2023)]
    )

    service_id = await _mapper(cache).get_service_id(
        FRIEREN, TrackingService.ANILIST, [anilist]
    )

    assert service_id == "42"
    assert anilist.search_calls == []


@pytest.mark.asyncio
async def test_expired_cache_entry_is_resolved_again() -> None:
    """An entry exactly seven days old is stale and gets replaced."""
    cache = InMemoryKeyValueStore(
        {"local-1_anilist": _cache_value("42", NOW - timedelta(days=7))}
    )
    anilist = FakeAdapter(
        TrackingService.ANILIST,
        search_results=[_result("Frieren", 2023, {"anilist": "154587"})],
    )

    service_id = await _mapper(cache).get_service_id(
        FRIEREN, TrackingService.ANILIST, [anilist]
    )

    assert service_id == "154587"
    assert anilist.search_calls == ["Frieren"]
    stored = json.loads(await cache.get("local-1_anilist"))
    assert stored == {"service_id": "154587", "cached_at": NOW.isoformat()}


@pytest.mark.asyncio
async def test_expired_cache_entry_is_deleted_when_unresolved() -> None:
    """A stale entry is removed even if nothing resolves afterwards."""
    cache = InMemoryKeyValueStore(
        {"local-1_anilist": _cache_value("42", NOW - timedelta(days=8))}
    )

    mapper = _mapper(cache)
    assert await mapper.get_service_id(FRIEREN, TrackingService.ANILIST, []) is None
    assert await cache.keys() == []


@pytest.mark.asyncio
async def test_malformed_cache_entry_is_discarded() -> None:
    """Unparseable entries are deleted and treated as absent."""
    cache = InMemoryKeyValueStore({"local-1_anilist": "not json"})
    anilist = FakeAdapter(
        TrackingService.ANILIST,
        search_results=[_result("Frieren", 2023, {"anilist": "154587"})],
    )

    service_id = await _mapper(cache).get_service_id(
        FRIEREN, TrackingService.ANILIST, [anilist]
    )

    assert service_id == "154587"
    assert json.loads(await cache.get("local-1_anilist"))["service_id"] == "154587"


@pytest.mark.asyncio
async def test_failing_service_falls_through_to_next() -> None:
    """An exception from one service does not stop the search chain."""
    anilist = FakeAdapter(
        TrackingService.ANILIST, capabilities={Capability.SEARCH}
    )
    simkl = FakeAdapter(
        TrackingService.SIMKL,
        search_results=[_result("Frieren", 2023, {"anilist": "154587"})],
    )

    async def _broken_search(query, media_type):
        raise RuntimeError("boom")

    anilist.search_media = _broken_search

    service_id = await _mapper().get_service_id(
        FRIEREN, TrackingService.ANILIST, [anilist, simkl]
    )

    assert service_id == "154587"


@pytest.mark.asyncio
async def test_missing_target_id_does_not_fall_back_to_foreign_id() -> None:
    """A cross-service match without the target's ID resolves nothing."""
    simkl = FakeAdapter(
        TrackingService.SIMKL,
        search_results=[_result("Frieren", 2023, {"simkl": "77"}, result_id="77")],
    )

    service_id = await _mapper().get_service_id(
        FRIEREN, TrackingService.ANILIST, [simkl]
    )

    assert service_id is None


@pytest.mark.asyncio
async def test_same_service_result_uses_its_own_id() -> None:
    """A same-service candidate without service_ids falls back to its ID."""
    mal = FakeAdapter(
        TrackingService.MAL,
        search_results=[_result("Frieren", 2023, result_id="52991")],
    )

    service_id = await _mapper().get_service_id(FRIEREN, TrackingService.MAL, [mal])

    assert service_id == "52991"


def test_best_match_preference_order() -> None:
    """Exact title+year beats alternative title, then year mismatches."""
    mapper = _mapper()
    exact_wrong_year = _result("Frieren", 2020, result_id="a")
    alt_right_year = _result(
        "Sousou no Frieren", 2023, alternative_titles={"en": "Frieren"}, result_id="b"
    )
    exact_right_year = _result("FRIEREN", 2023, result_id="c")

    assert (
        mapper._best_match(
            "Frieren", [exact_wrong_year, exact_right_year, alt_right_year], 2023
        ).id
        == "c"
    )
    assert (
        mapper._best_match("Frieren", [exact_wrong_year, alt_right_year], 2023).id
        == "b"
    )
    assert mapper._best_match("Frieren", [exact_wrong_year], 2023).id == "a"
    assert mapper._best_match("Frieren", [exact_wrong_year], None).id == "a"


def test_best_match_falls_back_to_first_result() -> None:
    """Without any title match the first result is used."""
    results = [
        _result("Sousou no Frieren", result_id="a"),
        _result("Other", result_id="b"),
    ]

    assert _mapper()._best_match("Frieren", results, 2023).id == "a"
    assert _mapper()._best_match("Frieren", [], 2023) is None


def test_best_match_threshold_rejects_dissimilar_fallback() -> None:
    """A similarity threshold gates the first-result fallback."""
    results = [_result("Completely Different Show", result_id="a")]

    strict = _mapper(search_fallback_threshold=80)
    lenient = _mapper(search_fallback_threshold=0)

    assert strict._best_match("Frieren", results, None) is None
    assert lenient._best_match("Frieren", results, None).id == "a"


@pytest.mark.asyncio
async def test_cache_maintenance() -> None:
    """Stats count valid and expired entries and pruning removes stale ones."""
    cache = InMemoryKeyValueStore(
        {
            "a_anilist": _cache_value("1", NOW - timedelta(days=1)),
            "b_anilist": _cache_value("2", NOW - timedelta(days=10)),
            "c_mal": "garbage",
        }
    )
    mapper = _mapper(cache)

    stats = await mapper.get_cache_stats()
    assert (stats.total, stats.valid, stats.expired) == (3, 1, 2)

    assert await mapper.clear_expired_entries() == 2
    assert await cache.keys() == ["a_anilist"]

    await mapper.clear_cache()
    assert await cache.keys() == []


@pytest.mark.asyncio
async def test_preload_service_ids() -> None:
    """Preloading resolves every authenticated service."""
    anilist = FakeAdapter(
        TrackingService.ANILIST,
        search_results=[
            _result("Frieren", 2023, {"anilist": "154587", "mal": "52991"})
        ],
    )
    mal = FakeAdapter(TrackingService.MAL, search_results=[])
    simkl = FakeAdapter(TrackingService.SIMKL, authenticated=False)

    service_ids = await _mapper().preload_service_ids(FRIEREN, [anilist, mal, simkl])

    assert service_ids == {
        TrackingService.ANILIST: "154587",
        TrackingService.MAL: "52991",
    }


class FailingCache(InMemoryKeyValueStore):
    """Cache whose reads or writes raise like a full or locked database."""

    def __init__(self, *, fail_get: bool = False, fail_put: bool = False) -> None:
        super().__init__()
        self.fail_get = fail_get
        self.fail_put = fail_put

    async def get(self, key: str) -> str | None:
        if self.fail_get:
            raise OSError("database is locked")
        return await super().get(key)

    async def put(self, key: str, value: str) -> None:
        if self.fail_put:
            raise OSError("disk full")
        await super().put(key, value)


@pytest.mark.asyncio
async def test_cache_write_failure_keeps_resolved_id() -> None:
    """A resolved ID is returned even when it cannot be cached."""
    mal = FakeAdapter(
        TrackingService.MAL,
        search_results=[_result("Frieren", 2023, {"mal": "12345"})],
    )
    mapper = _mapper(FailingCache(fail_put=True))

    assert await mapper.get_service_id(FRIEREN, TrackingService.MAL, [mal]) == "12345"
    assert await mapper.preload_service_ids(FRIEREN, [mal]) == {
        TrackingService.MAL: "12345"
    }


@pytest.mark.asyncio
async def test_cache_read_failure_is_a_miss() -> None:
    """An unreadable cache falls through to a live resolution."""
    anilist = FakeAdapter(
        TrackingService.ANILIST,
        search_results=[_result("Frieren", 2023, {"anilist": "154587"})],
    )
    mapper = _mapper(FailingCache(fail_get=True))

    service_id = await mapper.get_service_id(
        FRIEREN, TrackingService.ANILIST, [anilist]
    )

    assert service_id == "154587"
    assert anilist.search_calls == ["Frieren"]
