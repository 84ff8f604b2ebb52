"""Service ID Mapper Module."""

import json
from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta

from rapidfuzz import fuzz

from trackbridge import log
from trackbridge.core.services.base import TrackingServiceAdapter
from trackbridge.exceptions import CacheEntryError
from trackbridge.models.sync import CacheStats
from trackbridge.models.tracking import (
    Capability,
    MediaRef,
    TrackingSearchResult,
    TrackingService,
    canonical_key,
)
from trackbridge.storage.kv import KeyValueStore

__all__ = ["CACHE_NAMESPACE", "ServiceIdMapper"]

CACHE_NAMESPACE = "service_id_mappings"


def _now() -> datetime:
    return datetime.now(UTC)


class ServiceIdMapper:
    """Resolves the ID a tracking service uses for a local media item.

    Resolutions are cached per `(local_id, service)` for a fixed number of days.
    On a cache miss, authenticated services are searched one at a time, the
    target service first and Simkl second since its results carry cross-linked
    IDs, and the first service that produces an ID wins.
    """

    def __init__(
        self,
        cache: KeyValueStore,
        *,
        expiration_days: int = 7,
        search_fallback_threshold: int = -1,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        """Initialize the mapper.

        Args:
            cache (KeyValueStore): Store dedicated to resolution cache entries
            expiration_days (int): Days after which a cached ID is stale
            search_fallback_threshold (int): Minimum title similarity (0-100)
                required to use the first search result when nothing matches
                exactly; -1 accepts the first result unconditionally
            clock (Callable[[], datetime]): Source of the current time
        """
        self.cache = cache
        self.expiration = timedelta(days=expiration_days)
        self.search_fallback_threshold = search_fallback_threshold
        self.clock = clock

    @staticmethod
    def _cache_key(local_id: str, service: TrackingService) -> str:
        return f"{local_id}_{service.value}"

    @staticmethod
    def _decode_entry(raw: str) -> tuple[str, datetime]:
        """Decode a cache entry into its service ID and timestamp.

        Raises:
            CacheEntryError: If the entry is not a valid cache record
        """
        try:
            data = json.loads(raw)
            service_id = str(data["service_id"])
            cached_at = datetime.fromisoformat(data["cached_at"])
        except (ValueError, KeyError, TypeError) as e:
            raise CacheEntryError(f"Malformed cache entry: {raw!r}") from e
        if cached_at.tzinfo is None:
            cached_at = cached_at.replace(tzinfo=UTC)
        return service_id, cached_at

    def _is_fresh(self, cached_at: datetime) -> bool:
        return self.clock() - cached_at < self.expiration

    async def _get_cached(self, local_id: str, service: TrackingService) -> str | None:
        """Return a fresh cached ID, deleting stale or malformed entries."""
        key = self._cache_key(local_id, service)
        try:
            raw = await self.cache.get(key)
        except Exception:
            log.error(f"Failed to read cache entry $${{key: {key}}}$$", exc_info=True)
            return None
        if raw is None:
            return None

        try:
            service_id, cached_at = self._decode_entry(raw)
        except CacheEntryError:
            log.warning(f"Discarding malformed cache entry $${{key: {key}}}$$")
            await self._discard(key)
            return None

        if not self._is_fresh(cached_at):
            log.debug(f"Cache entry expired $${{key: {key}}}$$")
            await self._discard(key)
            return None
        return service_id

    async def _discard(self, key: str) -> None:
        try:
            await self.cache.delete(key)
        except Exception:
            log.error(f"Failed to delete cache entry $${{key: {key}}}$$", exc_info=True)

    async def _cache_service_id(
        self, local_id: str, service: TrackingService, service_id: str
    ) -> None:
        """Write a resolution through to the cache. Failures are only logged."""
        key = self._cache_key(local_id, service)
        try:
            await self.cache.put(
                key,
                json.dumps(
                    {"service_id": service_id, "cached_at": self.clock().isoformat()}
                ),
            )
        except Exception:
            log.error(f"Failed to cache $${{key: {key}}}$$", exc_info=True)

    @staticmethod
    def _search_order(
        target: TrackingService, available_services: Sequence[TrackingServiceAdapter]
    ) -> list[TrackingServiceAdapter]:
        """Order the authenticated services to search with.

        The target service comes first, then Simkl, then every other
        authenticated remote service in the order given. Each appears once.
        """
        candidates = [
            s for s in available_services if s.is_authenticated and s.service.is_remote
        ]
        order: list[TrackingServiceAdapter] = []
        for preferred in (target, TrackingService.SIMKL):
            adapter = next((s for s in candidates if s.service == preferred), None)
            if adapter is not None and adapter not in order:
                order.append(adapter)
        order.extend(s for s in candidates if s not in order)
        return order

    async def get_service_id(
        self,
        media: MediaRef,
        target_service: TrackingService,
        available_services: Sequence[TrackingServiceAdapter],
        release_year: int | None = None,
    ) -> str | None:
        """Resolve the target service's ID for a media item.

        Args:
            media (MediaRef): Local media identity
            target_service (TrackingService): Service whose ID is wanted
            available_services (Sequence[TrackingServiceAdapter]): Adapters that
                may be searched
            release_year (int | None): Release year used to disambiguate
                same-titled results; defaults to the media's own year

        Returns:
            str | None: The service ID, or None if no service could resolve it
        """
        if not target_service.is_remote:
            return None
        if release_year is None:
            release_year = media.release_year

        cached = await self._get_cached(media.local_id, target_service)
        if cached is not None:
            log.debug(
                f"Using cached {target_service} ID for $$'{media.title}'$$ "
                f"$${{id: {cached}}}$$"
            )
            return cached

        search_services = self._search_order(target_service, available_services)
        if not search_services:
            log.warning(
                f"No authenticated services available to resolve $$'{media.title}'$$"
            )
            return None

        for search_service in search_services:
            try:
                service_id = await self._resolve_with(
                    media, target_service, search_service, release_year
                )
            except Exception:
                log.error(
                    f"Resolving $$'{media.title}'$$ via {search_service.service} "
                    "failed",
                    exc_info=True,
                )
                continue

            if service_id:
                await self._cache_service_id(media.local_id, target_service, service_id)
                log.info(
                    f"Resolved {target_service} ID for $$'{media.title}'$$ via "
                    f"{search_service.service} $${{id: {service_id}}}$$"
                )
                return service_id
            log.debug(
                f"{search_service.service} could not resolve $$'{media.title}'$$"
            )

        log.warning(
            f"Could not find a {target_service} ID for $$'{media.title}'$$ on any "
            "service"
        )
        return None

    async def _resolve_with(
        self,
        media: MediaRef,
        target: TrackingService,
        search_service: TrackingServiceAdapter,
        release_year: int | None,
    ) -> str | None:
        """Attempt resolution with a single search service."""
        same_service = search_service.service == target

        if same_service and search_service.supports(Capability.WATCHLIST):
            watchlist = await search_service.get_watchlist()
            title = media.title.casefold()
            if any(
                item.id == media.local_id or item.title.casefold() == title
                for item in watchlist
            ):
                log.debug(f"Found $$'{media.title}'$$ in the {target} watchlist")
                return media.local_id

        if not search_service.supports(Capability.SEARCH):
            return None

        results = await search_service.search_media(media.title, media.media_type)
        best = self._best_match(media.title, results, release_year)
        if best is None:
            return None
        return self._extract_id(best, target, same_service)

    def _best_match(
        self,
        title: str,
        results: Sequence[TrackingSearchResult],
        release_year: int | None,
    ) -> TrackingSearchResult | None:
        """Pick the best candidate among search results.

        Preference order: exact title with matching year (or no year to
        match), the same for an alternative title, exact title with a year
        mismatch, alternative title with a year mismatch, and finally the
        first result. Comparisons ignore case.
        """
        wanted = title.casefold()
        title_fallback: TrackingSearchResult | None = None
        alternative_fallback: TrackingSearchResult | None = None

        for result in results:
            year_ok = release_year is None or result.year == release_year

            if result.title.casefold() == wanted:
                if year_ok:
                    return result
                if title_fallback is None:
                    title_fallback = result
                continue

            alternatives = (result.alternative_titles or {}).values()
            if any(alt and alt.casefold() == wanted for alt in alternatives):
                if year_ok:
                    return result
                if alternative_fallback is None:
                    alternative_fallback = result

        if title_fallback is not None:
            return title_fallback
        if alternative_fallback is not None:
            return alternative_fallback
        if not results:
            return None

        first = results[0]
        if self.search_fallback_threshold >= 0:
            ratio = fuzz.ratio(wanted, first.title.casefold())
            if ratio < self.search_fallback_threshold:
                log.debug(
                    f"First result $$'{first.title}'$$ is too dissimilar to "
                    f"$$'{title}'$$ $${{ratio: {ratio:.0f}}}$$"
                )
                return None
        log.debug(f"No exact match for $$'{title}'$$, using $$'{first.title}'$$")
        return first

    @staticmethod
    def _extract_id(
        candidate: TrackingSearchResult, target: TrackingService, same_service: bool
    ) -> str | None:
        """Read the target's ID from a candidate without inventing one."""
        for key in (target.name, canonical_key(target)):
            service_id = candidate.service_ids.get(key)
            if service_id:
                return service_id
        if same_service and candidate.id:
            return candidate.id
        return None

    async def preload_service_ids(
        self,
        media: MediaRef,
        available_services: Sequence[TrackingServiceAdapter],
    ) -> dict[TrackingService, str]:
        """Resolve a media item against every authenticated service.

        Returns:
            dict[TrackingService, str]: IDs of the services that resolved
        """
        service_ids: dict[TrackingService, str] = {}
        for adapter in available_services:
            if not adapter.is_authenticated or adapter.service in service_ids:
                continue
            service_id = await self.get_service_id(
                media, adapter.service, available_services
            )
            if service_id is not None:
                service_ids[adapter.service] = service_id
        return service_ids

    async def clear_cache(self) -> None:
        """Delete every cached resolution."""
        await self.cache.clear()
        log.info("Service ID cache cleared")

    async def clear_expired_entries(self) -> int:
        """Delete stale and malformed cache entries.

        Returns:
            int: Number of entries removed
        """
        removed = 0
        for key in await self.cache.keys():
            raw = await self.cache.get(key)
            if raw is None:
                continue
            try:
                _, cached_at = self._decode_entry(raw)
            except CacheEntryError:
                cached_at = None
            if cached_at is None or not self._is_fresh(cached_at):
                await self.cache.delete(key)
                removed += 1
        log.info(f"Removed {removed} expired service ID cache entries")
        return removed

    async def get_cache_stats(self) -> CacheStats:
        """Count cached resolutions. Malformed entries count as expired."""
        stats = CacheStats()
        for key in await self.cache.keys():
            raw = await self.cache.get(key)
            if raw is None:
                continue
            stats.total += 1
            try:
                _, cached_at = self._decode_entry(raw)
            except CacheEntryError:
                stats.expired += 1
                continue
            if self._is_fresh(cached_at):
                stats.valid += 1
            else:
                stats.expired += 1
        return stats
