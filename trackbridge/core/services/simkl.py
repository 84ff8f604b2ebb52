"""Simkl Tracking Service Adapter."""

import re
from datetime import UTC, datetime

import cachetools
from limiter import Limiter

from trackbridge.core.services.base import TrackingServiceAdapter
from trackbridge.models.tracking import (
    Capability,
    MediaType,
    TrackingMediaItem,
    TrackingProgress,
    TrackingProgressUpdate,
    TrackingSearchResult,
    TrackingService,
    TrackingStatus,
    TrackingUserProfile,
)

__all__ = ["SimklAdapter"]

simkl_limiter = Limiter(rate=1, capacity=5, jitter=False)

_NON_WORD_PATTERN = re.compile(r"[^\w\s]")

SIMKL_TO_STATUS: dict[str, TrackingStatus] = {
    "watching": TrackingStatus.WATCHING,
    "plantowatch": TrackingStatus.PLANNING,
    "completed": TrackingStatus.COMPLETED,
    "hold": TrackingStatus.ON_HOLD,
    "dropped": TrackingStatus.DROPPED,
}
STATUS_TO_SIMKL = {v: k for k, v in SIMKL_TO_STATUS.items()}

# Simkl search type and sync body key per media type
SEARCH_TYPES: dict[MediaType, str] = {
    MediaType.ANIME: "anime",
    MediaType.TV_SHOW: "tv",
    MediaType.MOVIE: "movie",
}
LIST_TYPES = ("anime", "shows", "movies")

# Seconds the synced item lists are reused between lookups
ALL_ITEMS_TTL = 300


def _body_key(media_type: MediaType) -> str:
    return "movies" if media_type is MediaType.MOVIE else "shows"


def _service_ids(ids: dict) -> dict[str, str]:
    """Collect the cross-linked IDs Simkl returns alongside its own."""
    service_ids = {"simkl": str(ids.get("simkl_id") or ids.get("simkl") or "")}
    for key in ("mal", "anilist"):
        if ids.get(key):
            service_ids[key] = str(ids[key])
    return {k: v for k, v in service_ids.items() if v}


class SimklAdapter(TrackingServiceAdapter):
    """Adapter for the Simkl REST API.

    Simkl only tracks video media. Its search results carry MyAnimeList and
    AniList IDs, which makes it the preferred fallback for cross-service
    resolution.
    """

    service = TrackingService.SIMKL
    capabilities = frozenset(
        {
            Capability.AUTHENTICATE,
            Capability.SEARCH,
            Capability.PROGRESS,
            Capability.WATCHLIST,
            Capability.RATING,
        }
    )
    limiter = simkl_limiter
    API_URL = "https://api.simkl.com"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._all_items_cache: cachetools.TTLCache = cachetools.TTLCache(
            maxsize=1, ttl=ALL_ITEMS_TTL
        )

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        if self.client_id:
            headers["simkl-api-key"] = self.client_id
        return headers

    async def _search(
        self, query: str, media_type: MediaType
    ) -> list[TrackingSearchResult]:
        search_type = SEARCH_TYPES.get(media_type)
        if search_type is None:
            return []

        variations = [query, _NON_WORD_PATTERN.sub("", query).lower()]
        for variation in dict.fromkeys(v for v in variations if v.strip()):
            data = await self._make_request(
                "GET",
                f"/search/{search_type}",
                params={"q": variation, "extended": "full"},
            )
            if not isinstance(data, list) or not data:
                continue
            return [
                TrackingSearchResult(
                    id=str(item["ids"]["simkl_id"]),
                    title=item.get("title") or "Unknown Title",
                    alternative_titles={"english": item["title_en"]}
                    if item.get("title_en")
                    else None,
                    cover_image=item.get("poster"),
                    media_type=media_type,
                    year=item.get("year"),
                    service_ids=_service_ids(item["ids"]),
                )
                for item in data
                if (item.get("ids") or {}).get("simkl_id")
            ]
        return []

    async def _all_items(self) -> list[tuple[str, dict]]:
        """Fetch the user's synced lists, reusing them for a few minutes.

        Progress lookups during a sync pass share one download of the lists.
        Any write through this adapter drops the cached copy.
        """
        cached = self._all_items_cache.get("all")
        if cached is not None:
            return cached

        items: list[tuple[str, dict]] = []
        for list_type in LIST_TYPES:
            data = await self._make_request("GET", f"/sync/all-items/{list_type}")
            if isinstance(data, dict):
                items.extend((list_type, item) for item in data.get(list_type) or [])
        self._all_items_cache["all"] = items
        return items

    def _invalidate_items(self) -> None:
        self._all_items_cache.clear()

    async def _fetch_progress(
        self, service_id: str, media_type: MediaType
    ) -> TrackingProgress | None:
        for _, item in await self._all_items():
            media = item.get("show") or item.get("movie") or {}
            if _service_ids(media.get("ids") or {}).get("simkl") != service_id:
                continue

            last_watched = item.get("last_watched_at")
            return TrackingProgress(
                media_id=service_id,
                media_type=media_type,
                current_episode=item.get("watched_episodes_count"),
                completed=item.get("status") == "completed",
                last_updated=datetime.fromisoformat(last_watched.replace("Z", "+00:00"))
                if last_watched
                else None,
            )
        return None

    async def _fetch_watchlist(self) -> list[TrackingMediaItem]:
        watchlist: list[TrackingMediaItem] = []
        for list_type, item in await self._all_items():
            media = item.get("show") or item.get("movie") or {}
            service_ids = _service_ids(media.get("ids") or {})
            if "simkl" not in service_ids:
                continue
            match list_type:
                case "movies":
                    media_type = MediaType.MOVIE
                case "shows":
                    media_type = MediaType.TV_SHOW
                case _:
                    media_type = MediaType.ANIME
            watchlist.append(
                TrackingMediaItem(
                    id=service_ids["simkl"],
                    title=media.get("title") or "Unknown Title",
                    media_type=media_type,
                    cover_image=media.get("poster"),
                    year=media.get("year"),
                    status=SIMKL_TO_STATUS.get(item.get("status") or ""),
                    rating=item.get("user_rating"),
                    episodes_watched=item.get("watched_episodes_count"),
                    total_episodes=item.get("total_episodes_count"),
                    service_ids=service_ids,
                )
            )
        return watchlist

    async def _move_to_list(
        self, media_id: str, media_type: MediaType, status: TrackingStatus
    ) -> None:
        self._invalidate_items()
        await self._make_request(
            "POST",
            "/sync/add-to-list",
            json={
                _body_key(media_type): [
                    {"to": STATUS_TO_SIMKL[status], "ids": {"simkl": int(media_id)}}
                ]
            },
        )

    async def _update_progress(self, update: TrackingProgressUpdate) -> None:
        if update.episode:
            watched_at = datetime.now(UTC).isoformat()
            await self._make_request(
                "POST",
                "/sync/history",
                json={
                    _body_key(update.media_type): [
                        {
                            "ids": {"simkl": int(update.media_id)},
                            "episodes": [
                                {"number": number, "watched_at": watched_at}
                                for number in range(1, update.episode + 1)
                            ],
                        }
                    ]
                },
            )
        status = (
            TrackingStatus.COMPLETED if update.completed else TrackingStatus.WATCHING
        )
        await self._move_to_list(update.media_id, update.media_type, status)

    async def _rate(self, media_id: str, media_type: MediaType, rating: float) -> None:
        self._invalidate_items()
        await self._make_request(
            "POST",
            "/sync/ratings",
            json={
                _body_key(media_type): [
                    {
                        "ids": {"simkl": int(media_id)},
                        "rating": max(1, min(10, round(rating))),
                    }
                ]
            },
        )

    async def _add_to_watchlist(self, item: TrackingMediaItem) -> None:
        await self._move_to_list(
            item.id, item.media_type, item.status or TrackingStatus.PLANNING
        )

    async def _remove_from_watchlist(
        self, media_id: str, media_type: MediaType
    ) -> None:
        self._invalidate_items()
        await self._make_request(
            "POST",
            "/sync/history/remove",
            json={_body_key(media_type): [{"ids": {"simkl": int(media_id)}}]},
        )

    async def _fetch_user(self) -> TrackingUserProfile:
        data = await self._make_request("POST", "/users/settings")
        user = data.get("user") or {}
        return TrackingUserProfile(
            id=str((data.get("account") or {}).get("id", "")),
            username=user.get("name") or "",
            avatar=user.get("avatar"),
        )
