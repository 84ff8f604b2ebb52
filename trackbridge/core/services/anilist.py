"""AniList Tracking Service Adapter."""

from datetime import UTC, datetime
from typing import Any

from limiter import Limiter

from trackbridge import log
from trackbridge.core.services.base import TrackingServiceAdapter
from trackbridge.exceptions import TrackingServiceError
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

__all__ = ["AniListAdapter"]

# The rate limit for the AniList API *should* be 90 requests per minute, but in practice
# it seems to be around 30 requests per minute
anilist_limiter = Limiter(rate=30 / 60, capacity=3, jitter=False)

ANILIST_TO_STATUS: dict[str, TrackingStatus] = {
    "CURRENT": TrackingStatus.WATCHING,
    "REPEATING": TrackingStatus.WATCHING,
    "PLANNING": TrackingStatus.PLANNING,
    "COMPLETED": TrackingStatus.COMPLETED,
    "PAUSED": TrackingStatus.ON_HOLD,
    "DROPPED": TrackingStatus.DROPPED,
}

STATUS_TO_ANILIST: dict[TrackingStatus, str] = {
    TrackingStatus.WATCHING: "CURRENT",
    TrackingStatus.PLANNING: "PLANNING",
    TrackingStatus.COMPLETED: "COMPLETED",
    TrackingStatus.ON_HOLD: "PAUSED",
    TrackingStatus.DROPPED: "DROPPED",
}

MEDIA_LIST_FIELDS = """
    id
    status
    progress
    score(format: POINT_10_DECIMAL)
    updatedAt
    media {
        id
        type
        title { romaji english native }
        coverImage { large }
        startDate { year }
        episodes
        chapters
        idMal
    }
"""


def _anilist_type(media_type: MediaType) -> str:
    return "ANIME" if media_type.is_video else "MANGA"


class AniListAdapter(TrackingServiceAdapter):
    """Adapter for the AniList GraphQL API."""

    service = TrackingService.ANILIST
    capabilities = frozenset(
        {
            Capability.AUTHENTICATE,
            Capability.SEARCH,
            Capability.PROGRESS,
            Capability.WATCHLIST,
            Capability.RATING,
        }
    )
    limiter = anilist_limiter
    API_URL = "https://graphql.anilist.co"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.user_id: int | None = None

    async def initialize(self) -> None:
        """Load the stored token and resolve the viewer's user ID."""
        await super().initialize()
        self.user_id = None
        if not self.is_authenticated:
            return
        profile = await self.get_user_profile()
        if profile is not None:
            self.user_id = int(profile.id)
            log.info(f"Authenticated as AniList user $$'{profile.username}'$$")

    async def _query(self, query: str, variables: dict[str, Any] | None = None) -> dict:
        """Run a GraphQL query and return its `data` object.

        Raises:
            TrackingServiceError: If the response carries GraphQL errors
        """
        response = await self._make_request(
            "POST", "", json={"query": query, "variables": variables or {}}
        )
        if response.get("errors"):
            raise TrackingServiceError(f"AniList query failed: {response['errors']}")
        return response.get("data") or {}

    def _to_media_item(self, entry: dict) -> TrackingMediaItem:
        media = entry["media"]
        title = media["title"]
        media_type = MediaType.ANIME if media["type"] == "ANIME" else MediaType.MANGA
        service_ids = {"anilist": str(media["id"])}
        if media.get("idMal"):
            service_ids["mal"] = str(media["idMal"])
        return TrackingMediaItem(
            id=str(media["id"]),
            title=title.get("romaji") or title.get("english") or "Unknown Title",
            media_type=media_type,
            cover_image=(media.get("coverImage") or {}).get("large"),
            year=(media.get("startDate") or {}).get("year"),
            status=ANILIST_TO_STATUS.get(entry.get("status") or ""),
            rating=entry.get("score") or None,
            episodes_watched=entry.get("progress") if media_type.is_video else None,
            total_episodes=media.get("episodes"),
            chapters_read=entry.get("progress") if media_type.is_reading else None,
            total_chapters=media.get("chapters"),
            service_ids=service_ids,
        )

    async def _search(
        self, query: str, media_type: MediaType
    ) -> list[TrackingSearchResult]:
        gql = """
        query ($search: String, $type: MediaType) {
            Page(page: 1, perPage: 20) {
                media(search: $search, type: $type) {
                    id
                    idMal
                    title { romaji english native }
                    coverImage { large }
                    startDate { year }
                }
            }
        }
        """
        data = await self._query(
            gql, {"search": query, "type": _anilist_type(media_type)}
        )

        results: list[TrackingSearchResult] = []
        for media in (data.get("Page") or {}).get("media") or []:
            title = media["title"]
            service_ids = {"anilist": str(media["id"])}
            if media.get("idMal"):
                service_ids["mal"] = str(media["idMal"])
            results.append(
                TrackingSearchResult(
                    id=str(media["id"]),
                    title=(
                        title.get("romaji") or title.get("english") or "Unknown Title"
                    ),
                    alternative_titles={k: v for k, v in title.items() if v},
                    cover_image=(media.get("coverImage") or {}).get("large"),
                    media_type=media_type,
                    year=(media.get("startDate") or {}).get("year"),
                    service_ids=service_ids,
                )
            )
        return results

    async def _get_list_entry(self, media_id: str) -> dict | None:
        gql = f"""
        query ($mediaId: Int, $userId: Int) {{
            MediaList(mediaId: $mediaId, userId: $userId) {{
                {MEDIA_LIST_FIELDS}
            }}
        }}
        """
        data = await self._query(
            gql, {"mediaId": int(media_id), "userId": await self._get_user_id()}
        )
        return data.get("MediaList")

    async def _fetch_progress(
        self, service_id: str, media_type: MediaType
    ) -> TrackingProgress | None:
        entry = await self._get_list_entry(service_id)
        if entry is None:
            return None

        progress = entry.get("progress")
        updated_at = entry.get("updatedAt")
        return TrackingProgress(
            media_id=service_id,
            media_type=media_type,
            current_episode=progress if media_type.is_video else None,
            current_chapter=progress if media_type.is_reading else None,
            completed=entry.get("status") == "COMPLETED",
            last_updated=datetime.fromtimestamp(updated_at, UTC)
            if updated_at
            else None,
        )

    async def _get_user_id(self) -> int:
        """Return the viewer's user ID, fetching it if `initialize` could not."""
        if self.user_id is None:
            profile = await self._fetch_user()
            self.user_id = int(profile.id)
        return self.user_id

    async def _fetch_watchlist(self) -> list[TrackingMediaItem]:
        user_id = await self._get_user_id()

        gql = f"""
        query ($userId: Int, $type: MediaType) {{
            MediaListCollection(userId: $userId, type: $type) {{
                lists {{
                    entries {{
                        {MEDIA_LIST_FIELDS}
                    }}
                }}
            }}
        }}
        """
        items: list[TrackingMediaItem] = []
        for list_type in ("ANIME", "MANGA"):
            data = await self._query(gql, {"userId": user_id, "type": list_type})
            collection = data.get("MediaListCollection") or {}
            for media_list in collection.get("lists") or []:
                items.extend(
                    self._to_media_item(entry)
                    for entry in media_list.get("entries") or []
                )
        return items

    async def _save_entry(self, media_id: str, **fields: Any) -> dict:
        gql = """
        mutation (
            $mediaId: Int, $status: MediaListStatus, $progress: Int, $scoreRaw: Int
        ) {
            SaveMediaListEntry(
                mediaId: $mediaId, status: $status, progress: $progress,
                scoreRaw: $scoreRaw
            ) {
                id
                status
                progress
            }
        }
        """
        variables = {"mediaId": int(media_id)}
        variables.update({k: v for k, v in fields.items() if v is not None})
        data = await self._query(gql, variables)
        return data["SaveMediaListEntry"]

    async def _update_progress(self, update: TrackingProgressUpdate) -> None:
        status = (
            TrackingStatus.COMPLETED if update.completed else TrackingStatus.WATCHING
        )
        progress = update.episode if update.media_type.is_video else update.chapter
        await self._save_entry(
            update.media_id, status=STATUS_TO_ANILIST[status], progress=progress
        )

    async def _rate(self, media_id: str, media_type: MediaType, rating: float) -> None:
        # scoreRaw is always out of 100 regardless of the user's score format
        await self._save_entry(media_id, scoreRaw=round(rating * 10))

    async def _add_to_watchlist(self, item: TrackingMediaItem) -> None:
        await self._save_entry(
            item.id, status=STATUS_TO_ANILIST[item.status or TrackingStatus.PLANNING]
        )

    async def _remove_from_watchlist(
        self, media_id: str, media_type: MediaType
    ) -> None:
        entry = await self._get_list_entry(media_id)
        if entry is None:
            return

        gql = """
        mutation ($id: Int) {
            DeleteMediaListEntry(id: $id) {
                deleted
            }
        }
        """
        await self._query(gql, {"id": entry["id"]})

    async def _fetch_user(self) -> TrackingUserProfile:
        gql = """
        query {
            Viewer {
                id
                name
                avatar { large }
            }
        }
        """
        viewer = (await self._query(gql))["Viewer"]
        return TrackingUserProfile(
            id=str(viewer["id"]),
            username=viewer["name"],
            avatar=(viewer.get("avatar") or {}).get("large"),
        )
