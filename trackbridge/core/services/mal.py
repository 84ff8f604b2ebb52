"""MyAnimeList Tracking Service Adapter."""

from datetime import UTC, datetime, timedelta

import aiohttp
from limiter import Limiter

from trackbridge import log
from trackbridge.core.services.base import TrackingServiceAdapter
from trackbridge.exceptions import AuthenticationError, TokenRefreshError
from trackbridge.models.tracking import (
    Capability,
    MediaType,
    OAuthToken,
    TrackingMediaItem,
    TrackingProgress,
    TrackingProgressUpdate,
    TrackingSearchResult,
    TrackingService,
    TrackingStatus,
    TrackingUserProfile,
)

__all__ = ["MyAnimeListAdapter"]

mal_limiter = Limiter(rate=1, capacity=3, jitter=False)

# MAL tokens live for 31 days when the response omits expires_in
DEFAULT_TOKEN_LIFETIME = 2415600
MAX_QUERY_LENGTH = 64

MAL_TO_STATUS: dict[str, TrackingStatus] = {
    "watching": TrackingStatus.WATCHING,
    "reading": TrackingStatus.WATCHING,
    "plan_to_watch": TrackingStatus.PLANNING,
    "plan_to_read": TrackingStatus.PLANNING,
    "completed": TrackingStatus.COMPLETED,
    "on_hold": TrackingStatus.ON_HOLD,
    "dropped": TrackingStatus.DROPPED,
}


def _mal_status(status: TrackingStatus, media_type: MediaType) -> str:
    match status:
        case TrackingStatus.WATCHING:
            return "watching" if media_type.is_video else "reading"
        case TrackingStatus.PLANNING:
            return "plan_to_watch" if media_type.is_video else "plan_to_read"
        case TrackingStatus.COMPLETED:
            return "completed"
        case TrackingStatus.ON_HOLD:
            return "on_hold"
        case TrackingStatus.DROPPED:
            return "dropped"


def _kind(media_type: MediaType) -> str:
    return "anime" if media_type.is_video else "manga"


class MyAnimeListAdapter(TrackingServiceAdapter):
    """Adapter for the MyAnimeList v2 REST API.

    Expired access tokens are renewed with the stored refresh token, both on
    startup and once after a request is rejected with 401.
    """

    service = TrackingService.MAL
    capabilities = frozenset(
        {
            Capability.AUTHENTICATE,
            Capability.SEARCH,
            Capability.PROGRESS,
            Capability.WATCHLIST,
            Capability.RATING,
        }
    )
    limiter = mal_limiter
    API_URL = "https://api.myanimelist.net/v2"
    TOKEN_URL = "https://myanimelist.net/v1/oauth2/token"

    async def initialize(self) -> None:
        """Load the stored token, refreshing it first if it has expired."""
        await super().initialize()
        if self.token is not None and self.token.is_expired:
            try:
                await self.refresh_token()
            except TokenRefreshError as e:
                log.warning(f"MyAnimeList session is unavailable: {e}")

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        if self.client_id:
            headers["X-MAL-CLIENT-ID"] = self.client_id
        return headers

    async def refresh_token(self) -> None:
        """Exchange the refresh token for a new access token.

        Raises:
            TokenRefreshError: If no refresh token is held or the exchange fails
        """
        if self.token is None or not self.token.refresh_token:
            raise TokenRefreshError("No MyAnimeList refresh token available")
        if not self.client_id:
            raise TokenRefreshError("services.mal.client_id is required to refresh")

        try:
            data = await self._make_request(
                "POST",
                self.TOKEN_URL,
                data={
                    "client_id": self.client_id,
                    "grant_type": "refresh_token",
                    "refresh_token": self.token.refresh_token,
                },
                reauthenticated=True,
            )
        except (aiohttp.ClientError, AuthenticationError) as e:
            raise TokenRefreshError(f"MyAnimeList token refresh failed: {e}") from e

        expires_in = int(data.get("expires_in") or DEFAULT_TOKEN_LIFETIME)
        await self.set_token(
            OAuthToken(
                access_token=data["access_token"],
                refresh_token=data.get("refresh_token") or self.token.refresh_token,
                expires_at=datetime.now(UTC) + timedelta(seconds=expires_in),
            )
        )
        log.success("Refreshed the MyAnimeList access token")

    async def _handle_unauthorized(self) -> bool:
        if self.token is None or not self.token.refresh_token:
            return False
        try:
            await self.refresh_token()
        except TokenRefreshError:
            log.error("Could not renew the rejected MyAnimeList token", exc_info=True)
            return False
        return True

    async def _search(
        self, query: str, media_type: MediaType
    ) -> list[TrackingSearchResult]:
        data = await self._make_request(
            "GET",
            f"/{_kind(media_type)}",
            params={
                "q": query[:MAX_QUERY_LENGTH],
                "fields": "id,title,main_picture,start_date,alternative_titles",
                "limit": 20,
            },
        )

        results: list[TrackingSearchResult] = []
        for item in data.get("data") or []:
            node = item["node"]
            alternatives = node.get("alternative_titles") or {}
            start_date = node.get("start_date") or ""
            results.append(
                TrackingSearchResult(
                    id=str(node["id"]),
                    title=node.get("title") or "Unknown Title",
                    alternative_titles={
                        k: v
                        for k, v in alternatives.items()
                        if isinstance(v, str) and v
                    },
                    cover_image=(node.get("main_picture") or {}).get("large"),
                    media_type=media_type,
                    year=int(start_date[:4]) if start_date[:4].isdigit() else None,
                    service_ids={"mal": str(node["id"])},
                )
            )
        return results

    async def _fetch_progress(
        self, service_id: str, media_type: MediaType
    ) -> TrackingProgress | None:
        data = await self._make_request(
            "GET",
            f"/{_kind(media_type)}/{service_id}",
            params={"fields": "id,title,my_list_status"},
        )
        list_status = data.get("my_list_status")
        if not list_status:
            return None

        updated_at = list_status.get("updated_at")
        return TrackingProgress(
            media_id=service_id,
            media_type=media_type,
            current_episode=list_status.get("num_episodes_watched"),
            current_chapter=list_status.get("num_chapters_read"),
            completed=list_status.get("status") == "completed",
            last_updated=datetime.fromisoformat(updated_at) if updated_at else None,
        )

    async def _fetch_watchlist(self) -> list[TrackingMediaItem]:
        items: list[TrackingMediaItem] = []
        for media_type in (MediaType.ANIME, MediaType.MANGA):
            path: str | None = f"/users/@me/{_kind(media_type)}list"
            params: dict | None = {
                "fields": "list_status,start_date,num_episodes,num_chapters",
                "limit": 100,
            }
            while path:
                data = await self._make_request("GET", path, params=params)
                for item in data.get("data") or []:
                    node, list_status = item["node"], item.get("list_status") or {}
                    start_date = node.get("start_date") or ""
                    items.append(
                        TrackingMediaItem(
                            id=str(node["id"]),
                            title=node.get("title") or "Unknown Title",
                            media_type=media_type,
                            cover_image=(node.get("main_picture") or {}).get("large"),
                            year=int(start_date[:4])
                            if start_date[:4].isdigit()
                            else None,
                            status=MAL_TO_STATUS.get(list_status.get("status", "")),
                            rating=list_status.get("score") or None,
                            episodes_watched=list_status.get("num_episodes_watched"),
                            total_episodes=node.get("num_episodes"),
                            chapters_read=list_status.get("num_chapters_read"),
                            total_chapters=node.get("num_chapters"),
                            service_ids={"mal": str(node["id"])},
                        )
                    )
                # The next page URL already carries the query string
                path, params = (data.get("paging") or {}).get("next"), None
        return items

    async def _put_list_status(
        self, media_id: str, media_type: MediaType, body: dict[str, str]
    ) -> None:
        await self._make_request(
            "PUT", f"/{_kind(media_type)}/{media_id}/my_list_status", data=body
        )

    async def _update_progress(self, update: TrackingProgressUpdate) -> None:
        progress = update.episode if update.media_type.is_video else update.chapter
        if update.completed:
            status = TrackingStatus.COMPLETED
        elif (progress or 0) > 0:
            status = TrackingStatus.WATCHING
        else:
            status = TrackingStatus.PLANNING

        body = {"status": _mal_status(status, update.media_type)}
        if progress is not None:
            key = (
                "num_watched_episodes"
                if update.media_type.is_video
                else "num_chapters_read"
            )
            body[key] = str(progress)
        await self._put_list_status(update.media_id, update.media_type, body)

    async def _rate(self, media_id: str, media_type: MediaType, rating: float) -> None:
        score = max(0, min(10, round(rating)))
        await self._put_list_status(media_id, media_type, {"score": str(score)})

    async def _add_to_watchlist(self, item: TrackingMediaItem) -> None:
        status = item.status or TrackingStatus.PLANNING
        await self._put_list_status(
            item.id, item.media_type, {"status": _mal_status(status, item.media_type)}
        )

    async def _remove_from_watchlist(
        self, media_id: str, media_type: MediaType
    ) -> None:
        await self._make_request(
            "DELETE", f"/{_kind(media_type)}/{media_id}/my_list_status"
        )

    async def _fetch_user(self) -> TrackingUserProfile:
        data = await self._make_request("GET", "/users/@me")
        return TrackingUserProfile(
            id=str(data["id"]), username=data["name"], avatar=data.get("picture")
        )
