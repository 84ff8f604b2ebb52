"""Tracking Service Adapter Base Module."""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, ClassVar

import aiohttp
from limiter import Limiter

from trackbridge import __version__, log
from trackbridge.exceptions import AuthenticationError
from trackbridge.models.tracking import (
    Capability,
    MediaType,
    OAuthToken,
    ProgressLookup,
    TrackingMediaItem,
    TrackingProgress,
    TrackingProgressUpdate,
    TrackingSearchResult,
    TrackingService,
    TrackingUserProfile,
)
from trackbridge.storage.tokens import TokenStore

__all__ = ["TrackingServiceAdapter"]

MAX_TRIES = 3


class TrackingServiceAdapter(ABC):
    """Base class for a tracking service's API client.

    Public operations never raise. Reads return an empty value and writes
    return False on failure, after logging the cause. Subclasses implement the
    underscore-prefixed hooks, which are free to raise.

    Each subclass declares the operations it supports in `capabilities`;
    callers check `supports()` before calling instead of relying on a
    "not implemented" error.
    """

    service: ClassVar[TrackingService]
    capabilities: ClassVar[frozenset[Capability]]
    limiter: ClassVar[Limiter]
    API_URL: ClassVar[str]

    def __init__(
        self,
        token_store: TokenStore,
        *,
        client_id: str | None = None,
        request_timeout: float = 30.0,
    ) -> None:
        """Initialize the adapter.

        Args:
            token_store (TokenStore): Persistent token storage
            client_id (str | None): API client ID for services that require one
            request_timeout (float): Total timeout of a single HTTP request
        """
        self.token_store = token_store
        self.client_id = client_id
        self.timeout = aiohttp.ClientTimeout(total=request_timeout)
        self.token: OAuthToken | None = None
        self._session: aiohttp.ClientSession | None = None

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} authenticated={self.is_authenticated}>"

    @property
    def is_authenticated(self) -> bool:
        """Whether a non-expired bearer token is held."""
        return self.token is not None and not self.token.is_expired

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    async def initialize(self) -> None:
        """Load the persisted token for this service."""
        self.token = await self.token_store.get(self.service)
        if self.token is None:
            log.debug(f"No stored token for $$'{self.service}'$$")
        elif self.token.is_expired:
            log.warning(f"Stored token for $$'{self.service}'$$ has expired")

    async def set_token(self, token: OAuthToken) -> None:
        """Persist and adopt a new token."""
        await self.token_store.save(self.service, token)
        self.token = token

    async def logout(self) -> None:
        """Forget the stored token. Safe to call repeatedly."""
        await self.token_store.delete(self.service)
        self.token = None
        log.info(f"Logged out of $$'{self.service}'$$")

    def _headers(self) -> dict[str, str]:
        """Headers shared by every request of the session."""
        return {
            "Accept": "application/json",
            "User-Agent": f"TrackBridge/{__version__}",
        }

    def _auth_headers(self) -> dict[str, str]:
        # Sent per request so a refreshed token applies without a new session
        if self.token is None:
            return {}
        return {"Authorization": f"Bearer {self.token.access_token}"}

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the aiohttp session.

        Returns:
            aiohttp.ClientSession: The active session for making HTTP requests.
        """
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers=self._headers(), timeout=self.timeout
            )
        return self._session

    async def close(self) -> None:
        """Close the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def _handle_unauthorized(self) -> bool:
        """Try to recover from a 401 response.

        Returns:
            bool: True if the token was renewed and the request should be retried
        """
        return False

    async def _make_request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        data: dict[str, str] | None = None,
        retry_count: int = 0,
        reauthenticated: bool = False,
    ) -> Any:
        """Makes a rate-limited request to the service API.

        Rate limit (429) and bad gateway (502) responses as well as connection
        errors are retried, up to three attempts in total.

        Args:
            method (str): HTTP method
            path (str): Path relative to API_URL, or an absolute URL
            params (dict[str, Any] | None): Query string parameters
            json (Any): JSON request body
            data (dict[str, str] | None): Form-encoded request body
            retry_count (int): Number of attempts already made

        Returns:
            Any: Decoded JSON response, or an empty dict for empty bodies

        Raises:
            aiohttp.ClientError: If the request keeps failing or returns an error status
            AuthenticationError: If the service rejects the token
        """
        if retry_count >= MAX_TRIES:
            raise aiohttp.ClientError(
                f"Failed to make request to {self.service} after {MAX_TRIES} tries"
            )

        url = path if path.startswith("http") else f"{self.API_URL}{path}"
        session = await self._get_session()

        def retry() -> Any:
            return self._make_request(
                method,
                path,
                params=params,
                json=json,
                data=data,
                retry_count=retry_count + 1,
                reauthenticated=reauthenticated,
            )

        try:
            async with (
                self.limiter,
                session.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    data=data,
                    headers=self._auth_headers(),
                ) as response,
            ):
                if response.status == 429:  # Handle rate limit retries
                    retry_after = int(response.headers.get("Retry-After", 60))
                    log.warning(f"Rate limit exceeded, waiting {retry_after} seconds")
                    await asyncio.sleep(retry_after + 1)
                    return await retry()
                elif response.status == 502:  # Bad Gateway
                    log.warning("Received 502 Bad Gateway, retrying")
                    await asyncio.sleep(1)
                    return await retry()
                elif response.status == 401:
                    if not reauthenticated and await self._handle_unauthorized():
                        return await self._make_request(
                            method,
                            path,
                            params=params,
                            json=json,
                            data=data,
                            retry_count=retry_count,
                            reauthenticated=True,
                        )
                    raise AuthenticationError(
                        f"{self.service} rejected the access token"
                    )

                if response.status >= 400:
                    response_text = await response.text()
                    log.debug(
                        f"{method} {url} failed with {response.status}: "
                        f"{response_text}"
                    )
                response.raise_for_status()

                if response.status == 204:
                    return {}
                body = await response.text()
                if not body.strip():
                    return {}
                return await response.json(content_type=None)

        except (TimeoutError, aiohttp.ClientConnectionError):
            log.warning(f"Connection error while making request to {self.service}")
            await asyncio.sleep(1)
            return await retry()

    async def search_media(
        self, query: str, media_type: MediaType
    ) -> list[TrackingSearchResult]:
        """Search the service for media matching a title.

        Args:
            query (str): Title to search for
            media_type (MediaType): Kind of media to search

        Returns:
            list[TrackingSearchResult]: Results in the service's relevance order,
                empty on any failure
        """
        if not self.supports(Capability.SEARCH) or not self.is_authenticated:
            log.debug(f"Search unavailable for $$'{query}'$$")
            return []
        try:
            results = await self._search(query, media_type)
        except Exception:
            log.error(f"Search failed for $$'{query}'$$", exc_info=True)
            return []
        log.debug(f"Found {len(results)} results for $$'{query}'$$")
        return results

    async def get_progress(
        self, service_id: str, media_type: MediaType = MediaType.ANIME
    ) -> ProgressLookup:
        """Fetch the user's progress for one item.

        Args:
            service_id (str): The service's ID for the item
            media_type (MediaType): Kind of media the ID refers to

        Returns:
            ProgressLookup: found, not_found, or error with the failure reason
        """
        if not self.supports(Capability.PROGRESS):
            return ProgressLookup.failed(f"{self.service} does not report progress")
        if not self.is_authenticated:
            return ProgressLookup.failed(f"Not authenticated with {self.service}")
        try:
            progress = await self._fetch_progress(service_id, media_type)
        except aiohttp.ClientResponseError as e:
            if e.status == 404:
                return ProgressLookup.not_found()
            log.error(
                f"Failed to fetch progress $${{id: {service_id}}}$$", exc_info=True
            )
            return ProgressLookup.failed(f"HTTP {e.status}: {e.message}")
        except Exception as e:
            log.error(
                f"Failed to fetch progress $${{id: {service_id}}}$$", exc_info=True
            )
            return ProgressLookup.failed(str(e) or e.__class__.__name__)
        if progress is None:
            return ProgressLookup.not_found()
        return ProgressLookup.found(progress)

    async def get_watchlist(self) -> list[TrackingMediaItem]:
        """Fetch every item on the user's lists, empty on failure."""
        if not self.supports(Capability.WATCHLIST) or not self.is_authenticated:
            return []
        try:
            return await self._fetch_watchlist()
        except Exception:
            log.error("Failed to fetch watchlist", exc_info=True)
            return []

    async def update_progress(self, update: TrackingProgressUpdate) -> bool:
        """Push progress for one item.

        Args:
            update (TrackingProgressUpdate): Progress to write

        Returns:
            bool: True if the service accepted the update
        """
        if not self.supports(Capability.PROGRESS) or not self.is_authenticated:
            return False
        try:
            await self._update_progress(update)
        except Exception:
            log.error(
                f"Failed to update progress for $$'{update.media_title}'$$ "
                f"$${{id: {update.media_id}}}$$",
                exc_info=True,
            )
            return False
        log.success(
            f"Updated progress for $$'{update.media_title}'$$ "
            f"$${{id: {update.media_id}}}$$"
        )
        return True

    async def rate_media(
        self, media_id: str, rating: float, media_type: MediaType = MediaType.ANIME
    ) -> bool:
        """Rate an item on a 0-10 scale, returning whether it succeeded."""
        if not self.supports(Capability.RATING) or not self.is_authenticated:
            return False
        try:
            await self._rate(media_id, media_type, rating)
        except Exception:
            log.error(f"Failed to rate $${{id: {media_id}}}$$", exc_info=True)
            return False
        return True

    async def add_to_watchlist(self, item: TrackingMediaItem) -> bool:
        """Add an item to the user's planning list."""
        if not self.supports(Capability.WATCHLIST) or not self.is_authenticated:
            return False
        try:
            await self._add_to_watchlist(item)
        except Exception:
            log.error(
                f"Failed to add $$'{item.title}'$$ to the watchlist", exc_info=True
            )
            return False
        return True

    async def remove_from_watchlist(
        self, media_id: str, media_type: MediaType = MediaType.ANIME
    ) -> bool:
        """Remove an item from the user's lists."""
        if not self.supports(Capability.WATCHLIST) or not self.is_authenticated:
            return False
        try:
            await self._remove_from_watchlist(media_id, media_type)
        except Exception:
            log.error(
                f"Failed to remove $${{id: {media_id}}}$$ from the watchlist",
                exc_info=True,
            )
            return False
        return True

    async def get_user_profile(self) -> TrackingUserProfile | None:
        """Fetch the authenticated user's profile, None on failure."""
        if not self.is_authenticated:
            return None
        try:
            return await self._fetch_user()
        except Exception:
            log.error("Failed to fetch user profile", exc_info=True)
            return None

    @abstractmethod
    async def _search(
        self, query: str, media_type: MediaType
    ) -> list[TrackingSearchResult]: ...

    @abstractmethod
    async def _fetch_progress(
        self, service_id: str, media_type: MediaType
    ) -> TrackingProgress | None:
        """Return the progress record, or None if the service has none."""

    @abstractmethod
    async def _fetch_watchlist(self) -> list[TrackingMediaItem]: ...

    @abstractmethod
    async def _update_progress(self, update: TrackingProgressUpdate) -> None: ...

    @abstractmethod
    async def _rate(
        self, media_id: str, media_type: MediaType, rating: float
    ) -> None: ...

    @abstractmethod
    async def _add_to_watchlist(self, item: TrackingMediaItem) -> None: ...

    @abstractmethod
    async def _remove_from_watchlist(
        self, media_id: str, media_type: MediaType
    ) -> None: ...

    @abstractmethod
    async def _fetch_user(self) -> TrackingUserProfile: ...
