"""OAuth token persistence."""

from pydantic import ValidationError

from trackbridge import log
from trackbridge.models.tracking import OAuthToken, TrackingService
from trackbridge.storage.kv import KeyValueStore

__all__ = ["TokenStore"]


class TokenStore:
    """Persists one bearer token per tracking service.

    Tokens are kept as JSON in a dedicated key-value namespace, keyed by the
    service value.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    async def get(self, service: TrackingService) -> OAuthToken | None:
        """Load the stored token of a service.

        Args:
            service (TrackingService): Service whose token to load

        Returns:
            OAuthToken | None: The token, or None if absent or unreadable
        """
        raw = await self.store.get(service.value)
        if raw is None:
            return None
        try:
            return OAuthToken.model_validate_json(raw)
        except ValidationError:
            log.warning(
                f"Discarding unreadable stored token for $$'{service.value}'$$",
                exc_info=True,
            )
            await self.store.delete(service.value)
            return None

    async def save(self, service: TrackingService, token: OAuthToken) -> None:
        await self.store.put(service.value, token.model_dump_json())

    async def delete(self, service: TrackingService) -> None:
        await self.store.delete(service.value)
