"""Tracking service adapter factory helpers."""

from trackbridge.config.settings import TrackBridgeConfig
from trackbridge.core.services.anilist import AniListAdapter
from trackbridge.core.services.base import TrackingServiceAdapter
from trackbridge.core.services.mal import MyAnimeListAdapter
from trackbridge.core.services.simkl import SimklAdapter
from trackbridge.exceptions import UnsupportedServiceError
from trackbridge.models.tracking import TrackingService, canonical_key
from trackbridge.storage.tokens import TokenStore

__all__ = ["build_adapter", "build_adapters"]


def build_adapter(
    service: TrackingService, token_store: TokenStore, config: TrackBridgeConfig
) -> TrackingServiceAdapter:
    """Instantiate the adapter of one remote tracking service.

    Args:
        service (TrackingService): Service to build an adapter for
        token_store (TokenStore): Shared token storage
        config (TrackBridgeConfig): Application configuration

    Returns:
        TrackingServiceAdapter: The unauthenticated adapter; call `initialize()`

    Raises:
        UnsupportedServiceError: If the service has no remote API
    """
    match service:
        case TrackingService.ANILIST:
            adapter_cls = AniListAdapter
        case TrackingService.MAL:
            adapter_cls = MyAnimeListAdapter
        case TrackingService.SIMKL:
            adapter_cls = SimklAdapter
        case _:
            raise UnsupportedServiceError(f"No adapter for service '{service}'")

    service_config = config.services.get(canonical_key(service))
    return adapter_cls(
        token_store,
        client_id=service_config.client_id,
        request_timeout=config.sync.request_timeout,
    )


def build_adapters(
    token_store: TokenStore, config: TrackBridgeConfig
) -> list[TrackingServiceAdapter]:
    """Instantiate adapters for every remote service, in enumeration order."""
    return [
        build_adapter(service, token_store, config)
        for service in TrackingService
        if service.is_remote
    ]
