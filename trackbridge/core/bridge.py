"""Bridge Client Module."""

from datetime import UTC, datetime
from hashlib import sha256

from trackbridge import log
from trackbridge.config.database import TrackBridgeDB
from trackbridge.config.settings import TrackBridgeConfig
from trackbridge.core.debouncer import TrackingSyncDebouncer
from trackbridge.core.mapper import CACHE_NAMESPACE, ServiceIdMapper
from trackbridge.core.services import build_adapters
from trackbridge.core.services.base import TrackingServiceAdapter
from trackbridge.core.sync import TrackingSyncService
from trackbridge.models.sync import SyncResult
from trackbridge.models.tracking import OAuthToken, canonical_key
from trackbridge.storage import (
    SQLiteKeyValueStore,
    SQLiteWatchHistoryStore,
    TokenStore,
)

__all__ = ["BridgeClient"]

AUTH_NAMESPACE = "auth"
HOUSEKEEPING_NAMESPACE = "housekeeping"


class BridgeClient:
    """Wires the stores, service adapters, mapper, sync service and debouncer."""

    def __init__(self, config: TrackBridgeConfig, db: TrackBridgeDB) -> None:
        """Build every component from the configuration.

        Args:
            config (TrackBridgeConfig): Application configuration
            db (TrackBridgeDB): Database backing all persistent stores
        """
        self.config = config
        self.db = db

        self.token_store = TokenStore(SQLiteKeyValueStore(db, AUTH_NAMESPACE))
        self.housekeeping = SQLiteKeyValueStore(db, HOUSEKEEPING_NAMESPACE)
        self.watch_history = SQLiteWatchHistoryStore(db)

        self.adapters: list[TrackingServiceAdapter] = build_adapters(
            self.token_store, config
        )
        self.mapper = ServiceIdMapper(
            SQLiteKeyValueStore(db, CACHE_NAMESPACE),
            expiration_days=config.sync.cache_expiration_days,
            search_fallback_threshold=config.sync.search_fallback_threshold,
        )
        self.sync_service = TrackingSyncService(
            self.watch_history,
            self.adapters,
            self.mapper,
            dry_run=config.sync.dry_run,
        )
        self.debouncer = TrackingSyncDebouncer(
            self.sync_service,
            delay=config.sync.debounce_delay,
            busy_policy=config.sync.busy_policy,
        )

        self.last_synced: datetime | None = None

    @property
    def authenticated_adapters(self) -> list[TrackingServiceAdapter]:
        return [a for a in self.adapters if a.is_authenticated]

    async def initialize(self) -> None:
        """Seed configured tokens, authenticate adapters and prune the cache."""
        log.debug("Initializing bridge client")

        await self._seed_tokens()
        for adapter in self.adapters:
            try:
                await adapter.initialize()
            except Exception:
                log.error(f"Failed to initialize {adapter.service}", exc_info=True)

        await self.mapper.clear_expired_entries()
        self.last_synced = await self._get_last_synced()

        services = ", ".join(str(a.service) for a in self.authenticated_adapters)
        if services:
            log.info(f"Bridge client initialized with services: {services}")
        else:
            log.warning(
                "Bridge client initialized without any authenticated services; "
                "syncs will not change anything"
            )

    async def _seed_tokens(self) -> None:
        """Persist tokens from the configuration when they are new.

        A configured token replaces the stored one only if it differs from the
        token seeded on a previous start. Tokens refreshed at runtime are kept
        while the configured token is unchanged.
        """
        for adapter in self.adapters:
            key = canonical_key(adapter.service)
            service_config = self.config.services.get(key)
            if not service_config.configured:
                continue

            fingerprint = sha256(
                service_config.token.get_secret_value().encode()
            ).hexdigest()
            seeded_key = f"seeded_token_{key}"
            if (
                await self.housekeeping.get(seeded_key) == fingerprint
                and await self.token_store.get(adapter.service) is not None
            ):
                log.debug(f"Keeping the stored {adapter.service} token")
                continue

            token = OAuthToken(
                access_token=service_config.token.get_secret_value(),
                refresh_token=service_config.refresh_token.get_secret_value()
                if service_config.refresh_token
                else None,
                expires_at=service_config.expires_at,
            )
            await self.token_store.save(adapter.service, token)
            await self.housekeeping.put(seeded_key, fingerprint)
            log.debug(f"Seeded the {adapter.service} token from the configuration")

    async def sync(self) -> SyncResult | None:
        """Request a debounced sync and record when it completed.

        Returns:
            SyncResult | None: Result of the run, or None if the request was
                dropped or cancelled
        """
        result = await self.debouncer.request_sync()
        if result is not None:
            await self._set_last_synced(datetime.now(UTC))
        return result

    async def close(self) -> None:
        """Stop the debouncer and close all adapter sessions."""
        log.debug("Closing bridge client")
        self.debouncer.dispose()
        await self.debouncer.wait_idle()
        for adapter in self.adapters:
            await adapter.close()

    async def __aenter__(self) -> "BridgeClient":
        """Enter async context manager."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context manager."""
        await self.close()

    async def _get_last_synced(self) -> datetime | None:
        """Fetch the last successful sync timestamp from the database."""
        value = await self.housekeeping.get("last_synced")
        if value is None:
            return None
        return datetime.fromisoformat(value)

    async def _set_last_synced(self, last_synced: datetime) -> None:
        """Persist the timestamp of the most recent successful sync."""
        self.last_synced = last_synced
        await self.housekeeping.put("last_synced", last_synced.isoformat())
