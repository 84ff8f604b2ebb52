"""Tests for the bridge client wiring."""

from pathlib import Path

import pytest

from trackbridge.config.settings import TrackBridgeConfig
from trackbridge.core.bridge import BridgeClient
from trackbridge.models.tracking import OAuthToken, TrackingService


@pytest.fixture
def config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> TrackBridgeConfig:
    monkeypatch.setenv("TB_DATA_PATH", str(tmp_path))
    return TrackBridgeConfig(
        services={"mal": {"token": "mal-token", "client_id": "mal-client"}},
        sync={"debounce_delay": 0},
    )


@pytest.mark.asyncio
async def test_initialize_seeds_configured_tokens(config, db) -> None:
    """Configured tokens are stored and authenticate their adapters."""
    async with BridgeClient(config, db) as bridge:
        await bridge.initialize()

        stored = await bridge.token_store.get(TrackingService.MAL)
        assert stored is not None and stored.access_token == "mal-token"
        assert [a.service for a in bridge.authenticated_adapters] == [
            TrackingService.MAL
        ]
        assert bridge.last_synced is None


@pytest.mark.asyncio
async def test_sync_records_last_synced(config, db) -> None:
    """A completed sync persists its timestamp for the next start."""
    async with BridgeClient(config, db) as bridge:
        await bridge.initialize()
        result = await bridge.sync()

        assert result is not None
        assert result.total_processed == 0
        assert bridge.last_synced is not None
        last_synced = bridge.last_synced

    async with BridgeClient(config, db) as restarted:
        await restarted.initialize()
        assert restarted.last_synced == last_synced


@pytest.mark.asyncio
async def test_refreshed_token_survives_restart(config, db) -> None:
    """An unchanged configured token does not overwrite a refreshed one."""
    async with BridgeClient(config, db) as bridge:
        await bridge.initialize()
        await bridge.token_store.save(
            TrackingService.MAL,
            OAuthToken(access_token="refreshed-token", refresh_token="rotated"),
        )

    async with BridgeClient(config, db) as restarted:
        await restarted.initialize()
        stored = await restarted.token_store.get(TrackingService.MAL)
        assert stored.access_token == "refreshed-token"
        assert stored.refresh_token == "rotated"

    changed = TrackBridgeConfig(
        services={"mal": {"token": "new-config-token", "client_id": "mal-client"}},
        sync={"debounce_delay": 0},
    )
    async with BridgeClient(changed, db) as reconfigured:
        await reconfigured.initialize()
        stored = await reconfigured.token_store.get(TrackingService.MAL)
        assert stored.access_token == "new-config-token"
