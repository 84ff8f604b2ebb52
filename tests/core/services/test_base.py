"""Tests for the shared tracking service adapter behaviour."""

import asyncio
import json
from types import SimpleNamespace

import aiohttp
import pytest

from trackbridge.exceptions import AuthenticationError
from trackbridge.models.tracking import (
    Capability,
    OAuthToken,
    ProgressLookupStatus,
    TrackingProgressUpdate,
    TrackingService,
)

from tests.core.fakes import FakeAdapter


class FakeResponse:
    """Async context manager mimicking an aiohttp response."""

    def __init__(
        self, status: int, body: object = None, headers: dict | None = None
    ) -> None:
        self.status = status
        self._body = "" if body is None else json.dumps(body)
        self.headers = headers or {}

    async def text(self) -> str:
        return self._body

    async def json(self, content_type=None):
        return json.loads(self._body)

    def raise_for_status(self) -> None:
        if self.status >= 400:
            raise aiohttp.ClientResponseError(
                SimpleNamespace(real_url="https://tracker.invalid"),
                (),
                status=self.status,
                message="error",
            )

    async def __aenter__(self) -> "FakeResponse":
        return self

    async def __aexit__(self, *exc) -> bool:
        return False


class FakeSession:
    """Session stub handing out queued responses."""

    closed = False

    def __init__(self, responses: list[FakeResponse]) -> None:
        self.responses = list(responses)
        self.requests: list[tuple[str, str, dict]] = []

    def request(self, method: str, url: str, **kwargs) -> FakeResponse:
        self.requests.append((method, url, kwargs))
        return self.responses.pop(0)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def no_sleep(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    """Skip retry back-off delays, recording them instead."""
    delays: list[float] = []

    async def fake_sleep(delay: float, *args, **kwargs) -> None:
        delays.append(delay)

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    return delays


def _adapter(responses: list[FakeResponse]) -> tuple[FakeAdapter, FakeSession]:
    adapter = FakeAdapter(TrackingService.ANILIST)
    session = FakeSession(responses)
    adapter._session = session
    return adapter, session


@pytest.mark.asyncio
async def test_request_sends_bearer_token() -> None:
    """Relative paths are joined to the API URL and carry the token."""
    adapter, session = _adapter([FakeResponse(200, {"ok": True})])

    assert await adapter._make_request("GET", "/viewer") == {"ok": True}

    method, url, kwargs = session.requests[0]
    assert (method, url) == ("GET", "https://tracker.invalid/viewer")
    assert kwargs["headers"] == {"Authorization": "Bearer anilist-token"}


@pytest.mark.asyncio
async def test_rate_limited_request_is_retried(no_sleep: list[float]) -> None:
    """A 429 waits for Retry-After and tries again."""
    adapter, session = _adapter(
        [
            FakeResponse(429, headers={"Retry-After": "2"}),
            FakeResponse(200, {"ok": True}),
        ]
    )

    assert await adapter._make_request("GET", "/x") == {"ok": True}
    assert len(session.requests) == 2
    assert no_sleep == [3]


@pytest.mark.asyncio
async def test_bad_gateway_gives_up_after_three_tries(no_sleep: list[float]) -> None:
    """Repeated 502 responses eventually raise."""
    adapter, session = _adapter([FakeResponse(502) for _ in range(3)])

    with pytest.raises(aiohttp.ClientError):
        await adapter._make_request("GET", "/x")
    assert len(session.requests) == 3


@pytest.mark.asyncio
async def test_unauthorized_retries_once_after_renewal() -> None:
    """A renewed token is retried once; a second rejection raises."""
    adapter, session = _adapter(
        [FakeResponse(401), FakeResponse(200, {"ok": True}), FakeResponse(401)]
    )
    renewals: list[bool] = []

    async def renew() -> bool:
        renewals.append(True)
        adapter.token = OAuthToken(access_token="renewed")
        return True

    adapter._handle_unauthorized = renew

    assert await adapter._make_request("GET", "/x") == {"ok": True}
    assert session.requests[1][2]["headers"] == {"Authorization": "Bearer renewed"}

    session.responses = [FakeResponse(401), FakeResponse(401)]
    with pytest.raises(AuthenticationError):
        await adapter._make_request("GET", "/x")
    assert len(renewals) == 2


@pytest.mark.asyncio
async def test_empty_responses_decode_to_empty_dict() -> None:
    """No-content and empty bodies are returned as empty dicts."""
    adapter, _ = _adapter([FakeResponse(204), FakeResponse(200)])

    assert await adapter._make_request("DELETE", "/x") == {}
    assert await adapter._make_request("GET", "/x") == {}


@pytest.mark.asyncio
async def test_error_status_raises_response_error() -> None:
    """Other error statuses surface as ClientResponseError."""
    adapter, _ = _adapter([FakeResponse(404)])

    with pytest.raises(aiohttp.ClientResponseError):
        await adapter._make_request("GET", "/x")


@pytest.mark.asyncio
async def test_capabilities_gate_public_operations() -> None:
    """Unsupported operations fail softly without calling the hooks."""
    adapter = FakeAdapter(TrackingService.SIMKL, capabilities={Capability.SEARCH})

    lookup = await adapter.get_progress("1")
    updated = await adapter.update_progress(
        TrackingProgressUpdate(media_id="1", media_title="Frieren", episode=1)
    )

    assert lookup.status is ProgressLookupStatus.ERROR
    assert updated is False
    assert adapter.progress_calls == []
    assert adapter.updates == []
    assert await adapter.get_watchlist() == []


@pytest.mark.asyncio
async def test_token_lifecycle() -> None:
    """Tokens are persisted, reloaded and forgotten on logout."""
    adapter = FakeAdapter(TrackingService.MAL, authenticated=False)
    assert not adapter.is_authenticated

    await adapter.set_token(OAuthToken(access_token="abc"))
    adapter.token = None
    await adapter.initialize()
    assert adapter.is_authenticated
    assert adapter.token.access_token == "abc"

    await adapter.logout()
    await adapter.logout()
    assert not adapter.is_authenticated
    assert await adapter.token_store.get(TrackingService.MAL) is None
