from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from mcpwake.engine.errors import TunnelUnavailableError
from mcpwake.engine.tunnel import TunnelLocator


def _tunnels_app(payload, status: int = 200) -> tuple[web.Application, dict[str, int]]:
    calls = {"count": 0}

    async def handler(request: web.Request) -> web.Response:
        calls["count"] += 1
        return web.json_response(payload, status=status)

    app = web.Application()
    app.router.add_get("/api/tunnels", handler)
    return app, calls


def test_pick_public_url_prefers_first_https() -> None:
    data = {"tunnels": [
        {"proto": "http", "public_url": "http://abc.ngrok.app"},
        {"proto": "https", "public_url": "https://abc.ngrok.app/"},
        {"proto": "https", "public_url": "https://other.ngrok.app"},
    ]}
    assert TunnelLocator.pick_public_url(data) == "https://abc.ngrok.app"


def test_pick_public_url_handles_bad_payloads() -> None:
    assert TunnelLocator.pick_public_url(None) is None
    assert TunnelLocator.pick_public_url({"tunnels": "nope"}) is None
    assert TunnelLocator.pick_public_url({"tunnels": [{"proto": "tcp"}]}) is None
    assert TunnelLocator.pick_public_url({"tunnels": [{"proto": "https", "public_url": ""}]}) is None


@pytest.mark.asyncio
async def test_static_url_skips_discovery() -> None:
    locator = TunnelLocator(public_url="https://fixed.example.test/")
    with patch.object(locator, "_discover", new=AsyncMock()) as discover:
        assert await locator.resolve() == "https://fixed.example.test"
        discover.assert_not_awaited()


@pytest.mark.asyncio
async def test_discovery_result_is_cached_until_invalidated() -> None:
    app, calls = _tunnels_app({"tunnels": [{"proto": "https", "public_url": "https://live.ngrok.app"}]})
    async with TestServer(app) as server:
        locator = TunnelLocator(api_url=str(server.make_url("/api/tunnels")))
        assert await locator.resolve() == "https://live.ngrok.app"
        assert await locator.resolve() == "https://live.ngrok.app"
        assert calls["count"] == 1
        assert locator.cached_url == "https://live.ngrok.app"

        locator.invalidate()
        assert locator.cached_url is None
        assert await locator.resolve() == "https://live.ngrok.app"
        assert calls["count"] == 2


@pytest.mark.asyncio
async def test_no_https_tunnel_raises_and_is_not_cached() -> None:
    app, calls = _tunnels_app({"tunnels": [{"proto": "http", "public_url": "http://plain.ngrok.app"}]})
    async with TestServer(app) as server:
        locator = TunnelLocator(api_url=str(server.make_url("/api/tunnels")))
        with pytest.raises(TunnelUnavailableError, match="no https tunnel"):
            await locator.resolve()
        with pytest.raises(TunnelUnavailableError):
            await locator.resolve()
        assert calls["count"] == 2
        assert locator.cached_url is None


@pytest.mark.asyncio
async def test_http_error_maps_to_tunnel_unavailable() -> None:
    app, calls = _tunnels_app({"error": "down"}, status=502)
    async with TestServer(app) as server:
        locator = TunnelLocator(api_url=str(server.make_url("/api/tunnels")))
        with pytest.raises(TunnelUnavailableError, match="Ngrok tunnel not available"):
            await locator.resolve()


@pytest.mark.asyncio
async def test_unreachable_agent_api_maps_to_tunnel_unavailable() -> None:
    # Port 9 (discard) on localhost is not expected to be listening.
    locator = TunnelLocator(api_url="http://127.0.0.1:9/api/tunnels", timeout_seconds=1.0)
    with pytest.raises(TunnelUnavailableError):
        await locator.resolve()
