"""Public viewer URL discovery.

Viewer links must be reachable from outside the host, so the registry
asks a TunnelLocator for the public base URL before spawning. The
locator queries the local ngrok agent API and caches the first https
tunnel it finds. A statically configured URL bypasses discovery.
"""
from __future__ import annotations

import asyncio
import logging

import aiohttp

from .errors import TunnelUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_TUNNEL_API_URL = "http://localhost:4040/api/tunnels"


class TunnelLocator:
    """Resolves and caches the public base URL for viewer links."""

    def __init__(
        self,
        api_url: str = DEFAULT_TUNNEL_API_URL,
        public_url: str | None = None,
        timeout_seconds: float = 3.0,
    ) -> None:
        self._api_url = api_url
        self._static_url = public_url.rstrip("/") if public_url else None
        self._timeout_seconds = timeout_seconds
        self._cached_url: str | None = None
        self._lock = asyncio.Lock()

    @property
    def cached_url(self) -> str | None:
        return self._static_url or self._cached_url

    async def resolve(self) -> str:
        """Return the public base URL.

        Raises:
            TunnelUnavailableError: discovery failed or no https tunnel
                is open. Failures are never cached.
        """
        if self._static_url:
            return self._static_url
        if self._cached_url:
            return self._cached_url

        async with self._lock:
            if self._cached_url:
                return self._cached_url
            url = await self._discover()
            self._cached_url = url
            logger.info("Tunnel URL resolved: %s", url)
            return url

    def invalidate(self) -> None:
        """Drop the cached URL so the next resolve() re-discovers."""
        if self._cached_url:
            logger.info("Tunnel URL cache invalidated (was %s)", self._cached_url)
        self._cached_url = None

    async def _discover(self) -> str:
        timeout = aiohttp.ClientTimeout(total=self._timeout_seconds)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as client:
                async with client.get(self._api_url) as resp:
                    resp.raise_for_status()
                    data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            logger.warning("Tunnel discovery via %s failed: %s", self._api_url, exc)
            raise TunnelUnavailableError(f"{type(exc).__name__}: {exc}") from exc

        url = self.pick_public_url(data)
        if not url:
            logger.warning("Tunnel discovery via %s found no https tunnel", self._api_url)
            raise TunnelUnavailableError("no https tunnel")
        return url

    @staticmethod
    def pick_public_url(data: object) -> str | None:
        """Extract the first https ``public_url`` from an ngrok API payload."""
        if not isinstance(data, dict):
            return None
        tunnels = data.get("tunnels")
        if not isinstance(tunnels, list):
            return None
        for tunnel in tunnels:
            if not isinstance(tunnel, dict) or tunnel.get("proto") != "https":
                continue
            public_url = tunnel.get("public_url")
            if isinstance(public_url, str) and public_url:
                return public_url.rstrip("/")
        return None
