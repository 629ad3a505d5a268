"""Per-host rate limiting for the Notion API."""

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


class PerHostRateLimiter:
    """
    Rate limiter that enforces per-host concurrency and delay limits.

    The Notion API allows an average of three requests per second per
    integration, so the defaults keep at most three requests in flight
    and space them about a third of a second apart.

    Example:
        limiter = PerHostRateLimiter(default_delay=0.34, default_concurrent=3)

        async with limiter.limit("https://api.notion.com/v1/pages/abc"):
            await fetch(...)
    """

    def __init__(
        self,
        default_delay: float = 0.34,
        default_concurrent: int = 3,
        host_configs: Optional[dict[str, dict]] = None,
    ):
        """
        Initialize the rate limiter.

        Args:
            default_delay: Minimum seconds between requests to same host
            default_concurrent: Maximum concurrent requests per host
            host_configs: Optional per-host overrides, e.g.:
                {"api.notion.com": {"delay": 0.5, "concurrent": 2}}
        """
        self.default_delay = default_delay
        self.default_concurrent = default_concurrent
        self.host_configs = host_configs or {}

        self._semaphores: dict[str, asyncio.Semaphore] = {}
        self._last_request: dict[str, float] = {}
        self._backoff_until: dict[str, float] = {}
        self._lock = asyncio.Lock()

    def _get_host(self, url: str) -> str:
        return urlparse(url).netloc

    def _get_config(self, host: str) -> tuple[float, int]:
        if host in self.host_configs:
            cfg = self.host_configs[host]
            return (
                cfg.get("delay", self.default_delay),
                cfg.get("concurrent", self.default_concurrent),
            )
        return self.default_delay, self.default_concurrent

    async def _get_semaphore(self, host: str) -> asyncio.Semaphore:
        async with self._lock:
            if host not in self._semaphores:
                _, concurrent = self._get_config(host)
                self._semaphores[host] = asyncio.Semaphore(concurrent)
            return self._semaphores[host]

    @asynccontextmanager
    async def limit(self, url: str) -> AsyncIterator[None]:
        """
        Async context manager for rate-limited requests.

        Acquires the host's semaphore slot and enforces the delay, plus any
        Retry-After pause recorded by ``record_retry_after``.
        """
        host = self._get_host(url)
        delay, _ = self._get_config(host)

        sem = await self._get_semaphore(host)

        async with sem:
            async with self._lock:
                now = time.monotonic()
                last = self._last_request.get(host, 0.0)
                wait_time = max(0.0, delay - (now - last), self._backoff_until.get(host, 0.0) - now)

                if wait_time > 0:
                    await asyncio.sleep(wait_time)

                self._last_request[host] = time.monotonic()

            yield

    def record_retry_after(self, url: str, seconds: float) -> None:
        """Pause all requests to the URL's host for ``seconds`` (HTTP 429)."""
        host = self._get_host(url)
        until = time.monotonic() + seconds
        if until > self._backoff_until.get(host, 0.0):
            self._backoff_until[host] = until
            logger.warning(f"Rate limited by {host}, pausing requests for {seconds:.1f}s")
