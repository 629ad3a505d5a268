"""Async HTTP client with retry logic and rate limiting."""

from __future__ import annotations

import asyncio
import logging
import random
from contextlib import AbstractAsyncContextManager, nullcontext
from types import TracebackType

import aiohttp

from .protocols import HttpResponse
from .rate_limiter import PerHostRateLimiter

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "notionpull/1.0 (+https://github.com/notionpull/notionpull)"


class AsyncHttpClient:
    """
    Async HTTP client with retry logic and rate limiting.

    Features:
    - Exponential backoff retry for transient failures (honors Retry-After)
    - Per-host rate limiting via PerHostRateLimiter
    - Content size limits to prevent memory exhaustion
    - Default headers sent with every request (auth, API version)

    Example:
        client = AsyncHttpClient(rate_limiter=PerHostRateLimiter())

        async with client:
            response = await client.get("https://api.notion.com/v1/pages/abc")
            print(response.json())
    """

    # Status codes that warrant a retry
    RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

    # Exceptions that warrant a retry
    RETRYABLE_EXCEPTIONS = (
        aiohttp.ClientError,
        asyncio.TimeoutError,
        ConnectionError,
    )

    def __init__(
        self,
        rate_limiter: PerHostRateLimiter | None = None,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        max_content_size: int = 50 * 1024 * 1024,
        user_agent: str | None = None,
        proxy: str | None = None,
        default_timeout: float = 30.0,
        default_headers: dict[str, str] | None = None,
    ) -> None:
        """
        Initialize the HTTP client.

        Args:
            rate_limiter: Per-host rate limiter (None = unthrottled)
            max_retries: Maximum retry attempts for failed requests
            retry_base_delay: Base delay for exponential backoff (seconds)
            max_content_size: Maximum response size in bytes
            user_agent: Custom User-Agent string
            proxy: Proxy URL (http:// or socks5://)
            default_timeout: Default request timeout in seconds
            default_headers: Headers included in all requests
        """
        self._rate_limiter = rate_limiter
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._max_content_size = max_content_size
        self._proxy = proxy
        self._default_timeout = default_timeout
        self._default_headers = default_headers or {}
        self._user_agent = user_agent or DEFAULT_USER_AGENT

        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> AsyncHttpClient:
        """Enter async context and create session."""
        connector = aiohttp.TCPConnector(
            limit=100,
            limit_per_host=10,
            ttl_dns_cache=300,
        )
        self._session = aiohttp.ClientSession(
            connector=connector,
            headers={"User-Agent": self._user_agent},
        )
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Exit async context and close session."""
        if self._session:
            await self._session.close()
            self._session = None

    def _calculate_retry_delay(self, attempt: int, retry_after: str | None = None) -> float:
        """
        Delay before the next attempt.

        A numeric Retry-After header wins; otherwise exponential backoff
        with jitter: base * 2^attempt + U(0, 1).
        """
        if retry_after and retry_after.strip().isdigit():
            return float(retry_after.strip())
        delay: float = self._retry_base_delay * (2**attempt)
        jitter: float = random.uniform(0, 1)
        return delay + jitter

    def _throttle(self, url: str) -> AbstractAsyncContextManager[None]:
        if self._rate_limiter is None:
            return nullcontext()
        return self._rate_limiter.limit(url)

    async def get(
        self,
        url: str,
        *,
        timeout: float | None = None,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
    ) -> HttpResponse:
        """
        Perform an HTTP GET request with retry logic.

        Non-retryable error statuses (4xx other than 429) are returned to the
        caller rather than raised.

        Raises:
            aiohttp.ClientError: On network errors after retries exhausted
            ValueError: On content size exceeded
        """
        if self._session is None:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")

        timeout_val = timeout or self._default_timeout
        request_headers = dict(self._default_headers)
        if headers:
            request_headers.update(headers)

        last_error: Exception | None = None

        for attempt in range(self._max_retries + 1):
            try:
                async with (
                    self._throttle(url),
                    self._session.get(
                        url,
                        timeout=aiohttp.ClientTimeout(total=timeout_val),
                        headers=request_headers,
                        params=params,
                        proxy=self._proxy,
                        allow_redirects=True,
                    ) as response,
                ):
                    if response.status in self.RETRYABLE_STATUS_CODES:
                        retry_after = response.headers.get("Retry-After")
                        if response.status == 429 and self._rate_limiter is not None and retry_after:
                            delay = self._calculate_retry_delay(attempt, retry_after)
                            self._rate_limiter.record_retry_after(url, delay)

                        if attempt < self._max_retries:
                            delay = self._calculate_retry_delay(attempt, retry_after)
                            logger.warning(
                                f"Got {response.status} for {url}, retrying in {delay:.1f}s "
                                f"(attempt {attempt + 1}/{self._max_retries + 1})"
                            )
                            await asyncio.sleep(delay)
                            continue
                        # Last attempt - let it raise
                        response.raise_for_status()

                    content_length = response.headers.get("Content-Length")
                    if content_length and int(content_length) > self._max_content_size:
                        raise ValueError(f"Content too large: {content_length} bytes")

                    content = b""
                    async for chunk in response.content.iter_chunked(8192):
                        content += chunk
                        if len(content) > self._max_content_size:
                            raise ValueError(f"Content size limit exceeded: >{self._max_content_size} bytes")

                    return HttpResponse(
                        status_code=response.status,
                        content=content,
                        content_type=response.headers.get("Content-Type", ""),
                        headers=dict(response.headers),
                        url=str(response.url),
                    )

            except self.RETRYABLE_EXCEPTIONS as e:
                last_error = e
                if attempt < self._max_retries:
                    delay = self._calculate_retry_delay(attempt)
                    logger.warning(
                        f"Error fetching {url}: {e}, retrying in {delay:.1f}s "
                        f"(attempt {attempt + 1}/{self._max_retries + 1})"
                    )
                    await asyncio.sleep(delay)
                else:
                    logger.error(f"HTTP fetch error for {url} after {self._max_retries + 1} attempts: {e}")
                    raise

        if last_error:
            raise last_error
        raise RuntimeError(f"Unexpected error fetching {url}")
