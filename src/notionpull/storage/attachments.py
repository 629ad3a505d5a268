"""Chunked, resumable download of page attachments."""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Callable, Optional
from urllib.parse import unquote, urlparse

import aiohttp

from ..exceptions import DownloadError
from ..http.protocols import HttpClient, HttpResponse
from ..models.tree import SaveResult

if TYPE_CHECKING:
    from ..sync.ownership import ResourceRef

logger = logging.getLogger(__name__)

ASSETS_DIRNAME = "assets"
DEFAULT_EXTENSION = ".png"
DEFAULT_CHUNK_SIZE = 1024 * 1024

_CONTENT_RANGE_TOTAL = re.compile(r"/\s*(\d+)\s*$")
_EXTENSION = re.compile(r"^\.[A-Za-z0-9]{1,8}$")

RETRYABLE_EXCEPTIONS = (
    aiohttp.ClientError,
    asyncio.TimeoutError,
    OSError,
    DownloadError,
)


@dataclass
class DownloadProgress:
    """Progress of a single attachment download."""

    resource_id: str
    downloaded: int
    total: Optional[int] = None

    @property
    def percent(self) -> Optional[float]:
        if not self.total:
            return None
        return min(100.0, self.downloaded * 100.0 / self.total)


ProgressCallback = Callable[[DownloadProgress], None]


def extension_from_url(url: str) -> str:
    """File extension of the URL path, ``.png`` when there is none."""
    suffix = PurePosixPath(unquote(urlparse(url).path)).suffix
    if _EXTENSION.match(suffix):
        return suffix.lower()
    return DEFAULT_EXTENSION


def parse_total_size(response: HttpResponse) -> Optional[int]:
    """Total resource size from Content-Range, falling back to Content-Length."""
    content_range = response.header("Content-Range")
    if content_range:
        match = _CONTENT_RANGE_TOTAL.search(content_range)
        if match:
            return int(match.group(1))
    if response.status_code == 200:
        content_length = response.header("Content-Length")
        if content_length and content_length.strip().isdigit():
            return int(content_length.strip())
    return None


class AttachmentDownloader:
    """
    Downloads attachments into ``<output>/<page id>/assets/``.

    The size is read from a one-byte ranged request, then the file is
    fetched in fixed-size ranges and appended to disk. A transient failure
    restarts the chunk loop from the last complete chunk, up to
    ``retry_count`` times with a linear backoff. Servers that ignore the
    Range header are handled by writing their full response at once.

    Failures never raise out of ``save``; they are returned as a failed
    SaveResult and the partial file is removed.

    Example:
        async with AsyncHttpClient(max_retries=0) as http:
            downloader = AttachmentDownloader(http, Path("./build/meta"))
            result = await downloader.save(page_id, block_id, url)
    """

    def __init__(
        self,
        http_client: HttpClient,
        output_dir: Path,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        retry_count: int = 3,
        retry_delay: float = 1.0,
        progress_interval: float = 2.0,
        progress_threshold: float = 5.0,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        """
        Initialize the downloader.

        Args:
            http_client: Client used for all requests (its own retries should be off)
            output_dir: Base output directory
            chunk_size: Bytes requested per ranged GET
            retry_count: Extra attempts after the first failure
            retry_delay: Base delay in seconds, multiplied by the attempt number
            progress_interval: Minimum seconds between progress log lines
            progress_threshold: Minimum percent change between progress log lines
            on_progress: Called after every chunk
        """
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self._http = http_client
        self._output_dir = Path(output_dir)
        self._chunk_size = chunk_size
        self._retry_count = max(0, retry_count)
        self._retry_delay = retry_delay
        self._progress_interval = progress_interval
        self._progress_threshold = progress_threshold
        self._on_progress = on_progress
        self.bytes_downloaded = 0

    def asset_path(self, node_id: str, resource_id: str, url: str) -> Path:
        return self._output_dir / node_id / ASSETS_DIRNAME / f"{resource_id}{extension_from_url(url)}"

    async def _request_size(self, url: str) -> tuple[Optional[int], Optional[HttpResponse]]:
        """
        Ask for the first byte to learn the total size.

        Returns:
            (total size or None, full response when the server ignored Range)
        """
        response = await self._http.get(url, headers={"Range": "bytes=0-0"})
        if response.status_code == 200:
            return len(response.content), response
        if response.status_code != 206:
            raise DownloadError(f"Size request for {url} returned {response.status_code}")
        return parse_total_size(response), None

    async def _fetch_whole(self, url: str) -> bytes:
        response = await self._http.get(url)
        if not response.ok:
            raise DownloadError(f"GET {url} returned {response.status_code}")
        return response.content

    def _report(self, progress: DownloadProgress, state: dict[str, float]) -> None:
        if self._on_progress:
            self._on_progress(progress)

        percent = progress.percent
        now = time.monotonic()
        due = now - state["time"] >= self._progress_interval
        if percent is not None:
            due = due or percent - state["percent"] >= self._progress_threshold
        if not due:
            return

        state["time"] = now
        if percent is not None:
            state["percent"] = percent
            logger.debug(f"Downloading {progress.resource_id}: {percent:.0f}% of {progress.total} bytes")
        else:
            logger.debug(f"Downloading {progress.resource_id}: {progress.downloaded} bytes")

    async def _download_range(
        self,
        url: str,
        path: Path,
        offset: int,
        total: int,
        progress: DownloadProgress,
        state: dict[str, float],
    ) -> int:
        """Fetch chunks from ``offset`` to the end, appending to ``path``."""
        while offset < total:
            end = min(offset + self._chunk_size, total) - 1
            response = await self._http.get(url, headers={"Range": f"bytes={offset}-{end}"})

            if response.status_code == 200:
                # Range ignored mid-download: the body is the whole file
                await asyncio.to_thread(_write_bytes, path, response.content)
                progress.downloaded = len(response.content)
                self._report(progress, state)
                return len(response.content)
            if response.status_code != 206:
                raise DownloadError(f"Chunk {offset}-{end} of {url} returned {response.status_code}")
            if not response.content:
                raise DownloadError(f"Empty chunk {offset}-{end} for {url}")

            await asyncio.to_thread(_append_bytes, path, response.content)
            offset += len(response.content)
            progress.downloaded = offset
            self._report(progress, state)

        return offset

    async def save(self, node_id: str, resource_id: str, url: str) -> SaveResult:
        """
        Download one attachment.

        Returns:
            SaveResult pointing at the written file, or carrying the error
        """
        path = self.asset_path(node_id, resource_id, url)
        progress = DownloadProgress(resource_id=resource_id, downloaded=0)
        state = {"time": time.monotonic(), "percent": 0.0}
        written = 0
        last_error: Optional[BaseException] = None

        try:
            await asyncio.to_thread(_prepare, path)
        except OSError as e:
            logger.error(f"Cannot create {path.parent}: {e}")
            return SaveResult.failed(str(e))

        for attempt in range(self._retry_count + 1):
            try:
                written = await self._attempt(url, path, written, progress, state)
                last_error = None
                break
            except RETRYABLE_EXCEPTIONS as e:
                last_error = e
                if attempt >= self._retry_count:
                    break
                delay = self._retry_delay * (attempt + 1)
                logger.warning(
                    f"Download of {resource_id} failed at byte {written} ({e}), "
                    f"retrying in {delay:.1f}s (attempt {attempt + 1}/{self._retry_count + 1})"
                )
                await asyncio.sleep(delay)
            except Exception as e:
                # Not retryable (e.g. a response over the client's size cap)
                last_error = e
                break

        if last_error is not None:
            logger.error(f"Giving up on {resource_id} from {url}: {last_error}")
            await asyncio.to_thread(_remove, path)
            return SaveResult.failed(str(last_error))

        self.bytes_downloaded += written
        logger.info(f"Downloaded {resource_id} ({written} bytes) to {path}")
        return SaveResult.ok(path)

    async def _attempt(
        self,
        url: str,
        path: Path,
        offset: int,
        progress: DownloadProgress,
        state: dict[str, float],
    ) -> int:
        """
        One pass of the download.

        Resumes after the last chunk written to disk, which
        ``progress.downloaded`` tracks even when a pass fails midway.
        """
        if progress.total is None:
            total, whole = await self._request_size(url)
            if whole is not None:
                await asyncio.to_thread(_write_bytes, path, whole.content)
                return len(whole.content)
            if total is None:
                content = await self._fetch_whole(url)
                await asyncio.to_thread(_write_bytes, path, content)
                return len(content)
            progress.total = total

        return await self._download_range(url, path, max(offset, progress.downloaded), progress.total, progress, state)

    async def save_all(self, node_id: str, resources: Iterable[ResourceRef]) -> list[SaveResult]:
        """Download resources one after another; failures are collected, not raised."""
        results: list[SaveResult] = []
        for ref in resources:
            results.append(await self.save(node_id, ref.block_id, ref.url))
        return results


def _prepare(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.unlink(missing_ok=True)


def _write_bytes(path: Path, content: bytes) -> None:
    path.write_bytes(content)


def _append_bytes(path: Path, content: bytes) -> None:
    with open(path, "ab") as f:
        f.write(content)


def _remove(path: Path) -> None:
    path.unlink(missing_ok=True)
