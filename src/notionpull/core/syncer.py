"""Main Syncer class with streaming event API."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Iterable
from types import TracebackType
from typing import Callable, Optional, Union

from ..cache.detector import ChangeDetector
from ..concurrency.batching import dispatch
from ..cache.store import CacheStore
from ..exceptions import ConfigError
from ..http import AsyncHttpClient, HttpClient, PerHostRateLimiter
from ..models.config import NotionpullConfig, PageRef
from ..models.events import EventType, SyncEvent, SyncStats
from ..models.tree import normalize_id
from ..notion.client import NotionClient
from ..notion.fetcher import TreeFetcher
from ..notion.protocols import TreeClient
from ..storage.attachments import AttachmentDownloader, ProgressCallback
from ..storage.snapshots import SnapshotWriter
from ..sync.context import SyncContext
from ..sync.coordinator import SyncCoordinator
from ..sync.ownership import ResourceOwnershipTracker

logger = logging.getLogger(__name__)

# Upper bound for a single attachment response (only hit when a server
# ignores Range and returns the whole file at once)
MAX_ATTACHMENT_SIZE = 1024 * 1024 * 1024


class Syncer:
    """
    Primary API for notionpull - streaming events.

    The Syncer wires the Notion client, cache, writer and downloader
    together and mirrors the configured root pages in groups of
    ``sync.root_concurrency`` (default 1, one root at a time). Every root
    gets its own coordinator and resource ownership map, so an attachment
    referenced from two roots is downloaded under each of them. A failing
    root is reported and the remaining roots still run.

    Example:
        config = NotionpullConfig(pages=["1429989fe8ac4effbc8f57f56486db54"])

        async with Syncer(config) as syncer:
            async for event in syncer.run():
                if event.type == EventType.PAGE_SAVED:
                    print(f"Saved: {event.output_path}")
                elif event.is_error:
                    print(f"Error: {event.page_id} - {event.error}")

        print(f"Stats: {syncer.stats.to_dict()}")
    """

    def __init__(
        self,
        config: NotionpullConfig,
        client: Optional[TreeClient] = None,
        download_client: Optional[HttpClient] = None,
        on_download_progress: Optional[ProgressCallback] = None,
    ):
        """
        Initialize the Syncer.

        Args:
            config: Configuration for the sync run
            client: Tree client to use instead of the Notion HTTP API
            download_client: HTTP client for attachments (default: a new
                AsyncHttpClient without retries or auth headers)
            on_download_progress: Called after every downloaded chunk
        """
        self.config = config
        self._client = client
        self._download_client = download_client
        self._on_download_progress = on_download_progress
        self._cancelled = False
        self._context = SyncContext()
        self._start_time: float | None = None

        # Components (initialized in __aenter__)
        self._owned_clients: list[AsyncHttpClient] = []
        self._store: CacheStore | None = None
        self._downloader: AttachmentDownloader | None = None
        self._coordinator_parts: tuple[TreeFetcher, SnapshotWriter] | None = None

    @property
    def stats(self) -> SyncStats:
        """Get current sync statistics."""
        return self._context.stats

    @property
    def context(self) -> SyncContext:
        return self._context

    def cancel(self) -> None:
        """
        Request graceful cancellation of the sync run.

        Roots already running finish; no further roots are started and a
        CANCELLED event is emitted.
        """
        self._cancelled = True

    async def _open_client(self, client: AsyncHttpClient) -> AsyncHttpClient:
        await client.__aenter__()
        self._owned_clients.append(client)
        return client

    async def __aenter__(self) -> Syncer:
        """Enter async context and initialize components."""
        network = self.config.network

        try:
            if self._client is None:
                api_key = network.resolve_api_key()
                if not api_key:
                    raise ConfigError("No Notion API key configured. Set NOTION_API_KEY or network.api_key.")

                api_http = await self._open_client(
                    AsyncHttpClient(
                        rate_limiter=PerHostRateLimiter(
                            default_delay=network.rate_limit,
                            default_concurrent=network.max_concurrent_requests,
                        ),
                        max_retries=network.max_retries,
                        proxy=network.proxy,
                        default_timeout=float(network.read_timeout),
                        default_headers=NotionClient.headers(api_key, network.notion_version),
                    )
                )
                self._client = NotionClient(api_http, api_base=network.api_base)

            if self._download_client is None:
                # Signed attachment URLs must not receive the API token
                self._download_client = await self._open_client(
                    AsyncHttpClient(
                        max_retries=0,
                        max_content_size=MAX_ATTACHMENT_SIZE,
                        proxy=network.proxy,
                        default_timeout=float(network.read_timeout),
                    )
                )
        except BaseException:
            await self._close_clients()
            raise

        output_dir = self.config.output.directory.resolve()
        output_dir.mkdir(parents=True, exist_ok=True)

        download = self.config.download
        self._store = CacheStore(output_dir)
        self._downloader = AttachmentDownloader(
            self._download_client,
            output_dir,
            chunk_size=download.chunk_size,
            retry_count=download.retry_count,
            retry_delay=download.retry_delay,
            progress_interval=download.progress_interval,
            progress_threshold=download.progress_threshold,
            on_progress=self._on_download_progress,
        )
        self._coordinator_parts = (TreeFetcher(self._client), SnapshotWriter(output_dir))
        return self

    async def _close_clients(self) -> None:
        while self._owned_clients:
            client = self._owned_clients.pop()
            await client.__aexit__(None, None, None)

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Exit async context and cleanup resources."""
        await self._close_clients()
        self._coordinator_parts = None

    async def run(self) -> AsyncIterator[SyncEvent]:
        """
        Execute the sync, yielding events.

        Events from the coordinators are forwarded as they happen, bracketed
        by ROOT_STARTED and ROOT_COMPLETED / ROOT_FAILED for every root page.
        With ``root_concurrency`` above 1 the brackets of concurrent roots
        interleave.

        Yields:
            SyncEvent objects for each significant operation
        """
        if self._coordinator_parts is None:
            raise RuntimeError("Syncer not initialized. Use 'async with' context manager.")

        self._start_time = time.monotonic()
        roots = self.config.root_pages()
        stats = self._context.stats
        stats.roots_total = len(roots)

        yield SyncEvent(
            type=EventType.STARTED,
            total=len(roots),
            message=f"Starting sync of {len(roots)} page(s) into {self.config.output.directory}",
        )

        try:
            # Forward every root's events while the roots run
            queue: asyncio.Queue[Optional[SyncEvent]] = asyncio.Queue()
            self._context.emit = queue.put_nowait
            task = asyncio.create_task(self._run_roots(roots))
            task.add_done_callback(lambda _: queue.put_nowait(None))
            try:
                while True:
                    event = await queue.get()
                    if event is None:
                        break
                    yield event
            finally:
                self._context.emit = None
                if not task.done():
                    task.cancel()

            error = task.exception()
            if error is not None:
                raise error

            if self._cancelled:
                yield SyncEvent(type=EventType.CANCELLED, message="Sync cancelled by user")
                return

            stats.duration_seconds = time.monotonic() - self._start_time
            yield SyncEvent(
                type=EventType.COMPLETED,
                message=(
                    f"Sync completed: {stats.pages_synced} saved, "
                    f"{stats.pages_skipped} unchanged, "
                    f"{stats.pages_failed} failed"
                ),
            )

        except Exception as e:
            stats.duration_seconds = time.monotonic() - self._start_time
            yield SyncEvent(
                type=EventType.FAILED,
                error=str(e),
                message=f"Sync failed: {e}",
            )
            raise

    async def _run_roots(self, roots: list[PageRef]) -> None:
        """Sync roots in groups of ``sync.root_concurrency``; a failing root never stops the others."""
        total = len(roots)
        stats = self._context.stats

        async def sync_root(entry: tuple[int, PageRef]) -> None:
            i, ref = entry
            if self._cancelled:
                return

            root_id = normalize_id(ref.id)
            label = ref.name or root_id
            emit = self._context.emit_event
            emit(
                SyncEvent(
                    type=EventType.ROOT_STARTED,
                    page_id=root_id,
                    current=i + 1,
                    total=total,
                    message=f"Syncing {label} ({i + 1}/{total})",
                )
            )

            try:
                coordinator = self._build_coordinator(self._context.for_root())
                await coordinator.process_node(root_id, is_root=True)
            except Exception as e:
                stats.roots_failed += 1
                logger.error(f"Sync of {label} failed: {e}")
                emit(
                    SyncEvent(
                        type=EventType.ROOT_FAILED,
                        page_id=root_id,
                        current=i + 1,
                        total=total,
                        error=str(e),
                        message=f"Sync of {label} failed",
                    )
                )
            else:
                emit(
                    SyncEvent(
                        type=EventType.ROOT_COMPLETED,
                        page_id=root_id,
                        current=i + 1,
                        total=total,
                        message=f"Finished {label}",
                    )
                )
            finally:
                if self._downloader is not None:
                    stats.bytes_downloaded = self._downloader.bytes_downloaded

        await dispatch(list(enumerate(roots)), sync_root, self.config.sync.root_concurrency)

    def _build_coordinator(self, context: SyncContext) -> SyncCoordinator:
        """Coordinator for one root; the cache, writer and downloader are shared."""
        assert self._coordinator_parts is not None and self._store is not None and self._downloader is not None
        fetcher, writer = self._coordinator_parts
        sync = self.config.sync
        detector = ChangeDetector(
            self._store,
            fetcher,
            context,
            snapshots=writer,
            verify_local_hash=sync.verify_local_hash,
        )
        ownership = ResourceOwnershipTracker(fetcher, context, resource_types=sync.resource_types)
        return SyncCoordinator(
            fetcher,
            detector,
            self._store,
            writer,
            self._downloader,
            ownership,
            context,
            settings=sync,
        )


def sync_blocking(
    pages: Iterable[Union[str, PageRef]],
    on_event: Callable[[SyncEvent], None] | None = None,
    **kwargs: object,
) -> SyncStats:
    """
    Blocking sync with optional event callback.

    This is a convenience wrapper for sync code that can't use async/await.
    For async code, use the Syncer class directly.

    WARNING: Do not call from within an existing event loop (e.g., Jupyter,
    asyncio-based frameworks). Use the async Syncer API instead.

    Args:
        pages: Root page ids or URLs
        on_event: Optional callback for events (for progress tracking)
        **kwargs: Additional config options passed to NotionpullConfig

    Returns:
        Statistics of the finished run

    Example:
        stats = sync_blocking(
            ["1429989fe8ac4effbc8f57f56486db54"],
            output={"directory": "./backup"},
        )
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        pass
    else:
        raise RuntimeError("sync_blocking() called from async context. Use 'async with Syncer()' instead.")

    config = NotionpullConfig(pages=list(pages), **kwargs)  # type: ignore[arg-type]

    async def _run() -> SyncStats:
        async with Syncer(config) as syncer:
            async for event in syncer.run():
                if on_event:
                    on_event(event)
        return syncer.stats

    return asyncio.run(_run())
