"""Recursive, concurrency-bounded page synchronization."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Optional

from ..cache.hashing import compute_content_hash
from ..cache.store import CacheStore
from ..concurrency.batching import dispatch
from ..exceptions import FetchError, PersistenceError
from ..models.config import SyncConfig
from ..models.events import EventType, SyncEvent
from ..models.tree import PageMetadata, PageSnapshot
from ..notion.fetcher import TreeFetcher
from ..storage.attachments import AttachmentDownloader
from ..storage.snapshots import SnapshotWriter
from .context import FlaggedDescendant, SyncContext
from .ownership import ResourceOwnershipTracker

if TYPE_CHECKING:
    from ..cache.detector import ChangeDetector

logger = logging.getLogger(__name__)


def _chain(ancestors: Sequence[str]) -> str:
    return " -> ".join(ancestors) if ancestors else "<root>"


class SyncCoordinator:
    """
    Drives the per-page sync: fetch, detect, persist, download, recurse.

    Each call to ``process_node`` moves one page through these stages:

    1. Fetch metadata.
    2. Ask the change detector (or always update when caching is off).
    3. Unchanged page: stop, unless the detector flagged changed
       descendants, in which case only those are refreshed.
    4. Changed page: fetch the block tree, build the resource map if this
       is a root, write the snapshot, record it in the cache, download
       owned attachments and dispatch child pages.

    Example:
        coordinator = SyncCoordinator(fetcher, detector, store, writer,
                                      downloader, ownership, context)
        await coordinator.process_node(root_id, is_root=True)
    """

    def __init__(
        self,
        fetcher: TreeFetcher,
        detector: ChangeDetector,
        store: CacheStore,
        writer: SnapshotWriter,
        downloader: AttachmentDownloader,
        ownership: ResourceOwnershipTracker,
        context: SyncContext,
        settings: Optional[SyncConfig] = None,
    ) -> None:
        self._fetcher = fetcher
        self._detector = detector
        self._store = store
        self._writer = writer
        self._downloader = downloader
        self._ownership = ownership
        self._context = context
        self._settings = settings or SyncConfig()

    @property
    def context(self) -> SyncContext:
        return self._context

    def _emit(self, event_type: EventType, node_id: str, ancestors: Sequence[str], **kwargs: object) -> None:
        self._context.emit_event(
            SyncEvent(type=event_type, page_id=node_id, ancestors=tuple(ancestors), **kwargs)  # type: ignore[arg-type]
        )

    def _fetch_failed(self, node_id: str, ancestors: tuple[str, ...], error: Exception) -> FetchError:
        logger.error(f"Fetch failed for {node_id} (ancestors: {_chain(ancestors)}): {error}")
        self._context.stats.pages_failed += 1
        self._emit(EventType.PAGE_FAILED, node_id, ancestors, error=str(error))
        return FetchError(node_id, ancestors, error)

    async def process_node(
        self,
        node_id: str,
        ancestors: Sequence[str] = (),
        is_root: bool = False,
    ) -> None:
        """
        Sync one page and, recursively, its child pages.

        Args:
            node_id: Normalized page id
            ancestors: Ids from the top-level page down to this page's parent
            is_root: Whether this is a top-level page (enables the resource
                pre-pass and the descendant check)

        Raises:
            FetchError: Metadata or blocks could not be fetched
            PersistenceError: The snapshot could not be written
        """
        ancestors = tuple(ancestors)

        try:
            meta = await self._fetcher.fetch_metadata(node_id)
        except Exception as e:
            raise self._fetch_failed(node_id, ancestors, e) from e

        if self._settings.enable_cache:
            needs_update = await self._detector.should_update(node_id, meta.last_edited_time, ancestors)
        else:
            needs_update = True

        if not needs_update:
            flagged = self._context.updated_children.get(node_id)
            if not flagged:
                logger.debug(f"Cache hit for {node_id}")
                self._context.stats.pages_skipped += 1
                self._emit(EventType.PAGE_CACHE_HIT, node_id, ancestors)
                return
            if await self._partial_update(node_id, ancestors, flagged):
                return
            self._context.pending.add(node_id)

        await self._full_update(meta, ancestors, is_root)

    async def _partial_update(
        self,
        node_id: str,
        ancestors: tuple[str, ...],
        flagged: list[FlaggedDescendant],
    ) -> bool:
        """
        Refresh only the flagged descendants of an unchanged page.

        Returns False when the local snapshot is missing, so the caller can
        fall back to a full update.
        """
        cached = await self._writer.load(node_id, ancestors)
        if cached is None:
            logger.warning(f"No local snapshot for {node_id}, falling back to a full update")
            self._context.updated_children.pop(node_id, None)
            return False

        logger.info(f"Partial update of {node_id}: {len(flagged)} changed descendant(s)")
        self._context.stats.pages_partial += 1
        self._emit(
            EventType.PAGE_PARTIAL_UPDATE,
            node_id,
            ancestors,
            total=len(flagged),
            message=f"{len(flagged)} changed descendant(s)",
        )

        # Pre-order, one at a time: a descendant refreshed as part of an
        # earlier flagged page's subtree is then skipped via ``synced``.
        for descendant in flagged:
            if descendant.node_id in self._context.synced:
                logger.debug(f"{descendant.node_id} already synced this run")
                continue
            await self.process_node(descendant.node_id, ancestors + descendant.ancestors)

        self._context.updated_children.pop(node_id, None)
        return True

    async def _full_update(self, meta: PageMetadata, ancestors: tuple[str, ...], is_root: bool) -> None:
        node_id = meta.id
        settings = self._settings

        try:
            snapshot = await self._fetcher.fetch_snapshot(meta)
        except Exception as e:
            raise self._fetch_failed(node_id, ancestors, e) from e
        self._emit(EventType.PAGE_FETCHED, node_id, ancestors)

        if is_root and settings.include_resources:
            owners = await self._ownership.build_resource_map(node_id, snapshot)
            self._emit(
                EventType.RESOURCE_MAP_BUILT,
                node_id,
                ancestors,
                total=len(owners),
                message=f"{len(owners)} resource(s) mapped",
            )

        result = await self._writer.save(node_id, snapshot, ancestors)
        if not result.success:
            self._context.stats.pages_failed += 1
            self._emit(EventType.PAGE_FAILED, node_id, ancestors, error=result.error)
            raise PersistenceError(node_id, result.error)
        self._emit(EventType.PAGE_SAVED, node_id, ancestors, output_path=result.file_path)

        if settings.enable_cache:
            await self._store.record_update(
                node_id,
                ancestors,
                meta.last_edited_time,
                compute_content_hash(snapshot),
            )

        self._context.synced.add(node_id)
        self._context.stats.pages_synced += 1

        if settings.include_resources:
            await self._download_resources(node_id, ancestors, snapshot)

        if settings.recursive:
            await self._dispatch_children(node_id, ancestors, snapshot)

    async def _download_resources(self, node_id: str, ancestors: tuple[str, ...], snapshot: PageSnapshot) -> None:
        refs = self._ownership.extract_owned_resources(snapshot.children, node_id)
        if not refs:
            return

        results = await self._downloader.save_all(node_id, refs)
        stats = self._context.stats
        for ref, result in zip(refs, results):
            if result.success:
                stats.resources_downloaded += 1
                self._emit(EventType.RESOURCE_DOWNLOADED, node_id, ancestors, output_path=result.file_path)
            else:
                stats.resources_failed += 1
                self._emit(
                    EventType.RESOURCE_FAILED,
                    node_id,
                    ancestors,
                    error=result.error,
                    message=f"Resource {ref.block_id}",
                )

    async def _dispatch_children(self, node_id: str, ancestors: tuple[str, ...], snapshot: PageSnapshot) -> None:
        child_ids = snapshot.child_page_ids()
        if not child_ids:
            return

        settings = self._settings
        child_ancestors = ancestors + (node_id,)
        self._emit(EventType.CHILDREN_DISPATCHED, node_id, ancestors, total=len(child_ids))
        logger.debug(f"Dispatching {len(child_ids)} child page(s) of {node_id}")

        async def process_child(child_id: str) -> None:
            await self.process_node(child_id, child_ancestors)

        outcomes = await dispatch(
            child_ids,
            process_child,
            settings.concurrency,
            scheduling=settings.scheduling,
            isolate_failures=settings.isolate_branch_failures,
        )
        failed = [outcome.item for outcome in outcomes if not outcome.ok]
        if failed:
            logger.warning(f"{len(failed)} child page(s) of {node_id} failed: {', '.join(failed)}")
