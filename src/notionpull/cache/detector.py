"""Decide whether a page needs a full re-sync."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Optional

from ..sync.context import FlaggedDescendant, SyncContext
from .hashing import compute_content_hash
from .store import CacheRecord, CacheStore

if TYPE_CHECKING:
    from ..notion.fetcher import TreeFetcher
    from ..storage.snapshots import SnapshotWriter

logger = logging.getLogger(__name__)


class ChangeDetector:
    """
    Compares remote timestamps against the cache map.

    For a top-level page whose own timestamp is unchanged the detector also
    walks the cached descendants and asks the remote for their current
    timestamps. Descendants that moved on are recorded in
    ``context.updated_children`` so the coordinator can refresh just those
    pages instead of the whole subtree.

    Example:
        detector = ChangeDetector(store, fetcher, context)
        if await detector.should_update(meta.id, meta.last_edited_time):
            ...  # full update
        elif meta.id in context.updated_children:
            ...  # partial update
    """

    def __init__(
        self,
        store: CacheStore,
        fetcher: TreeFetcher,
        context: SyncContext,
        snapshots: Optional[SnapshotWriter] = None,
        verify_local_hash: bool = False,
    ) -> None:
        """
        Initialize the detector.

        Args:
            store: Cache map, reloaded before every check
            fetcher: Used to fetch descendant metadata for the children check
            context: Run state holding the pending set and flagged descendants
            snapshots: Writer used to read back local copies for hash checks
            verify_local_hash: Treat a page as unchanged when its local copy
                still matches the stored hash, even if timestamps differ
        """
        self._store = store
        self._fetcher = fetcher
        self._context = context
        self._snapshots = snapshots
        self._verify_local_hash = verify_local_hash

    async def should_update(
        self,
        node_id: str,
        remote_last_edited_time: str,
        ancestors: Sequence[str] = (),
    ) -> bool:
        """
        Return True when the page must be fetched and written in full.

        A True result always leaves ``node_id`` in the pending set.
        """
        pending = self._context.pending
        if node_id in pending:
            return True

        await self._store.load()
        record = self._store.find_record(node_id, ancestors)
        if record is None:
            logger.debug(f"No cache record for {node_id}")
            pending.add(node_id)
            return True

        if record.last_edited_time == remote_last_edited_time:
            await self._handle_unchanged(node_id, record, ancestors)
            return False

        # Only the local copy is hashed: while it matches the stored hash, a
        # remote edit to this page is never refetched.
        if record.content_hash and self._verify_local_hash and await self._local_copy_matches(
            node_id, record, ancestors
        ):
            logger.debug(f"Local copy of {node_id} matches stored hash, treating as unchanged")
            await self._handle_unchanged(node_id, record, ancestors)
            return False

        pending.add(node_id)
        return True

    async def _handle_unchanged(
        self,
        node_id: str,
        record: CacheRecord,
        ancestors: Sequence[str],
    ) -> None:
        if ancestors:
            return
        flagged = await self.check_children_updates(record)
        if flagged:
            logger.info(f"{len(flagged)} descendant page(s) of {node_id} changed")
            self._context.updated_children[node_id] = flagged

    async def _local_copy_matches(
        self,
        node_id: str,
        record: CacheRecord,
        ancestors: Sequence[str],
    ) -> bool:
        if self._snapshots is None:
            return False
        local = await self._snapshots.load(node_id, ancestors)
        if local is None:
            return False
        return compute_content_hash(local) == record.content_hash

    async def check_children_updates(self, record: CacheRecord) -> list[FlaggedDescendant]:
        """
        Find cached descendants whose remote timestamp differs.

        Every cached descendant is visited, so a changed page nested under
        another changed page is flagged as well. Descendants whose metadata
        cannot be fetched are logged and left unflagged.

        Returns:
            Flagged descendants in pre-order, each with its ancestor chain
        """
        flagged: list[FlaggedDescendant] = []
        for child, ancestors in record.iter_descendants():
            try:
                meta = await self._fetcher.fetch_metadata(child.id)
            except Exception as e:
                logger.warning(f"Could not check {child.id} under {'/'.join(ancestors)}: {e}")
                continue

            if meta.last_edited_time != child.last_edited_time:
                logger.debug(f"Descendant {child.id} changed ({child.last_edited_time} -> {meta.last_edited_time})")
                flagged.append(FlaggedDescendant(child.id, ancestors))

        return flagged
