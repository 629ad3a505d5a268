"""Fetch page metadata and complete block trees from the remote."""

from __future__ import annotations

import asyncio
import logging

import aiohttp

from ..exceptions import NotionApiError
from ..models.tree import Block, PageMetadata, PageSnapshot
from .protocols import TreeClient

logger = logging.getLogger(__name__)

TRANSIENT_EXCEPTIONS = (
    aiohttp.ClientError,
    asyncio.TimeoutError,
    ConnectionError,
)


def is_transient(error: BaseException) -> bool:
    """Network hiccups and retryable API statuses."""
    if isinstance(error, NotionApiError):
        return error.is_transient
    return isinstance(error, TRANSIENT_EXCEPTIONS)


class TreeFetcher:
    """
    Builds PageSnapshots from a TreeClient.

    Block trees are expanded with an explicit work-list rather than
    recursion, and never cross a child-page boundary: a ``child_page``
    block is kept as a leaf and mirrored as its own page later.

    Example:
        fetcher = TreeFetcher(client)
        meta = await fetcher.fetch_metadata(page_id)
        snapshot = await fetcher.fetch_snapshot(meta)
    """

    def __init__(self, client: TreeClient, listing_retry_delay: float = 0.5) -> None:
        self._client = client
        self._listing_retry_delay = listing_retry_delay

    async def fetch_metadata(self, node_id: str) -> PageMetadata:
        return await self._client.get_node_metadata(node_id)

    async def _list_children(self, block_id: str) -> list[Block]:
        """Child listing with one extra attempt on transient failures."""
        try:
            return await self._client.get_child_blocks(block_id)
        except Exception as e:
            if not is_transient(e):
                raise
            logger.warning(f"Listing children of {block_id} failed ({e}), retrying once")
            await asyncio.sleep(self._listing_retry_delay)
            return await self._client.get_child_blocks(block_id)

    async def fetch_blocks(self, page_id: str) -> list[Block]:
        """Full block tree of a page, excluding the content of child pages."""
        top = await self._list_children(page_id)

        pending = [b for b in reversed(top) if b.has_children and not b.is_child_page]
        while pending:
            block = pending.pop()
            block.children = await self._list_children(block.id)
            pending.extend(c for c in reversed(block.children) if c.has_children and not c.is_child_page)

        return top

    async def fetch_snapshot(self, meta: PageMetadata) -> PageSnapshot:
        """Complete snapshot for a page whose metadata is already known."""
        blocks = await self.fetch_blocks(meta.id)
        logger.debug(f"Fetched {len(blocks)} top-level blocks for page {meta.id}")
        return PageSnapshot.from_metadata(meta, blocks)

    async def fetch_page(self, node_id: str) -> PageSnapshot:
        """Metadata plus block tree in one call."""
        meta = await self.fetch_metadata(node_id)
        return await self.fetch_snapshot(meta)
