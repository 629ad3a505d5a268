"""Protocol for the remote document tree."""

from __future__ import annotations

from typing import Protocol

from ..models.tree import Block, PageMetadata


class TreeClient(Protocol):
    """
    Source of page metadata and block listings.

    ``NotionClient`` talks to the real API; tests supply in-memory trees.
    """

    async def get_node_metadata(self, node_id: str) -> PageMetadata:
        """Return id, last_edited_time and properties for a page."""
        ...

    async def get_child_blocks(self, block_id: str) -> list[Block]:
        """
        Return all direct children of a page or block.

        Pagination is handled by the implementation; returned blocks have
        empty ``children`` lists.
        """
        ...
