"""Assign every attachment to exactly one page."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Literal, Optional

from ..models.tree import Block, PageSnapshot
from ..notion.fetcher import TreeFetcher
from .context import SyncContext

logger = logging.getLogger(__name__)

ResourceTypes = Literal["images", "all"]

IMAGE_BLOCK_TYPES = frozenset({"image"})
ALL_RESOURCE_BLOCK_TYPES = frozenset({"image", "file", "pdf", "video", "audio"})


@dataclass(frozen=True)
class ResourceRef:
    """A downloadable attachment referenced by a block."""

    block_id: str
    url: str
    block_type: str = "image"


def resource_url(block: Block) -> Optional[str]:
    """Hosted (``file``) or external URL of a resource block."""
    payload = block.data.get(block.type)
    if not isinstance(payload, dict):
        return None
    for source in ("file", "external"):
        entry = payload.get(source)
        if isinstance(entry, dict) and entry.get("url"):
            return str(entry["url"])
    return None


class ResourceOwnershipTracker:
    """
    Maps resource block ids to the page that owns them.

    The same attachment can show up in several snapshots (for example a
    synced block rendered in two pages). Ownership is decided once per root
    by a pre-order walk over the root and every nested child page: the first
    page that contains a resource owns it, and only the owner downloads it.

    Example:
        tracker = ResourceOwnershipTracker(fetcher, context, resource_types="all")
        await tracker.build_resource_map(root_id, root_snapshot)
        for ref in tracker.extract_owned_resources(snapshot.children, page_id):
            ...
    """

    def __init__(
        self,
        fetcher: TreeFetcher,
        context: SyncContext,
        resource_types: ResourceTypes = "images",
    ) -> None:
        self._fetcher = fetcher
        self._context = context
        self._block_types = ALL_RESOURCE_BLOCK_TYPES if resource_types == "all" else IMAGE_BLOCK_TYPES

    @property
    def owners(self) -> dict[str, str]:
        return self._context.resource_owners

    def is_resource(self, block: Block) -> bool:
        return block.type in self._block_types

    async def build_resource_map(self, root_id: str, root_snapshot: PageSnapshot) -> dict[str, str]:
        """
        Record the owner of every resource below ``root_id``.

        Child pages are fetched here even though the main pass fetches them
        again. A child page that cannot be fetched is skipped; its
        resources are then claimed during the main pass.

        Returns:
            The ownership map (resource id -> page id)
        """
        owners = self.owners
        visited: set[str] = set()
        stack: list[tuple[str, Optional[PageSnapshot]]] = [(root_id, root_snapshot)]

        while stack:
            node_id, snapshot = stack.pop()
            if node_id in visited:
                continue
            visited.add(node_id)

            if snapshot is None:
                try:
                    snapshot = await self._fetcher.fetch_page(node_id)
                except Exception as e:
                    logger.warning(f"Skipping {node_id} while mapping resources: {e}")
                    continue

            for block in snapshot.iter_blocks():
                if self.is_resource(block) and block.id not in owners:
                    owners[block.id] = node_id

            stack.extend((child_id, None) for child_id in reversed(snapshot.child_page_ids()))

        logger.debug(f"Resource map for {root_id}: {len(owners)} resources over {len(visited)} pages")
        return owners

    def extract_owned_resources(self, blocks: Iterable[Block], node_id: str) -> list[ResourceRef]:
        """
        Resources in ``blocks`` owned by ``node_id``.

        Resources missing from the map are claimed by ``node_id``. Blocks
        inside child pages are not inspected.
        """
        owners = self.owners
        found: list[ResourceRef] = []
        stack = list(reversed(list(blocks)))

        while stack:
            block = stack.pop()
            if block.is_child_page:
                continue
            stack.extend(reversed(block.children))

            if not self.is_resource(block):
                continue
            if owners.setdefault(block.id, node_id) != node_id:
                continue
            url = resource_url(block)
            if url is None:
                logger.debug(f"Resource block {block.id} has no URL")
                continue
            found.append(ResourceRef(block_id=block.id, url=url, block_type=block.type))

        return found
