"""Notion REST API client."""

from __future__ import annotations

import logging
from typing import Any

from ..exceptions import NotionApiError
from ..http.protocols import HttpClient, HttpResponse
from ..models.tree import Block, PageMetadata

logger = logging.getLogger(__name__)

PAGE_SIZE = 100


class NotionClient:
    """
    Minimal Notion API client implementing the TreeClient protocol.

    Only the two read endpoints the sync engine needs are wrapped:
    ``GET /pages/{id}`` and ``GET /blocks/{id}/children`` (all pages of
    the cursor-paginated listing are collected).

    Example:
        async with AsyncHttpClient(default_headers=NotionClient.headers(token)) as http:
            client = NotionClient(http)
            meta = await client.get_node_metadata(page_id)
            blocks = await client.get_child_blocks(page_id)
    """

    def __init__(self, http_client: HttpClient, api_base: str = "https://api.notion.com/v1") -> None:
        self._http = http_client
        self._api_base = api_base.rstrip("/")

    @staticmethod
    def headers(api_key: str, notion_version: str = "2022-06-28") -> dict[str, str]:
        """Default headers for every Notion request."""
        return {
            "Authorization": f"Bearer {api_key}",
            "Notion-Version": notion_version,
            "Accept": "application/json",
        }

    def _check(self, response: HttpResponse) -> dict[str, Any]:
        body: Any = None
        try:
            body = response.json()
        except ValueError:
            body = None

        if not response.ok:
            if isinstance(body, dict):
                raise NotionApiError(response.status_code, body.get("code"), body.get("message"))
            snippet = response.content[:200].decode("utf-8", errors="replace")
            raise NotionApiError(response.status_code, None, snippet)

        if not isinstance(body, dict):
            raise NotionApiError(response.status_code, "invalid_json", "Response body is not a JSON object")
        return body

    async def get_node_metadata(self, node_id: str) -> PageMetadata:
        logger.debug(f"Fetching page metadata {node_id}")
        response = await self._http.get(f"{self._api_base}/pages/{node_id}")
        return PageMetadata.from_dict(self._check(response))

    async def get_child_blocks(self, block_id: str) -> list[Block]:
        blocks: list[Block] = []
        cursor: str | None = None

        while True:
            params = {"page_size": str(PAGE_SIZE)}
            if cursor:
                params["start_cursor"] = cursor

            response = await self._http.get(f"{self._api_base}/blocks/{block_id}/children", params=params)
            body = self._check(response)

            results = body.get("results")
            if not isinstance(results, list):
                logger.warning(f"Block {block_id} returned malformed children listing")
                return blocks

            for item in results:
                if isinstance(item, dict) and "type" in item:
                    block = Block.from_dict(item)
                    block.children = []
                    blocks.append(block)

            cursor = body.get("next_cursor")
            if not body.get("has_more") or not cursor:
                break

        logger.debug(f"Block {block_id} has {len(blocks)} children")
        return blocks
