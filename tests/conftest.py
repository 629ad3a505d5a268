"""Shared fixtures: an in-memory page tree and a range-aware download server."""

import asyncio
import re
from types import SimpleNamespace
from typing import Any, Optional

import aiohttp
import pytest
from notionpull.cache.detector import ChangeDetector
from notionpull.cache.store import CacheStore
from notionpull.exceptions import NotionApiError
from notionpull.http.protocols import HttpResponse
from notionpull.models.config import SyncConfig
from notionpull.models.tree import Block, PageMetadata
from notionpull.notion.fetcher import TreeFetcher
from notionpull.storage.attachments import AttachmentDownloader
from notionpull.storage.snapshots import SnapshotWriter
from notionpull.sync.context import SyncContext
from notionpull.sync.coordinator import SyncCoordinator
from notionpull.sync.ownership import ResourceOwnershipTracker

T1 = "2024-01-01T00:00:00.000Z"
T2 = "2024-02-01T00:00:00.000Z"


def paragraph(block_id: str, text: str = "text", children: Optional[list[dict]] = None) -> dict:
    return {
        "object": "block",
        "id": block_id,
        "type": "paragraph",
        "has_children": bool(children),
        "paragraph": {"rich_text": [{"plain_text": text}]},
        "_children": children or [],
    }


def child_page(page_id: str, title: str = "") -> dict:
    return {
        "object": "block",
        "id": page_id,
        "type": "child_page",
        "has_children": True,
        "child_page": {"title": title or page_id},
    }


def image(block_id: str, url: str, source: str = "file") -> dict:
    return {
        "object": "block",
        "id": block_id,
        "type": "image",
        "has_children": False,
        "image": {"type": source, source: {"url": url}},
    }


class FakeTreeClient:
    """
    In-memory TreeClient.

    Pages are registered with their top-level blocks; paragraph blocks may
    carry nested blocks under ``_children``. Every call is recorded.
    """

    def __init__(self, delay: float = 0.0) -> None:
        self.pages: dict[str, dict[str, Any]] = {}
        self.children: dict[str, list[dict]] = {}
        self.metadata_calls: list[str] = []
        self.children_calls: list[str] = []
        self.fail_metadata: set[str] = set()
        self.fail_children: dict[str, list[BaseException]] = {}
        self.delay = delay
        self.active = 0
        self.max_active = 0

    def add_page(self, page_id: str, last_edited_time: str = T1, blocks: Optional[list[dict]] = None) -> None:
        self.pages[page_id] = {
            "object": "page",
            "id": page_id,
            "last_edited_time": last_edited_time,
            "icon": None,
            "properties": {"title": {"type": "title", "title": [{"plain_text": f"Page {page_id}"}]}},
        }
        self._register(page_id, blocks or [])

    def _register(self, parent_id: str, blocks: list[dict]) -> None:
        self.children[parent_id] = [{k: v for k, v in b.items() if k != "_children"} for b in blocks]
        for block in blocks:
            if block.get("_children"):
                self._register(block["id"], block["_children"])

    def touch(self, page_id: str, last_edited_time: str) -> None:
        self.pages[page_id]["last_edited_time"] = last_edited_time

    async def _track(self) -> None:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.active -= 1

    async def get_node_metadata(self, node_id: str) -> PageMetadata:
        self.metadata_calls.append(node_id)
        await self._track()
        if node_id in self.fail_metadata or node_id not in self.pages:
            raise NotionApiError(404, "object_not_found", f"Could not find page {node_id}")
        return PageMetadata.from_dict(dict(self.pages[node_id]))

    async def get_child_blocks(self, block_id: str) -> list[Block]:
        self.children_calls.append(block_id)
        await self._track()
        queued = self.fail_children.get(block_id)
        if queued:
            raise queued.pop(0)
        return [Block.from_dict(dict(raw)) for raw in self.children.get(block_id, [])]


class FakeDownloadHttp:
    """Serves byte strings by URL and honours ``Range: bytes=a-b`` headers."""

    _RANGE = re.compile(r"bytes=(\d+)-(\d+)")

    def __init__(self, files: Optional[dict[str, bytes]] = None, ignore_range: bool = False) -> None:
        self.files = files or {}
        self.ignore_range = ignore_range
        self.requests: list[tuple[str, Optional[str]]] = []
        self.fail_chunks = 0
        self.status_override: Optional[int] = None

    async def get(
        self,
        url: str,
        *,
        timeout: Optional[float] = None,
        headers: Optional[dict[str, str]] = None,
        params: Optional[dict[str, str]] = None,
    ) -> HttpResponse:
        range_header = (headers or {}).get("Range")
        self.requests.append((url, range_header))

        if self.status_override is not None:
            return HttpResponse(self.status_override, b"", "text/plain", {}, url)
        if url not in self.files:
            return HttpResponse(404, b"not found", "text/plain", {}, url)

        data = self.files[url]
        match = self._RANGE.match(range_header or "")
        if self.ignore_range or match is None:
            return HttpResponse(200, data, "image/png", {"Content-Length": str(len(data))}, url)

        if range_header != "bytes=0-0" and self.fail_chunks > 0:
            self.fail_chunks -= 1
            raise aiohttp.ClientConnectionError("connection reset")

        start, end = int(match.group(1)), int(match.group(2))
        body = data[start : end + 1]
        headers_out = {"Content-Range": f"bytes {start}-{start + len(body) - 1}/{len(data)}"}
        return HttpResponse(206, body, "image/png", headers_out, url)


@pytest.fixture
def tree() -> FakeTreeClient:
    return FakeTreeClient()


@pytest.fixture
def download_http() -> FakeDownloadHttp:
    return FakeDownloadHttp()


@pytest.fixture
def make_sync(tmp_path):
    """
    Build a fully wired coordinator over ``tmp_path``.

    Call it again to simulate a later run: the cache and files persist, the
    run context is fresh.
    """

    def factory(client, http: Optional[FakeDownloadHttp] = None, **settings: Any) -> SimpleNamespace:
        config = SyncConfig(**settings)
        context = SyncContext()
        events: list = []
        context.emit = events.append

        fetcher = TreeFetcher(client, listing_retry_delay=0)
        store = CacheStore(tmp_path)
        writer = SnapshotWriter(tmp_path)
        detector = ChangeDetector(
            store,
            fetcher,
            context,
            snapshots=writer,
            verify_local_hash=config.verify_local_hash,
        )
        downloader = AttachmentDownloader(http or FakeDownloadHttp(), tmp_path, chunk_size=4, retry_delay=0)
        ownership = ResourceOwnershipTracker(fetcher, context, resource_types=config.resource_types)
        coordinator = SyncCoordinator(
            fetcher, detector, store, writer, downloader, ownership, context, settings=config
        )
        return SimpleNamespace(
            coordinator=coordinator,
            context=context,
            events=events,
            store=store,
            writer=writer,
            downloader=downloader,
            ownership=ownership,
            detector=detector,
            output_dir=tmp_path,
        )

    return factory
