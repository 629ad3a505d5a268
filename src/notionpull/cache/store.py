"""Persistent cache map mirroring the page hierarchy."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, TypedDict

logger = logging.getLogger(__name__)

CACHE_DIRNAME = ".cache"
CACHE_FILENAME = "cache-map.json"


class CacheRecordDict(TypedDict, total=False):
    """Serialized form of a cache record."""

    id: str
    last_edited_time: str
    content_hash: Optional[str]
    children: list[CacheRecordDict]


@dataclass
class CacheRecord:
    """Timestamp, content hash and cached child pages of one page."""

    id: str
    last_edited_time: str = ""
    content_hash: Optional[str] = None
    children: list[CacheRecord] = field(default_factory=list)

    def child(self, child_id: str) -> Optional[CacheRecord]:
        for record in self.children:
            if record.id == child_id:
                return record
        return None

    def ensure_child(self, child_id: str) -> CacheRecord:
        record = self.child(child_id)
        if record is None:
            record = CacheRecord(id=child_id)
            self.children.append(record)
        return record

    def iter_descendants(self) -> Iterator[tuple[CacheRecord, tuple[str, ...]]]:
        """
        Pre-order walk of all nested records.

        Yields (record, ancestors) where ``ancestors`` runs from this
        record's id down to the yielded record's parent.
        """
        stack: list[tuple[CacheRecord, tuple[str, ...]]] = [
            (child, (self.id,)) for child in reversed(self.children)
        ]
        while stack:
            record, ancestors = stack.pop()
            yield record, ancestors
            stack.extend((child, ancestors + (record.id,)) for child in reversed(record.children))

    def to_dict(self) -> CacheRecordDict:
        return {
            "id": self.id,
            "last_edited_time": self.last_edited_time,
            "content_hash": self.content_hash,
            "children": [child.to_dict() for child in self.children],
        }


def _parse_record(raw: Any, fallback_id: str, migrated: list[bool]) -> Optional[CacheRecord]:
    """
    Build a record from its JSON form.

    Map-shaped ``children`` ({id: record}) from older cache files are
    converted to lists, and duplicate child ids are merged (first wins).
    ``migrated[0]`` is set when anything had to be rewritten.
    """
    if not isinstance(raw, dict):
        migrated[0] = True
        return None

    record = CacheRecord(
        id=str(raw.get("id") or fallback_id),
        last_edited_time=str(raw.get("last_edited_time") or ""),
        content_hash=raw.get("content_hash"),
    )

    children_raw = raw.get("children") or []
    if isinstance(children_raw, dict):
        migrated[0] = True
        items = list(children_raw.items())
    elif isinstance(children_raw, list):
        items = [(str(c.get("id", "")) if isinstance(c, dict) else "", c) for c in children_raw]
    else:
        migrated[0] = True
        items = []

    seen: set[str] = set()
    for key, child_raw in items:
        child = _parse_record(child_raw, key, migrated)
        if child is None or not child.id:
            migrated[0] = True
            continue
        if child.id in seen:
            migrated[0] = True
            continue
        seen.add(child.id)
        record.children.append(child)

    return record


def remove_nested_duplicates(records: dict[str, CacheRecord]) -> list[str]:
    """
    Drop top-level entries that also appear nested under another entry.

    Entries are examined in order against the entries still kept, so two
    records nested in each other cannot remove one another.

    Returns:
        Ids that were removed
    """
    nested: dict[str, set[str]] = {
        key: {rec.id for rec, _ in record.iter_descendants()} for key, record in records.items()
    }
    removed: list[str] = []
    for key in list(records):
        if any(key in ids for other, ids in nested.items() if other != key and other in records):
            del records[key]
            removed.append(key)
    return removed


class CacheStore:
    """
    Cache map persisted at ``<output>/.cache/cache-map.json``.

    The whole tree is re-read before every change check so that records
    written by earlier runs (or earlier roots in this run) are always
    visible; this trades throughput for consistency. Unreadable or corrupt
    files load as an empty tree, which just means every page is fetched.

    Disk reads and writes run in a worker thread. In-process access is
    serialized with an asyncio.Lock; nothing protects against a second
    process writing the same file.

    Example:
        store = CacheStore(Path("./build/meta"))
        await store.load()
        record = store.find_record(child_id, [root_id])
        await store.record_update(child_id, [root_id], "2024-01-01T00:00:00.000Z", digest)
    """

    def __init__(self, output_dir: Path) -> None:
        self.cache_dir = Path(output_dir) / CACHE_DIRNAME
        self.cache_file = self.cache_dir / CACHE_FILENAME
        self._records: dict[str, CacheRecord] = {}
        self._lock = asyncio.Lock()

    @property
    def records(self) -> dict[str, CacheRecord]:
        """Top-level records as of the last load."""
        return self._records

    def _read(self) -> tuple[dict[str, CacheRecord], bool]:
        """Read, migrate and clean the cache file (blocking)."""
        if not self.cache_file.exists():
            return {}, False

        try:
            data = json.loads(self.cache_file.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Could not load cache map, treating as empty: {e}")
            return {}, False

        if not isinstance(data, dict):
            logger.warning("Cache map is not a JSON object, treating as empty")
            return {}, False

        migrated = [False]
        records: dict[str, CacheRecord] = {}
        for key, raw in data.items():
            record = _parse_record(raw, key, migrated)
            if record is not None:
                records[record.id] = record

        removed = remove_nested_duplicates(records)
        if removed:
            logger.info(f"Removed {len(removed)} top-level cache entries that are nested elsewhere")

        return records, migrated[0] or bool(removed)

    def _write(self, payload: str) -> None:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.cache_file.write_text(payload, encoding="utf-8")

    def _serialize(self) -> str:
        return json.dumps(
            {key: record.to_dict() for key, record in self._records.items()},
            indent=2,
            ensure_ascii=False,
        )

    async def _load_unlocked(self) -> None:
        records, changed = await asyncio.to_thread(self._read)
        self._records = records
        if changed:
            await self._save_unlocked()

    async def _save_unlocked(self) -> None:
        payload = self._serialize()
        try:
            await asyncio.to_thread(self._write, payload)
        except OSError as e:
            logger.error(f"Could not save cache map: {e}")

    async def load(self) -> None:
        """(Re)load the cache tree from disk."""
        async with self._lock:
            await self._load_unlocked()

    async def save(self) -> None:
        """Rewrite the whole cache file from memory."""
        async with self._lock:
            await self._save_unlocked()

    def find_record(self, node_id: str, ancestors: Sequence[str] = ()) -> Optional[CacheRecord]:
        """Resolve a record by walking ``ancestors`` from the top level."""
        if not ancestors:
            return self._records.get(node_id)

        current = self._records.get(ancestors[0])
        for ancestor in ancestors[1:]:
            if current is None:
                return None
            current = current.child(ancestor)
        if current is None:
            return None
        return current.child(node_id)

    def upsert_record(
        self,
        node_id: str,
        ancestors: Sequence[str],
        last_edited_time: str,
        content_hash: Optional[str],
    ) -> CacheRecord:
        """Create or update a record, creating missing ancestors on the way."""
        if not ancestors:
            record = self._records.get(node_id)
            if record is None:
                record = self._records[node_id] = CacheRecord(id=node_id)
        else:
            parent = self._records.get(ancestors[0])
            if parent is None:
                parent = self._records[ancestors[0]] = CacheRecord(id=ancestors[0])
            for ancestor in ancestors[1:]:
                parent = parent.ensure_child(ancestor)
            record = parent.ensure_child(node_id)

        record.last_edited_time = last_edited_time
        record.content_hash = content_hash
        return record

    async def record_update(
        self,
        node_id: str,
        ancestors: Sequence[str],
        last_edited_time: str,
        content_hash: Optional[str],
    ) -> CacheRecord:
        """Reload, upsert and save as one step."""
        async with self._lock:
            await self._load_unlocked()
            record = self.upsert_record(node_id, ancestors, last_edited_time, content_hash)
            await self._save_unlocked()
            logger.debug(f"Cache record updated for {node_id}")
            return record
