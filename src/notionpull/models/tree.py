"""Page and block models for the mirrored document tree."""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

CHILD_PAGE_TYPE = "child_page"

_HEX_ID = re.compile(r"([0-9a-fA-F]{32})")
_DASHED_ID = re.compile(r"([0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12})")


def normalize_id(raw: str) -> str:
    """
    Normalize a page or block id to its canonical dashed, lower-case form.

    Accepts dashed ids, bare 32-character hex ids, and Notion URLs whose
    last path segment ends in an id (``https://www.notion.so/Title-<hex>``).
    Anything else is returned stripped and lower-cased.

    Examples:
        >>> normalize_id("1429989FE8AC4EFFBC8F57F56486DB54")
        '1429989f-e8ac-4eff-bc8f-57f56486db54'
    """
    value = raw.strip()
    if "/" in value:
        value = value.rstrip("/").rsplit("/", 1)[-1].split("?", 1)[0].split("#", 1)[0]

    dashed = _DASHED_ID.search(value)
    if dashed:
        return dashed.group(1).lower()

    match = _HEX_ID.search(value)
    if match:
        hex_id = match.group(1).lower()
        return f"{hex_id[:8]}-{hex_id[8:12]}-{hex_id[12:16]}-{hex_id[16:20]}-{hex_id[20:]}"

    return value.lower()


@dataclass
class Block:
    """
    A content block inside a page.

    ``data`` keeps the raw API payload; ``children`` is filled in by the
    fetcher for blocks that have children, except across child-page
    boundaries.
    """

    id: str
    type: str
    has_children: bool = False
    children: list[Block] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def is_child_page(self) -> bool:
        return self.type == CHILD_PAGE_TYPE

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Block:
        data = {k: v for k, v in payload.items() if k != "children"}
        return cls(
            id=normalize_id(str(payload.get("id", ""))),
            type=str(payload.get("type", "unsupported")),
            has_children=bool(payload.get("has_children", False)),
            children=[cls.from_dict(child) for child in payload.get("children") or []],
            data=data,
        )

    def to_dict(self) -> dict[str, Any]:
        out = dict(self.data)
        out["id"] = self.id
        out["type"] = self.type
        out["has_children"] = self.has_children
        out["children"] = [child.to_dict() for child in self.children]
        return out


@dataclass
class PageMetadata:
    """Lightweight page information used for change detection."""

    id: str
    last_edited_time: str
    properties: dict[str, Any] = field(default_factory=dict)
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> PageMetadata:
        return cls(
            id=normalize_id(str(payload.get("id", ""))),
            last_edited_time=str(payload.get("last_edited_time", "")),
            properties=dict(payload.get("properties") or {}),
            raw=dict(payload),
        )


@dataclass
class PageSnapshot:
    """
    Full content of one page: its properties plus the block tree.

    ``metadata`` holds every other key of the page payload (icon, cover,
    parent, url, ...) so the persisted JSON round-trips the API response.
    """

    id: str
    properties: dict[str, Any]
    children: list[Block]
    last_edited_time: str
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_metadata(cls, meta: PageMetadata, children: list[Block]) -> PageSnapshot:
        extra = {
            k: v for k, v in meta.raw.items() if k not in ("id", "properties", "last_edited_time", "children")
        }
        return cls(
            id=meta.id,
            properties=meta.properties,
            children=children,
            last_edited_time=meta.last_edited_time,
            metadata=extra,
        )

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> PageSnapshot:
        extra = {
            k: v for k, v in payload.items() if k not in ("id", "properties", "last_edited_time", "children")
        }
        return cls(
            id=normalize_id(str(payload.get("id", ""))),
            properties=dict(payload.get("properties") or {}),
            children=[Block.from_dict(b) for b in payload.get("children") or []],
            last_edited_time=str(payload.get("last_edited_time", "")),
            metadata=extra,
        )

    def to_dict(self) -> dict[str, Any]:
        out = dict(self.metadata)
        out["id"] = self.id
        out["last_edited_time"] = self.last_edited_time
        out["properties"] = self.properties
        out["children"] = [block.to_dict() for block in self.children]
        return out

    @property
    def title(self) -> Optional[str]:
        """Plain-text title from the page's title property, if any."""
        for prop in self.properties.values():
            if isinstance(prop, dict) and prop.get("type") == "title":
                parts = prop.get("title") or []
                return "".join(str(p.get("plain_text", "")) for p in parts if isinstance(p, dict))
        return None

    def iter_blocks(self) -> Iterator[Block]:
        """Pre-order walk of all blocks, not descending into child pages."""
        stack = list(reversed(self.children))
        while stack:
            block = stack.pop()
            yield block
            if not block.is_child_page:
                stack.extend(reversed(block.children))

    def child_page_ids(self) -> list[str]:
        """Ids of direct and nested child pages, in document order, deduplicated."""
        seen: set[str] = set()
        ids: list[str] = []
        for block in self.iter_blocks():
            if block.is_child_page and block.id not in seen:
                seen.add(block.id)
                ids.append(block.id)
        return ids


@dataclass(frozen=True)
class SaveResult:
    """Outcome of writing a snapshot or an attachment."""

    success: bool
    file_path: Optional[Path] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, file_path: Path) -> SaveResult:
        return cls(success=True, file_path=file_path)

    @classmethod
    def failed(cls, error: str) -> SaveResult:
        return cls(success=False, error=error)
