"""Timestamp-independent content digests for page snapshots."""

import hashlib
import json
from typing import Any

from ..models.tree import PageSnapshot

# Database properties that Notion rewrites on every edit
VOLATILE_PROPERTY_TYPES = frozenset({"created_time", "last_edited_time", "last_edited_by"})


def stable_properties(properties: dict[str, Any]) -> dict[str, Any]:
    """Page properties without the volatile timestamp/editor ones."""
    return {
        name: value
        for name, value in properties.items()
        if not (isinstance(value, dict) and value.get("type") in VOLATILE_PROPERTY_TYPES)
    }


def canonical_content(snapshot: PageSnapshot) -> dict[str, Any]:
    """
    Project a snapshot onto the fields that define its content.

    Children contribute only their id, type and has_children flag, so
    edits deep inside a child block are detected through that block's own
    page timestamp, not this digest. Timestamps are never included, neither
    the page's own nor timestamp-typed database properties.
    """
    return {
        "title": snapshot.title,
        "icon": snapshot.metadata.get("icon"),
        "cover": snapshot.metadata.get("cover"),
        "properties": stable_properties(snapshot.properties),
        "children": [
            {"id": block.id, "type": block.type, "has_children": block.has_children}
            for block in snapshot.children
        ],
    }


def compute_content_hash(snapshot: PageSnapshot) -> str:
    """SHA-256 hex digest of the snapshot's canonical content."""
    payload = json.dumps(
        canonical_content(snapshot),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
