"""Event types for the streaming sync API."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional


class EventType(str, Enum):
    """Types of events emitted during a sync run."""

    # Lifecycle events
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    # Per-root lifecycle
    ROOT_STARTED = "root_started"
    ROOT_COMPLETED = "root_completed"
    ROOT_FAILED = "root_failed"

    # Per-page outcomes
    PAGE_CACHE_HIT = "page_cache_hit"
    PAGE_PARTIAL_UPDATE = "page_partial_update"
    PAGE_FETCHED = "page_fetched"
    PAGE_SAVED = "page_saved"
    PAGE_FAILED = "page_failed"
    CHILDREN_DISPATCHED = "children_dispatched"

    # Attachments
    RESOURCE_MAP_BUILT = "resource_map_built"
    RESOURCE_DOWNLOADED = "resource_downloaded"
    RESOURCE_FAILED = "resource_failed"


@dataclass
class SyncEvent:
    """
    Event emitted during a sync run.

    Example:
        async for event in syncer.run():
            if event.type == EventType.PAGE_SAVED:
                print(f"Saved: {event.output_path}")
            elif event.is_error:
                print(f"Error: {event.page_id} - {event.error}")
    """

    type: EventType

    # Timestamp (always UTC)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    page_id: Optional[str] = None
    ancestors: tuple[str, ...] = ()
    message: Optional[str] = None
    error: Optional[str] = None
    output_path: Optional[Path] = None

    # Progress tracking
    current: Optional[int] = None
    total: Optional[int] = None

    @property
    def is_error(self) -> bool:
        """Check if this is an error event."""
        return self.type in (
            EventType.FAILED,
            EventType.ROOT_FAILED,
            EventType.PAGE_FAILED,
            EventType.RESOURCE_FAILED,
        )


@dataclass
class SyncStats:
    """Cumulative statistics for a sync run."""

    roots_total: int = 0
    roots_failed: int = 0
    pages_synced: int = 0
    pages_skipped: int = 0
    pages_partial: int = 0
    pages_failed: int = 0
    resources_downloaded: int = 0
    resources_failed: int = 0
    bytes_downloaded: int = 0
    duration_seconds: float = 0.0

    def to_dict(self) -> dict:
        """Convert stats to dictionary for serialization."""
        return {
            "roots_total": self.roots_total,
            "roots_failed": self.roots_failed,
            "pages_synced": self.pages_synced,
            "pages_skipped": self.pages_skipped,
            "pages_partial": self.pages_partial,
            "pages_failed": self.pages_failed,
            "resources_downloaded": self.resources_downloaded,
            "resources_failed": self.resources_failed,
            "bytes_downloaded": self.bytes_downloaded,
            "duration_seconds": round(self.duration_seconds, 2),
        }
