"""Run-scoped state shared by the sync components."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, NamedTuple, Optional

from ..models.events import SyncEvent, SyncStats

# Type alias for event emitter function
EventEmitter = Callable[[SyncEvent], None]


class FlaggedDescendant(NamedTuple):
    """A cached descendant whose remote timestamp changed under an unchanged root."""

    node_id: str
    ancestors: tuple[str, ...]


@dataclass
class SyncContext:
    """
    Mutable state for one sync run, passed to every component.

    None of this is synchronized: it is only safe because all components
    run on a single asyncio event loop.

    Attributes:
        pending: Ids queued for a full update during this run
        updated_children: Root id -> descendants flagged by the children check
        resource_owners: Resource (block) id -> owning page id, one map per root
        synced: Ids fully written during this run
        stats: Cumulative counters
        emit: Optional callback receiving SyncEvents
    """

    pending: set[str] = field(default_factory=set)
    updated_children: dict[str, list[FlaggedDescendant]] = field(default_factory=dict)
    resource_owners: dict[str, str] = field(default_factory=dict)
    synced: set[str] = field(default_factory=set)
    stats: SyncStats = field(default_factory=SyncStats)
    emit: Optional[EventEmitter] = None

    def emit_event(self, event: SyncEvent) -> None:
        if self.emit:
            self.emit(event)

    def for_root(self) -> SyncContext:
        """
        Context for one top-level page.

        The resource map is fresh; pending, flagged descendants, synced ids
        and stats are shared with this context, and events go through its
        ``emit``.
        """
        return SyncContext(
            pending=self.pending,
            updated_children=self.updated_children,
            synced=self.synced,
            stats=self.stats,
            emit=self.emit_event,
        )
