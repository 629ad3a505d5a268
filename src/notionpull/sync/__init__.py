"""Sync engine: run context, resource ownership and the coordinator."""

from .context import EventEmitter, FlaggedDescendant, SyncContext
from .coordinator import SyncCoordinator
from .ownership import ResourceOwnershipTracker, ResourceRef

__all__ = [
    "EventEmitter",
    "FlaggedDescendant",
    "ResourceOwnershipTracker",
    "ResourceRef",
    "SyncContext",
    "SyncCoordinator",
]
