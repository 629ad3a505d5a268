"""Core API for notionpull."""

from .syncer import Syncer, sync_blocking

__all__ = ["Syncer", "sync_blocking"]
