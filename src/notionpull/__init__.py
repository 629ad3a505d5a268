"""
notionpull - Incrementally mirror Notion page trees to local JSON.

Usage:
    from notionpull import NotionpullConfig, Syncer

    config = NotionpullConfig(pages=["1429989fe8ac4effbc8f57f56486db54"])

    async with Syncer(config) as syncer:
        async for event in syncer.run():
            print(event)
"""

__version__ = "1.0.0"

from .cache import CacheStore, ChangeDetector
from .core.syncer import Syncer, sync_blocking
from .exceptions import (
    ConfigError,
    DownloadError,
    FetchError,
    NotionApiError,
    NotionpullError,
    PersistenceError,
)
from .models.config import (
    DownloadConfig,
    NetworkConfig,
    NotionpullConfig,
    OutputConfig,
    PageRef,
    SyncConfig,
)
from .models.events import EventType, SyncEvent, SyncStats

__all__ = [
    "__version__",
    # Core
    "Syncer",
    "sync_blocking",
    # Config
    "NotionpullConfig",
    "PageRef",
    "OutputConfig",
    "SyncConfig",
    "NetworkConfig",
    "DownloadConfig",
    # Events
    "EventType",
    "SyncEvent",
    "SyncStats",
    # Cache
    "CacheStore",
    "ChangeDetector",
    # Errors
    "NotionpullError",
    "ConfigError",
    "FetchError",
    "PersistenceError",
    "DownloadError",
    "NotionApiError",
]
