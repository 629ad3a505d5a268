"""Notionpull configuration, data and event models."""

from .config import (
    ByteSize,
    DownloadConfig,
    NetworkConfig,
    NotionpullConfig,
    OutputConfig,
    PageRef,
    SyncConfig,
    find_config_file,
    load_config,
)
from .events import EventType, SyncEvent, SyncStats
from .tree import CHILD_PAGE_TYPE, Block, PageMetadata, PageSnapshot, SaveResult, normalize_id

__all__ = [
    # Config
    "ByteSize",
    "DownloadConfig",
    "NetworkConfig",
    "NotionpullConfig",
    "OutputConfig",
    "PageRef",
    "SyncConfig",
    "find_config_file",
    "load_config",
    # Events
    "EventType",
    "SyncEvent",
    "SyncStats",
    # Tree
    "CHILD_PAGE_TYPE",
    "Block",
    "PageMetadata",
    "PageSnapshot",
    "SaveResult",
    "normalize_id",
]
