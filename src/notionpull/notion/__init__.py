"""Notion API access: client, tree protocol and snapshot fetcher."""

from .client import NotionClient
from .fetcher import TreeFetcher, is_transient
from .protocols import TreeClient

__all__ = [
    "NotionClient",
    "TreeClient",
    "TreeFetcher",
    "is_transient",
]
