"""Cache map, content hashing and change detection."""

from .detector import ChangeDetector
from .hashing import canonical_content, compute_content_hash
from .store import CacheRecord, CacheRecordDict, CacheStore

__all__ = [
    "CacheRecord",
    "CacheRecordDict",
    "CacheStore",
    "ChangeDetector",
    "canonical_content",
    "compute_content_hash",
]
