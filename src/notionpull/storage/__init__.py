"""Local persistence: page snapshots and attachments."""

from .attachments import AttachmentDownloader, DownloadProgress, extension_from_url
from .snapshots import SnapshotWriter

__all__ = [
    "AttachmentDownloader",
    "DownloadProgress",
    "SnapshotWriter",
    "extension_from_url",
]
