"""Exception hierarchy for notionpull."""

from __future__ import annotations

from collections.abc import Sequence


class NotionpullError(Exception):
    """Base class for all notionpull errors."""


class ConfigError(NotionpullError):
    """Raised when configuration cannot be loaded or is incomplete."""


class NotionApiError(NotionpullError):
    """
    Non-success response from the Notion API.

    Attributes:
        status: HTTP status code
        code: Notion error code (e.g. "object_not_found"), if present
        message: Human-readable message from the response body
    """

    RETRYABLE_STATUS_CODES = frozenset({409, 429, 500, 502, 503, 504})

    def __init__(self, status: int, code: str | None = None, message: str | None = None) -> None:
        self.status = status
        self.code = code
        self.message = message or ""
        detail = f"{code}: {message}" if code else (message or "no details")
        super().__init__(f"Notion API returned {status} ({detail})")

    @property
    def is_transient(self) -> bool:
        return self.status in self.RETRYABLE_STATUS_CODES


class FetchError(NotionpullError):
    """Metadata or block content could not be fetched for a page."""

    def __init__(self, node_id: str, ancestors: Sequence[str], cause: BaseException) -> None:
        self.node_id = node_id
        self.ancestors = tuple(ancestors)
        self.cause = cause
        chain = " -> ".join(self.ancestors) if self.ancestors else "<root>"
        super().__init__(f"Failed to fetch page {node_id} (ancestors: {chain}): {cause}")


class PersistenceError(NotionpullError):
    """A page snapshot could not be written to the output directory."""

    def __init__(self, node_id: str, error: str | None) -> None:
        self.node_id = node_id
        self.error = error
        super().__init__(f"Failed to save page {node_id}: {error}")


class DownloadError(NotionpullError):
    """An attachment download gave up after exhausting its retries."""
