"""Write page snapshots to the output directory."""

import asyncio
import json
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Optional

from ..models.tree import PageSnapshot, SaveResult

logger = logging.getLogger(__name__)


class SnapshotWriter:
    """
    Persists one JSON file per page.

    Layout: ``<output>/<ancestor ids...>/<page id>/<page id>.json``.
    Writes are not retried; the caller treats a failed save as fatal for
    that page.

    Example:
        writer = SnapshotWriter(Path("./build/meta"))

        result = await writer.save(page_id, snapshot, ancestors=[root_id])
        if result.success:
            print(f"Saved to {result.file_path}")
    """

    def __init__(self, output_dir: Path) -> None:
        """
        Initialize the writer.

        Args:
            output_dir: Base directory; every written path must stay inside it
        """
        self._output_dir = Path(output_dir)

    @property
    def output_dir(self) -> Path:
        return self._output_dir

    def snapshot_path(self, node_id: str, ancestors: Sequence[str] = ()) -> Path:
        return self._output_dir.joinpath(*ancestors, node_id, f"{node_id}.json")

    def _validate_output_path(self, output_path: Path) -> Path:
        """
        Validate that output path is safe.

        Raises:
            ValueError: If path is outside the output directory
        """
        resolved = output_path.resolve()
        base_resolved = self._output_dir.resolve()
        try:
            resolved.relative_to(base_resolved)
        except ValueError as err:
            raise ValueError(f"Output path {resolved} is outside base directory {base_resolved}") from err
        return resolved

    def _write(self, path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")

    async def save(
        self,
        node_id: str,
        snapshot: PageSnapshot,
        ancestors: Sequence[str] = (),
    ) -> SaveResult:
        """
        Write a page's snapshot as its canonical file.

        Returns:
            SaveResult with the file path, or with the error message
        """
        try:
            path = self._validate_output_path(self.snapshot_path(node_id, ancestors))
            content = json.dumps(snapshot.to_dict(), indent=2, ensure_ascii=False)
            await asyncio.to_thread(self._write, path, content)
        except (OSError, ValueError, TypeError) as e:
            logger.error(f"Failed to save page {node_id}: {e}")
            return SaveResult.failed(str(e))

        logger.info(f"Saved: {path}")
        return SaveResult.ok(path)

    async def load(self, node_id: str, ancestors: Sequence[str] = ()) -> Optional[PageSnapshot]:
        """Read back a persisted snapshot; None if missing or unreadable."""
        path = self.snapshot_path(node_id, ancestors)

        def read() -> Optional[PageSnapshot]:
            if not path.is_file():
                return None
            data = json.loads(path.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise ValueError("snapshot is not a JSON object")
            return PageSnapshot.from_dict(data)

        try:
            return await asyncio.to_thread(read)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read local snapshot of {node_id}: {e}")
            return None
