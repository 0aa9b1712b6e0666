"""Per-document working directories for code execution."""

from __future__ import annotations

import logging
from pathlib import Path

from canvasnb.core import Result

logger = logging.getLogger("canvasnb.workspace")


class WorkingDirectoryRegistry:
    def __init__(self) -> None:
        self._dirs: dict[str, Path] = {}

    def register(self, document_id: str, directory: str | Path) -> Result[Path]:
        result: Result[Path] = Result()
        path = Path(directory).expanduser()
        if not path.exists():
            result.error("NOT_FOUND", f"Directory does not exist: {path}")
            return result
        if not path.is_dir():
            result.error("NOT_A_DIRECTORY", f"Path is not a directory: {path}")
            return result
        self._dirs[document_id] = path
        logger.info("Registered working directory %s for document %s", path, document_id)
        result.data = path
        return result

    def get(self, document_id: str) -> Path | None:
        return self._dirs.get(document_id)

    def unregister(self, document_id: str) -> None:
        self._dirs.pop(document_id, None)
