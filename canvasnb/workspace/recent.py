"""Recently opened notebooks, persisted as JSON."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, TypeAdapter, ValidationError

from canvasnb.core import Result

logger = logging.getLogger("canvasnb.workspace")

MAX_RECENT_FILES = 10


class RecentFile(BaseModel):
    path: str
    name: str
    last_opened: str


_RECENT_LIST = TypeAdapter(list[RecentFile])


class RecentFilesStore:
    """Most recent first, one entry per path, at most MAX_RECENT_FILES."""

    def __init__(self, path: Path) -> None:
        self._path = path

    def get_all(self) -> list[RecentFile]:
        if not self._path.exists():
            return []
        try:
            return _RECENT_LIST.validate_json(self._path.read_text())
        except (OSError, ValidationError) as e:
            logger.warning("Ignoring unreadable recent files list %s: %s", self._path, e)
            return []

    def add(self, file_path: str | Path) -> Result[list[RecentFile]]:
        path = str(file_path)
        entry = RecentFile(path=path, name=Path(path).name, last_opened=datetime.now(UTC).isoformat())
        files = [entry, *(f for f in self.get_all() if f.path != path)][:MAX_RECENT_FILES]
        return self._save(files)

    def remove(self, file_path: str | Path) -> Result[list[RecentFile]]:
        path = str(file_path)
        return self._save([f for f in self.get_all() if f.path != path])

    def clear(self) -> Result[list[RecentFile]]:
        return self._save([])

    def _save(self, files: list[RecentFile]) -> Result[list[RecentFile]]:
        result: Result[list[RecentFile]] = Result()
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps([f.model_dump() for f in files], indent=2) + "\n")
        except OSError as e:
            logger.warning("Failed to save recent files: %s", e)
            result.error("SAVE_FAILED", f"Failed to save recent files: {e}")
            return result
        result.data = files
        return result
