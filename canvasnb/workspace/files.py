"""Filesystem access: directory listing and notebook + layout persistence."""

from __future__ import annotations

import logging
import os
import stat
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel

from canvasnb.core import Result

logger = logging.getLogger("canvasnb.workspace")

NOTEBOOK_SUFFIX = ".ipynb"
LAYOUT_SUFFIX = ".layout.json"


class FileEntry(BaseModel):
    name: str
    path: str
    is_directory: bool
    size: int
    modified: str
    error: str | None = None


class DirectoryListing(BaseModel):
    files: list[FileEntry]
    directory_path: str
    original_path: str | None = None


class SaveReport(BaseModel):
    notebook_path: str
    layout_path: str | None = None
    notebook_size: int
    layout_size: int = 0
    modified: str


class NotebookFiles(BaseModel):
    notebook_path: str
    directory: str
    notebook_text: str
    layout_text: str | None = None

    @property
    def has_layout(self) -> bool:
        return self.layout_text is not None


def _mtime(st: os.stat_result) -> str:
    return datetime.fromtimestamp(st.st_mtime, UTC).isoformat()


def normalize_notebook_path(path: str | Path) -> Path:
    """Append .ipynb unless the path already ends with it."""
    p = Path(path).expanduser()
    return p if p.name.endswith(NOTEBOOK_SUFFIX) else p.with_name(p.name + NOTEBOOK_SUFFIX)


def layout_path_for(notebook_path: str | Path) -> Path:
    """`analysis.ipynb` -> `analysis.layout.json` in the same directory."""
    p = Path(notebook_path)
    stem = p.name.removesuffix(NOTEBOOK_SUFFIX)
    return p.with_name(stem + LAYOUT_SUFFIX)


def list_directory(path: str | Path) -> Result[DirectoryListing]:
    """List a directory's entries, following a symlinked directory.

    Entries that cannot be stat'ed for permission reasons are skipped; other
    unreadable entries are listed with an error marker.
    """
    result: Result[DirectoryListing] = Result()
    requested = Path(path).expanduser()
    resolved = requested
    if requested.is_symlink():
        target = Path(os.readlink(requested))
        resolved = target if target.is_absolute() else requested.parent / target
        logger.debug("Resolved symlink %s -> %s", requested, resolved)

    if not resolved.exists():
        result.error("NOT_FOUND", f"Directory does not exist: {requested}")
        return result
    if not resolved.is_dir():
        result.error("NOT_A_DIRECTORY", f"Path is not a directory: {requested}")
        return result

    hint = f"Resolved path: {resolved}" if resolved != requested else None
    if not os.access(resolved, os.R_OK):
        result.error("PERMISSION_DENIED", f"Permission denied: cannot access {requested}", hint=hint)
        return result
    try:
        names = sorted(os.listdir(resolved))
    except PermissionError:
        result.error("PERMISSION_DENIED", f"Permission denied: cannot access {requested}", hint=hint)
        return result
    except OSError as e:
        result.error("LIST_FAILED", f"Failed to read directory: {e}")
        return result

    entries: list[FileEntry] = []
    for name in names:
        entry_path = resolved / name
        try:
            st = entry_path.stat()
        except PermissionError:
            logger.warning("Skipping %s: permission denied", entry_path)
            continue
        except OSError as e:
            logger.warning("Skipping %s: %s", entry_path, e)
            entries.append(
                FileEntry(
                    name=name,
                    path=str(entry_path),
                    is_directory=False,
                    size=0,
                    modified=datetime.now(UTC).isoformat(),
                    error="Access denied",
                )
            )
            continue
        entries.append(
            FileEntry(
                name=name,
                path=str(entry_path),
                is_directory=stat.S_ISDIR(st.st_mode),
                size=st.st_size,
                modified=_mtime(st),
            )
        )

    result.data = DirectoryListing(
        files=entries,
        directory_path=str(resolved),
        original_path=str(requested) if resolved != requested else None,
    )
    return result


def _atomic_write(path: Path, text: str) -> int:
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(text, encoding="utf-8")
    tmp.rename(path)
    return path.stat().st_size


def save_notebook(
    notebook_path: str | Path,
    notebook_text: str,
    layout_text: str | None = None,
    *,
    silent: bool = False,
) -> Result[SaveReport]:
    """Write the notebook, and its sibling layout when given, creating parent dirs."""
    result: Result[SaveReport] = Result()
    if not notebook_text:
        result.error("SAVE_FAILED", "Missing notebook content")
        return result

    path = Path(notebook_path).expanduser()
    layout_path = layout_path_for(path) if layout_text else None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        notebook_size = _atomic_write(path, notebook_text)
        layout_size = _atomic_write(layout_path, layout_text) if layout_path and layout_text else 0
        modified = _mtime(path.stat())
    except OSError as e:
        logger.warning("Failed to save notebook %s: %s", path, e)
        result.error("SAVE_FAILED", f"Failed to save notebook: {e}")
        return result

    if not silent:
        logger.info("Saved notebook %s (%d bytes)", path, notebook_size)
        if layout_path:
            logger.info("Saved layout %s (%d bytes)", layout_path, layout_size)
    result.data = SaveReport(
        notebook_path=str(path),
        layout_path=str(layout_path) if layout_path else None,
        notebook_size=notebook_size,
        layout_size=layout_size,
        modified=modified,
    )
    return result


def read_notebook_files(notebook_path: str | Path) -> Result[NotebookFiles]:
    """Read a notebook and, if present, its sibling layout artifact."""
    result: Result[NotebookFiles] = Result()
    path = Path(notebook_path).expanduser()
    if not path.is_file():
        result.error("NOT_FOUND", f"Notebook file does not exist: {path}")
        return result

    layout_path = layout_path_for(path)
    try:
        notebook_text = path.read_text(encoding="utf-8")
        layout_text = layout_path.read_text(encoding="utf-8") if layout_path.is_file() else None
    except PermissionError:
        result.error("PERMISSION_DENIED", f"Permission denied: cannot read {path}")
        return result
    except OSError as e:
        result.error("READ_FAILED", f"Failed to read notebook: {e}")
        return result

    result.data = NotebookFiles(
        notebook_path=str(path),
        directory=str(path.parent),
        notebook_text=notebook_text,
        layout_text=layout_text,
    )
    return result
