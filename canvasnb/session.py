"""Editor session: one document store plus everything that acts on it."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from canvasnb.canvas.interaction import InteractionController
from canvasnb.canvas.viewport import ViewportController
from canvasnb.config import CanvasnbConfig, load_config, recent_files_path
from canvasnb.core import Result
from canvasnb.document.document import Document, SavedFileInfo
from canvasnb.document.store import DocumentStore
from canvasnb.execution.backend import ExecutionBackend, build_backend
from canvasnb.execution.executor import CellExecutor
from canvasnb.execution.order import ExecutionOrderManager
from canvasnb.jupyter.convert import export_json, import_notebook
from canvasnb.workspace.files import (
    SaveReport,
    normalize_notebook_path,
    read_notebook_files,
    save_notebook,
)
from canvasnb.workspace.recent import RecentFilesStore
from canvasnb.workspace.workdirs import WorkingDirectoryRegistry

logger = logging.getLogger("canvasnb.session")


class EditorSession:
    def __init__(
        self,
        config: CanvasnbConfig | None = None,
        *,
        backend: ExecutionBackend | None = None,
        recent_files: RecentFilesStore | None = None,
        workdirs: WorkingDirectoryRegistry | None = None,
    ) -> None:
        self.config = config or CanvasnbConfig()
        self.store = DocumentStore(Document.from_defaults(self.config.canvas))
        self.order = ExecutionOrderManager()
        self.workdirs = workdirs or WorkingDirectoryRegistry()
        self.backend = backend or build_backend(self.config.execution, self.workdirs)
        self.executor = CellExecutor(self.store, self.backend, self.order)
        self.viewport = ViewportController(self.store)
        self.interaction = InteractionController(self.store, self.viewport, self.order)
        self.recent_files = recent_files or RecentFilesStore(recent_files_path())
        self.saved_file_info = SavedFileInfo()
        self.workdirs.register(self.document.id, Path.cwd())

    @property
    def document(self) -> Document:
        return self.store.document

    def new_document(self, name: str | None = None) -> Document:
        document = Document.from_defaults(self.config.canvas, name)
        self.store.replace_document(document)
        self.saved_file_info = SavedFileInfo()
        self.workdirs.register(document.id, Path.cwd())
        return document

    def import_artifacts(self, notebook: Mapping[str, Any], layout: Mapping[str, Any] | None = None) -> Result[Document]:
        """Replace the current document with an imported one. Failed imports change nothing."""
        result = import_notebook(
            notebook,
            layout,
            canvas=Document.from_defaults(self.config.canvas).canvas,
            layout_config=self.config.layout,
        )
        if result.ok and result.data is not None:
            self.store.replace_document(result.data)
        return result

    def save_as(self, path: str | Path) -> Result[SaveReport]:
        notebook_path = normalize_notebook_path(path)
        notebook_text, layout_text = export_json(self.document)
        result = save_notebook(notebook_path, notebook_text, layout_text)
        if result.ok and result.data is not None:
            self._remember(notebook_path)
        return result

    def save(self) -> Result[SaveReport]:
        """Quick save to the last saved path, without the per-file log lines."""
        if not self.saved_file_info.last_saved_path:
            return Result.failure("NO_SAVE_PATH", "This document has not been saved yet", hint="Use save-as to choose a file")
        notebook_text, layout_text = export_json(self.document)
        return save_notebook(self.saved_file_info.last_saved_path, notebook_text, layout_text, silent=True)

    def open(self, path: str | Path) -> Result[Document]:
        """Load a notebook (and its layout, if any) from disk into the session."""
        result: Result[Document] = Result()
        files = read_notebook_files(path)
        result.extend(files)
        if not files.ok or files.data is None:
            return result

        try:
            notebook = json.loads(files.data.notebook_text)
            layout = json.loads(files.data.layout_text) if files.data.layout_text is not None else None
        except json.JSONDecodeError as e:
            result.error("JSON_INVALID", f"Failed to parse {files.data.notebook_path}: {e}")
            return result

        imported = self.import_artifacts(notebook, layout)
        result.extend(imported)
        if not imported.ok or imported.data is None:
            return result

        self._remember(Path(files.data.notebook_path))
        self.workdirs.register(imported.data.id, files.data.directory)
        result.data = imported.data
        return result

    def _remember(self, notebook_path: Path) -> None:
        self.saved_file_info = SavedFileInfo(
            base_file_name=notebook_path.name.removesuffix(".ipynb"),
            last_saved_path=str(notebook_path),
        )
        recent = self.recent_files.add(notebook_path)
        if not recent.ok:
            logger.warning("Could not update recent files for %s", notebook_path)


_session: EditorSession | None = None


def get_session() -> EditorSession:
    """Get or create the singleton editor session."""
    global _session  # noqa: PLW0603
    if _session is None:
        _session = EditorSession(load_config())
    return _session


def reset_session(session: EditorSession | None = None) -> None:
    """Replace the singleton (tests pass a prepared session, or None to drop it)."""
    global _session  # noqa: PLW0603
    _session = session
