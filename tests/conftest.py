"""Shared test fixtures for canvasnb tests."""

from __future__ import annotations

import asyncio
from pathlib import Path

from canvasnb.config import CanvasnbConfig
from canvasnb.document.cell import CodeCell, MarkdownCell, Position, RawCell, RenderingHints, Size
from canvasnb.document.document import Document
from canvasnb.document.store import DocumentStore
from canvasnb.execution.backend import ExecutionBackendError, ExecutionRequest, ExecutionResponse
from canvasnb.session import EditorSession
from canvasnb.workspace.recent import RecentFilesStore
from canvasnb.workspace.workdirs import WorkingDirectoryRegistry


def make_code_cell(
    cell_id: str = "cell_code1",
    content: str = "print('hi')",
    *,
    x: float = 100,
    y: float = 100,
    order: int | None = 1,
    z_index: int = 11,
) -> CodeCell:
    return CodeCell(
        id=cell_id,
        content=content,
        position=Position(x=x, y=y),
        size=Size(width=300, height=200),
        execution_order=order,
        z_index=z_index,
    )


def make_markdown_cell(
    cell_id: str = "cell_md1",
    content: str = "# Notes",
    *,
    x: float = 500,
    y: float = 100,
    z_index: int = 12,
) -> MarkdownCell:
    return MarkdownCell(
        id=cell_id,
        content=content,
        position=Position(x=x, y=y),
        size=Size(width=300, height=150),
        rendering_hints=RenderingHints(content_type="text", font_size=14, font_family="Arial"),
        z_index=z_index,
    )


def make_document(*cells: CodeCell | MarkdownCell | RawCell) -> Document:
    return Document(id="doc_test", name="Test Diary", cells=cells)


def make_store(*cells: CodeCell | MarkdownCell | RawCell) -> DocumentStore:
    return DocumentStore(make_document(*cells))


def make_response(cell_id: str, stdout: str = "", stderr: str = "", **kwargs: object) -> ExecutionResponse:
    return ExecutionResponse(
        cell_id=cell_id,
        stdout=stdout,
        stderr=stderr,
        success=not stderr,
        exit_code=0 if not stderr else 1,
        **kwargs,
    )


class FakeBackend:
    """Execution backend double: records requests and replays canned results.

    Set `gate` to an asyncio.Event to hold runs until the test releases them.
    """

    def __init__(self, response: ExecutionResponse | None = None, error: str | None = None) -> None:
        self.response = response
        self.error = error
        self.requests: list[ExecutionRequest] = []
        self.gate: asyncio.Event | None = None

    async def execute(self, request: ExecutionRequest) -> ExecutionResponse:
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise ExecutionBackendError(self.error)
        if self.response is not None:
            return self.response.model_copy(update={"cell_id": request.cell_id})
        return make_response(request.cell_id, stdout="hi")


def make_session(tmp_path: Path, backend: FakeBackend | None = None) -> EditorSession:
    return EditorSession(
        CanvasnbConfig(),
        backend=backend or FakeBackend(),
        recent_files=RecentFilesStore(tmp_path / "recent_files.json"),
        workdirs=WorkingDirectoryRegistry(),
    )
