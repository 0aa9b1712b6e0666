"""FastAPI server for canvasnb."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncGenerator
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sse_starlette.sse import EventSourceResponse

from canvasnb.config import load_config
from canvasnb.core import Result
from canvasnb.document.document import Document
from canvasnb.jupyter.convert import export_document
from canvasnb.session import get_session
from canvasnb.workspace.files import list_directory

logger = logging.getLogger("canvasnb.server")

app = FastAPI(title="canvasnb", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=load_config().server.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_STATUS_BY_CODE = {
    "CELL_NOT_FOUND": 404,
    "NOT_FOUND": 404,
    "PERMISSION_DENIED": 403,
    "EXECUTION_IN_PROGRESS": 409,
    "SAVE_FAILED": 500,
    "READ_FAILED": 500,
    "LIST_FAILED": 500,
}


def _document_payload(document: Document) -> dict[str, Any]:
    return document.model_dump(mode="json", by_alias=True)


def _error_response(result: Result[Any]) -> JSONResponse:
    diag = result.first_error
    if diag is None:
        return JSONResponse(status_code=500, content={"error": "Unknown error", "code": "UNKNOWN"})
    content = {"error": diag.message, "code": diag.code}
    if diag.hint:
        content["hint"] = diag.hint
    return JSONResponse(status_code=_STATUS_BY_CODE.get(diag.code, 400), content=content)


def _document_response(result: Result[Document]) -> Any:
    if not result.ok or result.data is None:
        return _error_response(result)
    payload: dict[str, Any] = {"document": _document_payload(result.data)}
    warnings = [d.model_dump() for d in result.diagnostics]
    if warnings:
        payload["diagnostics"] = warnings
    return payload


def _synced_response(result: Result[Document]) -> Any:
    """Respond with the document after re-deriving pages and pan for its new geometry."""
    if result.ok and result.data is not None:
        result.data = get_session().viewport.sync_canvas()
    return _document_response(result)


def _sse_error(code: str, message: str) -> EventSourceResponse:
    """Return an SSE response with a single error event."""

    async def _stream() -> AsyncGenerator[dict[str, str]]:
        yield {"event": "error", "data": json.dumps({"code": code, "message": message})}

    return EventSourceResponse(_stream())


@app.get("/api/health")
async def health() -> dict[str, Any]:
    session = get_session()
    return {
        "ok": True,
        "document_id": session.document.id,
        "backend": session.config.execution.backend,
        "running_cells": session.executor.order.in_flight_count,
    }


# -- document ---------------------------------------------------------------


@app.get("/api/document")
async def get_document() -> dict[str, Any]:
    session = get_session()
    return {
        "document": _document_payload(session.document),
        "selected_cell_ids": sorted(session.store.selection.selected_cell_ids),
        "saved_file_info": session.saved_file_info.model_dump(),
    }


class NewDocumentRequest(BaseModel):
    name: str | None = None


@app.post("/api/document/new")
async def new_document(request: NewDocumentRequest) -> dict[str, Any]:
    document = get_session().new_document(request.name)
    return {"document": _document_payload(document)}


# -- cells ------------------------------------------------------------------


class AddCellRequest(BaseModel):
    type: str
    x: float = 0.0
    y: float = 0.0
    hint: str | None = None


@app.post("/api/cells")
async def add_cell(request: AddCellRequest) -> Any:
    store = get_session().store
    try:
        result = store.add_cell(request.type, (request.x, request.y), request.hint)
    except ValueError as e:
        logger.warning("Rejected cell creation: %s", e)
        return JSONResponse(status_code=400, content={"error": str(e), "code": "INVALID_CELL_TYPE"})
    return _document_response(result)


class UpdateCellRequest(BaseModel):
    updates: dict[str, Any]


@app.patch("/api/cells/{cell_id}")
async def update_cell(cell_id: str, request: UpdateCellRequest) -> Any:
    return _synced_response(get_session().store.update_cell(cell_id, request.updates))


@app.delete("/api/cells/{cell_id}")
async def delete_cell(cell_id: str) -> Any:
    session = get_session()
    session.executor.cancel(cell_id)
    return _synced_response(session.store.delete_cell(cell_id))


@app.post("/api/cells/{cell_id}/duplicate")
async def duplicate_cell(cell_id: str) -> Any:
    return _document_response(get_session().store.duplicate_cell(cell_id))


@app.post("/api/cells/{cell_id}/collapse")
async def toggle_collapse(cell_id: str) -> Any:
    return _synced_response(get_session().store.toggle_cell_collapse(cell_id))


class PositionRequest(BaseModel):
    x: float
    y: float


@app.post("/api/cells/{cell_id}/position")
async def move_cell(cell_id: str, request: PositionRequest) -> Any:
    return _synced_response(get_session().store.update_cell_position(cell_id, (request.x, request.y)))


class SizeRequest(BaseModel):
    width: float
    height: float


@app.post("/api/cells/{cell_id}/size")
async def resize_cell(cell_id: str, request: SizeRequest) -> Any:
    size = {"width": request.width, "height": request.height}
    return _synced_response(get_session().store.update_cell_size(cell_id, size))


class SelectionRequest(BaseModel):
    cell_ids: list[str] = Field(default_factory=list)


@app.post("/api/selection")
async def select_cells(request: SelectionRequest) -> Any:
    return _document_response(get_session().store.select_cells(request.cell_ids))


@app.delete("/api/selection")
async def clear_selection() -> dict[str, Any]:
    return {"document": _document_payload(get_session().store.clear_selection())}


# -- canvas -----------------------------------------------------------------


class CanvasRequest(BaseModel):
    zoom: float | None = None
    snap_to_grid: bool | None = None
    page_size: str | None = None
    orientation: str | None = None


@app.patch("/api/canvas")
async def update_canvas(request: CanvasRequest) -> Any:
    session = get_session()
    store = session.store
    steps = []
    if request.zoom is not None:
        steps.append(lambda: store.set_zoom(request.zoom))
    if request.snap_to_grid is not None:
        steps.append(lambda: store.set_snap_to_grid(request.snap_to_grid))
    if request.page_size is not None:
        steps.append(lambda: store.set_page_size(request.page_size))
    if request.orientation is not None:
        steps.append(lambda: store.set_orientation(request.orientation))
    for step in steps:
        result = step()
        if not result.ok:
            return _error_response(result)
    return {"document": _document_payload(session.viewport.sync_canvas())}


class PanRequest(BaseModel):
    dx: float
    dy: float


@app.post("/api/canvas/pan")
async def pan_canvas(request: PanRequest) -> Any:
    return _document_response(get_session().viewport.pan_by(request.dx, request.dy))


class WheelRequest(BaseModel):
    delta_x: float = 0.0
    delta_y: float = 0.0
    modifier: bool = False
    shift: bool = False


@app.post("/api/canvas/wheel")
async def wheel_canvas(request: WheelRequest) -> Any:
    viewport = get_session().viewport
    return _document_response(
        viewport.wheel(request.delta_x, request.delta_y, modifier=request.modifier, shift=request.shift)
    )


# -- execution --------------------------------------------------------------


async def _run_cells(cell_ids: list[str]) -> AsyncGenerator[dict[str, str]]:
    session = get_session()
    try:
        for cell_id in cell_ids:
            yield {"event": "stage", "data": json.dumps({"stage": "running", "cell_id": cell_id})}
            result = await session.executor.execute_cell(cell_id)
            for diag in result.diagnostics:
                logger.info("SSE >> error %s for %s", diag.code, cell_id)
                yield {
                    "event": "error",
                    "data": json.dumps({"code": diag.code, "message": diag.message, "cell_id": cell_id}),
                }
            if result.data is not None:
                cell = result.data.get_cell(cell_id)
                if cell is not None:
                    yield {"event": "cell", "data": cell.model_dump_json(by_alias=True)}
                yield {"event": "document", "data": json.dumps(_document_payload(result.data))}
        logger.info("Execution SSE stream complete")
    except Exception:
        logger.exception("Error in execution SSE stream")
        yield {"event": "error", "data": json.dumps({"code": "STREAM_ERROR", "message": "Internal server error"})}


@app.post("/api/cells/{cell_id}/execute")
async def execute_cell(cell_id: str) -> EventSourceResponse:
    logger.info("POST /api/cells/%s/execute", cell_id)
    if get_session().document.get_cell(cell_id) is None:
        return _sse_error("CELL_NOT_FOUND", f"Cell {cell_id} not found")
    return EventSourceResponse(_run_cells([cell_id]))


class ExecuteManyRequest(BaseModel):
    cell_ids: list[str]


@app.post("/api/execute")
async def execute_cells(request: ExecuteManyRequest) -> EventSourceResponse:
    logger.info("POST /api/execute cells=%s", request.cell_ids)
    return EventSourceResponse(_run_cells(request.cell_ids))


@app.post("/api/cells/{cell_id}/cancel")
async def cancel_cell(cell_id: str) -> dict[str, Any]:
    get_session().executor.cancel(cell_id)
    return {"ok": True}


# -- import / export / files --------------------------------------------------


@app.get("/api/export")
async def export() -> dict[str, Any]:
    artifacts = export_document(get_session().document)
    return artifacts.model_dump()


class ImportRequest(BaseModel):
    notebook: dict[str, Any]
    layout: dict[str, Any] | None = None


@app.post("/api/import")
async def import_artifacts(request: ImportRequest) -> Any:
    return _document_response(get_session().import_artifacts(request.notebook, request.layout))


class PathRequest(BaseModel):
    path: str


@app.post("/api/save-as")
async def save_as(request: PathRequest) -> Any:
    result = get_session().save_as(request.path)
    if not result.ok or result.data is None:
        return _error_response(result)
    return result.data.model_dump()


@app.post("/api/save")
async def save() -> Any:
    result = get_session().save()
    if not result.ok or result.data is None:
        return _error_response(result)
    return result.data.model_dump()


@app.post("/api/open")
async def open_notebook(request: PathRequest) -> Any:
    return _document_response(get_session().open(request.path))


@app.post("/api/list-directory")
async def list_dir(request: PathRequest) -> Any:
    result = list_directory(request.path)
    if not result.ok or result.data is None:
        return _error_response(result)
    return result.data.model_dump()


@app.get("/api/recent-files")
async def get_recent_files() -> dict[str, Any]:
    files = get_session().recent_files.get_all()
    return {"recent_files": [f.model_dump() for f in files]}


@app.post("/api/recent-files")
async def add_recent_file(request: PathRequest) -> Any:
    result = get_session().recent_files.add(request.path)
    if not result.ok or result.data is None:
        return _error_response(result)
    return {"recent_files": [f.model_dump() for f in result.data]}


@app.post("/api/recent-files/remove")
async def remove_recent_file(request: PathRequest) -> Any:
    result = get_session().recent_files.remove(request.path)
    if not result.ok or result.data is None:
        return _error_response(result)
    return {"recent_files": [f.model_dump() for f in result.data]}


@app.delete("/api/recent-files")
async def clear_recent_files() -> Any:
    result = get_session().recent_files.clear()
    if not result.ok:
        return _error_response(result)
    return {"recent_files": []}


class WorkingDirectoryRequest(BaseModel):
    document_id: str
    directory: str


@app.post("/api/working-directories")
async def register_working_directory(request: WorkingDirectoryRequest) -> Any:
    result = get_session().workdirs.register(request.document_id, request.directory)
    if not result.ok or result.data is None:
        return _error_response(result)
    return {"document_id": request.document_id, "directory": str(result.data)}


@app.get("/api/working-directories/{document_id}")
async def get_working_directory(document_id: str) -> Any:
    directory = get_session().workdirs.get(document_id)
    if directory is None:
        return JSONResponse(status_code=404, content={"error": f"No working directory for {document_id}"})
    return {"document_id": document_id, "directory": str(directory)}
