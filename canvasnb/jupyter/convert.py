"""Conversion between a Document and its notebook + layout artifacts.

The notebook artifact is a standard nbformat 4 notebook that any Jupyter
viewer can open on its own. Geometry, stacking and rendering hints live in the
companion layout artifact, keyed by cell id. Importing a notebook without a
layout flows its cells onto pages with the layout optimizer.
"""

from __future__ import annotations

import json
import logging
import math
import re
from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import BaseModel, ValidationError

from canvasnb.config import LayoutConfig
from canvasnb.core import Result
from canvasnb.document.canvas import CanvasState
from canvasnb.document.cell import (
    PAGE_Z_INDEX,
    Z_INDEX_BASE,
    Cell,
    CellType,
    CodeCell,
    ContentType,
    ExecutionOutput,
    MarkdownCell,
    OutputType,
    Position,
    RawCell,
    RenderingHints,
    RichOutput,
    Size,
    generate_cell_id,
)
from canvasnb.document.document import DOCUMENT_VERSION, Document, generate_document_id, now_iso
from canvasnb.execution.executor import OUTPUT_GAP, error_output_size, text_output_size
from canvasnb.jupyter.artifacts import (
    KERNELSPEC,
    LANGUAGE_INFO,
    NBFORMAT,
    NBFORMAT_MINOR,
    CellLayout,
    LayoutArtifact,
    NotebookArtifact,
    NotebookCellArtifact,
)
from canvasnb.layout.optimizer import LayoutConstraints, PlacementRequest, optimize_layout

logger = logging.getLogger("canvasnb.jupyter")

IMPORTED_NAME = "Imported Notebook"
CHART_NOTE = "*Chart data and configuration stored in layout file*"

_DISPLAY_MATH = re.compile(r"^\$\$(.+?)\$\$$", re.DOTALL)
_INLINE_MATH = re.compile(r"^\$([^$]+)\$$")
_IMAGE = re.compile(r"^!\[(.*)\]\((.*)\)$")
_CHART = re.compile(r"\*\*(\w+) CHART\*\*")


class ExportedArtifacts(BaseModel):
    notebook: dict[str, Any]
    layout: dict[str, Any]


def _split_source(text: str) -> list[str]:
    return text.splitlines(keepends=True)


def _joined(value: object) -> str:
    if isinstance(value, list):
        return "".join(str(v) for v in value)
    return "" if value is None else str(value)


def document_pages(canvas: CanvasState, cells: Sequence[Cell]) -> int:
    """Page count implied by the lowest cell edge, at least one."""
    _, page_height = canvas.page_dimensions()
    lowest = max((c.bottom for c in cells), default=0.0)
    return max(1, math.ceil(lowest / page_height))


# -- export -----------------------------------------------------------------


def markdown_source(cell: MarkdownCell) -> str:
    """The markdown a plain notebook viewer should show for `cell`."""
    hints = cell.rendering_hints
    if hints.content_type == ContentType.EQUATION:
        latex = hints.latex or cell.content
        return f"${latex}$" if hints.display_mode is False else f"$${latex}$$"
    if hints.content_type == ContentType.IMAGE:
        return f"![{hints.alt or 'Image'}]({hints.src or ''})"
    if hints.content_type == ContentType.GRAPH:
        return f"**{(hints.chart_type or 'chart').upper()} CHART**\n\n{CHART_NOTE}"
    return cell.content


def _cell_metadata(cell: Cell) -> dict[str, Any]:
    meta: dict[str, Any] = {
        "cell_id": cell.id,
        "original_type": str(cell.type),
        "execution_order": cell.execution_order,
    }
    if isinstance(cell, CodeCell):
        meta["language"] = cell.language
    elif isinstance(cell, RawCell):
        meta["format"] = cell.format
        if cell.is_output:
            meta["source_code_cell_id"] = cell.source_code_cell_id
            meta["output_type"] = str(cell.output_type) if cell.output_type else None
            meta["success"] = cell.success
            meta["execution_time"] = cell.execution_time
        if cell.rich_outputs:
            meta["rich_outputs"] = [r.model_dump(mode="json") for r in cell.rich_outputs]
    return {"collapsed": cell.collapsed, "design_diary": meta}


def _stream_outputs(output: ExecutionOutput | None) -> list[dict[str, Any]]:
    if output is None:
        return []
    outputs = []
    for name, text in (("stdout", output.stdout), ("stderr", output.stderr)):
        if text:
            outputs.append({"output_type": "stream", "name": name, "text": _split_source(text)})
    return outputs


def _notebook_cell(cell: Cell) -> dict[str, Any]:
    metadata = _cell_metadata(cell)
    if isinstance(cell, CodeCell):
        return {
            "cell_type": "code",
            "id": cell.id,
            "metadata": metadata,
            "source": _split_source(cell.content),
            "execution_count": cell.execution_count,
            "outputs": _stream_outputs(cell.output),
        }
    if isinstance(cell, MarkdownCell):
        source = markdown_source(cell)
    else:
        source = cell.content
    return {"cell_type": str(cell.type), "id": cell.id, "metadata": metadata, "source": _split_source(source)}


def _cell_layout(cell: Cell) -> dict[str, Any]:
    hints = cell.rendering_hints.to_layout() if isinstance(cell, MarkdownCell) else {}
    return {
        "position": cell.position.model_dump(),
        "size": cell.size.model_dump(),
        "collapsed_size": cell.collapsed_size.model_dump(),
        "z_index": cell.z_index,
        "cell_type": str(cell.type),
        "rendering_hints": hints,
    }


def export_document(document: Document) -> ExportedArtifacts:
    """Build the notebook and layout artifacts. Cells keep document order."""
    notebook = {
        "cells": [_notebook_cell(c) for c in document.cells],
        "metadata": {
            "kernelspec": dict(KERNELSPEC),
            "language_info": dict(LANGUAGE_INFO),
            "design_diary": {
                "version": document.version,
                "id": document.id,
                "name": document.name,
                "created": document.created,
                "modified": document.modified,
            },
        },
        "nbformat": NBFORMAT,
        "nbformat_minor": NBFORMAT_MINOR,
    }
    canvas = document.canvas.model_copy(update={"pages": document_pages(document.canvas, document.cells)})
    layout = {
        "version": document.version,
        "notebook_id": document.id,
        "canvas": canvas.model_dump(mode="json", by_alias=True),
        "cells": {c.id: _cell_layout(c) for c in document.cells},
        "execution_history": list(document.execution_history),
    }
    return ExportedArtifacts(notebook=notebook, layout=layout)


def export_json(document: Document) -> tuple[str, str]:
    """Serialized (notebook, layout) text, ready to write to disk."""
    artifacts = export_document(document)
    return (
        json.dumps(artifacts.notebook, indent=2, ensure_ascii=False) + "\n",
        json.dumps(artifacts.layout, indent=2, ensure_ascii=False) + "\n",
    )


# -- import -----------------------------------------------------------------


def detect_markdown(text: str) -> tuple[str, RenderingHints]:
    """Infer rendering hints from plain markdown. Returns (content, hints)."""
    stripped = text.strip()
    match = _DISPLAY_MATH.match(stripped)
    if match:
        latex = match.group(1)
        return latex, RenderingHints(content_type=ContentType.EQUATION, latex=latex, display_mode=True)
    match = _INLINE_MATH.match(stripped)
    if match:
        latex = match.group(1)
        return latex, RenderingHints(content_type=ContentType.EQUATION, latex=latex, display_mode=False)
    match = _IMAGE.match(stripped)
    if match:
        return text, RenderingHints(
            content_type=ContentType.IMAGE,
            alt=match.group(1) or "Image",
            src=match.group(2),
            original_size=Size(width=300, height=200),
        )
    if "CHART" in text:
        chart = _CHART.search(text)
        return text, RenderingHints(
            content_type=ContentType.GRAPH,
            chart_type=chart.group(1).lower() if chart else "line",
            data={},
            config={},
        )
    return text, RenderingHints(content_type=ContentType.TEXT, font_size=14, font_family="Arial")


def _strip_math(text: str) -> str:
    stripped = text.strip()
    match = _DISPLAY_MATH.match(stripped) or _INLINE_MATH.match(stripped)
    return match.group(1) if match else text


class _Draft:
    """A notebook cell on its way to becoming a canvas cell, before placement."""

    def __init__(
        self,
        cell_class: type[CodeCell] | type[MarkdownCell] | type[RawCell],
        fields: dict[str, Any],
        layout: CellLayout | None,
        content_length: int,
        content_type: ContentType | None = None,
        foreign_outputs: list[dict[str, Any]] | None = None,
    ) -> None:
        self.cell_class = cell_class
        self.fields = fields
        self.layout = layout
        self.content_length = content_length
        self.content_type = content_type
        self.foreign_outputs = foreign_outputs or []

    @property
    def cell_type(self) -> CellType:
        return CellType(self.cell_class.model_fields["type"].default)


def _execution_output(outputs: list[dict[str, Any]]) -> ExecutionOutput | None:
    streams = [o for o in outputs if o.get("output_type") == "stream"]
    stdout = "".join(_joined(o.get("text")) for o in streams if o.get("name") == "stdout")
    stderr = "".join(_joined(o.get("text")) for o in streams if o.get("name") == "stderr")
    if not stdout and not stderr:
        return None
    return ExecutionOutput(stdout=stdout, stderr=stderr, success=not stderr)


def _markdown_draft(text: str, layout: CellLayout | None, result: Result[Document]) -> tuple[str, RenderingHints]:
    if layout is not None:
        try:
            hints = RenderingHints.model_validate(layout.rendering_hints)
        except ValidationError:
            result.warning("LAYOUT_HINTS_INVALID", "Ignored unreadable rendering hints; detected from markdown")
        else:
            content = _strip_math(text) if hints.content_type == ContentType.EQUATION else text
            return content, hints
    return detect_markdown(text)


def _draft_cells(
    notebook: NotebookArtifact, layout: LayoutArtifact | None, result: Result[Document]
) -> list[_Draft]:
    drafts: list[_Draft] = []
    seen: set[str] = set()
    next_order = 1

    for nb_cell in notebook.cells:
        meta = nb_cell.canvas_metadata
        cell_id = str(meta.get("cell_id") or nb_cell.id or generate_cell_id())
        if cell_id in seen:
            result.warning("DUPLICATE_CELL_ID", f"Duplicate cell id {cell_id}; assigned a new one")
            cell_id = generate_cell_id()
        seen.add(cell_id)

        text = nb_cell.text
        cell_layout = layout.cells.get(cell_id) if layout is not None else None
        fields: dict[str, Any] = {"id": cell_id, "collapsed": bool(nb_cell.metadata.get("collapsed", False))}

        if nb_cell.cell_type == "code":
            order = meta["execution_order"] if "execution_order" in meta else next_order
            if isinstance(order, int):
                next_order = max(next_order, order) + 1
            fields.update(
                content=text,
                language=meta.get("language", "python"),
                execution_count=nb_cell.execution_count,
                execution_order=order,
                output=_execution_output(nb_cell.outputs),
            )
            foreign = nb_cell.outputs if not meta.get("cell_id") else None
            drafts.append(_Draft(CodeCell, fields, cell_layout, len(text), foreign_outputs=foreign))
        elif nb_cell.cell_type == "markdown":
            content, hints = _markdown_draft(text, cell_layout, result)
            fields.update(content=content, rendering_hints=hints)
            drafts.append(_Draft(MarkdownCell, fields, cell_layout, len(text), hints.content_type))
        elif nb_cell.cell_type == "raw":
            fields.update(_raw_fields(nb_cell, text))
            drafts.append(_Draft(RawCell, fields, cell_layout, len(text)))
        else:
            result.warning("UNKNOWN_CELL_TYPE", f"Unknown cell type {nb_cell.cell_type!r}; imported as markdown")
            content = f"[UNKNOWN CELL TYPE: {nb_cell.cell_type}]\n{text}"
            hints = RenderingHints(content_type=ContentType.TEXT, font_size=14, font_family="Arial")
            fields.update(content=content, rendering_hints=hints)
            drafts.append(_Draft(MarkdownCell, fields, cell_layout, len(content), ContentType.TEXT))
    return drafts


def _raw_fields(nb_cell: NotebookCellArtifact, text: str) -> dict[str, Any]:
    meta = nb_cell.canvas_metadata
    fields: dict[str, Any] = {"content": text, "format": str(meta.get("format") or "text")}
    if meta.get("source_code_cell_id"):
        fields.update(
            source_code_cell_id=meta["source_code_cell_id"],
            output_type=meta.get("output_type"),
            success=meta.get("success"),
            execution_time=meta.get("execution_time"),
            execution_order=meta.get("execution_order"),
        )
    if meta.get("rich_outputs"):
        fields["rich_outputs"] = meta["rich_outputs"]
    return fields


_Geometry = tuple[Position, Size, Size, int]


def _place(drafts: list[_Draft], canvas: CanvasState, settings: LayoutConfig) -> list[_Geometry]:
    """Geometry for each draft, in draft order.

    Cells with a layout entry keep it; the rest flow below the lowest of them.
    """
    restored: dict[int, _Geometry] = {}
    for index, draft in enumerate(drafts):
        if draft.layout is not None:
            size = draft.layout.size
            restored[index] = (
                draft.layout.position,
                size,
                draft.layout.collapsed_size or Size(width=size.width, height=50),
                max(draft.layout.z_index or Z_INDEX_BASE + 1, PAGE_Z_INDEX + 1),
            )

    pending = [index for index, draft in enumerate(drafts) if draft.layout is None]
    if not pending:
        return [restored[index] for index in range(len(drafts))]
    width, height = canvas.page_dimensions()
    constraints = LayoutConstraints(
        page_width=width,
        page_height=height,
        margin=canvas.page_margin,
        cell_spacing=settings.cell_spacing,
        max_pages=settings.max_pages,
    )
    z_start = max((g[3] for g in restored.values()), default=Z_INDEX_BASE) + 1
    start_y = max((g[0].y + g[1].height for g in restored.values()), default=0.0)
    requests = [
        PlacementRequest(
            cell_id=drafts[index].fields["id"],
            cell_type=drafts[index].cell_type,
            content_length=drafts[index].content_length,
            content_type=drafts[index].content_type,
        )
        for index in pending
    ]
    placements = optimize_layout(requests, constraints, z_start=z_start, start_y=start_y)
    placed = dict(restored)
    for index, placement in zip(pending, placements, strict=True):
        placed[index] = (
            placement.position,
            placement.size,
            Size(width=placement.size.width, height=50),
            placement.z_index,
        )
    logger.info("Auto-placed %d cell(s) without layout", len(pending))
    return [placed[index] for index in range(len(drafts))]


def _foreign_outputs(source: CodeCell, outputs: list[dict[str, Any]], z_index: int) -> list[RawCell]:
    """Output cells for a plain Jupyter code cell's saved outputs, stacked to its right."""
    x = source.position.x + source.size.width + OUTPUT_GAP
    y = source.position.y
    cells: list[RawCell] = []
    for output in outputs:
        kind = output.get("output_type")
        rich: tuple[RichOutput, ...] = ()
        if kind == "stream":
            content = _joined(output.get("text"))
            output_type = OutputType.ERROR if output.get("name") == "stderr" else OutputType.TEXT
            size = error_output_size(content) if output_type == OutputType.ERROR else text_output_size(content)
        elif kind in ("display_data", "execute_result"):
            data = output.get("data") or {}
            mime = next((m for m in ("image/png", "image/jpeg") if m in data), None)
            if mime is not None:
                content = ""
                output_type = OutputType.IMAGE
                metadata = output.get("metadata") if isinstance(output.get("metadata"), dict) else {}
                rich = (
                    RichOutput(
                        format="image",
                        data=f"data:{mime};base64,{_joined(data[mime]).strip()}",
                        metadata=metadata,
                    ),
                )
                size = Size(width=400, height=300)
            elif "text/plain" in data:
                content = _joined(data["text/plain"])
                output_type = OutputType.TEXT
                size = text_output_size(content)
            else:
                continue
        elif kind == "error":
            traceback = "\n".join(_joined(line) for line in output.get("traceback") or [])
            content = f"{output.get('ename', 'Error')}: {output.get('evalue', '')}\n{traceback}"
            output_type = OutputType.ERROR
            size = error_output_size(content)
        else:
            continue

        cells.append(
            RawCell(
                content=content,
                position=Position(x=x, y=y),
                size=size,
                collapsed_size=Size(width=size.width, height=50),
                execution_order=source.execution_order,
                z_index=z_index + len(cells),
                source_code_cell_id=source.id,
                output_type=output_type,
                success=output_type != OutputType.ERROR,
                rich_outputs=rich,
            )
        )
        y += size.height + OUTPUT_GAP
    return cells


def _build_cells(drafts: list[_Draft], geometries: list[_Geometry]) -> list[Cell]:
    next_z = max((g[3] for g in geometries), default=Z_INDEX_BASE) + 1
    cells: list[Cell] = []
    for draft, (position, size, collapsed_size, z_index) in zip(drafts, geometries, strict=True):
        cell = draft.cell_class(
            **draft.fields, position=position, size=size, collapsed_size=collapsed_size, z_index=z_index
        )
        cells.append(cell)
        if draft.foreign_outputs and isinstance(cell, CodeCell):
            outputs = _foreign_outputs(cell, draft.foreign_outputs, next_z)
            next_z += len(outputs)
            cells.extend(outputs)
    return cells


def import_notebook(
    notebook: Mapping[str, Any],
    layout: Mapping[str, Any] | None = None,
    *,
    canvas: CanvasState | None = None,
    layout_config: LayoutConfig | None = None,
) -> Result[Document]:
    """Build a Document from a notebook artifact and an optional layout artifact.

    Cells with a layout entry keep their geometry verbatim; all others are
    placed in one optimizer pass. `canvas` supplies page setup when there is
    no layout artifact. A malformed artifact rejects the whole import.
    """
    result: Result[Document] = Result()
    if not isinstance(notebook, Mapping) or not isinstance(notebook.get("cells"), list):
        result.error("NOTEBOOK_INVALID", "Invalid notebook format: missing or invalid cells array")
        return result
    if layout is not None and (not isinstance(layout, Mapping) or not isinstance(layout.get("cells"), Mapping)):
        result.error("LAYOUT_INVALID", "Invalid layout format: missing or invalid cells map")
        return result

    try:
        nb = NotebookArtifact.model_validate(notebook)
    except ValidationError as e:
        result.error("NOTEBOOK_INVALID", f"Invalid notebook format: {e.errors()[0]['msg']}")
        return result
    artifact: LayoutArtifact | None = None
    if layout is not None:
        try:
            artifact = LayoutArtifact.model_validate(layout)
        except ValidationError as e:
            result.error("LAYOUT_INVALID", f"Invalid layout format: {e.errors()[0]['msg']}")
            return result

    base_canvas = artifact.canvas if artifact is not None else (canvas or CanvasState())
    meta = nb.canvas_metadata
    try:
        drafts = _draft_cells(nb, artifact, result)
        geometries = _place(drafts, base_canvas, layout_config or LayoutConfig())
        cells = _build_cells(drafts, geometries)
        document = Document(
            version=artifact.version if artifact is not None else str(meta.get("version") or DOCUMENT_VERSION),
            id=artifact.notebook_id if artifact is not None else str(meta.get("id") or generate_document_id()),
            name=str(meta.get("name") or IMPORTED_NAME),
            created=str(meta.get("created") or now_iso()),
            modified=str(meta.get("modified") or now_iso()),
            canvas=base_canvas.model_copy(update={"pages": document_pages(base_canvas, cells)}),
            cells=tuple(cells),
            execution_history=tuple(artifact.execution_history) if artifact is not None else (),
        )
    except ValidationError as e:
        result.error("NOTEBOOK_INVALID", f"Invalid notebook content: {e.errors()[0]['msg']}")
        return result

    logger.info("Imported %d cell(s) into document %s", len(document.cells), document.id)
    result.data = document
    return result


def import_json(notebook_text: str, layout_text: str | None = None, **kwargs: Any) -> Result[Document]:
    """import_notebook over serialized artifacts."""
    result: Result[Document] = Result()
    try:
        notebook = json.loads(notebook_text)
    except json.JSONDecodeError as e:
        result.error("JSON_INVALID", f"Notebook is not valid JSON: {e}")
        return result
    layout = None
    if layout_text is not None:
        try:
            layout = json.loads(layout_text)
        except json.JSONDecodeError as e:
            result.error("JSON_INVALID", f"Layout is not valid JSON: {e}")
            return result
    return import_notebook(notebook, layout, **kwargs)


def assign_cell_ids(notebook: dict[str, Any]) -> int:
    """Give every cell that has no id a fresh nbformat cell id, in place.

    Layout entries are keyed by cell id, so a notebook needs stable ids before
    a layout written for it can be matched on the next load. Returns the
    number of ids added.
    """
    cells = notebook.get("cells")
    if not isinstance(cells, list):
        return 0
    added = 0
    for cell in cells:
        if not isinstance(cell, dict) or cell.get("id"):
            continue
        metadata = cell.get("metadata")
        canvas_meta = metadata.get("design_diary") if isinstance(metadata, dict) else None
        if isinstance(canvas_meta, dict) and canvas_meta.get("cell_id"):
            continue
        cell["id"] = generate_cell_id()
        added += 1
    minor = notebook.get("nbformat_minor")
    if added and (not isinstance(minor, int) or minor < NBFORMAT_MINOR):
        notebook["nbformat_minor"] = NBFORMAT_MINOR
    return added
