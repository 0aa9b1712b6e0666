"""Document store: the single owner of the current Document snapshot.

Every mutation builds a new frozen Document and publishes it atomically, so
readers only ever see complete snapshots. Refused mutations leave the
published snapshot untouched and report why through Result diagnostics.
"""

from __future__ import annotations

import logging
import math
import threading
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from pydantic import BaseModel, ValidationError

from canvasnb.core import Result
from canvasnb.document.canvas import PAGE_SIZES, CanvasState, Orientation, PageSize, Point, clamp_zoom
from canvasnb.document.cell import (
    MIN_CELL_HEIGHT,
    MIN_CELL_WIDTH,
    CellType,
    CodeCell,
    ContentType,
    MarkdownCell,
    Position,
    RawCell,
    RenderingHints,
    Size,
    generate_cell_id,
    next_z_index,
)
from canvasnb.document.document import Document, SelectionBox, SelectionState
from canvasnb.execution.order import next_execution_order

logger = logging.getLogger("canvasnb.store")

DUPLICATE_OFFSET = 20.0
DEFAULT_CELL_SIZE = Size(width=300, height=200)
DEFAULT_COLLAPSED_SIZE = Size(width=300, height=50)
CODE_PLACEHOLDER = '# Enter your code here\nprint("Hello, World!")'

_IMMUTABLE_FIELDS = frozenset({"id", "type", "execution_order"})


def _is_finite_number(value: object) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool) and math.isfinite(value)


def _coords(value: object) -> dict[str, Any]:
    """Pull x/y (or width/height) out of a model, mapping or 2-tuple."""
    if isinstance(value, BaseModel):
        return value.model_dump()
    if isinstance(value, Mapping):
        return dict(value)
    if isinstance(value, tuple | list) and len(value) == 2:
        return {"x": value[0], "y": value[1]}
    return {}


def _markdown_defaults(content_type: ContentType) -> tuple[str, RenderingHints]:
    if content_type == ContentType.EQUATION:
        return "E = mc^2", RenderingHints(content_type=content_type, latex="E = mc^2", display_mode=True)
    if content_type == ContentType.IMAGE:
        return "", RenderingHints(
            content_type=content_type, src="", alt="Image", original_size=Size(width=300, height=200)
        )
    if content_type == ContentType.GRAPH:
        return "", RenderingHints(content_type=content_type, chart_type="line", data={}, config={})
    return "# New Markdown Cell\n\nEnter your markdown here...", RenderingHints(
        content_type=ContentType.TEXT, font_size=14, font_family="Arial"
    )


class DocumentStore:
    """Holds the current Document and applies cell and canvas mutations."""

    def __init__(self, document: Document | None = None) -> None:
        self._document = document if document is not None else Document()
        self._revision = 0
        self._selection = SelectionState(selected_cell_ids=frozenset(c.id for c in self._document.cells if c.selected))
        self._lock = threading.RLock()

    @property
    def document(self) -> Document:
        return self._document

    @property
    def revision(self) -> int:
        return self._revision

    @property
    def selection(self) -> SelectionState:
        return self._selection

    # -- atomic updates ----------------------------------------------------

    def apply(self, mutate: Callable[[Document], Document | None]) -> Document:
        """Run `mutate` against the latest snapshot and publish its result atomically.

        Returning None (or the same document) from `mutate` publishes nothing.
        """
        with self._lock:
            updated = mutate(self._document)
            if updated is not None and updated is not self._document:
                self._publish(updated)
                self._sync_selection()
            return self._document

    def replace_document(self, document: Document) -> None:
        with self._lock:
            self._publish(document)
            self._selection = SelectionState(selected_cell_ids=frozenset(c.id for c in document.cells if c.selected))
        logger.info("Loaded document %s (%d cells)", document.id, len(document.cells))

    def _publish(self, document: Document) -> None:
        self._document = document
        self._revision += 1

    def _sync_selection(self) -> None:
        live = {c.id for c in self._document.cells}
        ids = self._selection.selected_cell_ids & live
        if ids != self._selection.selected_cell_ids:
            self._selection = self._selection.model_copy(update={"selected_cell_ids": frozenset(ids)})

    def _refuse(self, result: Result[Document], code: str, message: str, *, hint: str | None = None) -> Result[Document]:
        logger.warning("%s: %s", code, message)
        result.error(code, message, hint=hint)
        return result

    # -- cells -------------------------------------------------------------

    def add_cell(
        self,
        cell_type: CellType | str,
        position: object,
        hint: ContentType | str | None = None,
    ) -> Result[Document]:
        """Create a cell at `position` and make it the only selected cell.

        Raises ValueError for an unknown cell type or content hint.
        """
        kind = CellType(cell_type)
        content_type = ContentType(hint) if hint is not None else ContentType.TEXT
        result: Result[Document] = Result()

        coords = _coords(position)
        x, y = coords.get("x"), coords.get("y")
        if not (_is_finite_number(x) and _is_finite_number(y)):
            return self._refuse(result, "INVALID_POSITION", f"Position must be finite numbers, got {position!r}")

        with self._lock:
            doc = self._document
            base: dict[str, Any] = {
                "position": Position(x=max(0.0, float(x)), y=max(0.0, float(y))),
                "size": DEFAULT_CELL_SIZE,
                "collapsed_size": DEFAULT_COLLAPSED_SIZE,
                "selected": True,
                "z_index": next_z_index(doc.cells),
            }
            if kind == CellType.CODE:
                cell = CodeCell(**base, content=CODE_PLACEHOLDER, execution_order=next_execution_order(doc.cells))
            elif kind == CellType.MARKDOWN:
                content, hints = _markdown_defaults(content_type)
                cell = MarkdownCell(**base, content=content, rendering_hints=hints)
            else:
                cell = RawCell(**base)

            cleared = tuple(c.model_copy(update={"selected": False}) if c.selected else c for c in doc.cells)
            updated = doc.touch(cells=(*cleared, cell))
            self._publish(updated)
            self._selection = SelectionState(selected_cell_ids=frozenset({cell.id}))

        logger.info("Added %s cell %s at (%.0f, %.0f)", kind, cell.id, cell.position.x, cell.position.y)
        result.data = updated
        return result

    def update_cell(self, cell_id: str, updates: Mapping[str, Any]) -> Result[Document]:
        """Merge `updates` into a cell.

        id, type and execution_order are fixed at creation and are dropped with
        a warning. Position and size merge field by field, falling back to the
        prior value for anything missing or invalid.
        """
        result: Result[Document] = Result()
        if not isinstance(updates, Mapping):
            return self._refuse(result, "INVALID_UPDATE", "Updates must be a mapping of field names to values")

        with self._lock:
            doc = self._document
            index = doc.index_of(cell_id)
            if index < 0:
                return self._refuse(result, "CELL_NOT_FOUND", f"Cell not found: {cell_id}")
            original = doc.cells[index]
            fields = dict(updates)

            for key in sorted(_IMMUTABLE_FIELDS & fields.keys()):
                del fields[key]
                logger.warning("Ignored update to immutable field %r of %s", key, cell_id)
                result.warning("IMMUTABLE_FIELD", f"'{key}' cannot be changed after creation")
            for key in sorted(fields.keys() - type(original).model_fields.keys()):
                del fields[key]
                result.warning("UNKNOWN_FIELD", f"'{key}' is not a field of {original.type} cells")

            if "position" in fields:
                fields["position"] = self._merge_geometry(
                    original.position, fields["position"], {"x": 0.0, "y": 0.0}, result
                )
            for key in ("size", "collapsed_size"):
                if key in fields:
                    fields[key] = self._merge_geometry(
                        getattr(original, key),
                        fields[key],
                        {"width": MIN_CELL_WIDTH, "height": MIN_CELL_HEIGHT},
                        result,
                    )

            try:
                merged = type(original).model_validate({**original.model_dump(), **fields})
            except ValidationError as e:
                return self._refuse(result, "INVALID_UPDATE", f"Invalid update for {cell_id}: {e.errors()[0]['msg']}")

            cells = list(doc.cells)
            cells[index] = merged
            updated = doc.touch(cells=tuple(cells))
            self._publish(updated)
            if "selected" in fields:
                ids = set(self._selection.selected_cell_ids)
                if merged.selected:
                    ids.add(cell_id)
                else:
                    ids.discard(cell_id)
                self._selection = self._selection.model_copy(update={"selected_cell_ids": frozenset(ids)})

        result.data = updated
        return result

    @staticmethod
    def _merge_geometry(
        prior: BaseModel, value: object, floors: Mapping[str, float], result: Result[Document]
    ) -> dict[str, float]:
        incoming = _coords(value)
        merged: dict[str, float] = {}
        for key, floor in floors.items():
            candidate = incoming.get(key, getattr(prior, key))
            if _is_finite_number(candidate):
                merged[key] = max(floor, float(candidate))
            else:
                merged[key] = getattr(prior, key)
                result.warning("INVALID_GEOMETRY", f"Ignored non-finite {key}: {candidate!r}")
        return merged

    def update_cell_position(self, cell_id: str, position: object) -> Result[Document]:
        """Move a cell. Negative coordinates clamp to zero; non-finite input is refused."""
        coords = _coords(position)
        x, y = coords.get("x"), coords.get("y")
        if not (_is_finite_number(x) and _is_finite_number(y)):
            return self._refuse(Result(), "INVALID_POSITION", f"Position must be finite numbers, got {position!r}")
        return self.update_cell(cell_id, {"position": {"x": max(0.0, x), "y": max(0.0, y)}})

    def update_cell_size(self, cell_id: str, size: object) -> Result[Document]:
        """Resize a cell, clamping to the minimum cell size."""
        coords = _coords(size)
        if isinstance(size, tuple | list) and len(size) == 2:
            coords = {"width": size[0], "height": size[1]}
        width, height = coords.get("width"), coords.get("height")
        if not (_is_finite_number(width) and _is_finite_number(height)):
            return self._refuse(Result(), "INVALID_SIZE", f"Size must be finite numbers, got {size!r}")
        return self.update_cell(
            cell_id, {"size": {"width": max(MIN_CELL_WIDTH, width), "height": max(MIN_CELL_HEIGHT, height)}}
        )

    def toggle_cell_collapse(self, cell_id: str) -> Result[Document]:
        cell = self._document.get_cell(cell_id)
        if cell is None:
            return self._refuse(Result(), "CELL_NOT_FOUND", f"Cell not found: {cell_id}")
        return self.update_cell(cell_id, {"collapsed": not cell.collapsed})

    def delete_cell(self, cell_id: str) -> Result[Document]:
        result: Result[Document] = Result()
        with self._lock:
            doc = self._document
            if doc.get_cell(cell_id) is None:
                return self._refuse(result, "CELL_NOT_FOUND", f"Cell not found: {cell_id}")
            updated = doc.touch(cells=tuple(c for c in doc.cells if c.id != cell_id))
            self._publish(updated)
            self._sync_selection()
        logger.info("Deleted cell %s", cell_id)
        result.data = updated
        return result

    def duplicate_cell(self, cell_id: str) -> Result[Document]:
        """Copy a cell under a fresh id, offset by 20px, without an execution order."""
        result: Result[Document] = Result()
        with self._lock:
            doc = self._document
            original = doc.get_cell(cell_id)
            if original is None:
                return self._refuse(result, "CELL_NOT_FOUND", f"Cell not found: {cell_id}")
            copy = original.model_copy(
                update={
                    "id": generate_cell_id(),
                    "position": Position(
                        x=original.position.x + DUPLICATE_OFFSET, y=original.position.y + DUPLICATE_OFFSET
                    ),
                    "execution_order": None,
                    "selected": False,
                    "z_index": next_z_index(doc.cells),
                }
            )
            updated = doc.touch(cells=(*doc.cells, copy))
            self._publish(updated)
        logger.info("Duplicated cell %s as %s", cell_id, copy.id)
        result.data = updated
        return result

    # -- selection ---------------------------------------------------------

    def select_cell(self, cell_id: str, *, multi: bool = False) -> Result[Document]:
        """Select a single cell, or toggle its membership when `multi` is set."""
        if self._document.get_cell(cell_id) is None:
            return self._refuse(Result(), "CELL_NOT_FOUND", f"Cell not found: {cell_id}")
        if not multi:
            return self.select_cells({cell_id})
        ids = set(self._selection.selected_cell_ids)
        if cell_id in ids:
            ids.discard(cell_id)
        else:
            ids.add(cell_id)
        return self.select_cells(ids)

    def select_cells(self, cell_ids: Iterable[str]) -> Result[Document]:
        """Make exactly `cell_ids` the selection. Unknown ids are ignored."""
        result: Result[Document] = Result()
        with self._lock:
            doc = self._document
            wanted = set(cell_ids)
            live = {c.id for c in doc.cells}
            for missing in sorted(wanted - live):
                result.warning("CELL_NOT_FOUND", f"Cell not found: {missing}")
            ids = frozenset(wanted & live)
            cells = tuple(
                c.model_copy(update={"selected": c.id in ids}) if c.selected != (c.id in ids) else c for c in doc.cells
            )
            if cells != doc.cells:
                self._publish(doc.model_copy(update={"cells": cells}))
            self._selection = self._selection.model_copy(update={"selected_cell_ids": ids})
        result.data = self._document
        return result

    def clear_selection(self) -> Document:
        self.select_cells(())
        return self._document

    def set_selection_box(self, box: SelectionBox | None) -> None:
        with self._lock:
            self._selection = self._selection.model_copy(update={"selection_box": box})

    # -- canvas ------------------------------------------------------------

    def _set_canvas(self, **update: Any) -> Result[Document]:
        result: Result[Document] = Result()
        with self._lock:
            doc = self._document
            canvas = CanvasState.model_validate({**doc.canvas.model_dump(), **update})
            updated = doc.touch(canvas=canvas)
            self._publish(updated)
        result.data = updated
        return result

    def set_zoom(self, zoom: float) -> Result[Document]:
        if not _is_finite_number(zoom):
            return self._refuse(Result(), "INVALID_ZOOM", f"Zoom must be a finite number, got {zoom!r}")
        return self._set_canvas(zoom=clamp_zoom(float(zoom)))

    def set_pan(self, x: float, y: float) -> Result[Document]:
        if not (_is_finite_number(x) and _is_finite_number(y)):
            return self._refuse(Result(), "INVALID_PAN", f"Pan must be finite numbers, got ({x!r}, {y!r})")
        return self._set_canvas(pan=Point(x=x, y=y))

    def set_snap_to_grid(self, enabled: bool) -> Result[Document]:
        return self._set_canvas(snap_to_grid=bool(enabled))

    def toggle_snap_to_grid(self) -> Result[Document]:
        return self.set_snap_to_grid(not self._document.canvas.snap_to_grid)

    def set_page_size(self, page_size: PageSize | str) -> Result[Document]:
        if isinstance(page_size, str):
            if page_size not in PAGE_SIZES:
                return self._refuse(
                    Result(),
                    "UNKNOWN_PAGE_SIZE",
                    f"Unknown page size: {page_size}",
                    hint=f"Choose one of: {', '.join(PAGE_SIZES)}",
                )
            page_size = PAGE_SIZES[page_size]
        return self._set_canvas(page_size=page_size)

    def set_orientation(self, orientation: Orientation | str) -> Result[Document]:
        try:
            value = Orientation(orientation)
        except ValueError:
            return self._refuse(Result(), "INVALID_ORIENTATION", f"Unknown orientation: {orientation}")
        return self._set_canvas(orientation=value)

    def set_pages(self, pages: int) -> Result[Document]:
        return self._set_canvas(pages=max(1, int(pages)))
