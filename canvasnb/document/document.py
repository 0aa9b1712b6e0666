"""The Document aggregate and the transient editor state around it."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

from canvasnb.config import CanvasDefaults
from canvasnb.document.canvas import PAGE_SIZES, CanvasState, Orientation, Point
from canvasnb.document.cell import Cell, CellType, CodeCell, RawCell

DOCUMENT_VERSION = "1.0.0"
DEFAULT_DOCUMENT_NAME = "Untitled Design Diary"


def now_iso() -> str:
    return datetime.now(UTC).isoformat()


def generate_document_id() -> str:
    """Generate a document ID: 'doc_' + 12 hex chars from uuid4."""
    return "doc_" + uuid.uuid4().hex[:12]


class Document(BaseModel):
    """An immutable snapshot of a canvas notebook.

    Every store mutation produces a new Document; nothing edits one in place.
    Cell ids are unique and the tuple order is the document order used for
    export.
    """

    model_config = ConfigDict(frozen=True)

    version: str = DOCUMENT_VERSION
    id: str = Field(default_factory=generate_document_id)
    name: str = DEFAULT_DOCUMENT_NAME
    created: str = Field(default_factory=now_iso)
    modified: str = Field(default_factory=now_iso)
    canvas: CanvasState = Field(default_factory=CanvasState)
    cells: tuple[Cell, ...] = ()
    execution_history: tuple[int, ...] = ()

    @model_validator(mode="after")
    def _unique_cell_ids(self) -> Document:
        seen: set[str] = set()
        for cell in self.cells:
            if cell.id in seen:
                raise ValueError(f"duplicate cell id: {cell.id}")
            seen.add(cell.id)
        return self

    @classmethod
    def from_defaults(cls, defaults: CanvasDefaults, name: str | None = None) -> Document:
        canvas = CanvasState(
            page_size=PAGE_SIZES.get(defaults.page_size, PAGE_SIZES["A4"]),
            orientation=Orientation(defaults.orientation),
            page_margin=defaults.page_margin,
            grid_size=defaults.grid_size,
            snap_to_grid=defaults.snap_to_grid,
        )
        return cls(name=name or DEFAULT_DOCUMENT_NAME, canvas=canvas)

    def get_cell(self, cell_id: str) -> Cell | None:
        for cell in self.cells:
            if cell.id == cell_id:
                return cell
        return None

    def index_of(self, cell_id: str) -> int:
        for i, cell in enumerate(self.cells):
            if cell.id == cell_id:
                return i
        return -1

    def code_cells(self) -> list[CodeCell]:
        return [c for c in self.cells if isinstance(c, CodeCell)]

    def output_cells_for(self, source_cell_id: str) -> list[RawCell]:
        return [c for c in self.cells if isinstance(c, RawCell) and c.source_code_cell_id == source_cell_id]

    def count_by_type(self) -> dict[CellType, int]:
        counts = {t: 0 for t in CellType}
        for cell in self.cells:
            counts[CellType(cell.type)] += 1
        return counts

    def max_cell_bottom(self) -> float:
        return max((c.bottom for c in self.cells), default=0.0)

    def touch(self, **update: object) -> Document:
        """Copy with `update` applied and `modified` bumped."""
        return self.model_copy(update={**update, "modified": now_iso()})


class SelectionBox(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: Point
    end: Point

    def bounds(self) -> tuple[float, float, float, float]:
        """(left, top, right, bottom) regardless of drag direction."""
        return (
            min(self.start.x, self.end.x),
            min(self.start.y, self.end.y),
            max(self.start.x, self.end.x),
            max(self.start.y, self.end.y),
        )


class SelectionState(BaseModel):
    model_config = ConfigDict(frozen=True)

    selected_cell_ids: frozenset[str] = frozenset()
    selection_box: SelectionBox | None = None


class DragState(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_dragging: bool = False
    dragged_cell_id: str | None = None
    drag_offset: Point = Field(default_factory=Point)


class SavedFileInfo(BaseModel):
    """Where the current document was last saved; empty before the first save."""

    base_file_name: str | None = None
    last_saved_path: str | None = None
