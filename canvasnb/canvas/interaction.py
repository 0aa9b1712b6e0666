"""Pointer interaction state machine for the canvas.

Events are applied synchronously in arrival order. Exactly one mode is active
at a time; while a cell is being dragged, canvas panning and box selection are
suppressed.
"""

from __future__ import annotations

import logging
import math
from enum import StrEnum

from canvasnb.canvas.viewport import ORIGIN, ViewportController
from canvasnb.document.canvas import Point
from canvasnb.document.document import DragState, SelectionBox
from canvasnb.document.store import DocumentStore
from canvasnb.execution.order import ExecutionOrderManager

logger = logging.getLogger("canvasnb.interaction")


class InteractionMode(StrEnum):
    IDLE = "idle"
    PANNING = "panning"
    SELECTING_BOX = "selecting_box"
    DRAGGING_CELL = "dragging_cell"


def _finite_xy(x: object, y: object) -> bool:
    return all(isinstance(v, int | float) and not isinstance(v, bool) and math.isfinite(v) for v in (x, y))


def snap(value: float, grid_size: int) -> float:
    return round(value / grid_size) * grid_size


class InteractionController:
    def __init__(self, store: DocumentStore, viewport: ViewportController, order: ExecutionOrderManager) -> None:
        self._store = store
        self._viewport = viewport
        self._order = order
        self._mode = InteractionMode.IDLE
        self._drag = DragState()
        self._last_screen: Point | None = None
        self._origin = ORIGIN

    @property
    def mode(self) -> InteractionMode:
        return self._mode

    @property
    def drag_state(self) -> DragState:
        return self._drag

    @property
    def selection_box(self) -> SelectionBox | None:
        return self._store.selection.selection_box

    def pointer_down(
        self,
        x: float,
        y: float,
        *,
        cell_id: str | None = None,
        shift: bool = False,
        multi: bool = False,
        origin: Point = ORIGIN,
    ) -> InteractionMode:
        """Start an interaction at screen point (x, y).

        `cell_id` is the cell under the pointer, if any.
        """
        if self._mode != InteractionMode.IDLE:
            logger.debug("pointer_down ignored while %s", self._mode)
            return self._mode
        if not _finite_xy(x, y):
            logger.debug("Discarded non-finite pointer_down (%r, %r)", x, y)
            return self._mode

        self._origin = origin
        screen = Point(x=x, y=y)
        if cell_id is not None:
            cell = self._store.document.get_cell(cell_id)
            if cell is None:
                logger.warning("pointer_down on unknown cell %s", cell_id)
                return self._mode
            self._store.select_cell(cell_id, multi=multi)
            at = self._viewport.screen_to_canvas(screen, origin)
            self._drag = DragState(
                is_dragging=True,
                dragged_cell_id=cell_id,
                drag_offset=Point(x=at.x - cell.position.x, y=at.y - cell.position.y),
            )
            self._mode = InteractionMode.DRAGGING_CELL
        elif shift:
            at = self._viewport.screen_to_canvas(screen, origin)
            self._store.set_selection_box(SelectionBox(start=at, end=at))
            self._mode = InteractionMode.SELECTING_BOX
        else:
            self._last_screen = screen
            self._mode = InteractionMode.PANNING
        return self._mode

    def pointer_move(self, x: float, y: float) -> None:
        if not _finite_xy(x, y):
            logger.debug("Discarded non-finite pointer_move (%r, %r)", x, y)
            return
        screen = Point(x=x, y=y)

        if self._mode == InteractionMode.DRAGGING_CELL and self._drag.dragged_cell_id is not None:
            at = self._viewport.screen_to_canvas(screen, self._origin)
            target_x = at.x - self._drag.drag_offset.x
            target_y = at.y - self._drag.drag_offset.y
            canvas = self._store.document.canvas
            if canvas.snap_to_grid:
                target_x = snap(target_x, canvas.grid_size)
                target_y = snap(target_y, canvas.grid_size)
            self._store.update_cell_position(self._drag.dragged_cell_id, (target_x, target_y))
        elif self._mode == InteractionMode.PANNING and self._last_screen is not None:
            self._viewport.pan_by(screen.x - self._last_screen.x, screen.y - self._last_screen.y)
            self._last_screen = screen
        elif self._mode == InteractionMode.SELECTING_BOX:
            box = self._store.selection.selection_box
            if box is not None:
                at = self._viewport.screen_to_canvas(screen, self._origin)
                self._store.set_selection_box(box.model_copy(update={"end": at}))

    def pointer_up(self, x: float | None = None, y: float | None = None) -> None:
        if self._mode == InteractionMode.SELECTING_BOX:
            if x is not None and y is not None:
                self.pointer_move(x, y)
            box = self._store.selection.selection_box
            if box is not None:
                left, top, right, bottom = box.bounds()
                hits = [c.id for c in self._store.document.cells if c.intersects(left, top, right, bottom)]
                self._store.select_cells(hits)
            self._store.set_selection_box(None)
        elif self._mode == InteractionMode.DRAGGING_CELL and self._drag.dragged_cell_id is not None:
            self._order.on_drag_end(self._drag.dragged_cell_id)
            self._drag = DragState()
        self._last_screen = None
        self._mode = InteractionMode.IDLE

    def click_canvas(self) -> None:
        """A click on empty canvas clears the selection."""
        self._store.clear_selection()

    def key_down(self, key: str) -> None:
        if key == "Escape":
            if self._mode == InteractionMode.SELECTING_BOX:
                self._store.set_selection_box(None)
                self._mode = InteractionMode.IDLE
            self._store.clear_selection()
