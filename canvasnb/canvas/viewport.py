"""Viewport math: screen/canvas transforms, pagination and pan/zoom bounds.

Pages are laid out in a single column starting at (50, 50), separated by the
page margin. The pannable area covers one page width and the whole page stack,
plus a fixed margin on every side.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Sequence
from typing import NamedTuple

from canvasnb.core import Result
from canvasnb.document.canvas import CanvasState, Point, clamp_zoom
from canvasnb.document.cell import Cell
from canvasnb.document.document import Document
from canvasnb.document.store import DocumentStore

logger = logging.getLogger("canvasnb.viewport")

PAGE_LEFT = 50.0
PAGE_TOP = 50.0
CONTENT_PAD = 200.0
CONTENT_TOP_PAD = 100.0
PAN_MARGIN = 200.0
MIN_PAGES = 1
WHEEL_ZOOM_IN = 1.1
WHEEL_ZOOM_OUT = 0.9
WHEEL_PAN_SPEED = 15.0

ORIGIN = Point()


class PageRect(NamedTuple):
    index: int
    left: float
    top: float
    width: float
    height: float


class PanBounds(NamedTuple):
    min_x: float
    max_x: float
    min_y: float
    max_y: float

    def clamp(self, x: float, y: float) -> tuple[float, float]:
        return min(self.max_x, max(self.min_x, x)), min(self.max_y, max(self.min_y, y))

    def contains(self, x: float, y: float) -> bool:
        return self.min_x <= x <= self.max_x and self.min_y <= y <= self.max_y


def screen_to_canvas(screen: Point, pan: Point, zoom: float, origin: Point = ORIGIN) -> Point:
    """Map a screen point to canvas coordinates. `origin` is the canvas element's top-left on screen."""
    return Point(x=(screen.x - origin.x - pan.x) / zoom, y=(screen.y - origin.y - pan.y) / zoom)


def canvas_to_screen(point: Point, pan: Point, zoom: float, origin: Point = ORIGIN) -> Point:
    return Point(x=point.x * zoom + pan.x + origin.x, y=point.y * zoom + pan.y + origin.y)


def required_pages(canvas: CanvasState, cells: Sequence[Cell]) -> int:
    """Pages needed to hold every cell plus padding, never fewer than MIN_PAGES."""
    _, page_height = canvas.page_dimensions()
    lowest = max((c.bottom for c in cells), default=0.0)
    return max(MIN_PAGES, math.ceil((lowest + CONTENT_PAD) / (page_height + canvas.page_margin)))


def page_rects(canvas: CanvasState, pages: int) -> list[PageRect]:
    width, height = canvas.page_dimensions()
    return [PageRect(i, PAGE_LEFT, PAGE_TOP + i * (height + canvas.page_margin), width, height) for i in range(pages)]


def total_content_height(canvas: CanvasState, pages: int) -> float:
    _, height = canvas.page_dimensions()
    return CONTENT_TOP_PAD + pages * (height + canvas.page_margin)


def pan_bounds(canvas: CanvasState, cells: Sequence[Cell]) -> PanBounds:
    """Allowed pan range: one page width across, the whole page stack down, plus a margin each way."""
    width, _ = canvas.page_dimensions()
    height = total_content_height(canvas, required_pages(canvas, cells))
    return PanBounds(min_x=-width - PAN_MARGIN, max_x=PAN_MARGIN, min_y=-height - PAN_MARGIN, max_y=PAN_MARGIN)


def _finite(*values: float) -> bool:
    return all(isinstance(v, int | float) and math.isfinite(v) for v in values)


class ViewportController:
    """Pan and zoom operations over the store's canvas, always kept in bounds."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    @property
    def canvas(self) -> CanvasState:
        return self._store.document.canvas

    def screen_to_canvas(self, screen: Point, origin: Point = ORIGIN) -> Point:
        canvas = self.canvas
        return screen_to_canvas(screen, canvas.pan, canvas.zoom, origin)

    def page_dimensions(self) -> tuple[float, float]:
        return self.canvas.page_dimensions()

    def required_pages(self) -> int:
        doc = self._store.document
        return required_pages(doc.canvas, doc.cells)

    def pages(self) -> list[PageRect]:
        return page_rects(self.canvas, self.required_pages())

    def bounds(self) -> PanBounds:
        doc = self._store.document
        return pan_bounds(doc.canvas, doc.cells)

    def _move_pan(self, compute: Callable[[CanvasState], tuple[float, float]]) -> Document:
        def _mutate(doc: Document) -> Document | None:
            x, y = compute(doc.canvas)
            bounds = pan_bounds(doc.canvas, doc.cells)
            x, y = bounds.clamp(x, y)
            if (x, y) == (doc.canvas.pan.x, doc.canvas.pan.y):
                return None
            return doc.touch(canvas=doc.canvas.model_copy(update={"pan": Point(x=x, y=y)}))

        return self._store.apply(_mutate)

    def pan_by(self, dx: float, dy: float) -> Result[Document]:
        result: Result[Document] = Result()
        if not _finite(dx, dy):
            logger.warning("Discarded non-finite pan delta (%r, %r)", dx, dy)
            result.error("INVALID_PAN", "Pan delta must be finite numbers")
            return result
        result.data = self._move_pan(lambda canvas: (canvas.pan.x + dx, canvas.pan.y + dy))
        return result

    def pan_to(self, x: float, y: float) -> Result[Document]:
        result: Result[Document] = Result()
        if not _finite(x, y):
            logger.warning("Discarded non-finite pan target (%r, %r)", x, y)
            result.error("INVALID_PAN", "Pan target must be finite numbers")
            return result
        result.data = self._move_pan(lambda canvas: (x, y))
        return result

    def zoom_by(self, factor: float) -> Result[Document]:
        if not _finite(factor) or factor <= 0:
            return Result.failure("INVALID_ZOOM", f"Zoom factor must be a positive number, got {factor!r}")
        result: Result[Document] = Result()

        def _mutate(doc: Document) -> Document | None:
            zoom = clamp_zoom(doc.canvas.zoom * factor)
            if zoom == doc.canvas.zoom:
                return None
            canvas = doc.canvas.model_copy(update={"zoom": zoom})
            x, y = pan_bounds(canvas, doc.cells).clamp(canvas.pan.x, canvas.pan.y)
            return doc.touch(canvas=canvas.model_copy(update={"pan": Point(x=x, y=y)}))

        result.data = self._store.apply(_mutate)
        return result

    def wheel(self, delta_x: float, delta_y: float, *, modifier: bool = False, shift: bool = False) -> Result[Document]:
        """Wheel input: zoom with the modifier key held, otherwise pan.

        Shift turns vertical scrolling into horizontal panning.
        """
        if not _finite(delta_x, delta_y):
            result: Result[Document] = Result()
            logger.warning("Discarded non-finite wheel delta (%r, %r)", delta_x, delta_y)
            result.error("INVALID_WHEEL", "Wheel delta must be finite numbers")
            return result
        if modifier:
            if delta_y == 0:
                return Result(data=self._store.document)
            return self.zoom_by(WHEEL_ZOOM_OUT if delta_y > 0 else WHEEL_ZOOM_IN)

        zoom = self.canvas.zoom
        if shift:
            dx, dy = -(delta_y or delta_x) * WHEEL_PAN_SPEED / zoom, 0.0
        else:
            dx, dy = -delta_x * WHEEL_PAN_SPEED / zoom, -delta_y * WHEEL_PAN_SPEED / zoom
        return self.pan_by(dx, dy)

    def sync_canvas(self) -> Document:
        """Bring derived canvas state in line with the current page geometry.

        Writes the required page count back and pulls the pan inside the
        bounds for the current page size, orientation and cells. Call after
        anything that can change those bounds.
        """

        def _mutate(doc: Document) -> Document | None:
            canvas = doc.canvas
            pages = required_pages(canvas, doc.cells)
            x, y = pan_bounds(canvas, doc.cells).clamp(canvas.pan.x, canvas.pan.y)
            if pages == canvas.pages and (x, y) == (canvas.pan.x, canvas.pan.y):
                return None
            if (x, y) != (canvas.pan.x, canvas.pan.y):
                logger.debug("Pan (%g, %g) pulled back into bounds at (%g, %g)", canvas.pan.x, canvas.pan.y, x, y)
            return doc.touch(canvas=canvas.model_copy(update={"pages": pages, "pan": Point(x=x, y=y)}))

        return self._store.apply(_mutate)
