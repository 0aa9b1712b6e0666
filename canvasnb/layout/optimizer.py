"""Automatic placement for cells that arrive without geometry.

Single-column, top-to-bottom flow across pages. Page i spans
[i * page_height, (i + 1) * page_height) and cells sit inside its margins.
Cells the flow cannot fit within `max_pages` are stacked below the last page
in input order, so every request always gets a placement.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from pydantic import BaseModel, Field

from canvasnb.document.cell import (
    MIN_CELL_HEIGHT,
    MIN_CELL_WIDTH,
    Z_INDEX_BASE,
    CellType,
    ContentType,
    Position,
    Size,
)

logger = logging.getLogger("canvasnb.layout")

# (base, per character, floor, cap)
_HEIGHT_COEFFICIENTS: dict[CellType, tuple[float, float, float, float]] = {
    CellType.CODE: (100, 0.5, 100, 400),
    CellType.MARKDOWN: (60, 0.4, 80, 300),
    CellType.RAW: (60, 0.3, 60, 300),
}

_CONTENT_FLOORS: dict[ContentType, float] = {
    ContentType.EQUATION: 100,
    ContentType.IMAGE: 200,
    ContentType.GRAPH: 250,
}


class LayoutConstraints(BaseModel):
    page_width: float = Field(gt=0)
    page_height: float = Field(gt=0)
    margin: float = Field(default=50, ge=0)
    cell_spacing: float = Field(default=20, ge=0)
    max_pages: int = Field(default=10, ge=1)


class PlacementRequest(BaseModel):
    cell_id: str
    cell_type: CellType
    content_length: int = Field(default=0, ge=0)
    content_type: ContentType | None = None


class Placement(BaseModel):
    cell_id: str
    position: Position
    size: Size
    page: int
    z_index: int
    overflow: bool = False


def estimate_height(cell_type: CellType, content_length: int, content_type: ContentType | None = None) -> float:
    base, per_char, floor, cap = _HEIGHT_COEFFICIENTS[cell_type]
    if content_type is not None:
        floor = max(floor, _CONTENT_FLOORS.get(content_type, floor))
    return min(cap, max(floor, base + per_char * content_length))


def optimize_layout(
    requests: Sequence[PlacementRequest],
    constraints: LayoutConstraints,
    *,
    z_start: int = Z_INDEX_BASE + 1,
    start_y: float = 0,
) -> list[Placement]:
    """Place `requests` in order. Returns one Placement per request, same order.

    With `start_y`, the flow begins one cell spacing below that canvas y
    instead of at the top of the first page.
    """
    margin = constraints.margin
    page_height = constraints.page_height
    width = max(MIN_CELL_WIDTH, constraints.page_width - 2 * margin)
    usable = max(MIN_CELL_HEIGHT, page_height - 2 * margin)

    placements: list[Placement] = []
    page = 0
    cursor = margin
    overflowing = False
    overflow_y = constraints.max_pages * page_height + margin
    if start_y > 0:
        page = int(start_y // page_height)
        if page < constraints.max_pages:
            cursor = max(margin, start_y - page * page_height + constraints.cell_spacing)
        else:
            overflowing = True
            overflow_y = max(overflow_y, start_y + constraints.cell_spacing)

    for index, request in enumerate(requests):
        estimate = estimate_height(request.cell_type, request.content_length, request.content_type)
        height = max(MIN_CELL_HEIGHT, min(usable, estimate))
        if not overflowing and cursor > margin and cursor + height > page_height - margin:
            if page + 1 < constraints.max_pages:
                page += 1
                cursor = margin
            else:
                overflowing = True
                logger.info("Layout exceeded %d pages; stacking remaining cells below", constraints.max_pages)

        if overflowing:
            y = overflow_y
            overflow_y += height + constraints.cell_spacing
            cell_page = int(y // page_height)
        else:
            y = page * page_height + cursor
            cursor += height + constraints.cell_spacing
            cell_page = page

        placements.append(
            Placement(
                cell_id=request.cell_id,
                position=Position(x=margin, y=y),
                size=Size(width=width, height=height),
                page=cell_page,
                z_index=z_start + index,
                overflow=overflowing,
            )
        )
    return placements


def pages_needed(placements: Sequence[Placement]) -> int:
    return max((p.page for p in placements), default=0) + 1
