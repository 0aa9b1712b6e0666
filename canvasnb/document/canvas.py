"""Canvas state: zoom, pan, grid and page setup."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

ZOOM_MIN = 0.1
ZOOM_MAX = 3.0


class Orientation(StrEnum):
    PORTRAIT = "portrait"
    LANDSCAPE = "landscape"


class Point(BaseModel):
    """A finite 2-D coordinate. Unlike a cell Position it may be negative."""

    model_config = ConfigDict(frozen=True)

    x: float = Field(default=0.0, allow_inf_nan=False)
    y: float = Field(default=0.0, allow_inf_nan=False)


class PageSize(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    width: float = Field(gt=0)
    height: float = Field(gt=0)


# Pixel dimensions at 96 DPI, portrait.
PAGE_SIZES: dict[str, PageSize] = {
    "A3": PageSize(name="A3", width=1123, height=1587),
    "A4": PageSize(name="A4", width=794, height=1123),
    "A5": PageSize(name="A5", width=559, height=794),
    "Letter": PageSize(name="Letter", width=816, height=1056),
    "Legal": PageSize(name="Legal", width=816, height=1344),
    "Tabloid": PageSize(name="Tabloid", width=1056, height=1632),
}


def clamp_zoom(zoom: float) -> float:
    return min(ZOOM_MAX, max(ZOOM_MIN, zoom))


class CanvasState(BaseModel):
    """Viewport and page setup of a document.

    `pages` is derived from cell extents; it is recomputed rather than trusted.
    Serialized with camelCase keys in the layout artifact.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    zoom: float = Field(default=1.0, ge=ZOOM_MIN, le=ZOOM_MAX)
    pan: Point = Field(default_factory=Point)
    grid_size: int = Field(default=20, gt=0, alias="gridSize")
    snap_to_grid: bool = Field(default=True, alias="snapToGrid")
    page_size: PageSize = Field(default_factory=lambda: PAGE_SIZES["A4"], alias="pageSize")
    orientation: Orientation = Orientation.LANDSCAPE
    pages: int = Field(default=1, ge=1)
    page_margin: int = Field(default=50, ge=0, alias="pageMargin")

    def page_dimensions(self) -> tuple[float, float]:
        """Effective (width, height) of one page after applying orientation."""
        long_side = max(self.page_size.width, self.page_size.height)
        short_side = min(self.page_size.width, self.page_size.height)
        if self.orientation == Orientation.LANDSCAPE:
            return long_side, short_side
        return short_side, long_side
