"""Canonical cell models for the canvas document.

A cell is a tagged union over `code`, `markdown` and `raw`. Every cell shares
its geometry and stacking fields; output cells synthesized by a run are raw
cells that carry an explicit back-reference to their source code cell.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

MIN_CELL_WIDTH = 100.0
MIN_CELL_HEIGHT = 50.0

# Page backgrounds render on this layer; cells always stack above it.
PAGE_Z_INDEX = 1
Z_INDEX_BASE = 10


def generate_cell_id() -> str:
    """Generate a cell ID: 'cell_' + 12 hex chars from uuid4."""
    return "cell_" + uuid.uuid4().hex[:12]


class CellType(StrEnum):
    CODE = "code"
    MARKDOWN = "markdown"
    RAW = "raw"


class ContentType(StrEnum):
    TEXT = "text"
    EQUATION = "equation"
    IMAGE = "image"
    GRAPH = "graph"


class OutputType(StrEnum):
    TEXT = "text"
    ERROR = "error"
    IMAGE = "image"
    SUCCESS = "success"


class Position(BaseModel):
    model_config = ConfigDict(frozen=True)

    x: float = Field(default=0.0, ge=0, allow_inf_nan=False)
    y: float = Field(default=0.0, ge=0, allow_inf_nan=False)


class Size(BaseModel):
    model_config = ConfigDict(frozen=True)

    width: float = Field(ge=MIN_CELL_WIDTH, allow_inf_nan=False)
    height: float = Field(ge=MIN_CELL_HEIGHT, allow_inf_nan=False)


class RenderingHints(BaseModel):
    """Presentation hints for markdown cells, keyed by content sub-type."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    content_type: ContentType | None = Field(default=None, alias="contentType")
    font_size: int | None = Field(default=None, alias="fontSize")
    font_family: str | None = Field(default=None, alias="fontFamily")
    src: str | None = None
    alt: str | None = None
    original_size: Size | None = Field(default=None, alias="originalSize")
    latex: str | None = None
    display_mode: bool | None = Field(default=None, alias="displayMode")
    chart_type: str | None = Field(default=None, alias="chartType")
    data: Any = None
    config: Any = None

    def to_layout(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ExecutionOutput(BaseModel):
    """Structured output of the last run, kept on the code cell itself."""

    model_config = ConfigDict(frozen=True)

    stdout: str = ""
    stderr: str = ""
    success: bool = True
    execution_time: str | None = None


class RichOutput(BaseModel):
    model_config = ConfigDict(frozen=True)

    format: Literal["text", "html", "image", "json", "error"] = "text"
    data: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)


class _CellBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=generate_cell_id, min_length=1)
    position: Position = Field(default_factory=Position)
    size: Size = Field(default_factory=lambda: Size(width=300, height=200))
    collapsed: bool = False
    collapsed_size: Size = Field(default_factory=lambda: Size(width=300, height=50))
    execution_order: int | None = None
    selected: bool = False
    z_index: int = Field(default=Z_INDEX_BASE + 1, gt=PAGE_Z_INDEX)

    @property
    def bottom(self) -> float:
        return self.position.y + self.size.height

    def intersects(self, left: float, top: float, right: float, bottom: float) -> bool:
        """True when the cell's bounds overlap (or touch) the given rectangle."""
        return (
            self.position.x <= right
            and self.position.x + self.size.width >= left
            and self.position.y <= bottom
            and self.position.y + self.size.height >= top
        )


class CodeCell(_CellBase):
    type: Literal["code"] = "code"
    content: str = ""
    language: str = "python"
    execution_count: int | None = None
    output: ExecutionOutput | None = None


class MarkdownCell(_CellBase):
    type: Literal["markdown"] = "markdown"
    content: str = ""
    rendering_hints: RenderingHints = Field(default_factory=RenderingHints)

    @model_validator(mode="after")
    def _no_execution_order(self) -> MarkdownCell:
        if self.execution_order is not None:
            raise ValueError("markdown cells never carry an execution order")
        return self


class RawCell(_CellBase):
    type: Literal["raw"] = "raw"
    content: str = ""
    format: str = "text"
    source_code_cell_id: str | None = None
    output_type: OutputType | None = None
    success: bool | None = None
    execution_time: str | None = None
    rich_outputs: tuple[RichOutput, ...] = ()

    @property
    def is_output(self) -> bool:
        return self.source_code_cell_id is not None

    @model_validator(mode="after")
    def _order_only_on_outputs(self) -> RawCell:
        if self.execution_order is not None and self.source_code_cell_id is None:
            raise ValueError("only output cells may share their source cell's execution order")
        return self


Cell = Annotated[CodeCell | MarkdownCell | RawCell, Field(discriminator="type")]

CELL_CLASSES: dict[CellType, type[CodeCell] | type[MarkdownCell] | type[RawCell]] = {
    CellType.CODE: CodeCell,
    CellType.MARKDOWN: MarkdownCell,
    CellType.RAW: RawCell,
}


def next_z_index(cells: Iterable[_CellBase]) -> int:
    """Next stacking index: one above every existing cell and the cell baseline."""
    return max((c.z_index for c in cells), default=Z_INDEX_BASE) + 1
