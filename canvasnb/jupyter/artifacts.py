"""Pydantic models for the two on-disk artifacts: the notebook and its layout."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from canvasnb.document.canvas import CanvasState
from canvasnb.document.cell import Position, Size

NBFORMAT = 4
NBFORMAT_MINOR = 5

KERNELSPEC = {"display_name": "Python 3", "language": "python", "name": "python3"}
LANGUAGE_INFO = {"name": "python", "mimetype": "text/x-python", "file_extension": ".py"}


class NotebookCellArtifact(BaseModel):
    model_config = ConfigDict(extra="allow")

    cell_type: str
    id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    source: str | list[str] = ""
    execution_count: int | None = None
    outputs: list[dict[str, Any]] = Field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(self.source) if isinstance(self.source, list) else self.source

    @property
    def canvas_metadata(self) -> dict[str, Any]:
        meta = self.metadata.get("design_diary")
        return meta if isinstance(meta, dict) else {}


class NotebookArtifact(BaseModel):
    model_config = ConfigDict(extra="allow")

    cells: list[NotebookCellArtifact]
    metadata: dict[str, Any] = Field(default_factory=dict)
    nbformat: int = NBFORMAT
    nbformat_minor: int = NBFORMAT_MINOR

    @property
    def canvas_metadata(self) -> dict[str, Any]:
        meta = self.metadata.get("design_diary")
        return meta if isinstance(meta, dict) else {}


class CellLayout(BaseModel):
    position: Position
    size: Size
    collapsed_size: Size | None = None
    z_index: int | None = None
    cell_type: str | None = None
    rendering_hints: dict[str, Any] = Field(default_factory=dict)


class LayoutArtifact(BaseModel):
    version: str = "1.0.0"
    notebook_id: str
    canvas: CanvasState = Field(default_factory=CanvasState)
    cells: dict[str, CellLayout] = Field(default_factory=dict)
    execution_history: list[int] = Field(default_factory=list)
