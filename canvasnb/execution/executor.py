"""Cell execution and output materialization.

A run removes the source cell's previous output cells and adds the new ones in
a single store update, so the document never shows stale output without its
replacement. Output cells share the source cell's execution order.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import UTC, datetime

from canvasnb.core import Result
from canvasnb.document.cell import (
    CodeCell,
    ExecutionOutput,
    OutputType,
    Position,
    RawCell,
    RichOutput,
    Size,
    next_z_index,
)
from canvasnb.document.document import Document
from canvasnb.document.store import DocumentStore
from canvasnb.execution.backend import (
    ExecutionBackend,
    ExecutionBackendError,
    ExecutionRequest,
    ExecutionResponse,
)
from canvasnb.execution.order import ExecutionOrderManager

logger = logging.getLogger("canvasnb.execution")

OUTPUT_GAP = 20.0
LINE_HEIGHT = 20
SUCCESS_MESSAGE = "Execution completed successfully"


def _line_height(content: str, floor: float, cap: float) -> float:
    lines = content.count("\n") + 1
    return min(cap, max(floor, lines * LINE_HEIGHT + 40))


def text_output_size(content: str) -> Size:
    return Size(width=400, height=_line_height(content, 100, 300))


def error_output_size(content: str) -> Size:
    return Size(width=400, height=_line_height(content, 150, 400))


def image_output_size(metadata: dict[str, object]) -> Size:
    width = metadata.get("width") or 400
    height = metadata.get("height") or 300
    return Size(width=max(100.0, min(500.0, float(width))), height=max(50.0, min(400.0, float(height))))


SUCCESS_OUTPUT_SIZE = Size(width=300, height=60)
FAILURE_OUTPUT_SIZE = Size(width=400, height=150)

_RICH_FORMATS = {"text", "html", "image", "json", "error"}


class _OutputPlacer:
    """Hands out geometry for new output cells.

    Previous geometry for the same output type is reused first; anything else
    stacks downward to the right of the source cell.
    """

    def __init__(self, source: CodeCell, previous: Iterable[RawCell]) -> None:
        self._x = source.position.x + source.size.width + OUTPUT_GAP
        self._y = source.position.y
        self._reusable: dict[OutputType, list[tuple[Position, Size]]] = {}
        for cell in previous:
            kind = cell.output_type or OutputType.TEXT
            self._reusable.setdefault(kind, []).append((cell.position, cell.size))

    def place(self, kind: OutputType, size: Size) -> tuple[Position, Size]:
        previous = self._reusable.get(kind)
        if previous:
            return previous.pop(0)
        position = Position(x=self._x, y=self._y)
        self._y += size.height + OUTPUT_GAP
        return position, size


def _output_specs(response: ExecutionResponse) -> list[tuple[OutputType, str, bool, tuple[RichOutput, ...], Size]]:
    specs: list[tuple[OutputType, str, bool, tuple[RichOutput, ...], Size]] = []
    if response.stdout.strip():
        specs.append((OutputType.TEXT, response.stdout, True, (), text_output_size(response.stdout)))
    if response.stderr.strip():
        specs.append((OutputType.ERROR, response.stderr, False, (), error_output_size(response.stderr)))
    for output in response.outputs:
        fmt = output.type if output.type in _RICH_FORMATS else "text"
        rich = (RichOutput(format=fmt, data=output.data, metadata=output.metadata),)
        if fmt == "image":
            specs.append((OutputType.IMAGE, "", True, rich, image_output_size(output.metadata)))
        else:
            specs.append((OutputType.TEXT, output.data, True, rich, text_output_size(output.data)))
    if not specs:
        specs.append((OutputType.SUCCESS, SUCCESS_MESSAGE, True, (), SUCCESS_OUTPUT_SIZE))
    return specs


def materialize_outputs(
    document: Document,
    source: CodeCell,
    execution_count: int,
    response: ExecutionResponse | None,
    failure: str | None,
    executed_at: datetime,
) -> Document:
    """Replace `source`'s output cells with ones built from a run's result.

    Pass `failure` (and no response) when the backend could not run the code;
    that records a single error output and leaves the execution history alone.
    """
    timestamp = executed_at.isoformat()
    previous = document.output_cells_for(source.id)
    previous_ids = {c.id for c in previous}
    placer = _OutputPlacer(source, previous)

    if failure is not None or response is None:
        message = failure or "No response from execution backend"
        specs = [(OutputType.ERROR, f"Error: {message}", False, (), FAILURE_OUTPUT_SIZE)]
        result = ExecutionOutput(stderr=message, success=False, execution_time=timestamp)
        history = document.execution_history
    else:
        specs = _output_specs(response)
        result = ExecutionOutput(
            stdout=response.stdout, stderr=response.stderr, success=response.success, execution_time=timestamp
        )
        history = (*document.execution_history, int(executed_at.timestamp() * 1000))

    kept = [c for c in document.cells if c.id not in previous_ids]
    z_index = next_z_index(kept)
    outputs: list[RawCell] = []
    for kind, content, success, rich, default_size in specs:
        position, size = placer.place(kind, default_size)
        outputs.append(
            RawCell(
                content=content,
                position=position,
                size=size,
                collapsed_size=Size(width=size.width, height=50),
                execution_order=source.execution_order,
                z_index=z_index,
                source_code_cell_id=source.id,
                output_type=kind,
                success=success,
                execution_time=timestamp,
                rich_outputs=rich,
            )
        )
        z_index += 1

    updated_source = source.model_copy(update={"execution_count": execution_count, "output": result})
    cells = tuple(updated_source if c.id == source.id else c for c in kept)
    return document.touch(cells=(*cells, *outputs), execution_history=history)


class CellExecutor:
    """Runs code cells through an execution backend and records their outputs."""

    def __init__(
        self, store: DocumentStore, backend: ExecutionBackend, order: ExecutionOrderManager | None = None
    ) -> None:
        self._store = store
        self._backend = backend
        self.order = order or ExecutionOrderManager()

    async def execute_cell(self, cell_id: str) -> Result[Document]:
        result: Result[Document] = Result()
        document = self._store.document
        cell = document.get_cell(cell_id)
        if cell is None:
            logger.warning("Cannot execute missing cell %s", cell_id)
            result.error("CELL_NOT_FOUND", f"Cell not found: {cell_id}")
            return result
        if not isinstance(cell, CodeCell):
            result.error("NOT_A_CODE_CELL", f"Cell {cell_id} is a {cell.type} cell", hint="Only code cells run")
            return result

        token = self.order.begin(cell_id)
        if token is None:
            result.error("EXECUTION_IN_PROGRESS", f"Cell {cell_id} is already running")
            return result
        execution_count = self.order.next_execution_count()
        logger.info("Executing cell %s (run %d)", cell_id, execution_count)

        request = ExecutionRequest(code=cell.content, cell_id=cell_id, document_id=document.id)
        response: ExecutionResponse | None = None
        failure: str | None = None
        try:
            response = await self._backend.execute(request)
        except ExecutionBackendError as e:
            failure = str(e)
            logger.warning("Execution of %s failed: %s", cell_id, failure)
        except Exception as e:  # noqa: BLE001
            failure = f"Unexpected backend error: {e}"
            logger.warning("Execution of %s failed unexpectedly", cell_id, exc_info=True)
        finally:
            current = self.order.finish(cell_id, token)

        if not current:
            logger.info("Discarded stale result for %s", cell_id)
            result.warning("STALE_RESPONSE", f"Result for {cell_id} arrived after the run was superseded")
            return result

        executed_at = datetime.now(UTC)
        source_present = True

        def _materialize(doc: Document) -> Document | None:
            nonlocal source_present
            source = doc.get_cell(cell_id)
            if not isinstance(source, CodeCell):
                source_present = False
                return None
            return materialize_outputs(doc, source, execution_count, response, failure, executed_at)

        updated = self._store.apply(_materialize)
        if not source_present:
            logger.info("Cell %s was removed while running; result discarded", cell_id)
            result.warning("STALE_RESPONSE", f"Cell {cell_id} no longer exists")
            return result

        if failure is not None:
            result.error("EXECUTION_FAILED", failure)
        result.data = updated
        return result

    async def execute_cells(self, cell_ids: Iterable[str]) -> list[Result[Document]]:
        """Run cells one after another, in the given order."""
        return [await self.execute_cell(cell_id) for cell_id in cell_ids]

    def cancel(self, cell_id: str) -> None:
        """Discard the result of any in-flight run of `cell_id`."""
        self.order.invalidate(cell_id)
