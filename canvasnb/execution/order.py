"""Execution order and per-cell run bookkeeping."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from canvasnb.document.cell import CodeCell

logger = logging.getLogger("canvasnb.execution")


def next_execution_order(cells: Iterable[object]) -> int:
    """One more than the highest execution order held by any code cell."""
    orders = [c.execution_order for c in cells if isinstance(c, CodeCell) and c.execution_order is not None]
    return max(orders, default=0) + 1


class ExecutionOrderManager:
    """Tracks the session run counter and which runs are still current.

    Each run of a cell takes a token from a session-wide sequence. Only
    in-flight runs hold a token; cancelling the cell drops it, so a late
    response from the old run no longer matches and is discarded.
    """

    def __init__(self) -> None:
        self._run_counter = 0
        self._token_seq = 0
        self._in_flight: dict[str, int] = {}

    @property
    def run_count(self) -> int:
        return self._run_counter

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    def next_execution_count(self) -> int:
        self._run_counter += 1
        return self._run_counter

    def is_running(self, cell_id: str) -> bool:
        return cell_id in self._in_flight

    def begin(self, cell_id: str) -> int | None:
        """Start a run of `cell_id`. Returns its token, or None if one is already in flight."""
        if cell_id in self._in_flight:
            return None
        self._token_seq += 1
        self._in_flight[cell_id] = self._token_seq
        return self._token_seq

    def is_current(self, cell_id: str, token: int) -> bool:
        return self._in_flight.get(cell_id) == token

    def finish(self, cell_id: str, token: int) -> bool:
        """End a run. Returns True when the run's response should still be applied."""
        if not self.is_current(cell_id, token):
            return False
        del self._in_flight[cell_id]
        return True

    def invalidate(self, cell_id: str) -> None:
        """Mark any in-flight run of `cell_id` stale."""
        if self._in_flight.pop(cell_id, None) is not None:
            logger.info("Cancelled in-flight run of %s", cell_id)

    def on_drag_end(self, cell_id: str) -> None:
        # Moving a cell never changes its execution order.
        logger.debug("Drag of %s ended; execution order unchanged", cell_id)
