"""Tests for execution order and run tokens."""

from __future__ import annotations

from canvasnb.document.cell import RawCell
from canvasnb.execution.order import ExecutionOrderManager, next_execution_order

from .conftest import make_code_cell, make_markdown_cell


def test_next_execution_order_ignores_non_code_cells() -> None:
    output = RawCell(source_code_cell_id="cell_a", execution_order=9)
    cells = [make_code_cell("cell_a", order=2), make_markdown_cell(), output, make_code_cell("cell_b", order=None)]
    assert next_execution_order(cells) == 3


def test_next_execution_order_empty() -> None:
    assert next_execution_order([]) == 1


def test_execution_count_is_session_global() -> None:
    order = ExecutionOrderManager()
    assert order.next_execution_count() == 1
    assert order.next_execution_count() == 2
    assert order.run_count == 2


def test_one_run_in_flight_per_cell() -> None:
    order = ExecutionOrderManager()
    token = order.begin("cell_a")
    assert token is not None
    assert order.is_running("cell_a")
    assert order.begin("cell_a") is None
    assert order.begin("cell_b") is not None

    assert order.finish("cell_a", token) is True
    assert not order.is_running("cell_a")
    assert order.begin("cell_a") is not None


def test_invalidate_makes_token_stale() -> None:
    order = ExecutionOrderManager()
    token = order.begin("cell_a")
    assert token is not None
    order.invalidate("cell_a")

    assert not order.is_running("cell_a")
    newer = order.begin("cell_a")
    assert newer is not None and newer != token
    assert order.finish("cell_a", token) is False
    assert order.is_running("cell_a")
    assert order.finish("cell_a", newer) is True


def test_drag_end_is_a_no_op() -> None:
    order = ExecutionOrderManager()
    order.on_drag_end("cell_a")
    assert order.run_count == 0
    assert not order.is_running("cell_a")


def test_finished_and_cancelled_runs_leave_no_tokens() -> None:
    order = ExecutionOrderManager()
    for i in range(50):
        token = order.begin(f"cell_{i}")
        assert token is not None
        if i % 2:
            order.invalidate(f"cell_{i}")
        else:
            order.finish(f"cell_{i}", token)
    order.invalidate("cell_never_ran")
    assert order.in_flight_count == 0
