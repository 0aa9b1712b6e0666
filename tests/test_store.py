"""Tests for DocumentStore mutations."""

from __future__ import annotations

import pytest

from canvasnb.document.canvas import PAGE_SIZES
from canvasnb.document.cell import CodeCell, MarkdownCell, RawCell
from canvasnb.document.store import CODE_PLACEHOLDER, DocumentStore

from .conftest import make_code_cell, make_markdown_cell, make_store


def test_add_code_cell_takes_next_execution_order() -> None:
    store = make_store(make_code_cell("cell_a", order=3), make_markdown_cell())
    before = len(store.document.cells)

    result = store.add_cell("code", (40, 60))
    assert result.ok
    doc = result.data
    assert doc is not None
    assert len(doc.cells) == before + 1
    added = doc.cells[-1]
    assert isinstance(added, CodeCell)
    assert added.execution_order == 4
    assert added.content == CODE_PLACEHOLDER
    assert added.position.x == 40
    assert added.position.y == 60


def test_add_first_code_cell_starts_at_one() -> None:
    store = DocumentStore()
    doc = store.add_cell("code", (0, 0)).data
    assert doc is not None
    assert doc.cells[0].execution_order == 1


@pytest.mark.parametrize("cell_type", ["markdown", "raw"])
def test_add_non_code_cell_has_no_order(cell_type: str) -> None:
    store = make_store(make_code_cell(order=2))
    doc = store.add_cell(cell_type, (0, 0)).data
    assert doc is not None
    assert doc.cells[-1].execution_order is None


def test_add_markdown_with_hint_uses_hint_defaults() -> None:
    store = DocumentStore()
    doc = store.add_cell("markdown", (0, 0), "equation").data
    assert doc is not None
    cell = doc.cells[0]
    assert isinstance(cell, MarkdownCell)
    assert cell.rendering_hints.content_type == "equation"
    assert cell.rendering_hints.latex == "E = mc^2"


def test_add_cell_selects_only_the_new_cell() -> None:
    store = make_store(make_code_cell())
    store.select_cell("cell_code1")

    doc = store.add_cell("raw", (10, 10)).data
    assert doc is not None
    new_id = doc.cells[-1].id
    assert store.selection.selected_cell_ids == {new_id}
    assert [c.id for c in doc.cells if c.selected] == [new_id]


def test_add_cell_stacks_above_existing() -> None:
    store = make_store(make_code_cell(z_index=30))
    doc = store.add_cell("markdown", (0, 0)).data
    assert doc is not None
    assert doc.cells[-1].z_index == 31


def test_add_unknown_cell_type_raises() -> None:
    store = make_store(make_code_cell())
    before = store.document
    with pytest.raises(ValueError):
        store.add_cell("widget", (0, 0))
    assert store.document is before


def test_add_cell_clamps_negative_position() -> None:
    store = DocumentStore()
    doc = store.add_cell("raw", (-30, -5)).data
    assert doc is not None
    assert (doc.cells[0].position.x, doc.cells[0].position.y) == (0, 0)


def test_add_cell_rejects_nan_position() -> None:
    store = DocumentStore()
    before = store.document
    result = store.add_cell("code", (float("nan"), 0))
    assert not result.ok
    assert result.first_error is not None
    assert result.first_error.code == "INVALID_POSITION"
    assert store.document is before


@pytest.mark.parametrize("bad", [float("nan"), float("inf"), float("-inf")])
def test_update_position_non_finite_leaves_document_unchanged(bad: float) -> None:
    store = make_store(make_code_cell())
    before = store.document
    revision = store.revision

    result = store.update_cell_position("cell_code1", (bad, 10))
    assert not result.ok
    assert store.document is before
    assert store.revision == revision
    assert store.document.model_dump_json() == before.model_dump_json()


@pytest.mark.parametrize("bad", [float("nan"), float("inf")])
def test_update_size_non_finite_leaves_document_unchanged(bad: float) -> None:
    store = make_store(make_code_cell())
    before = store.document

    result = store.update_cell_size("cell_code1", {"width": 400, "height": bad})
    assert result.first_error is not None
    assert result.first_error.code == "INVALID_SIZE"
    assert store.document is before


def test_update_position_clamps_negative() -> None:
    store = make_store(make_code_cell())
    doc = store.update_cell_position("cell_code1", (-10, 25)).data
    assert doc is not None
    cell = doc.get_cell("cell_code1")
    assert cell is not None
    assert (cell.position.x, cell.position.y) == (0, 25)


def test_update_size_clamps_to_minimum() -> None:
    store = make_store(make_code_cell())
    doc = store.update_cell_size("cell_code1", (20, 10)).data
    assert doc is not None
    cell = doc.get_cell("cell_code1")
    assert cell is not None
    assert (cell.size.width, cell.size.height) == (100, 50)


def test_update_cell_missing() -> None:
    store = make_store(make_code_cell())
    before = store.document
    result = store.update_cell("cell_nope", {"content": "x"})
    assert result.first_error is not None
    assert result.first_error.code == "CELL_NOT_FOUND"
    assert store.document is before


def test_update_cell_ignores_immutable_fields() -> None:
    store = make_store(make_code_cell(order=1))
    result = store.update_cell(
        "cell_code1", {"id": "cell_other", "type": "markdown", "execution_order": 9, "content": "x = 1"}
    )
    assert result.ok
    assert [d.code for d in result.diagnostics] == ["IMMUTABLE_FIELD"] * 3
    cell = store.document.get_cell("cell_code1")
    assert isinstance(cell, CodeCell)
    assert cell.execution_order == 1
    assert cell.content == "x = 1"


def test_update_cell_merges_geometry_field_by_field() -> None:
    store = make_store(make_code_cell(x=100, y=100))
    result = store.update_cell("cell_code1", {"position": {"x": 250, "y": float("nan")}})
    assert result.ok
    assert [d.code for d in result.diagnostics] == ["INVALID_GEOMETRY"]
    cell = store.document.get_cell("cell_code1")
    assert cell is not None
    assert (cell.position.x, cell.position.y) == (250, 100)


def test_update_cell_partial_size_keeps_other_dimension() -> None:
    store = make_store(make_code_cell())
    store.update_cell("cell_code1", {"size": {"height": 420}})
    cell = store.document.get_cell("cell_code1")
    assert cell is not None
    assert (cell.size.width, cell.size.height) == (300, 420)


def test_update_cell_unknown_field_warns() -> None:
    store = make_store(make_markdown_cell())
    result = store.update_cell("cell_md1", {"language": "r", "content": "## Hi"})
    assert result.ok
    assert [d.code for d in result.diagnostics] == ["UNKNOWN_FIELD"]
    cell = store.document.get_cell("cell_md1")
    assert cell is not None
    assert cell.content == "## Hi"


def test_update_cell_invalid_value_refused() -> None:
    store = make_store(make_code_cell())
    before = store.document
    result = store.update_cell("cell_code1", {"collapsed": "sometimes"})
    assert result.first_error is not None
    assert result.first_error.code == "INVALID_UPDATE"
    assert store.document is before


def test_update_bumps_modified() -> None:
    store = make_store(make_code_cell())
    before = store.document
    store.update_cell("cell_code1", {"content": "y = 2"})
    assert store.document.modified >= before.modified
    assert store.document is not before


@pytest.mark.parametrize("cell_id", ["cell_code1", "cell_md1", "cell_out"])
def test_duplicate_cell_rules(cell_id: str) -> None:
    output = RawCell(id="cell_out", source_code_cell_id="cell_code1", execution_order=1, selected=True)
    store = make_store(make_code_cell(order=1), make_markdown_cell(), output)
    source = store.document.get_cell(cell_id)
    assert source is not None

    doc = store.duplicate_cell(cell_id).data
    assert doc is not None
    copy = doc.cells[-1]
    assert copy.id != cell_id
    assert copy.type == source.type
    assert copy.position.x == source.position.x + 20
    assert copy.position.y == source.position.y + 20
    assert copy.execution_order is None
    assert copy.selected is False


def test_delete_cell_drops_it_from_selection() -> None:
    store = make_store(make_code_cell(), make_markdown_cell())
    store.select_cells(["cell_code1", "cell_md1"])
    doc = store.delete_cell("cell_code1").data
    assert doc is not None
    assert doc.get_cell("cell_code1") is None
    assert store.selection.selected_cell_ids == {"cell_md1"}


def test_delete_missing_cell() -> None:
    store = make_store(make_code_cell())
    result = store.delete_cell("cell_nope")
    assert not result.ok


def test_toggle_collapse() -> None:
    store = make_store(make_code_cell())
    store.toggle_cell_collapse("cell_code1")
    cell = store.document.get_cell("cell_code1")
    assert cell is not None
    assert cell.collapsed is True
    store.toggle_cell_collapse("cell_code1")
    cell = store.document.get_cell("cell_code1")
    assert cell is not None
    assert cell.collapsed is False


def test_select_cell_multi_toggles() -> None:
    store = make_store(make_code_cell(), make_markdown_cell())
    store.select_cell("cell_code1")
    store.select_cell("cell_md1", multi=True)
    assert store.selection.selected_cell_ids == {"cell_code1", "cell_md1"}
    store.select_cell("cell_code1", multi=True)
    assert store.selection.selected_cell_ids == {"cell_md1"}
    store.select_cell("cell_code1")
    assert store.selection.selected_cell_ids == {"cell_code1"}
    assert [c.id for c in store.document.cells if c.selected] == ["cell_code1"]


def test_select_cells_warns_on_unknown_ids() -> None:
    store = make_store(make_code_cell())
    result = store.select_cells(["cell_code1", "cell_ghost"])
    assert result.ok
    assert [d.code for d in result.diagnostics] == ["CELL_NOT_FOUND"]
    assert store.selection.selected_cell_ids == {"cell_code1"}


def test_clear_selection() -> None:
    store = make_store(make_code_cell())
    store.select_cell("cell_code1")
    doc = store.clear_selection()
    assert store.selection.selected_cell_ids == frozenset()
    assert not any(c.selected for c in doc.cells)


def test_set_zoom_clamps() -> None:
    store = DocumentStore()
    store.set_zoom(10)
    assert store.document.canvas.zoom == 3.0
    store.set_zoom(0.01)
    assert store.document.canvas.zoom == 0.1


def test_set_zoom_rejects_nan() -> None:
    store = DocumentStore()
    before = store.document
    result = store.set_zoom(float("nan"))
    assert result.first_error is not None
    assert result.first_error.code == "INVALID_ZOOM"
    assert store.document is before


def test_set_page_size_by_name() -> None:
    store = DocumentStore()
    store.set_page_size("Letter")
    assert store.document.canvas.page_size == PAGE_SIZES["Letter"]


def test_set_page_size_unknown() -> None:
    store = DocumentStore()
    result = store.set_page_size("B5")
    assert result.first_error is not None
    assert result.first_error.code == "UNKNOWN_PAGE_SIZE"
    assert result.first_error.hint is not None


def test_set_orientation_keeps_page_size() -> None:
    store = DocumentStore()
    store.set_orientation("portrait")
    canvas = store.document.canvas
    assert canvas.orientation == "portrait"
    assert canvas.page_size == PAGE_SIZES["A4"]
    assert not store.set_orientation("diagonal").ok


def test_toggle_snap_to_grid() -> None:
    store = DocumentStore()
    assert store.document.canvas.snap_to_grid is True
    store.toggle_snap_to_grid()
    assert store.document.canvas.snap_to_grid is False


def test_apply_without_change_publishes_nothing() -> None:
    store = make_store(make_code_cell())
    revision = store.revision
    store.apply(lambda doc: None)
    assert store.revision == revision
