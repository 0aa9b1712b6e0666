"""Tests for automatic flow placement."""

from __future__ import annotations

from canvasnb.layout.optimizer import (
    LayoutConstraints,
    Placement,
    PlacementRequest,
    estimate_height,
    optimize_layout,
    pages_needed,
)

A4_LANDSCAPE = LayoutConstraints(page_width=1123, page_height=794, margin=50, cell_spacing=20, max_pages=10)


def _req(cell_id: str, cell_type: str = "markdown", length: int = 10, content_type: str | None = None) -> PlacementRequest:
    return PlacementRequest(cell_id=cell_id, cell_type=cell_type, content_length=length, content_type=content_type)


def _overlaps(a: Placement, b: Placement) -> bool:
    return not (
        a.position.y + a.size.height <= b.position.y
        or b.position.y + b.size.height <= a.position.y
        or a.position.x + a.size.width <= b.position.x
        or b.position.x + b.size.width <= a.position.x
    )


def test_estimate_height_is_clamped_per_type() -> None:
    assert estimate_height("code", 0) == 100
    assert estimate_height("code", 200) == 200
    assert estimate_height("code", 10_000) == 400
    assert estimate_height("markdown", 0) == 80
    assert estimate_height("raw", 0) == 60


def test_estimate_height_content_floors() -> None:
    assert estimate_height("markdown", 0, "equation") == 100
    assert estimate_height("markdown", 0, "image") == 200
    assert estimate_height("markdown", 0, "graph") == 250


def test_five_small_cells_fit_one_page() -> None:
    placements = optimize_layout([_req(f"cell_{i}") for i in range(5)], A4_LANDSCAPE)

    assert [p.cell_id for p in placements] == [f"cell_{i}" for i in range(5)]
    assert [p.position.y for p in placements] == [50, 150, 250, 350, 450]
    assert all(p.position.x == 50 and p.size.width == 1023 for p in placements)
    assert [p.z_index for p in placements] == [11, 12, 13, 14, 15]
    assert pages_needed(placements) == 1
    assert not any(_overlaps(a, b) for i, a in enumerate(placements) for b in placements[i + 1 :])


def test_overflow_moves_to_next_page_in_order() -> None:
    requests = [
        _req("cell_0"),
        _req("cell_1"),
        _req("cell_2", "code", 1000),
        _req("cell_3", "code", 1000),
        _req("cell_4"),
    ]
    placements = optimize_layout(requests, A4_LANDSCAPE)

    assert [p.page for p in placements] == [0, 0, 0, 1, 1]
    assert [p.position.y for p in placements] == [50, 150, 250, 794 + 50, 794 + 470]
    ys = [p.position.y for p in placements]
    assert ys == sorted(ys)
    assert pages_needed(placements) == 2


def test_cells_beyond_max_pages_still_placed() -> None:
    constraints = A4_LANDSCAPE.model_copy(update={"max_pages": 1})
    placements = optimize_layout([_req(f"cell_{i}", "code", 1000) for i in range(3)], constraints)

    assert len(placements) == 3
    assert [p.overflow for p in placements] == [False, True, True]
    assert [p.position.y for p in placements] == [50, 844, 1264]
    assert not any(_overlaps(a, b) for i, a in enumerate(placements) for b in placements[i + 1 :])


def test_height_capped_to_usable_page_height() -> None:
    tiny = LayoutConstraints(page_width=400, page_height=300, margin=50)
    [placement] = optimize_layout([_req("cell_0", "code", 10_000)], tiny)
    assert placement.size.height == 200
    assert placement.size.width == 300


def test_z_start_offsets_stacking() -> None:
    placements = optimize_layout([_req("cell_0"), _req("cell_1")], A4_LANDSCAPE, z_start=40)
    assert [p.z_index for p in placements] == [40, 41]


def test_empty_request_list() -> None:
    assert optimize_layout([], A4_LANDSCAPE) == []
    assert pages_needed([]) == 1


def test_start_y_flows_below_existing_content() -> None:
    first, second = optimize_layout([_req("cell_0"), _req("cell_1")], A4_LANDSCAPE, start_y=300)
    assert first.position.y == 320
    assert second.position.y == 420
    assert first.page == second.page == 0


def test_start_y_near_page_bottom_moves_to_next_page() -> None:
    [placement] = optimize_layout([_req("cell_0")], A4_LANDSCAPE, start_y=700)
    assert placement.page == 1
    assert placement.position.y == 794 + 50


def test_start_y_past_max_pages_stacks_below() -> None:
    one_page = LayoutConstraints(page_width=1123, page_height=794, margin=50, cell_spacing=20, max_pages=1)
    [placement] = optimize_layout([_req("cell_0")], one_page, start_y=900)
    assert placement.overflow
    assert placement.position.y == 920
