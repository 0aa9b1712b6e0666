"""Tests for the editor session: save, quick save, open and import."""

from __future__ import annotations

import json
from pathlib import Path

from canvasnb.session import EditorSession, get_session, reset_session

from .conftest import make_session


def test_new_session_registers_cwd(tmp_path: Path) -> None:
    session = make_session(tmp_path)
    assert session.document.cells == ()
    assert session.workdirs.get(session.document.id) == Path.cwd()
    assert session.saved_file_info.last_saved_path is None


def test_quick_save_requires_prior_save(tmp_path: Path) -> None:
    session = make_session(tmp_path)
    result = session.save()
    assert result.first_error is not None
    assert result.first_error.code == "NO_SAVE_PATH"


def test_save_as_writes_artifacts_and_remembers_path(tmp_path: Path) -> None:
    session = make_session(tmp_path)
    session.store.add_cell("code", (0, 0))

    result = session.save_as(tmp_path / "work" / "diary")
    assert result.ok
    notebook_path = tmp_path / "work" / "diary.ipynb"
    assert notebook_path.exists()
    assert (tmp_path / "work" / "diary.layout.json").exists()
    assert session.saved_file_info.base_file_name == "diary"
    assert session.saved_file_info.last_saved_path == str(notebook_path)
    assert [f.path for f in session.recent_files.get_all()] == [str(notebook_path)]


def test_quick_save_overwrites_last_path(tmp_path: Path) -> None:
    session = make_session(tmp_path)
    session.save_as(tmp_path / "diary.ipynb")
    session.store.add_cell("markdown", (0, 0))

    result = session.save()
    assert result.ok
    saved = json.loads((tmp_path / "diary.ipynb").read_text())
    assert [c["cell_type"] for c in saved["cells"]] == ["markdown"]


def test_open_restores_saved_document(tmp_path: Path) -> None:
    session = make_session(tmp_path)
    session.store.add_cell("code", (40, 80))
    original = session.document
    session.save_as(tmp_path / "diary.ipynb")

    session.new_document("Scratch")
    assert session.saved_file_info.last_saved_path is None

    result = session.open(tmp_path / "diary.ipynb")
    assert result.ok
    assert session.document.id == original.id
    assert session.document.cells[0].position == original.cells[0].position
    assert session.saved_file_info.last_saved_path == str(tmp_path / "diary.ipynb")
    assert session.workdirs.get(original.id) == tmp_path


def test_open_missing_file_keeps_document(tmp_path: Path) -> None:
    session = make_session(tmp_path)
    before = session.document
    result = session.open(tmp_path / "ghost.ipynb")
    assert result.first_error is not None
    assert result.first_error.code == "NOT_FOUND"
    assert session.document is before


def test_open_invalid_json(tmp_path: Path) -> None:
    (tmp_path / "broken.ipynb").write_text("{oops")
    session = make_session(tmp_path)
    result = session.open(tmp_path / "broken.ipynb")
    assert result.first_error is not None
    assert result.first_error.code == "JSON_INVALID"


def test_failed_import_leaves_document_unchanged(tmp_path: Path) -> None:
    session = make_session(tmp_path)
    session.store.add_cell("raw", (0, 0))
    before = session.document

    result = session.import_artifacts({"cells": None})
    assert not result.ok
    assert session.document is before


def test_import_uses_configured_page_setup(tmp_path: Path) -> None:
    session = make_session(tmp_path)
    session.config.canvas.orientation = "portrait"
    result = session.import_artifacts({"cells": [{"cell_type": "markdown", "source": "hi", "metadata": {}}]})
    assert result.ok
    assert session.document.canvas.orientation == "portrait"
    assert session.document.cells[0].size.width == 794 - 100


def test_get_session_singleton(tmp_path: Path) -> None:
    prepared = make_session(tmp_path)
    reset_session(prepared)
    try:
        assert get_session() is prepared
    finally:
        reset_session()
    fresh = EditorSession(backend=prepared.backend, recent_files=prepared.recent_files)
    assert fresh.document.id != prepared.document.id
