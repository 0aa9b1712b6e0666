"""CLI entry points: `canvasnb start`, `canvasnb inspect` and `canvasnb layout`."""

from __future__ import annotations

import json
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from canvasnb.config import ensure_dirs, load_config
from canvasnb.core import Result
from canvasnb.document.document import Document
from canvasnb.jupyter.convert import assign_cell_ids, export_document, import_json, import_notebook
from canvasnb.workspace.files import NotebookFiles, layout_path_for, read_notebook_files, save_notebook

app = typer.Typer(name="canvasnb", help="Paginated canvas notebooks backed by Jupyter files.")
console = Console()


def _print_diagnostics(result: Result[object]) -> None:
    for d in result.diagnostics:
        color = "red" if d.severity == "error" else "yellow"
        console.print(f"[{color}]{d.severity.capitalize()}:[/{color}] {d.message}")
        if d.hint:
            console.print(f"  Hint: {d.hint}")


def _read(notebook: Path) -> NotebookFiles:
    files = read_notebook_files(notebook)
    if not files.ok or files.data is None:
        _print_diagnostics(files)
        raise typer.Exit(1)
    return files.data


def _checked(result: Result[Document]) -> Document:
    _print_diagnostics(result)
    if not result.ok or result.data is None:
        raise typer.Exit(1)
    return result.data


def _load(notebook: Path) -> Document:
    config = load_config()
    files = _read(notebook)
    canvas = Document.from_defaults(config.canvas).canvas
    return _checked(import_json(files.notebook_text, files.layout_text, canvas=canvas, layout_config=config.layout))


@app.command()
def inspect(
    notebook: Path = typer.Argument(help="Path to a .ipynb notebook"),
) -> None:
    """Show the cells of a notebook with their canvas geometry."""
    document = _load(notebook)
    width, height = document.canvas.page_dimensions()
    console.print(
        f"[bold]{document.name}[/bold] | {document.canvas.page_size.name} {document.canvas.orientation} "
        f"({width:g}x{height:g}) | {document.canvas.pages} page(s)"
    )

    t = Table(show_lines=False)
    t.add_column("Cell", style="cyan")
    t.add_column("Type")
    t.add_column("Order", justify="right")
    t.add_column("Position", justify="right")
    t.add_column("Size", justify="right")
    t.add_column("Page", justify="right", style="green")
    t.add_column("Details")

    for cell in document.cells:
        details = []
        if cell.type == "code" and cell.execution_count is not None:
            details.append(f"runs:{cell.execution_count}")
        if cell.type == "markdown" and cell.rendering_hints.content_type:
            details.append(str(cell.rendering_hints.content_type))
        if cell.type == "raw" and cell.source_code_cell_id:
            details.append(f"output of {cell.source_code_cell_id} ({cell.output_type})")
        if cell.collapsed:
            details.append("collapsed")
        t.add_row(
            cell.id,
            str(cell.type),
            "" if cell.execution_order is None else str(cell.execution_order),
            f"{cell.position.x:g},{cell.position.y:g}",
            f"{cell.size.width:g}x{cell.size.height:g}",
            str(int(cell.position.y // height) + 1),
            ", ".join(details),
        )
    console.print(t)


@app.command()
def layout(
    notebook: Path = typer.Argument(help="Path to a .ipynb notebook"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing layout file"),
) -> None:
    """Generate a .layout.json for a notebook by auto-placing its cells.

    Cells without an id get one written back into the notebook so the layout
    still matches them the next time the notebook is opened.
    """
    target = layout_path_for(notebook)
    if target.exists() and not force:
        console.print(f"[red]{target} already exists.[/red] Use [bold]--force[/bold] to regenerate it.")
        raise typer.Exit(1)

    files = _read(notebook)
    try:
        data = json.loads(files.notebook_text)
    except json.JSONDecodeError as e:
        _print_diagnostics(Result.failure("JSON_INVALID", f"Notebook is not valid JSON: {e}"))
        raise typer.Exit(1) from e
    added = assign_cell_ids(data) if isinstance(data, dict) else 0

    config = load_config()
    canvas = Document.from_defaults(config.canvas).canvas
    document = _checked(import_notebook(data, canvas=canvas, layout_config=config.layout))
    layout_text = json.dumps(export_document(document).layout, indent=2) + "\n"

    if added:
        saved = save_notebook(notebook, json.dumps(data, indent=1, ensure_ascii=False) + "\n", layout_text)
        if not saved.ok:
            _print_diagnostics(saved)
            raise typer.Exit(1)
        console.print(f"[yellow]Added ids to {added} cell(s) in {notebook}[/yellow]")
    else:
        target.write_text(layout_text)
    console.print(f"[green]Wrote {target}[/green] ({len(document.cells)} cells on {document.canvas.pages} page(s))")


@app.command()
def start(
    host: str | None = typer.Option(None, "--host", help="Interface to bind"),
    port: int | None = typer.Option(None, "--port", "-p", help="Port to serve on"),
) -> None:
    """Start the canvasnb API server."""
    import logging

    import uvicorn

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    ensure_dirs()
    config = load_config()
    bind_host = host or config.server.host
    bind_port = port or config.server.port
    console.print(f"[bold]Starting canvasnb on {bind_host}:{bind_port}...[/bold]")
    uvicorn.run("canvasnb.server:app", host=bind_host, port=bind_port, reload=False)


def main() -> None:
    app()
