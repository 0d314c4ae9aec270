"""Typer-based CLI for the semantic index."""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from .config import load_settings
from .errors import SemanticIndexError
from .index import FileStatus, IndexCoordinator, render_results_markdown
from .runtime import build_coordinator
from .vectorstore import SearchFilter

app = typer.Typer(
    name="semantic-index",
    help="Semantic code search - index a project and query it in natural language",
    add_completion=False,
)

console = Console()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _overrides(device: Optional[str], qdrant_url: Optional[str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if device:
        overrides.setdefault("embeddings", {})["device"] = device
    if qdrant_url:
        overrides.setdefault("vector_store", {})["url"] = qdrant_url
    return overrides


@contextmanager
def _open_index(project: Optional[str], device: Optional[str] = None, qdrant_url: Optional[str] = None) -> Iterator[IndexCoordinator]:
    project_root = Path(project).resolve() if project else Path.cwd()
    try:
        settings = load_settings(project_root, overrides=_overrides(device, qdrant_url))
        coordinator = build_coordinator(settings, project_root)
    except SemanticIndexError as e:
        console.print(f"[red]Error: {escape(e.describe())}[/red]")
        raise typer.Exit(code=1)
    try:
        coordinator.start()
        yield coordinator
    except SemanticIndexError as e:
        console.print(f"[red]Error: {escape(e.describe())}[/red]")
        raise typer.Exit(code=1)
    finally:
        coordinator.close()


def _print_summary(coordinator: IndexCoordinator) -> None:
    summary = coordinator.status()
    table = Table(title="Semantic Index")
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Value")
    table.add_row("Project", summary.project_root)
    table.add_row("Collection", summary.collection)
    table.add_row("Model", f"{summary.model_id} ({summary.device}, {summary.quantization}, dim={summary.dimension})")
    for status in ("indexed", "stale", "scanning"):
        table.add_row(f"Files {status}", str(summary.files.get(status, 0)))
    table.add_row("Chunks", str(summary.chunks))
    table.add_row("Pending", str(summary.pending))
    console.print(table)


@app.command()
def index(
    project: str = typer.Option(
        None,
        "--project",
        "-p",
        help="Project root (default: current directory)",
    ),
    device: str = typer.Option(
        None,
        "--device",
        help="Override the embedding device (auto, cpu, cuda, cuda:<n>, mps)",
    ),
    qdrant_url: str = typer.Option(
        None,
        "--qdrant-url",
        help="Override the Qdrant endpoint",
    ),
    retry_stale: bool = typer.Option(
        True,
        "--retry-stale/--no-retry-stale",
        help="Rescan files left stale by earlier failures",
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging"),
):
    """Scan the project and bring the index up to date.

    Only files whose content changed since the last run are re-embedded.
    """
    _configure_logging(verbose)
    with _open_index(project, device, qdrant_url) as coordinator:
        queued = coordinator.index_project()
        coordinator.wait_idle()
        if retry_stale and coordinator.retry_stale():
            coordinator.wait_idle()
        console.print(f"[green]+[/green] Processed {queued} change(s)")
        _print_summary(coordinator)


@app.command()
def search(
    query: str = typer.Argument(..., help="Natural-language query"),
    k: int = typer.Option(10, "--k", "-k", help="Maximum number of results"),
    language: str = typer.Option(None, "--language", help="Only chunks in this language"),
    path: str = typer.Option(None, "--path", help="Only files under this path prefix"),
    min_score: float = typer.Option(None, "--min-score", help="Drop results scoring below this"),
    markdown: bool = typer.Option(False, "--markdown", help="Print results as markdown snippets"),
    project: str = typer.Option(None, "--project", "-p", help="Project root (default: current directory)"),
    device: str = typer.Option(None, "--device", help="Override the embedding device"),
    qdrant_url: str = typer.Option(None, "--qdrant-url", help="Override the Qdrant endpoint"),
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging"),
):
    """Search the index with a natural-language query."""
    _configure_logging(verbose)
    with _open_index(project, device, qdrant_url) as coordinator:
        results = coordinator.search(
            query,
            k,
            SearchFilter(language=language, path_prefix=path),
            min_score=min_score,
        )

        if markdown:
            console.print(render_results_markdown(results), markup=False, highlight=False, emoji=False, soft_wrap=True)
            return

        if not results:
            console.print("[dim]No results found for the query.[/dim]")
            return

        table = Table(title=f"{len(results)} result(s) for {query!r}")
        table.add_column("Score", style="cyan", no_wrap=True)
        table.add_column("Location", style="yellow", no_wrap=True)
        table.add_column("Kind", style="magenta")
        table.add_column("Snippet", style="dim")
        for r in results:
            first_line = r.snippet.strip().splitlines()[0] if r.snippet.strip() else ""
            if len(first_line) > 60:
                first_line = first_line[:57] + "..."
            kind = f"{r.kind} {r.name}" if r.name else (r.kind or "-")
            table.add_row(f"{r.score:.3f}", f"{r.file_path}:{r.start_line}-{r.end_line}", kind, first_line)
        console.print(table)


@app.command()
def status(
    project: str = typer.Option(None, "--project", "-p", help="Project root (default: current directory)"),
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging"),
):
    """Show index state for the project."""
    _configure_logging(verbose)
    with _open_index(project) as coordinator:
        _print_summary(coordinator)
        stale = sorted(p for p, e in coordinator.entries().items() if e.status == FileStatus.STALE)
        for p in stale:
            console.print(f"[yellow]stale[/yellow] {p}")


@app.command()
def remove(
    path: str = typer.Argument(..., help="Project-relative path of the file to drop from the index"),
    project: str = typer.Option(None, "--project", "-p", help="Project root (default: current directory)"),
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging"),
):
    """Remove a file's chunks from the index."""
    _configure_logging(verbose)
    with _open_index(project) as coordinator:
        if not coordinator.remove_file(path):
            console.print(f"[dim]{path} is not indexed[/dim]")
            return
        coordinator.wait_idle()
        console.print(f"[green]+[/green] Removed {path}")


if __name__ == "__main__":
    app()
