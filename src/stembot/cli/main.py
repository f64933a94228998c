import asyncio
import json
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from stembot.core.checkpoints import StageCheckpointStore
from stembot.core.config import load_settings, save_settings, validate_settings
from stembot.core.errors import StembotError
from stembot.core.extract import is_supported_mime, load_upload
from stembot.core.faiss_index import open_vector_store
from stembot.core.logging_config import configure_logging
from stembot.core.models import DocumentAnalysis
from stembot.runbooks.ingest_graph import build_orchestrator, get_run_summary

app = typer.Typer(help="stembot: document analysis and cross-document relationships")
console = Console()

settings = load_settings()

# Initialize structured logging
configure_logging(log_level=settings.log_level, json_logs=settings.json_logs)


def _print_summary(analysis: DocumentAnalysis) -> None:
    summary = get_run_summary(analysis)
    colour = "green" if summary["status"] == "completed" else "red"
    console.print(f"[bold]{summary['filename']}[/] -> [{colour}]{summary['status']}[/]  (id: {summary['id']})")
    console.print(f"   Title: {summary['title']}")
    console.print(f"   Type: {summary['document_type'] or '-'}   Pages: {summary['pages']}   Indexed: {summary['indexed']}")
    console.print(f"   Relationships: {summary['relationships']}")
    for rel in analysis.relationships:
        console.print(f"      {rel.type:<20} {rel.target_document_id}  {rel.similarity:.3f}")
    for item in summary["degraded"]:
        console.print(f"   [yellow]Degraded[/] {item}")
    if summary["error"]:
        console.print(f"   [red]Error:[/] {summary['error']}")


def _write_output(analyses: List[DocumentAnalysis], output: Optional[Path]) -> None:
    if output is None:
        return
    payload = [a.to_dict() for a in analyses]
    with open(output, "w", encoding="utf-8") as f:
        json.dump(payload[0] if len(payload) == 1 else payload, f, indent=2)
    console.print(f"[green]Wrote[/] -> {output}")


@app.command()
def analyze(
    path: Path,
    mime_type: Optional[str] = typer.Option(None, "--mime-type", help="Override the guessed MIME type"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the analysis JSON here"),
):
    """Analyze a single document."""
    if not path.is_file():
        console.print(f"[red]Error:[/] {path} is not a file")
        raise typer.Exit(1)

    try:
        orchestrator = build_orchestrator(settings)
        upload = load_upload(path, mime_type)
        with console.status(f"[bold green]Analyzing {path.name}..."):
            analysis = asyncio.run(orchestrator.process(upload))
    except (StembotError, ValueError, OSError) as e:
        console.print(f"[red]Error during analysis:[/] {e}")
        raise typer.Exit(1)

    _print_summary(analysis)
    _write_output([analysis], output)
    if analysis.status.value != "completed":
        raise typer.Exit(1)


@app.command("analyze-dir")
def analyze_dir(
    directory: Path,
    concurrency: int = typer.Option(0, help="Documents processed at once (0 = configured default)"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write all analyses as a JSON list"),
):
    """Analyze every supported file in a directory concurrently."""
    if not directory.is_dir():
        console.print(f"[red]Error:[/] {directory} is not a directory")
        raise typer.Exit(1)

    try:
        uploads = [load_upload(p) for p in sorted(directory.iterdir()) if p.is_file()]
        uploads = [u for u in uploads if is_supported_mime(u.mime_type)]
        if not uploads:
            console.print("[yellow]No supported documents found[/]")
            return

        orchestrator = build_orchestrator(settings)
        with console.status(f"[bold green]Analyzing {len(uploads)} documents..."):
            analyses = asyncio.run(orchestrator.process_many(uploads, concurrency or None))
    except (StembotError, ValueError, OSError) as e:
        console.print(f"[red]Error during analysis:[/] {e}")
        raise typer.Exit(1)

    for analysis in analyses:
        _print_summary(analysis)
    completed = sum(1 for a in analyses if a.status.value == "completed")
    console.print(f"[bold]Documents processed:[/] {len(analyses)} ({completed} completed)")
    _write_output(analyses, output)


@app.command()
def search(
    query: str,
    top_k: int = typer.Option(10, "--top-k", help="Number of results"),
):
    """Semantic search over indexed documents."""
    try:
        orchestrator = build_orchestrator(settings)
        results = asyncio.run(orchestrator.search(query, top_k))
    except (StembotError, ValueError) as e:
        console.print(f"[red]Search failed:[/] {e}")
        raise typer.Exit(1)

    if not results:
        console.print("[yellow]No results[/]")
        return

    table = Table(title=f"Results for '{query}'")
    table.add_column("Score", justify="right")
    table.add_column("Title")
    table.add_column("Type")
    table.add_column("Document")
    for result in results:
        table.add_row(f"{result.similarity:.3f}", result.content, result.type or "-", result.document_id or "-")
    console.print(table)


@app.command("index-stats")
def index_stats():
    """Show vector index statistics."""
    try:
        store = open_vector_store(settings.embedding.dimensions, settings.vector_store.index_path)
    except StembotError as e:
        console.print(f"[red]Cannot open index:[/] {e}")
        raise typer.Exit(1)

    stats = store.get_stats()
    console.print("[bold]Vector Index:[/]")
    for key, value in stats.items():
        console.print(f"   {key}: {value}")


@app.command()
def runs(
    limit: int = typer.Option(20, help="Maximum runs to list"),
    cleanup_days: int = typer.Option(0, "--cleanup-days", help="Remove runs older than N days first"),
):
    """List checkpointed pipeline runs."""
    store = StageCheckpointStore(settings.pipeline.checkpoint_dir)
    if cleanup_days > 0:
        removed = store.cleanup_old_runs(cleanup_days)
        console.print(f"[dim]Removed {removed} old runs[/]")

    run_list = store.list_runs(limit)
    if not run_list:
        console.print("[yellow]No runs found[/]")
        return

    table = Table(title="Pipeline runs")
    table.add_column("Analysis ID")
    table.add_column("File")
    table.add_column("Status")
    table.add_column("Last stage")
    table.add_column("Stages", justify="right")
    table.add_column("Updated")
    for run in run_list:
        table.add_row(
            run["analysis_id"], run["filename"] or "-", run["status"] or "-",
            run["last_stage"], str(run["stage_count"]), run["timestamp"] or "-",
        )
    console.print(table)


@app.command()
def resume(
    analysis_id: str,
    source: Optional[Path] = typer.Option(None, "--source", help="Original file, needed if extraction never finished"),
):
    """Resume a run from its latest checkpoint."""
    try:
        orchestrator = build_orchestrator(settings)
        upload = load_upload(source) if source else None
        analysis = asyncio.run(orchestrator.resume(analysis_id, upload))
    except (StembotError, ValueError, OSError) as e:
        console.print(f"[red]Resume failed:[/] {e}")
        raise typer.Exit(1)

    if analysis is None:
        console.print(f"[red]No checkpoints found for[/] {analysis_id}")
        raise typer.Exit(1)
    _print_summary(analysis)


@app.command()
def config(
    save: bool = typer.Option(False, "--save", help="Write current settings to the config file"),
):
    """Show and validate the current configuration."""
    data = settings.to_dict()
    data["llm"]["api_key"] = "***" if data["llm"]["api_key"] else ""
    console.print_json(json.dumps(data))

    validation = validate_settings(settings)
    if validation["valid"]:
        console.print("[green]Configuration valid[/]")
    else:
        console.print("[red]Configuration invalid[/]")
    for issue in validation["issues"]:
        console.print(f"   [red]Issue:[/] {issue}")
    for warning in validation["warnings"]:
        console.print(f"   [yellow]Warning:[/] {warning}")

    if save:
        path = save_settings(settings)
        console.print(f"[green]Saved[/] -> {path}")

    if not validation["valid"]:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
