"""Knowledge Sorter CLI with Rich output.

Provides commands for:
- Running the backend server (router + sweep jobs)
- One-off router batches, sweeps, requeues and reroutes
- Probing attribution (detect, resolve-path)
- Registering projects and paths

Usage:
    knowledge-sorter serve                 # Run API + background jobs
    knowledge-sorter sort                  # Route one batch of pending extractions
    knowledge-sorter sweep                 # Run one dedup/retention cycle
    knowledge-sorter detect "some text"    # Which project is this about?
    knowledge-sorter resolve-path /var/www/...
    knowledge-sorter status                # Row counts and queue state
"""

import asyncio
import json
from typing import Optional

import typer
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from knowledge_sorter.errors import SorterError

app = typer.Typer(
    name="knowledge-sorter",
    help="Knowledge Sorter - attribute, route and gate captured knowledge",
    rich_markup_mode="rich",
    no_args_is_help=True,
)
console = Console()


def print_banner():
    banner = Text()
    banner.append("Knowledge", style="bold cyan")
    banner.append(" Sorter", style="cyan")
    console.print(Panel(banner, border_style="cyan", box=box.ROUNDED))


def _run(coro):
    """Run a coroutine, then release the services it touched."""
    from knowledge_sorter.backend.services import shutdown_services

    async def runner():
        try:
            return await coro
        finally:
            await shutdown_services()

    return asyncio.run(runner())


def _fail(error: SorterError) -> None:
    console.print(f"[red]Error:[/red] {error.detail}")
    raise typer.Exit(1)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (default from config)"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port (default from config)"),
):
    """Run the HTTP API with the router and sweep jobs."""
    from knowledge_sorter.backend.main import run
    from knowledge_sorter.config import get_config

    config = get_config()
    print_banner()
    console.print(f"[bold]Mode:[/bold] {config.mode.value}  [bold]DB:[/bold] {config.db_path}")
    run(host, port)


@app.command()
def sort(
    batch_size: Optional[int] = typer.Option(None, "--batch-size", "-n", help="Max extractions to route"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show each routed item"),
):
    """Route one batch of pending extractions."""
    from knowledge_sorter.backend.services import get_router

    report = _run(get_router().process_pending(batch_size))

    if report.run_skipped:
        console.print("[yellow]A router batch is already running[/yellow]")
        return

    table = Table(title="Extraction Batch", box=box.ROUNDED)
    table.add_column("Found", justify="right")
    table.add_column("Processed", justify="right", style="green")
    table.add_column("Skipped", justify="right")
    table.add_column("Duplicates", justify="right")
    table.add_column("Failed", justify="right", style="red")
    table.add_row(
        str(report.found),
        str(report.processed),
        str(report.skipped),
        str(report.duplicates),
        str(report.failed),
    )
    console.print(table)

    if verbose and report.results:
        detail = Table(box=box.SIMPLE)
        detail.add_column("Extraction", style="dim")
        detail.add_column("Status")
        detail.add_column("Table")
        detail.add_column("Confidence", justify="right")
        detail.add_column("Reason", style="dim")
        for r in report.results:
            detail.add_row(r.extraction_id[:8], r.status, r.table or "-", f"{r.confidence:.2f}", r.reason or "")
        console.print(detail)


@app.command()
def sweep():
    """Run one dedup/retention cycle."""
    from knowledge_sorter.backend.services import get_sweep

    report = _run(get_sweep().run_cycle())

    if report.skipped:
        console.print("[yellow]A sweep is already running[/yellow]")
        return

    table = Table(title="Sweep", box=box.ROUNDED)
    table.add_column("Step", style="cyan")
    table.add_column("Removed", justify="right")
    table.add_row("empty sessions", str(report.empty_sessions_removed))
    table.add_row("completed-session messages", str(report.messages_removed))
    for name, removed in report.duplicates_removed.items():
        table.add_row(f"duplicates: {name}", str(removed))
    console.print(table)

    for error in report.errors:
        console.print(f"[red]Step failed:[/red] {error}")
    if report.errors:
        raise typer.Exit(1)


@app.command()
def detect(
    content: str = typer.Argument(..., help="Text to attribute"),
    fallback: Optional[str] = typer.Option(None, "--fallback", help="Project for weak signals"),
    all_projects: bool = typer.Option(False, "--all", help="List every project mentioned"),
):
    """Score text against project signatures."""
    from knowledge_sorter.backend.services import get_scorer
    from knowledge_sorter.config import get_config

    scorer = get_scorer()
    detection = scorer.detect(content, fallback or get_config().fallback_project)

    project = detection.project or "[dim]none[/dim]"
    console.print(f"[bold]Project:[/bold] {project}")
    console.print(f"[bold]Confidence:[/bold] {detection.confidence:.2f}")
    if detection.matched_signals:
        console.print(f"[bold]Signals:[/bold] {', '.join(detection.matched_signals)}")
    elif detection.reason:
        console.print(f"[dim]{detection.reason}[/dim]")

    if all_projects:
        for item in scorer.detect_all(content):
            console.print(f"  - {item['project']} (score {item['score']}): {', '.join(item['matches'])}")


@app.command("resolve-path")
def resolve_path(path: str = typer.Argument(..., help="Path to resolve")):
    """Resolve a path to its registered project."""
    from knowledge_sorter.backend.services import get_resolver

    resolver = get_resolver()
    match = resolver.resolve(path)
    console.print(f"[bold]Normalized:[/bold] {resolver.normalize(path)}")
    if match is None:
        console.print("[yellow]No registered project for this path[/yellow]")
        raise typer.Exit(1)

    kind = "exact" if match.exact else "prefix"
    console.print(f"[bold]Project:[/bold] [green]{match.project_id}[/green] via {match.path} ({kind})")
    if match.client_id or match.platform_id:
        console.print(f"[dim]client={match.client_id} platform={match.platform_id}[/dim]")


@app.command("add-project")
def add_project(
    project_id: str = typer.Argument(..., help="Project id"),
    name: Optional[str] = typer.Option(None, "--name", help="Display name (default: id)"),
    client_id: Optional[str] = typer.Option(None, "--client"),
    platform_id: Optional[str] = typer.Option(None, "--platform"),
    server_path: Optional[str] = typer.Option(None, "--server-path", help="Also registered as a path"),
):
    """Create or update a project."""
    from knowledge_sorter.backend.services import get_store

    project = get_store().add_project(
        project_id,
        name or project_id,
        client_id=client_id,
        platform_id=platform_id,
        server_path=server_path,
    )
    console.print(f"[green]Project saved:[/green] {project['id']} ({project['name']})")


@app.command("register-path")
def register_path(
    project_id: str = typer.Argument(..., help="Owning project id"),
    path: str = typer.Argument(..., help="Absolute path"),
    path_type: str = typer.Option("server", "--type", help="server, local or folder"),
):
    """Register a path for a project. Re-registering is a no-op."""
    from knowledge_sorter.backend.services import get_store
    from knowledge_sorter.models import PathType

    if path_type not in {t.value for t in PathType}:
        console.print(f"[red]Invalid path type:[/red] {path_type}")
        raise typer.Exit(1)

    try:
        result = get_store().register_path(project_id, path, path_type)
    except SorterError as e:
        _fail(e)

    if result["created"]:
        console.print(f"[green]Registered[/green] {path} -> {project_id}")
    elif result["project_id"] == project_id:
        console.print(f"[dim]Already registered:[/dim] {path}")
    else:
        console.print(f"[yellow]Path already owned by {result['project_id']}[/yellow]")


@app.command()
def requeue(
    extraction_ids: Optional[list[str]] = typer.Argument(None, help="Failed extraction ids"),
    limit: int = typer.Option(100, "--limit", help="Max oldest failed items when no ids given"),
):
    """Return failed extractions to pending."""
    from knowledge_sorter.backend.services import get_store

    count = get_store().requeue_failed(extraction_ids or None, limit=limit)
    console.print(f"Requeued [bold]{count}[/bold] failed extractions")


@app.command()
def reroute(
    table: Optional[list[str]] = typer.Option(None, "--table", "-t", help="Typed table (repeatable)"),
    limit: int = typer.Option(500, "--limit"),
    min_confidence: float = typer.Option(0.2, "--min-confidence"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Report without updating rows"),
):
    """Re-attribute records stored without a project."""
    from knowledge_sorter.backend.services import get_rerouter
    from knowledge_sorter.db.schema import TYPED_TABLES

    tables = table or list(TYPED_TABLES)
    unknown = [t for t in tables if t not in TYPED_TABLES]
    if unknown:
        console.print(f"[red]Unknown table(s):[/red] {', '.join(unknown)}")
        raise typer.Exit(1)

    report = get_rerouter().run(tables, limit=limit, min_confidence=min_confidence, dry_run=dry_run)

    out = Table(title="Reroute" + (" (dry run)" if dry_run else ""), box=box.ROUNDED)
    out.add_column("Table", style="cyan")
    out.add_column("Processed", justify="right")
    out.add_column("Routed", justify="right", style="green")
    out.add_column("Errors", justify="right", style="red")
    for name, result in report.tables.items():
        out.add_row(name, str(result.processed), str(result.routed), str(result.errors))
    console.print(out)
    console.print(f"Still unattributed: {report.processed - report.routed}")


@app.command()
def status(as_json: bool = typer.Option(False, "--json", help="Print raw JSON")):
    """Show row counts and queue state."""
    from knowledge_sorter.backend.services import get_store

    stats = get_store().stats()
    if as_json:
        console.print_json(json.dumps(stats))
        return

    print_banner()

    records = Table(title="Typed Stores", box=box.ROUNDED)
    records.add_column("Table", style="cyan")
    records.add_column("Rows", justify="right")
    records.add_column("Unattributed", justify="right", style="yellow")
    for name, count in stats["records"].items():
        records.add_row(name, str(count), str(stats["unattributed"][name]))
    console.print(records)

    queue = stats["extractions"]
    console.print(
        f"\n[bold]Extractions:[/bold] {queue['pending']} pending, {queue['processed']} processed, "
        f"{queue['skipped']} skipped, [red]{queue['failed']} failed[/red]"
    )
    review = stats["review"]
    console.print(
        f"[bold]Review:[/bold] {review['pending_conflicts']} conflicts, "
        f"{review['pending_purges']} purge requests, {review['unread_notifications']} unread"
    )
    console.print(
        f"[dim]{stats['projects']} projects, {stats['project_paths']} paths, "
        f"{stats['sessions']} sessions, {stats['messages']} messages[/dim]"
    )


def main():
    app()


if __name__ == "__main__":
    main()
