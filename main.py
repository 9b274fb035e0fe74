#!/usr/bin/env python
"""
SchemaForge CLI.

Command-line interface for local development and operations.
Use the API for client integrations.

Usage:
    schemaforge serve --port 8000
    schemaforge token user-123 --name "Ada"
    schemaforge projects --owner user-123
    schemaforge history <project_id> --owner user-123
    schemaforge export <project_id> --owner user-123 --format csv
    schemaforge cleanup
"""

import asyncio
import json

import typer
from rich.console import Console
from rich.table import Table

from schemaforge.core.config import APP_VERSION, get_settings
from schemaforge.database.models import ProjectStatus
from schemaforge.utils.logging import configure_logging

# Initialize Typer app
app = typer.Typer(
    name="schemaforge",
    help="SchemaForge - JSON-LD generation backend",
    add_completion=False,
)

console = Console()


def run_async(coro):
    """Helper to run async functions in sync context."""
    return asyncio.run(coro)


@app.command()
def token(
    user_id: str = typer.Argument(..., help="User id placed in the token subject"),
    name: str | None = typer.Option(None, "--name", "-n", help="Display name"),
    expires: int | None = typer.Option(
        None,
        "--expires",
        "-e",
        help="Lifetime in minutes (defaults to JWT_EXPIRATION_MINUTES)",
    ),
) -> None:
    """
    Mint a development access token.

    Example:
        schemaforge token user-123 --name "Ada"
    """
    from schemaforge.core.security import create_access_token

    console.print(create_access_token(user_id, name, expires_minutes=expires), soft_wrap=True)


@app.command()
def projects(
    owner: str = typer.Option(..., "--owner", "-o", help="Owner user id"),
    page: int = typer.Option(1, "--page", "-p", min=1, help="Page number"),
    limit: int = typer.Option(20, "--limit", "-l", min=1, max=100, help="Projects per page"),
) -> None:
    """
    List a user's projects.

    Example:
        schemaforge projects --owner user-123
    """
    configure_logging()

    async def _projects():
        from schemaforge.database.connection import close_db, get_session, init_db
        from schemaforge.database.repository import ProjectRepository

        await init_db()
        try:
            async with get_session() as session:
                items, total = await ProjectRepository.list_by_owner(session, owner, page, limit)
        finally:
            await close_db()

        if not items:
            console.print("[yellow]No projects found[/yellow]")
            return

        table = Table(title=f"Projects of {owner} ({len(items)} of {total})")
        table.add_column("ID", style="cyan")
        table.add_column("Name", style="white")
        table.add_column("Status", style="white")
        table.add_column("Versions", justify="right")
        table.add_column("Target URL", style="dim", max_width=40)
        table.add_column("Updated", style="dim")

        for project in items:
            table.add_row(
                project.id,
                project.project_name,
                _status_color(project.status),
                str(len(project.draft_history or [])),
                project.target_url,
                project.updated_at.strftime("%Y-%m-%d %H:%M"),
            )

        console.print(table)

    run_async(_projects())


@app.command()
def history(
    project_id: str = typer.Argument(..., help="Project id"),
    owner: str = typer.Option(..., "--owner", "-o", help="Owner user id"),
    limit: int = typer.Option(10, "--limit", "-l", min=1, help="Versions to show"),
) -> None:
    """
    Show the most recent draft versions of a project.

    Example:
        schemaforge history 550e8400-e29b-41d4-a716-446655440000 --owner user-123
    """
    configure_logging()

    async def _history():
        from schemaforge.database.connection import close_db, get_session, init_db
        from schemaforge.services.draft_service import DraftService
        from schemaforge.utils.exceptions import NotFoundError

        await init_db()
        try:
            async with get_session() as session:
                result = await DraftService().history(session, project_id, owner, limit)
        except NotFoundError as e:
            console.print(f"[red]{e.message}:[/red] {project_id}")
            raise typer.Exit(1)
        finally:
            await close_db()

        if not result.history:
            console.print("[yellow]No draft versions yet[/yellow]")
            return

        table = Table(title=f"Draft history ({len(result.history)} of {result.total})")
        table.add_column("Version", style="cyan", justify="right")
        table.add_column("Created", style="dim")
        table.add_column("Author")
        table.add_column("Tags", style="blue")
        table.add_column("Size", justify="right")
        table.add_column("Changes", style="dim", max_width=40)

        for draft in result.history:
            marker = " *" if draft.version == result.current_version else ""
            table.add_row(
                f"{draft.version}{marker}",
                draft.created_at.strftime("%Y-%m-%d %H:%M:%S"),
                draft.author or "-",
                ", ".join(draft.tags),
                str(draft.size),
                ", ".join(draft.changes),
            )

        console.print(table)

    run_async(_history())


@app.command()
def export(
    project_id: str = typer.Argument(..., help="Project id"),
    owner: str = typer.Option(..., "--owner", "-o", help="Owner user id"),
    format: str = typer.Option("json", "--format", "-f", help="Export format: json, csv"),
    output: str | None = typer.Option(
        None,
        "--output",
        help="Output file path. If not specified, prints to stdout",
    ),
    no_content: bool = typer.Option(False, "--no-content", help="Omit draft content"),
) -> None:
    """
    Export a project's draft history.

    Examples:
        schemaforge export <project_id> --owner user-123
        schemaforge export <project_id> --owner user-123 --format csv --output history.csv
    """
    configure_logging()

    if format not in ("json", "csv"):
        console.print(f"[red]Invalid format: {format}[/red]")
        console.print("Valid formats: json, csv")
        raise typer.Exit(1)

    async def _export():
        from schemaforge.core.history import to_csv
        from schemaforge.database.connection import close_db, get_session, init_db
        from schemaforge.services.draft_service import DraftService
        from schemaforge.utils.exceptions import NotFoundError

        await init_db()
        try:
            async with get_session() as session:
                rows = await DraftService().export(
                    session,
                    project_id,
                    owner,
                    format=format,
                    include_content=not no_content,
                )
        except NotFoundError as e:
            console.print(f"[red]{e.message}:[/red] {project_id}")
            raise typer.Exit(1)
        finally:
            await close_db()

        if format == "csv":
            rendered = to_csv(rows)
        else:
            rendered = json.dumps(rows, indent=2, ensure_ascii=False, default=str)

        if output:
            with open(output, "w", encoding="utf-8", newline="") as f:
                f.write(rendered)
            console.print(f"[green]✓ {len(rows)} versions exported to:[/green] {output}")
        else:
            console.print(rendered, markup=False, highlight=False, soft_wrap=True)

    run_async(_export())


@app.command()
def cleanup(
    hours: int | None = typer.Option(
        None,
        "--hours",
        help="Staleness threshold in hours (defaults to AUTOSAVE_STALE_HOURS)",
    ),
) -> None:
    """
    Delete stale autosave states.

    Example:
        schemaforge cleanup
    """
    configure_logging()
    stale_hours = hours or get_settings().autosave_stale_hours

    async def _cleanup():
        from schemaforge.database.connection import close_db, get_session, init_db
        from schemaforge.database.repository import AutosaveRepository

        await init_db()
        try:
            async with get_session() as session:
                removed = await AutosaveRepository.cleanup_stale(session, stale_hours=stale_hours)
        finally:
            await close_db()

        console.print(f"[green]✓ Removed {removed} stale autosave states[/green]")

    run_async(_cleanup())


@app.command()
def serve(
    host: str = typer.Option(
        "0.0.0.0",
        "--host",
        "-h",
        help="Host to bind to",
    ),
    port: int = typer.Option(
        8000,
        "--port",
        "-p",
        help="Port to bind to",
    ),
    reload: bool = typer.Option(
        False,
        "--reload",
        "-r",
        help="Enable auto-reload for development",
    ),
) -> None:
    """
    Start the API server.

    Bulk jobs, rooms and the job event bus live in the process, so the
    server always runs a single worker.

    Examples:
        schemaforge serve
        schemaforge serve --port 8080
        schemaforge serve --reload  # Development mode
    """
    import uvicorn

    settings = get_settings()

    console.print("[blue]Starting SchemaForge API[/blue]")
    console.print(f"[dim]Host:[/dim] {host}")
    console.print(f"[dim]Port:[/dim] {port}")
    console.print(f"[dim]Debug:[/dim] {settings.debug}")

    if settings.debug:
        console.print(f"[dim]Docs:[/dim] http://{host}:{port}/docs")

    uvicorn.run(
        "api.app:app",
        host=host,
        port=port,
        reload=reload,
        workers=1,
        log_level="debug" if settings.debug else "info",
    )


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"[blue]SchemaForge[/blue] v{APP_VERSION}")
    console.print("[dim]JSON-LD generation with bulk processing and autosave[/dim]")


def _status_color(status: ProjectStatus) -> str:
    """Get colored status string."""
    colors = {
        ProjectStatus.DRAFT: "[yellow]draft[/yellow]",
        ProjectStatus.PROCESSING: "[blue]processing[/blue]",
        ProjectStatus.COMPLETE: "[green]complete[/green]",
        ProjectStatus.ERROR: "[red]error[/red]",
        ProjectStatus.AUTOSAVE: "[cyan]autosave[/cyan]",
    }
    return colors.get(status, str(status.value))


if __name__ == "__main__":
    app()
