"""memoria search / memoria context — inspect what the agent would remember."""

from __future__ import annotations

from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from memoria.cli.errors import err_invalid_id
from memoria.cli.runtime import DataDirOpt, ProjectOpt, open_service

console = Console()


def search_cmd(
    query: Annotated[str, typer.Argument(help="Free-text query.")],
    tenant: Annotated[
        str | None,
        typer.Option("--tenant", "-t", help="Restrict results to one tenant."),
    ] = None,
    limit: Annotated[
        int | None,
        typer.Option("--limit", "-n", help="Maximum number of results."),
    ] = None,
    min_score: Annotated[
        float | None,
        typer.Option("--min-score", help="Drop results below this fused score."),
    ] = None,
    project: ProjectOpt = None,
    data_dir: DataDirOpt = None,
) -> None:
    """Run a hybrid search over the memory index."""
    service = open_service(project, data_dir)
    try:
        try:
            results = service.search(query, tenant=tenant, max_results=limit, min_score=min_score)
        except ValueError:
            console.print(err_invalid_id(tenant or ""))
            raise typer.Exit(1)

        if not results:
            console.print("[yellow]No results.[/]")
            return

        table = Table(title=f"Results for '{query}'")
        table.add_column("Score", justify="right")
        table.add_column("Location")
        table.add_column("Snippet")
        for r in results:
            table.add_row(
                f"{r.score:.3f}",
                f"{r.path}:{r.start_line}-{r.end_line}",
                r.snippet[:120].replace("\n", " "),
            )
        console.print(table)
    finally:
        service.close()


def context_cmd(
    tenant: Annotated[str, typer.Argument(help="Tenant (guild/workspace) id.")],
    channel: Annotated[str, typer.Argument(help="Channel id.")],
    query: Annotated[str, typer.Argument(help="The incoming message.")] = "",
    project: ProjectOpt = None,
    data_dir: DataDirOpt = None,
) -> None:
    """Print the memory context block that would be injected for a message."""
    service = open_service(project, data_dir)
    try:
        try:
            service.store.memory_dir(tenant)
            service.store.conversation_path(tenant, channel)
        except ValueError:
            console.print(err_invalid_id(f"{tenant}/{channel}"))
            raise typer.Exit(1)

        context = service.get_context(tenant, channel, query)
        if not context:
            console.print("[dim](empty context)[/]")
            return
        typer.echo(context)
    finally:
        service.close()
