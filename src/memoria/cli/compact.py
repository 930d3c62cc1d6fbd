"""memoria compact — summarize an oversized conversation log on demand."""

from __future__ import annotations

from typing import Annotated

import typer
from rich.console import Console

from memoria.cli.errors import err_compaction_failed, err_invalid_id
from memoria.cli.runtime import DataDirOpt, ProjectOpt, open_service
from memoria.compaction import SummarizationError

console = Console()


def compact_cmd(
    tenant: Annotated[str, typer.Argument(help="Tenant (guild/workspace) id.")],
    channel: Annotated[str, typer.Argument(help="Channel id.")],
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Compact even when the log is under the threshold."),
    ] = False,
    project: ProjectOpt = None,
    data_dir: DataDirOpt = None,
) -> None:
    """Compact one channel's conversation log into a summary plus recent messages."""
    service = open_service(project, data_dir)
    try:
        compactor = service.compactor
        try:
            needed = compactor.needs_compaction(tenant, channel)
        except ValueError:
            console.print(err_invalid_id(f"{tenant}/{channel}"))
            raise typer.Exit(1)

        if not force and not needed:
            count = service.store.count(tenant, channel)
            console.print(
                f"[dim]{tenant}/{channel}: {count} messages "
                f"(threshold {compactor.config.threshold}), nothing to do.[/]"
            )
            return

        try:
            result = compactor.compact(tenant, channel)
        except SummarizationError as exc:
            console.print(err_compaction_failed(tenant, channel, str(exc)))
            raise typer.Exit(1)

        if result is None:
            console.print(f"[dim]{tenant}/{channel}: nothing to summarize.[/]")
            return

        console.print(
            f"[green]✓[/] Compacted [bold]{result.summarized}[/] messages "
            f"-> 1 summary + {result.kept} recent"
        )
        if result.saved_to_daily_log:
            console.print(f"  Summary saved to daily log {service.store.today()}.md")
    finally:
        service.close()
