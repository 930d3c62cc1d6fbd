"""memoria status — index statistics and embedding backend state."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from memoria.cli.errors import err_no_db
from memoria.cli.runtime import DataDirOpt, ProjectOpt, load_cli_config
from memoria.service import MemoryService

console = Console()


def status_cmd(
    project: ProjectOpt = None,
    data_dir: DataDirOpt = None,
) -> None:
    """Show what is indexed and whether vector search is available."""
    cfg = load_cli_config(project, data_dir)
    db_path = Path(cfg.memory.db_path)
    if not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)

    service = MemoryService.open(cfg)
    try:
        repo = service.repo
        table = Table(show_header=False, box=None, padding=(0, 2))
        table.add_column("key", style="bold")
        table.add_column("value")
        table.add_row("Database", str(db_path))
        table.add_row("Tenants", str(len(service.store.list_tenants())))
        table.add_row("Files", str(len(repo.list_paths())))
        table.add_row("Chunks", str(repo.count_chunks()))
        table.add_row("Vectors", str(repo.count_embeddings()))
        table.add_row("Cached embeddings", str(repo.count_cached_embeddings()))
        table.add_row("Embedding model", cfg.embedding.model if cfg.embedding.enabled else "(disabled)")
        table.add_row("Backend", _backend_label(service))
        console.print(Panel(table, title="[bold]Memory Index[/]", expand=False))
    finally:
        service.close()


def _backend_label(service: MemoryService) -> str:
    if service.repo.vec_table is None:
        return "[yellow]text-only[/] (no vector table)"
    if service.backend.available:
        return "[green]ready[/]"
    return "[yellow]unavailable[/] (text-only)"
