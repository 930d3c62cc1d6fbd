"""memoria index — bring the index up to date with the memory files on disk."""

from __future__ import annotations

from rich.console import Console

from memoria.cli.errors import warn_text_only
from memoria.cli.runtime import DataDirOpt, ProjectOpt, open_service

console = Console()


def index_cmd(
    project: ProjectOpt = None,
    data_dir: DataDirOpt = None,
) -> None:
    """Re-index changed memory files and drop files that no longer exist."""
    service = open_service(project, data_dir)
    try:
        result = service.reindex()
        if service.repo.vec_table is None or not service.backend.available:
            console.print(warn_text_only())
        console.print(
            f"[green]✓[/] Indexed: [bold]{result.indexed}[/]  |  "
            f"Unchanged: {result.skipped}  |  "
            f"Failed: {result.failed}"
        )
    finally:
        service.close()
