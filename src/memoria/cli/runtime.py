"""Shared CLI plumbing: common options, config loading, service construction."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from memoria.cli.errors import err_config
from memoria.config import ConfigError, MemoriaConfig, load_config
from memoria.service import MemoryService

console = Console()

ProjectOpt = Annotated[
    Path | None,
    typer.Option("--project", "-p", help="Directory containing memoria.yaml (default: CWD)."),
]
DataDirOpt = Annotated[
    Path | None,
    typer.Option("--data-dir", help="Override memory.data_dir."),
]


def load_cli_config(project: Path | None, data_dir: Path | None) -> MemoriaConfig:
    """Load config for a command, applying the --data-dir flag (layer 1)."""
    try:
        cfg = load_config(project)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)
    if data_dir is not None:
        cfg.memory.data_dir = str(data_dir.resolve())
    return cfg


def open_service(project: Path | None, data_dir: Path | None) -> MemoryService:
    return MemoryService.open(load_cli_config(project, data_dir))
