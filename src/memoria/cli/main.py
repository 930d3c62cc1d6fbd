"""Memoria CLI entry point."""

from __future__ import annotations

import importlib.metadata
import logging
from typing import Annotated

import typer
from rich.logging import RichHandler

from memoria.cli.compact import compact_cmd
from memoria.cli.index import index_cmd
from memoria.cli.search import context_cmd, search_cmd
from memoria.cli.status import status_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("memoria")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"memoria {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="memoria",
    help=(
        "Memoria — long-term memory for chat agents.\n\n"
        "  memoria index    Bring the search index up to date with memory files.\n"
        "  memoria context  Show the memory block injected for a message."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log engine activity to stderr."),
    ] = False,
) -> None:
    """Memoria — long-term memory for chat agents."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(name)s: %(message)s",
        handlers=[RichHandler(show_path=False)],
    )


app.command("index")(index_cmd)
app.command("search")(search_cmd)
app.command("context")(context_cmd)
app.command("compact")(compact_cmd)
app.command("status")(status_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed Memoria version."""
    typer.echo(f"memoria {_installed_version()}")


if __name__ == "__main__":
    app()
