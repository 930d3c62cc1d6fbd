"""Memoria rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from memoria.cli.errors import err_config
    console.print(err_config(exc))
    raise typer.Exit(1)
"""

from __future__ import annotations


def err_config(message: str) -> str:
    """memoria.yaml or the global config could not be loaded."""
    return (
        f"[red]Error:[/] Invalid configuration.\n"
        f"  {message}\n"
        "  Fix memoria.yaml (or ~/.memoria/config.yaml) and retry."
    )


def err_no_db(db_path: str) -> str:
    """No index database at the configured location."""
    return (
        f"[red]Error:[/] No memory index found at '{db_path}'.\n"
        "  Run:  memoria index"
    )


def err_invalid_id(value: str) -> str:
    """Tenant / channel id contains path characters."""
    return (
        f"[red]Error:[/] Invalid identifier: '{value}'.\n"
        "  Use only letters, digits, '.', '_' and '-'."
    )


def err_compaction_failed(tenant: str, channel: str, reason: str) -> str:
    """Summarizer failed — the log was left untouched."""
    return (
        f"[red]Error:[/] Compaction of {tenant}/{channel} failed: {reason}\n"
        "  The conversation log was not modified. Check the summary model's API key\n"
        "  (compaction.model in memoria.yaml) and retry."
    )


def warn_text_only() -> str:
    """Embedding backend unavailable — search runs on BM25 only."""
    return (
        "[yellow]⚠[/] Vector search unavailable — using full-text search only.\n"
        "  Set the embedding provider's API key (embedding.model in memoria.yaml)\n"
        "  or disable embeddings with  embedding.enabled: false"
    )
