"""Memoria database layer."""

from memoria.db.connection import Database
from memoria.db.migrations import MIGRATIONS, run_migrations
from memoria.db.repository import Repository
from memoria.db.schema import initialize
from memoria.db.vectors import ensure_vec_table, model_to_slug, vec_table_name

__all__ = [
    "Database",
    "Repository",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "ensure_vec_table",
    "model_to_slug",
    "vec_table_name",
]
