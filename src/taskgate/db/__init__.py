"""DuckDB connection management and schema migrations."""

from taskgate.db.connection import MEMORY_PATH, get_connection, init_db
from taskgate.db.migrations import run_migrations

__all__ = [
    "MEMORY_PATH",
    "get_connection",
    "init_db",
    "run_migrations",
]
