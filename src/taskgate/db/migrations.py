"""Packaged SQL migrations for the command store.

Migrations are ``NNN_name.sql`` files applied in file-name order. Each one
runs in its own transaction together with its ``schema_migrations`` row, so
a failing file leaves neither partial schema nor a bogus version behind.
"""

import logging
from pathlib import Path

import duckdb

from taskgate.logging_utils import log_info

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

_VERSIONS_TABLE = """
    CREATE TABLE IF NOT EXISTS schema_migrations (
        version TEXT PRIMARY KEY,
        applied_at TIMESTAMP NOT NULL DEFAULT current_timestamp
    )
"""


def applied_versions(conn: duckdb.DuckDBPyConnection) -> set[str]:
    return {row[0] for row in conn.execute("SELECT version FROM schema_migrations").fetchall()}


def run_migrations(
    conn: duckdb.DuckDBPyConnection, migrations_dir: Path | None = None
) -> list[str]:
    """Apply pending migrations.

    Args:
        conn: DuckDB connection.
        migrations_dir: Directory of ``*.sql`` files (default: packaged migrations).

    Returns:
        Versions applied by this call, in order.

    Raises:
        FileNotFoundError: If the migrations directory is missing.
    """
    migrations_dir = migrations_dir or MIGRATIONS_DIR
    if not migrations_dir.is_dir():
        raise FileNotFoundError(f"Migrations directory not found: {migrations_dir}")

    pending_files = sorted(migrations_dir.glob("*.sql"))
    if not pending_files:
        return []

    conn.execute(_VERSIONS_TABLE)
    done = applied_versions(conn)

    applied = []
    for path in pending_files:
        version = path.stem
        if version in done:
            continue
        conn.execute("BEGIN TRANSACTION")
        try:
            conn.execute(path.read_text(encoding="utf-8"))
            conn.execute("INSERT INTO schema_migrations (version) VALUES (?)", [version])
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
        applied.append(version)
        log_info(logger, "Applied migration", version=version)

    return applied
