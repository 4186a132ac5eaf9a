"""Opening the DuckDB file behind the command store."""

from pathlib import Path

import duckdb

from taskgate.db.migrations import run_migrations

MEMORY_PATH = ":memory:"


def is_memory_path(db_path: str) -> bool:
    return db_path == MEMORY_PATH


def get_connection(db_path: str, read_only: bool = False) -> duckdb.DuckDBPyConnection:
    """Connect to ``db_path``, creating its parent directory for file databases.

    Raises:
        OSError: If the parent directory cannot be created.
        duckdb.Error: If DuckDB cannot open the file.
    """
    if not is_memory_path(db_path):
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    return duckdb.connect(db_path, read_only=read_only)


def init_db(db_path: str, migrations_dir: Path | None = None) -> duckdb.DuckDBPyConnection:
    """Connect and bring the schema up to date.

    The connection is closed again if a migration fails, so a failed init
    never leaks a file handle.
    """
    conn = get_connection(db_path)
    try:
        run_migrations(conn, migrations_dir=migrations_dir)
    except BaseException:
        conn.close()
        raise
    return conn
