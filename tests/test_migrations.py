"""Tests for database migrations."""

import tempfile
from pathlib import Path

import duckdb
import pytest

from taskgate.db import get_connection, init_db, run_migrations


def test_run_migrations_creates_tables():
    """Test that running migrations creates the command table."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.duckdb"
        conn = init_db(str(db_path))

        rows = conn.execute("SELECT version FROM schema_migrations").fetchall()
        versions = [row[0] for row in rows]
        assert "001_agent_commands" in versions

        result = conn.execute("SELECT COUNT(*) FROM agent_commands").fetchone()
        assert result[0] == 0

        conn.close()


def test_migrations_are_idempotent():
    """Test that running migrations multiple times is safe."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.duckdb"

        conn1 = init_db(str(db_path))
        conn1.close()

        conn2 = init_db(str(db_path))
        assert run_migrations(conn2) == []
        result = conn2.execute("SELECT COUNT(*) FROM agent_commands").fetchone()
        assert result[0] == 0

        conn2.close()


def test_migrations_with_memory_db():
    """Test migrations work with in-memory database."""
    conn = get_connection(":memory:")

    applied = run_migrations(conn)

    assert applied == ["001_agent_commands"]
    conn.close()


def test_get_connection_creates_parent_directory():
    """Test that file databases get their parent directory created."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "nested" / "dir" / "test.duckdb"

        conn = get_connection(str(db_path))
        conn.close()

        assert db_path.parent.is_dir()


def test_run_migrations_custom_directory(tmp_path):
    """Test running migrations from another directory in file-name order."""
    (tmp_path / "002_second.sql").write_text("CREATE TABLE second_table (id INTEGER);")
    (tmp_path / "001_first.sql").write_text("CREATE TABLE first_table (id INTEGER);")
    conn = get_connection(":memory:")

    applied = run_migrations(conn, migrations_dir=tmp_path)

    assert applied == ["001_first", "002_second"]
    conn.execute("SELECT COUNT(*) FROM second_table")
    conn.close()


def test_failed_migration_is_rolled_back(tmp_path):
    """Test that a broken file leaves no partial schema and no version row."""
    (tmp_path / "001_first.sql").write_text("CREATE TABLE first_table (id INTEGER);")
    (tmp_path / "002_broken.sql").write_text(
        "CREATE TABLE half_table (id INTEGER); SELECT * FROM missing_table;"
    )
    conn = get_connection(":memory:")

    with pytest.raises(duckdb.Error):
        run_migrations(conn, migrations_dir=tmp_path)

    versions = [row[0] for row in conn.execute("SELECT version FROM schema_migrations").fetchall()]
    tables = [row[0] for row in conn.execute("SHOW TABLES").fetchall()]
    assert versions == ["001_first"]
    assert "half_table" not in tables
    conn.close()


def test_missing_migrations_directory(tmp_path):
    conn = get_connection(":memory:")

    with pytest.raises(FileNotFoundError):
        run_migrations(conn, migrations_dir=tmp_path / "absent")
    conn.close()
