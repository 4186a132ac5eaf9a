"""pytest configuration for taskgate tests."""

import os
import sys
from pathlib import Path

import pytest

# Add src directory to path so tests can import taskgate
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# In-process DuckDB for every test that builds the app
os.environ["TASKGATE_DB_PATH"] = ":memory:"
# No MemOS calls and no background ticks unless a test opts in
os.environ["MEMOS_AUTO_CONTEXT"] = "false"
os.environ["TASKGATE_WORKER_ENABLED"] = "false"

from taskgate.commands.duckdb_store import DuckDBCommandStore  # noqa: E402
from taskgate.commands.store import InMemoryCommandStore  # noqa: E402
from taskgate.config import WorkerConfig  # noqa: E402


@pytest.fixture
async def memory_store():
    """Ephemeral command store."""
    store = InMemoryCommandStore()
    yield store
    await store.close()


@pytest.fixture
async def duckdb_store():
    """Durable command store on an in-process DuckDB database."""
    store = DuckDBCommandStore(":memory:")
    await store.init()
    yield store
    await store.close()


@pytest.fixture(params=["memory", "duckdb"])
async def store(request):
    """Each backend in turn; both must satisfy the same contract."""
    if request.param == "memory":
        backend = InMemoryCommandStore()
    else:
        backend = DuckDBCommandStore(":memory:")
        await backend.init()
    yield backend
    await backend.close()


@pytest.fixture
def worker_config():
    """Enabled worker configuration with the noop runner."""
    return WorkerConfig(
        enabled=True,
        runner="noop",
        actor="test-worker",
        interval_seconds=1,
        batch_size=5,
        exec_timeout_seconds=5,
        prompt_context_chars=400,
    )
