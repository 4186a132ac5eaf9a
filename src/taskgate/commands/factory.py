"""Command store selection with graceful fallback."""

import logging
from dataclasses import dataclass
from typing import Literal

from taskgate.commands.duckdb_store import DuckDBCommandStore
from taskgate.commands.errors import ExternalDependencyError
from taskgate.commands.store import CommandStore, InMemoryCommandStore
from taskgate.config import StoreConfig, build_store_config
from taskgate.logging_utils import log_info, log_warning

logger = logging.getLogger(__name__)

StoreMode = Literal["duckdb", "memory"]


@dataclass
class StoreSetup:
    """Selected store plus why it was selected."""

    store: CommandStore
    mode: StoreMode
    reason: str = ""

    @property
    def degraded(self) -> bool:
        """True when commands will not survive a restart."""
        return self.mode == "memory"

    def to_dict(self) -> dict[str, str | bool]:
        return {"mode": self.mode, "reason": self.reason, "degraded": self.degraded}


async def create_command_store(config: StoreConfig | None = None) -> StoreSetup:
    """Build the durable store, falling back to the in-memory store on any failure.

    Never raises: an unreachable database degrades to in-memory storage with a
    human-readable reason.

    Args:
        config: Store configuration (default: read from environment).

    Returns:
        StoreSetup with the chosen backend.
    """
    config = config or build_store_config()

    if not config.db_path:
        reason = "TASKGATE_DB_PATH is empty; using in-memory storage."
        log_warning(logger, "Command store running in memory", reason=reason)
        return StoreSetup(store=InMemoryCommandStore(), mode="memory", reason=reason)

    store = DuckDBCommandStore(config.db_path)
    try:
        await store.init()
    except ExternalDependencyError as e:
        reason = f"Failed to initialize DuckDB store: {e.message}"
        log_warning(logger, "Falling back to in-memory command store", reason=reason)
        return StoreSetup(store=InMemoryCommandStore(), mode="memory", reason=reason)

    log_info(logger, "Using DuckDB command store", db_path=config.db_path)
    return StoreSetup(store=store, mode="duckdb")
