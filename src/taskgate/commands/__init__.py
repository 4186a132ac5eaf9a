"""Command queue: records, stores and the service boundary.

Provides:
- CommandRecord / CommandStatus state machine
- InMemoryCommandStore and DuckDBCommandStore with identical contracts
- create_command_store() startup selection with in-memory fallback
- commands.service.CommandService, which returns OperationResult instead of raising
"""

from taskgate.commands.duckdb_store import DuckDBCommandStore
from taskgate.commands.errors import (
    CommandConflictError,
    CommandError,
    CommandNotFoundError,
    CommandValidationError,
    ExternalDependencyError,
    RunnerExecutionError,
)
from taskgate.commands.factory import StoreSetup, create_command_store
from taskgate.commands.records import CommandRecord, CommandStatus
from taskgate.commands.store import CommandStore, InMemoryCommandStore

__all__ = [
    "CommandConflictError",
    "CommandError",
    "CommandNotFoundError",
    "CommandRecord",
    "CommandStatus",
    "CommandStore",
    "CommandValidationError",
    "DuckDBCommandStore",
    "ExternalDependencyError",
    "InMemoryCommandStore",
    "RunnerExecutionError",
    "StoreSetup",
    "create_command_store",
]
