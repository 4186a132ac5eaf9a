"""Command service: the boundary between the route layer and the store.

Runs creation-time enrichment and turns every store exception into an
OperationResult, so callers branch on ``result.ok`` instead of catching.
"""

import logging
from collections.abc import Awaitable, Mapping
from dataclasses import dataclass
from typing import Any

from taskgate.commands.errors import CommandError
from taskgate.commands.records import CommandRecord
from taskgate.commands.schemas import CreateCommandInput, validate_input
from taskgate.commands.store import CommandStore
from taskgate.logging_utils import log_info, log_warning
from taskgate.memos.context import ContextEnrichmentProvider, EnrichmentMeta

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OperationError:
    """Structured error for a failed operation."""

    kind: str
    message: str
    status_code: int

    def to_dict(self) -> dict[str, str]:
        return {"error": self.kind, "message": self.message}


@dataclass(frozen=True)
class OperationResult:
    """Outcome of a store operation: either a record/records or an error."""

    ok: bool
    record: CommandRecord | None = None
    records: tuple[CommandRecord, ...] = ()
    error: OperationError | None = None
    enrichment: EnrichmentMeta | None = None

    @classmethod
    def failure(cls, exc: CommandError) -> "OperationResult":
        return cls(
            ok=False,
            error=OperationError(kind=exc.kind, message=exc.message, status_code=exc.status_code),
        )


class CommandService:
    """Route-facing operations over a command store."""

    def __init__(
        self,
        store: CommandStore,
        context_provider: ContextEnrichmentProvider | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            store: Command store owned by the application.
            context_provider: Optional creation-time enrichment provider.
        """
        self.store = store
        self.context_provider = context_provider

    async def list_commands(self, status: str | None = None, limit: int = 50) -> OperationResult:
        try:
            records = await self.store.list_commands(status=status, limit=limit)
        except CommandError as e:
            return OperationResult.failure(e)
        return OperationResult(ok=True, records=tuple(records))

    async def create(self, payload: CreateCommandInput | Mapping[str, Any]) -> OperationResult:
        """Validate, enrich and create a command.

        Enrichment failures never fail the create; they are reported in
        ``result.enrichment.error``.
        """
        try:
            data = validate_input(CreateCommandInput, payload)
        except CommandError as e:
            return OperationResult.failure(e)

        meta = None
        if self.context_provider is not None:
            data, meta = await self.context_provider.enrich_create_payload(data)
            if meta.enabled and meta.error:
                log_warning(logger, "Command created without MemOS context", error=meta.error)

        try:
            record = await self.store.create(data)
        except CommandError as e:
            return OperationResult.failure(e)
        log_info(logger, "Command created", command_id=record.id, status=record.status.value)
        return OperationResult(ok=True, record=record, enrichment=meta)

    async def confirm(self, command_id: str, actor: str | None = None) -> OperationResult:
        return await self._run(self.store.confirm(command_id, actor=actor), "confirm", command_id)

    async def reject(
        self, command_id: str, actor: str | None = None, reason: str | None = None
    ) -> OperationResult:
        return await self._run(
            self.store.reject(command_id, actor=actor, reason=reason), "reject", command_id
        )

    async def start(self, command_id: str, actor: str | None = None) -> OperationResult:
        return await self._run(self.store.start(command_id, actor=actor), "start", command_id)

    async def complete(
        self, command_id: str, actor: str | None = None, result: str | None = None
    ) -> OperationResult:
        return await self._run(
            self.store.complete(command_id, actor=actor, result=result), "complete", command_id
        )

    async def fail(
        self, command_id: str, actor: str | None = None, result: str | None = None
    ) -> OperationResult:
        return await self._run(
            self.store.fail(command_id, actor=actor, result=result), "fail", command_id
        )

    async def update_context(
        self,
        command_id: str,
        memos_query: str | None = None,
        memos_context: str | None = None,
    ) -> OperationResult:
        return await self._run(
            self.store.update_context(
                command_id, memos_query=memos_query, memos_context=memos_context
            ),
            "update_context",
            command_id,
        )

    async def _run(
        self, operation: Awaitable[CommandRecord], action: str, command_id: str
    ) -> OperationResult:
        try:
            record = await operation
        except CommandError as e:
            log_warning(
                logger, "Command operation rejected", action=action, command_id=command_id, error=e
            )
            return OperationResult.failure(e)
        log_info(logger, "Command updated", action=action, command_id=record.id)
        return OperationResult(ok=True, record=record)
