"""Command store interface and the in-memory backend.

Both backends expose the same async operations. Every transition is a guarded
compare-and-transition: the record leaves a status only if it is still in the
status the operation expects, so two concurrent callers racing on the same
record get exactly one success and one CommandConflictError.
"""

import dataclasses
import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

from taskgate.commands.errors import CommandConflictError, CommandError, CommandNotFoundError
from taskgate.commands.records import (
    DEFAULT_AGENT_ACTOR,
    DEFAULT_CONFIRMATION_PROMPT,
    DEFAULT_FAIL_RESULT,
    DEFAULT_OPERATOR_ACTOR,
    DEFAULT_REJECT_REASON,
    TRANSITIONS,
    CommandRecord,
    CommandStatus,
)
from taskgate.commands.schemas import (
    ActorInput,
    CreateCommandInput,
    FinishCommandInput,
    ListCommandsQuery,
    RejectCommandInput,
    UpdateContextInput,
    validate_command_id,
    validate_input,
)

logger = logging.getLogger(__name__)


class MonotonicClock:
    """UTC clock that never returns the same or an earlier instant twice."""

    def __init__(self) -> None:
        self._last: datetime | None = None

    def now(self) -> datetime:
        now = datetime.now(UTC)
        if self._last is not None and now <= self._last:
            now = self._last + timedelta(microseconds=1)
        self._last = now
        return now


class CommandStore(ABC):
    """Abstract command store.

    Subclasses implement storage primitives; validation, defaults and the
    field changes each transition makes live here so both backends agree.
    """

    mode = "abstract"

    def __init__(self) -> None:
        self._clock = MonotonicClock()

    # -- public operations -------------------------------------------------

    async def list_commands(
        self,
        status: str | CommandStatus | None = None,
        limit: int = 50,
    ) -> list[CommandRecord]:
        """List commands newest first.

        Args:
            status: Optional status filter; unknown values are ignored.
            limit: Maximum number of records (1..200).

        Returns:
            Records ordered by created_at descending.

        Raises:
            CommandValidationError: If limit is out of bounds.
        """
        raw_status = status.value if isinstance(status, CommandStatus) else status
        query = validate_input(ListCommandsQuery, {"status": raw_status, "limit": limit})
        return await self._select(CommandStatus.parse(query.status), query.limit)

    async def next_confirmed(self, limit: int) -> list[CommandRecord]:
        """Return up to ``limit`` confirmed commands, oldest first.

        Raises:
            CommandValidationError: If limit is out of bounds.
        """
        query = validate_input(ListCommandsQuery, {"limit": limit})
        return await self._select(CommandStatus.CONFIRMED, query.limit, oldest_first=True)

    async def create(self, payload: CreateCommandInput | Mapping[str, Any]) -> CommandRecord:
        """Create a command.

        Commands that do not require confirmation start in ``confirmed``.

        Raises:
            CommandValidationError: If the payload is malformed or out of bounds.
        """
        data = validate_input(CreateCommandInput, payload)
        now = self._clock.now()
        requires_confirmation = bool(data.requires_confirmation)
        if data.confirmation_prompt is not None:
            prompt = data.confirmation_prompt
        else:
            prompt = DEFAULT_CONFIRMATION_PROMPT if requires_confirmation else ""

        record = CommandRecord(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            source=data.source,
            title=data.title,
            details=data.details or "",
            status=(
                CommandStatus.PENDING_CONFIRMATION
                if requires_confirmation
                else CommandStatus.CONFIRMED
            ),
            requires_confirmation=requires_confirmation,
            confirmation_prompt=prompt,
            memos_query=data.memos_query or "",
            memos_context=data.memos_context or "",
            created_by=data.created_by or "",
        )
        await self._insert(record)
        logger.info("Created command %s (%s)", record.id, record.status.value)
        return record

    async def confirm(self, command_id: str, actor: str | None = None) -> CommandRecord:
        """Move a command from pending_confirmation to confirmed."""
        data = validate_input(ActorInput, {"actor": actor})
        now = self._clock.now()
        return await self._transition(
            validate_command_id(command_id),
            "confirm",
            {
                "confirmed_by": data.actor or DEFAULT_OPERATOR_ACTOR,
                "confirmed_at": now,
                "updated_at": now,
                "error": "",
            },
        )

    async def reject(
        self,
        command_id: str,
        actor: str | None = None,
        reason: str | None = None,
    ) -> CommandRecord:
        """Move a command from pending_confirmation to rejected, storing the reason in error."""
        data = validate_input(RejectCommandInput, {"actor": actor, "reason": reason})
        now = self._clock.now()
        return await self._transition(
            validate_command_id(command_id),
            "reject",
            {
                "confirmed_by": data.actor or DEFAULT_OPERATOR_ACTOR,
                "confirmed_at": now,
                "updated_at": now,
                "error": data.reason or DEFAULT_REJECT_REASON,
            },
        )

    async def start(self, command_id: str, actor: str | None = None) -> CommandRecord:
        """Move a command from confirmed to in_progress."""
        data = validate_input(ActorInput, {"actor": actor})
        now = self._clock.now()
        return await self._transition(
            validate_command_id(command_id),
            "start",
            {
                "started_by": data.actor or DEFAULT_AGENT_ACTOR,
                "started_at": now,
                "updated_at": now,
                "error": "",
            },
        )

    async def complete(
        self,
        command_id: str,
        actor: str | None = None,
        result: str | None = None,
    ) -> CommandRecord:
        """Move a command from in_progress to completed, storing result."""
        data = validate_input(FinishCommandInput, {"actor": actor, "result": result})
        now = self._clock.now()
        return await self._transition(
            validate_command_id(command_id),
            "complete",
            {
                "finished_by": data.actor or DEFAULT_AGENT_ACTOR,
                "finished_at": now,
                "updated_at": now,
                "result": data.result or "",
                "error": "",
            },
        )

    async def fail(
        self,
        command_id: str,
        actor: str | None = None,
        result: str | None = None,
    ) -> CommandRecord:
        """Move a command from in_progress to failed, storing the result text in error."""
        data = validate_input(FinishCommandInput, {"actor": actor, "result": result})
        now = self._clock.now()
        return await self._transition(
            validate_command_id(command_id),
            "fail",
            {
                "finished_by": data.actor or DEFAULT_AGENT_ACTOR,
                "finished_at": now,
                "updated_at": now,
                "error": data.result or DEFAULT_FAIL_RESULT,
            },
        )

    async def update_context(
        self,
        command_id: str,
        memos_query: str | None = None,
        memos_context: str | None = None,
    ) -> CommandRecord:
        """Merge-patch memos_query/memos_context regardless of status.

        Fields left as None keep their current value.
        """
        data = validate_input(
            UpdateContextInput, {"memos_query": memos_query, "memos_context": memos_context}
        )
        changes: dict[str, Any] = {"updated_at": self._clock.now()}
        if data.memos_query is not None:
            changes["memos_query"] = data.memos_query
        if data.memos_context is not None:
            changes["memos_context"] = data.memos_context
        return await self._patch(validate_command_id(command_id), changes)

    @abstractmethod
    async def get(self, command_id: str) -> CommandRecord | None:
        """Get a command by id, or None if unknown."""

    async def close(self) -> None:
        """Release backend resources."""

    # -- backend primitives ------------------------------------------------

    @abstractmethod
    async def _select(
        self, status: CommandStatus | None, limit: int, oldest_first: bool = False
    ) -> list[CommandRecord]:
        """Return up to ``limit`` records by created_at (newest first unless ``oldest_first``)."""

    @abstractmethod
    async def _insert(self, record: CommandRecord) -> None:
        """Persist a new record."""

    @abstractmethod
    async def _transition(
        self, command_id: str, action: str, changes: dict[str, Any]
    ) -> CommandRecord:
        """Apply ``changes`` plus the new status if the record is in the expected status."""

    @abstractmethod
    async def _patch(self, command_id: str, changes: dict[str, Any]) -> CommandRecord:
        """Apply ``changes`` unconditionally to an existing record."""

    async def _precondition_error(self, command_id: str, action: str) -> CommandError:
        """Re-read the record and build the NotFound or Conflict error for a failed transition."""
        expected, _ = TRANSITIONS[action]
        current = await self.get(command_id)
        if current is None:
            return CommandNotFoundError()
        return CommandConflictError(action, current.status.value, expected.value)


class InMemoryCommandStore(CommandStore):
    """Ephemeral store keeping records in a dict.

    The guard check and the write happen without an ``await`` in between, so
    each transition is atomic under the single-threaded event loop.
    """

    mode = "memory"

    def __init__(self) -> None:
        super().__init__()
        self._records: dict[str, CommandRecord] = {}

    async def get(self, command_id: str) -> CommandRecord | None:
        return self._records.get(str(command_id or "").strip())

    async def _select(
        self, status: CommandStatus | None, limit: int, oldest_first: bool = False
    ) -> list[CommandRecord]:
        values = sorted(
            self._records.values(), key=lambda item: item.created_at, reverse=not oldest_first
        )
        if status is not None:
            values = [item for item in values if item.status == status]
        return values[:limit]

    async def _insert(self, record: CommandRecord) -> None:
        self._records[record.id] = record

    async def _transition(
        self, command_id: str, action: str, changes: dict[str, Any]
    ) -> CommandRecord:
        expected, target = TRANSITIONS[action]
        record = self._records.get(command_id)
        if record is None:
            raise CommandNotFoundError()
        if record.status != expected:
            raise CommandConflictError(action, record.status.value, expected.value)
        updated = dataclasses.replace(record, status=target, **changes)
        self._records[command_id] = updated
        return updated

    async def _patch(self, command_id: str, changes: dict[str, Any]) -> CommandRecord:
        record = self._records.get(command_id)
        if record is None:
            raise CommandNotFoundError()
        updated = dataclasses.replace(record, **changes)
        self._records[command_id] = updated
        return updated
