"""Command record and status state machine."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class CommandStatus(str, Enum):
    """Command lifecycle status."""

    PENDING_CONFIRMATION = "pending_confirmation"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def parse(cls, value: "str | CommandStatus | None") -> "CommandStatus | None":
        """Parse a status, returning None for blank or unknown values."""
        if value is None:
            return None
        if isinstance(value, CommandStatus):
            return value
        try:
            return cls(value.strip())
        except ValueError:
            return None


# Store operation -> (required current status, resulting status)
TRANSITIONS: dict[str, tuple[CommandStatus, CommandStatus]] = {
    "confirm": (CommandStatus.PENDING_CONFIRMATION, CommandStatus.CONFIRMED),
    "reject": (CommandStatus.PENDING_CONFIRMATION, CommandStatus.REJECTED),
    "start": (CommandStatus.CONFIRMED, CommandStatus.IN_PROGRESS),
    "complete": (CommandStatus.IN_PROGRESS, CommandStatus.COMPLETED),
    "fail": (CommandStatus.IN_PROGRESS, CommandStatus.FAILED),
}

# Statuses no operation can leave
TERMINAL_STATUSES = frozenset(CommandStatus) - {
    required for required, _ in TRANSITIONS.values()
}

DEFAULT_CONFIRMATION_PROMPT = "Confirm that the agent should run this command."
DEFAULT_REJECT_REASON = "Rejected by operator."
DEFAULT_FAIL_RESULT = "Execution failed."
DEFAULT_OPERATOR_ACTOR = "unknown"
DEFAULT_AGENT_ACTOR = "agent"


@dataclass(frozen=True)
class CommandRecord:
    """Immutable snapshot of a command.

    Instances are produced only by a command store; a transition returns a new
    snapshot instead of mutating the old one.
    """

    id: str
    created_at: datetime
    updated_at: datetime
    source: str
    title: str
    details: str
    status: CommandStatus
    requires_confirmation: bool
    confirmation_prompt: str = ""
    memos_query: str = ""
    memos_context: str = ""
    created_by: str = ""
    confirmed_by: str = ""
    confirmed_at: datetime | None = None
    started_by: str = ""
    started_at: datetime | None = None
    finished_by: str = ""
    finished_at: datetime | None = None
    result: str = ""
    error: str = ""

    @property
    def is_terminal(self) -> bool:
        """Whether no further transition is possible."""
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "source": self.source,
            "title": self.title,
            "details": self.details,
            "status": self.status.value,
            "requires_confirmation": self.requires_confirmation,
            "confirmation_prompt": self.confirmation_prompt,
            "memos_query": self.memos_query,
            "memos_context": self.memos_context,
            "created_by": self.created_by,
            "confirmed_by": self.confirmed_by,
            "confirmed_at": _iso(self.confirmed_at),
            "started_by": self.started_by,
            "started_at": _iso(self.started_at),
            "finished_by": self.finished_by,
            "finished_at": _iso(self.finished_at),
            "result": self.result,
            "error": self.error,
        }


def _iso(value: datetime | None) -> str:
    return value.isoformat() if value else ""
