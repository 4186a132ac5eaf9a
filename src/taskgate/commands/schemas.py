"""Validated inputs for command store operations.

All string fields are trimmed before length checks, matching what the HTTP
layer receives from the dashboard.
"""

from collections.abc import Mapping
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from taskgate.commands.errors import CommandValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


class _Input(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore", frozen=True)


class CreateCommandInput(_Input):
    """Input for creating a command."""

    source: str = Field(default="manual", min_length=1, max_length=64)
    title: str = Field(..., min_length=3, max_length=240)
    details: str | None = Field(default=None, max_length=4000)
    requires_confirmation: bool = True
    confirmation_prompt: str | None = Field(default=None, max_length=500)
    memos_query: str | None = Field(default=None, max_length=500)
    memos_context: str | None = Field(default=None, max_length=8000)
    created_by: str | None = Field(default=None, max_length=120)


class ListCommandsQuery(_Input):
    """Input for listing commands. ``status`` is kept raw; unknown values mean no filter."""

    status: str | None = None
    limit: int = Field(default=50, ge=1, le=200)


class ActorInput(_Input):
    """Actor stamped on a transition."""

    actor: str | None = Field(default=None, max_length=120)


class RejectCommandInput(ActorInput):
    """Input for rejecting a command."""

    reason: str | None = Field(default=None, max_length=2000)


class FinishCommandInput(ActorInput):
    """Input for completing or failing a command."""

    result: str | None = Field(default=None, max_length=4000)


class UpdateContextInput(_Input):
    """Merge-patch for MemOS context fields."""

    memos_query: str | None = Field(default=None, max_length=500)
    memos_context: str | None = Field(default=None, max_length=8000)


def validate_input(model: type[ModelT], data: ModelT | Mapping[str, Any]) -> ModelT:
    """Coerce ``data`` into ``model``, raising CommandValidationError on failure.

    Args:
        model: Input model class.
        data: An instance of ``model`` or a mapping of its fields.

    Returns:
        Validated model instance.

    Raises:
        CommandValidationError: If the input is malformed or out of bounds.
    """
    if isinstance(data, model):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump()
    try:
        return model.model_validate(dict(data))
    except PydanticValidationError as e:
        raise CommandValidationError(_format_errors(e)) from e
    except TypeError as e:
        raise CommandValidationError(f"Invalid input: {e}") from e


def validate_command_id(command_id: str | None) -> str:
    """Trim and require a command id."""
    clean = str(command_id or "").strip()
    if not clean:
        raise CommandValidationError("Command id is required.")
    return clean


def _format_errors(error: PydanticValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "input"
        parts.append(f"{location}: {item.get('msg', 'invalid value')}")
    return "; ".join(parts) or "Invalid input."
