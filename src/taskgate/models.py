"""Pydantic models for the HTTP API.

Request models only check types; length bounds and defaults are applied by
the command schemas so that every bound violation is reported the same way.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _Request(BaseModel):
    model_config = ConfigDict(extra="ignore")


class CreateCommandRequest(_Request):
    """Request to create a command."""

    source: str | None = None
    title: str | None = None
    details: str | None = None
    requires_confirmation: bool | None = None
    confirmation_prompt: str | None = None
    memos_query: str | None = None
    memos_context: str | None = None
    created_by: str | None = None


class ActorRequest(_Request):
    """Request naming who performs a transition."""

    actor: str | None = None


class RejectCommandRequest(ActorRequest):
    """Request to reject a pending command."""

    reason: str | None = None


class FinishCommandRequest(ActorRequest):
    """Request to complete or fail a running command."""

    result: str | None = None


class UpdateContextRequest(_Request):
    """Request to patch a command's MemOS fields."""

    memos_query: str | None = None
    memos_context: str | None = None


class MemosSearchRequest(_Request):
    """Request to preview MemOS context for a query."""

    query: str | None = None


class CommandResponse(BaseModel):
    """Command record."""

    id: str
    created_at: str
    updated_at: str
    source: str
    title: str
    details: str
    status: str
    requires_confirmation: bool
    confirmation_prompt: str
    memos_query: str
    memos_context: str
    created_by: str
    confirmed_by: str
    confirmed_at: str = Field(..., description="ISO timestamp, empty if not confirmed")
    started_by: str
    started_at: str = Field(..., description="ISO timestamp, empty if not started")
    finished_by: str
    finished_at: str = Field(..., description="ISO timestamp, empty if not finished")
    result: str
    error: str


class CommandListResponse(BaseModel):
    """List of commands, newest first."""

    commands: list[CommandResponse]
    store_mode: str


class EnrichmentResponse(BaseModel):
    """What MemOS enrichment did for a create request."""

    enabled: bool
    query: str
    used: bool
    hit_count: int
    error: str


class CreateCommandResponse(BaseModel):
    """Created command plus enrichment metadata."""

    command: CommandResponse
    memos: EnrichmentResponse | None = None


class DependencyStatus(BaseModel):
    """Status of a service dependency."""

    name: str
    status: str = Field(..., description="Status: ok, degraded, or disabled")
    message: str | None = None


class StatusResponse(BaseModel):
    """Service status response."""

    status: str = Field(..., description="Overall service status: ok or degraded")
    version: str | None = Field(default=None, description="Service version if available")
    timestamp: datetime = Field(..., description="Current server time")
    dependencies: list[DependencyStatus] = Field(default_factory=list)
    worker: dict[str, Any] = Field(default_factory=dict)
