"""FastAPI application exposing the command queue, worker and MemOS status.

All state (store, service, worker, enrichment provider) is built in the
lifespan and hung on ``app.state``; nothing is a module-level singleton.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Annotated, Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from taskgate import __version__
from taskgate.agents.runner import Runner, build_runner
from taskgate.agents.worker import CommandWorker
from taskgate.commands.factory import StoreSetup, create_command_store
from taskgate.commands.records import CommandRecord
from taskgate.commands.service import CommandService, OperationResult
from taskgate.config import (
    build_memos_config,
    build_openclaw_config,
    build_store_config,
    build_worker_config,
    load_local_env,
)
from taskgate.logging_utils import clear_request_id, log_info, set_request_id
from taskgate.memos.context import (
    INVALID_QUERY_ERROR,
    ContextEnrichmentProvider,
    create_context_provider,
)
from taskgate.models import (
    ActorRequest,
    CommandListResponse,
    CommandResponse,
    CreateCommandRequest,
    CreateCommandResponse,
    DependencyStatus,
    EnrichmentResponse,
    FinishCommandRequest,
    MemosSearchRequest,
    RejectCommandRequest,
    StatusResponse,
    UpdateContextRequest,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@dataclass
class AppState:
    """Everything the routes need, owned by the application lifespan."""

    store_setup: StoreSetup
    service: CommandService
    worker: CommandWorker
    runner: Runner
    context_provider: ContextEnrichmentProvider

    async def aclose(self) -> None:
        await self.worker.stop()
        await self.context_provider.aclose()
        await self.store_setup.store.close()


async def build_app_state() -> AppState:
    """Build the store, enrichment provider, service and worker from the environment."""
    store_setup = await create_command_store(build_store_config())
    context_provider = create_context_provider(build_memos_config())
    worker_config = build_worker_config()
    openclaw_config = build_openclaw_config()
    runner = build_runner(worker_config, openclaw_config)
    worker = CommandWorker(
        store_setup.store,
        worker_config,
        runner,
        store_mode=store_setup.mode,
        openclaw_config=openclaw_config if worker_config.runner == "openclaw" else None,
    )
    return AppState(
        store_setup=store_setup,
        service=CommandService(store_setup.store, context_provider),
        worker=worker,
        runner=runner,
        context_provider=context_provider,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    load_local_env()
    state = await build_app_state()
    app.state.taskgate = state
    state.worker.start()
    log_info(
        logger,
        "taskgate started",
        store_mode=state.store_setup.mode,
        worker_enabled=state.worker.config.enabled,
        memos_enabled=state.context_provider.status().enabled,
    )
    try:
        yield
    finally:
        await state.aclose()


app = FastAPI(
    title="taskgate",
    version=__version__,
    description="Confirmation-gated command queue for an autonomous agent",
    lifespan=lifespan,
)


def get_state(request: Request) -> AppState:
    return request.app.state.taskgate


State = Annotated[AppState, Depends(get_state)]


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = set_request_id(request.headers.get("X-Request-ID") or None)
    try:
        response = await call_next(request)
    finally:
        clear_request_id()
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTPExceptions and return Error schema."""
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.detail,
        )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "http_error",
            "message": str(exc.detail),
        },
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report malformed requests with the same Error schema as store validation."""
    messages = []
    for error in exc.errors():
        loc = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{loc}: {error.get('msg')}" if loc else str(error.get("msg")))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "validation", "message": "; ".join(messages) or "Invalid request."},
    )


def _command_response(record: CommandRecord) -> CommandResponse:
    return CommandResponse(**record.to_dict())


def _unwrap(result: OperationResult) -> CommandRecord:
    """Return the record of a successful result or raise the mapped HTTPException."""
    if not result.ok or result.record is None:
        error = result.error
        raise HTTPException(
            status_code=error.status_code if error else status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=error.to_dict() if error else {"error": "internal", "message": "No record."},
        )
    return result.record


def _fields(body: Any) -> dict[str, Any]:
    return body.model_dump(exclude_none=True) if body is not None else {}


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/v1/status", response_model=StatusResponse)
async def get_status(state: State) -> StatusResponse:
    """Get service status.

    Reports the store backend (degraded when running on the in-memory
    fallback), MemOS enrichment and the worker snapshot.
    """
    setup = state.store_setup
    memos = state.context_provider.status()
    dependencies = [
        DependencyStatus(
            name=setup.mode,
            status="degraded" if setup.degraded else "ok",
            message=setup.reason or None,
        ),
        DependencyStatus(
            name="memos",
            status="ok" if memos.enabled else "disabled",
            message=memos.reason or None,
        ),
    ]
    return StatusResponse(
        status="degraded" if setup.degraded else "ok",
        version=app.version,
        timestamp=datetime.now(UTC),
        dependencies=dependencies,
        worker=state.worker.status().to_dict(),
    )


@app.get("/v1/agent/commands", response_model=CommandListResponse)
async def list_commands(
    state: State,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    limit: int = 50,
) -> CommandListResponse:
    """List commands newest first, optionally filtered by status."""
    result = await state.service.list_commands(status=status_filter, limit=limit)
    if not result.ok and result.error:
        raise HTTPException(status_code=result.error.status_code, detail=result.error.to_dict())
    return CommandListResponse(
        commands=[_command_response(record) for record in result.records],
        store_mode=state.store_setup.mode,
    )


@app.post(
    "/v1/agent/commands",
    response_model=CreateCommandResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_command(
    request: CreateCommandRequest, state: State
) -> CreateCommandResponse:
    """Create a command, attaching MemOS context when enrichment is enabled."""
    result = await state.service.create(_fields(request))
    record = _unwrap(result)
    return CreateCommandResponse(
        command=_command_response(record),
        memos=EnrichmentResponse(**result.enrichment.to_dict()) if result.enrichment else None,
    )


@app.post("/v1/agent/commands/{command_id}/confirm", response_model=CommandResponse)
async def confirm_command(
    command_id: str, state: State, request: ActorRequest | None = None
) -> CommandResponse:
    """Confirm a pending command."""
    result = await state.service.confirm(command_id, **_fields(request))
    return _command_response(_unwrap(result))


@app.post("/v1/agent/commands/{command_id}/reject", response_model=CommandResponse)
async def reject_command(
    command_id: str, state: State, request: RejectCommandRequest | None = None
) -> CommandResponse:
    """Reject a pending command."""
    result = await state.service.reject(command_id, **_fields(request))
    return _command_response(_unwrap(result))


@app.post("/v1/agent/commands/{command_id}/start", response_model=CommandResponse)
async def start_command(
    command_id: str, state: State, request: ActorRequest | None = None
) -> CommandResponse:
    """Mark a confirmed command as in progress (manual override of the worker)."""
    result = await state.service.start(command_id, **_fields(request))
    return _command_response(_unwrap(result))


@app.post("/v1/agent/commands/{command_id}/complete", response_model=CommandResponse)
async def complete_command(
    command_id: str, state: State, request: FinishCommandRequest | None = None
) -> CommandResponse:
    """Complete a running command."""
    result = await state.service.complete(command_id, **_fields(request))
    return _command_response(_unwrap(result))


@app.post("/v1/agent/commands/{command_id}/fail", response_model=CommandResponse)
async def fail_command(
    command_id: str, state: State, request: FinishCommandRequest | None = None
) -> CommandResponse:
    """Fail a running command."""
    result = await state.service.fail(command_id, **_fields(request))
    return _command_response(_unwrap(result))


@app.post("/v1/agent/commands/{command_id}/context", response_model=CommandResponse)
async def update_command_context(
    command_id: str, state: State, request: UpdateContextRequest | None = None
) -> CommandResponse:
    """Patch memos_query and/or memos_context on a command in any status."""
    result = await state.service.update_context(command_id, **_fields(request))
    return _command_response(_unwrap(result))


@app.get("/v1/agent/worker")
async def get_worker_status(state: State) -> dict[str, Any]:
    """Get the worker status snapshot."""
    return state.worker.status().to_dict()


@app.post("/v1/agent/worker/run-once")
async def run_worker_once(state: State) -> dict[str, Any]:
    """Run one worker tick now; a no-op while disabled or while a tick is running."""
    worker_status = await state.worker.run_once()
    return worker_status.to_dict()


@app.get("/v1/agent/memos")
async def get_memos_status(state: State) -> dict[str, Any]:
    """Get MemOS enrichment status."""
    return state.context_provider.status().to_dict()


@app.post("/v1/agent/memos/search")
async def search_memos(request: MemosSearchRequest, state: State) -> dict[str, Any]:
    """Preview the context MemOS would attach for a query."""
    outcome = await state.context_provider.search_to_context(request.query or "")
    if outcome.error == INVALID_QUERY_ERROR:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "validation", "message": outcome.error},
        )
    return outcome.to_dict()
