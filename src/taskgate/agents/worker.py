"""Background worker that executes confirmed commands.

Each tick fetches up to ``batch_size`` confirmed commands, oldest first, and for
each one: start -> Runner.execute -> complete or fail. The store's guarded
transitions make it safe to race the worker against the HTTP routes or a
manual run-once; losing a race to ``start`` simply skips the command.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from taskgate.agents.runner import MAX_RESULT_CHARS, Runner, RunResult
from taskgate.commands.errors import CommandConflictError, CommandNotFoundError
from taskgate.commands.records import DEFAULT_FAIL_RESULT, CommandRecord
from taskgate.commands.store import CommandStore
from taskgate.config import OpenClawConfig, WorkerConfig
from taskgate.logging_utils import log_debug, log_error, log_info, log_warning
from taskgate.text import slice_text

logger = logging.getLogger(__name__)


def _failure_text(error: BaseException) -> str:
    return str(error) or type(error).__name__ or DEFAULT_FAIL_RESULT


def _iso(value: datetime | None) -> str:
    return value.isoformat() if value else ""


@dataclass
class WorkerState:
    """Mutable bookkeeping for the most recent tick."""

    running: bool = False
    last_run_at: datetime | None = None
    last_finished_at: datetime | None = None
    last_seen: int = 0
    last_processed: int = 0
    processed_total: int = 0
    last_error: str = ""


@dataclass(frozen=True)
class WorkerStatus:
    """Read-only snapshot of worker configuration and state."""

    store_mode: str
    enabled: bool
    runner: str
    actor: str
    interval_seconds: int
    batch_size: int
    exec_timeout_seconds: int
    prompt_context_chars: int
    running: bool
    last_run_at: str
    last_finished_at: str
    last_seen: int
    last_processed: int
    processed_total: int
    last_error: str
    openclaw: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "store_mode": self.store_mode,
            "enabled": self.enabled,
            "runner": self.runner,
            "actor": self.actor,
            "interval_seconds": self.interval_seconds,
            "batch_size": self.batch_size,
            "exec_timeout_seconds": self.exec_timeout_seconds,
            "prompt_context_chars": self.prompt_context_chars,
            "running": self.running,
            "last_run_at": self.last_run_at,
            "last_finished_at": self.last_finished_at,
            "last_seen": self.last_seen,
            "last_processed": self.last_processed,
            "processed_total": self.processed_total,
            "last_error": self.last_error,
            "openclaw": dict(self.openclaw),
        }


class CommandWorker:
    """Polling worker over a command store."""

    def __init__(
        self,
        store: CommandStore,
        config: WorkerConfig,
        runner: Runner,
        store_mode: str = "memory",
        openclaw_config: OpenClawConfig | None = None,
    ) -> None:
        """Initialize the worker.

        Args:
            store: Command store shared with the route layer.
            config: Worker configuration.
            runner: Execution backend.
            store_mode: Backend mode reported in status ("duckdb" or "memory").
            openclaw_config: CLI configuration echoed in status, if any.
        """
        self.store = store
        self.config = config
        self.runner = runner
        self.store_mode = store_mode
        self.openclaw_config = openclaw_config
        self.state = WorkerState()
        self._in_flight: set[str] = set()
        self._scheduler: asyncio.Task | None = None
        self._ticks: set[asyncio.Task] = set()

    @property
    def scheduled(self) -> bool:
        """Whether the periodic scheduler is active."""
        return self._scheduler is not None and not self._scheduler.done()

    def start(self) -> None:
        """Start periodic ticks; no-op when disabled or already started."""
        if not self.config.enabled or self.scheduled:
            return
        self._scheduler = asyncio.create_task(self._schedule())
        log_info(
            logger,
            "Command worker started",
            runner=self.config.runner,
            interval_seconds=self.config.interval_seconds,
            batch_size=self.config.batch_size,
        )

    async def stop(self) -> None:
        """Stop scheduling and wait for ticks already running to finish."""
        if self._scheduler is None:
            return
        self._scheduler.cancel()
        try:
            await self._scheduler
        except asyncio.CancelledError:
            pass
        self._scheduler = None
        if self._ticks:
            await asyncio.gather(*self._ticks, return_exceptions=True)
        log_info(logger, "Command worker stopped")

    async def run_once(self) -> WorkerStatus:
        """Run a single tick now and return the resulting status."""
        await self._tick()
        return self.status()

    def status(self) -> WorkerStatus:
        openclaw: dict[str, Any] = {}
        if self.openclaw_config is not None:
            openclaw = {
                "agent": self.openclaw_config.agent,
                "thinking": self.openclaw_config.thinking,
                "local": self.openclaw_config.local,
                "deliver": self.openclaw_config.deliver,
                "to": self.openclaw_config.to,
                "session_id": self.openclaw_config.session_id,
                "timeout_seconds": self.openclaw_config.timeout_seconds,
            }
        return WorkerStatus(
            store_mode=self.store_mode,
            enabled=self.config.enabled,
            runner=self.config.runner,
            actor=self.config.actor,
            interval_seconds=self.config.interval_seconds,
            batch_size=self.config.batch_size,
            exec_timeout_seconds=self.config.exec_timeout_seconds,
            prompt_context_chars=self.config.prompt_context_chars,
            running=self.state.running,
            last_run_at=_iso(self.state.last_run_at),
            last_finished_at=_iso(self.state.last_finished_at),
            last_seen=self.state.last_seen,
            last_processed=self.state.last_processed,
            processed_total=self.state.processed_total,
            last_error=self.state.last_error,
            openclaw=openclaw,
        )

    async def _schedule(self) -> None:
        # One task per tick; a tick that is still running turns the next into a no-op.
        while True:
            task = asyncio.create_task(self._tick())
            self._ticks.add(task)
            task.add_done_callback(self._ticks.discard)
            await asyncio.sleep(self.config.interval_seconds)

    async def _tick(self) -> None:
        if not self.config.enabled or self.state.running:
            return

        state = self.state
        state.running = True
        state.last_run_at = datetime.now(UTC)
        state.last_error = ""
        state.last_seen = 0
        state.last_processed = 0

        try:
            queue = await self.store.next_confirmed(self.config.batch_size)
            state.last_seen = len(queue)

            for item in queue:
                if item.id in self._in_flight:
                    continue
                self._in_flight.add(item.id)
                try:
                    if await self._process(item):
                        state.last_processed += 1
                        state.processed_total += 1
                finally:
                    self._in_flight.discard(item.id)
        except Exception as e:
            state.last_error = _failure_text(e)
            log_error(logger, "Command worker tick failed", error=state.last_error)
        finally:
            state.last_finished_at = datetime.now(UTC)
            state.running = False

    async def _process(self, item: CommandRecord) -> bool:
        """Start, execute and finish one command.

        Returns:
            False if another caller got to the command first.
        """
        try:
            started = await self.store.start(item.id, actor=self.config.actor)
        except (CommandNotFoundError, CommandConflictError) as e:
            log_debug(logger, "Skipping command", command_id=item.id, reason=e.message)
            return False

        try:
            outcome = await self.runner.execute(started)
        except Exception as e:
            log_warning(logger, "Runner raised", command_id=started.id, error=e)
            text = slice_text(_failure_text(e), MAX_RESULT_CHARS)
            outcome = RunResult(ok=False, result_text=text)

        await self._finish(started.id, outcome)
        return True

    async def _finish(self, command_id: str, outcome: RunResult) -> None:
        action = "complete" if outcome.ok else "fail"
        try:
            if outcome.ok:
                await self.store.complete(
                    command_id, actor=self.config.actor, result=outcome.result_text
                )
            else:
                await self.store.fail(
                    command_id, actor=self.config.actor, result=outcome.result_text
                )
        except Exception as e:
            self.state.last_error = _failure_text(e)
            log_error(
                logger,
                "Failed to record command outcome",
                command_id=command_id,
                action=action,
                error=self.state.last_error,
            )
            return
        log_info(logger, "Command finished", command_id=command_id, action=action)
