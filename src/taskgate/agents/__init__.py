"""Command execution: runners and the background worker."""

from taskgate.agents.runner import NoopRunner, OpenClawRunner, Runner, RunResult, build_runner
from taskgate.agents.worker import CommandWorker, WorkerStatus

__all__ = [
    "CommandWorker",
    "NoopRunner",
    "OpenClawRunner",
    "RunResult",
    "Runner",
    "WorkerStatus",
    "build_runner",
]
