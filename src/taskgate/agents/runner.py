"""Command runners: the execution backends the worker hands started commands to.

Provides:
- NoopRunner, which acknowledges a command without executing anything
- OpenClawRunner, which runs the external ``openclaw agent`` CLI as a subprocess
- build_runner() to select one from configuration

``Runner.execute`` never raises: every failure comes back as a RunResult with
``ok=False`` and a diagnostic text that is safe to store on the command.
"""

import asyncio
import errno
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from taskgate.commands.errors import RunnerExecutionError
from taskgate.commands.records import CommandRecord
from taskgate.config import OpenClawConfig, WorkerConfig
from taskgate.logging_utils import log_info, log_warning, redact_secrets
from taskgate.text import normalize_string, slice_text

logger = logging.getLogger(__name__)

MAX_RESULT_CHARS = 3800
MAX_SUCCESS_STDERR_CHARS = 1200
MAX_FAILURE_STREAM_CHARS = 1400
MAX_PROMPT_DETAILS_CHARS = 2000
MAX_PROMPT_QUERY_CHARS = 500
READ_CHUNK_BYTES = 65536
READER_GRACE_SECONDS = 1.0

PROMPT_HEADER = (
    "Incoming command from the dashboard. Carry it out as the agent and reply "
    "with a short, practical report."
)
RESPONSE_FORMAT = "\n".join(
    [
        "Response format:",
        "1) What you did",
        "2) Result (specific, no filler)",
        "3) What you need from the user (if anything)",
    ]
)


@dataclass(frozen=True)
class RunResult:
    """Outcome of executing one command."""

    ok: bool
    result_text: str


class Runner(ABC):
    """Execution backend interface."""

    name = "abstract"

    @abstractmethod
    async def execute(self, command: CommandRecord) -> RunResult:
        """Execute a started command.

        Args:
            command: Record in ``in_progress`` status.

        Returns:
            RunResult; never raises.
        """


class NoopRunner(Runner):
    """Runner that reports success without executing anything."""

    name = "noop"

    async def execute(self, command: CommandRecord) -> RunResult:
        text = (
            f"NOOP worker processed command {command.id} ({command.title}). "
            "Set TASKGATE_WORKER_RUNNER=openclaw for live execution."
        )
        return RunResult(ok=True, result_text=slice_text(text, MAX_RESULT_CHARS))


def build_prompt(command: CommandRecord, context_chars: int) -> str:
    """Build the agent message for a command.

    Args:
        command: Command being executed.
        context_chars: Maximum characters of MemOS context to include.

    Returns:
        Prompt sections joined by blank lines.
    """
    chunks = [
        PROMPT_HEADER,
        f"Command ID: {command.id}",
        f"Title: {command.title}",
    ]
    if command.details:
        chunks.append(f"Details:\n{slice_text(command.details, MAX_PROMPT_DETAILS_CHARS)}")
    if command.memos_query:
        chunks.append(f"MemOS query:\n{slice_text(command.memos_query, MAX_PROMPT_QUERY_CHARS)}")
    if command.memos_context:
        chunks.append(f"MemOS context:\n{slice_text(command.memos_context, context_chars)}")
    chunks.append(RESPONSE_FORMAT)
    return "\n\n".join(chunks)


def build_argv(config: OpenClawConfig, message: str) -> list[str]:
    """Compose the CLI argument vector."""
    argv = [config.binary, "agent", "--json", "--agent", config.agent, "--message", message]
    argv += ["--thinking", config.thinking]
    argv += ["--timeout", str(config.timeout_seconds)]
    if config.session_id:
        argv += ["--session-id", config.session_id]
    if config.local:
        argv.append("--local")
    if config.deliver:
        argv.append("--deliver")
    if config.to:
        argv += ["--to", config.to]
    return argv


def parse_json_loose(raw: str) -> Any:
    """Parse JSON, falling back to the outermost ``{...}`` substring.

    Returns:
        The decoded value, or None if nothing parses.
    """
    trimmed = raw.strip()
    if not trimmed:
        return None
    try:
        return json.loads(trimmed)
    except ValueError:
        pass
    first = trimmed.find("{")
    last = trimmed.rfind("}")
    if first < 0 or last <= first:
        return None
    try:
        return json.loads(trimmed[first : last + 1])
    except ValueError:
        return None


def summarize_output(stdout: str) -> str:
    """Turn the CLI's JSON output into a one-line header plus payload text."""
    parsed = parse_json_loose(stdout)
    if not isinstance(parsed, dict):
        return slice_text(normalize_string(stdout), MAX_RESULT_CHARS)

    run_id = normalize_string(parsed.get("runId"))
    status = normalize_string(parsed.get("status"))
    summary = normalize_string(parsed.get("summary"))

    result = parsed.get("result")
    payloads = result.get("payloads") if isinstance(result, dict) else None
    texts = []
    if isinstance(payloads, list):
        for item in payloads:
            text = normalize_string(item.get("text")) if isinstance(item, dict) else ""
            if text:
                texts.append(text)

    header = (
        f"OpenClaw run {run_id or 'n/a'} · status={status or 'n/a'} · summary={summary or 'n/a'}"
    )
    body = "\n".join(texts) or normalize_string(stdout)
    return slice_text(f"{header}\n\n{body}", MAX_RESULT_CHARS)


def format_failure(error: RunnerExecutionError) -> str:
    """Render a failed run into diagnostic text."""
    stdout = error.stdout.strip()
    stderr = error.stderr.strip()
    parts = [f"OpenClaw execution failed: {error.code}"]
    if stdout:
        parts.append(f"stdout:\n{slice_text(stdout, MAX_FAILURE_STREAM_CHARS)}")
    if stderr:
        parts.append(f"stderr:\n{slice_text(stderr, MAX_FAILURE_STREAM_CHARS)}")
    if error.timed_out:
        parts.append("process killed by timeout")
    return slice_text("\n\n".join(parts), MAX_RESULT_CHARS)


class OpenClawRunner(Runner):
    """Runner invoking ``openclaw agent --json`` for each command."""

    name = "openclaw"

    def __init__(
        self,
        config: OpenClawConfig,
        exec_timeout_seconds: float,
        prompt_context_chars: int,
    ) -> None:
        """Initialize the runner.

        Args:
            config: CLI configuration (binary, agent, thinking level, ...).
            exec_timeout_seconds: Hard wall-clock limit for one subprocess.
            prompt_context_chars: Maximum MemOS context characters in the prompt.
        """
        self.config = config
        self.exec_timeout_seconds = exec_timeout_seconds
        self.prompt_context_chars = prompt_context_chars

    async def execute(self, command: CommandRecord) -> RunResult:
        argv = build_argv(self.config, build_prompt(command, self.prompt_context_chars))
        log_info(logger, "Running OpenClaw", command_id=command.id, agent=self.config.agent)
        try:
            stdout, stderr = await self._invoke(argv)
        except RunnerExecutionError as e:
            log_warning(
                logger,
                "OpenClaw run failed",
                command_id=command.id,
                code=e.code,
                timed_out=e.timed_out,
            )
            return RunResult(ok=False, result_text=redact_secrets(format_failure(e)))

        text = summarize_output(stdout)
        if stderr.strip():
            text = slice_text(
                f"{text}\n\nstderr:\n{slice_text(stderr.strip(), MAX_SUCCESS_STDERR_CHARS)}",
                MAX_RESULT_CHARS,
            )
        return RunResult(ok=True, result_text=redact_secrets(text))

    async def _invoke(self, argv: list[str]) -> tuple[str, str]:
        """Run the subprocess and return decoded (stdout, stderr).

        Both pipes are drained by reader tasks while the process runs, so a
        timeout still reports whatever the process printed before it was killed.

        Raises:
            RunnerExecutionError: On spawn failure, non-zero exit, blank stdout or timeout.
        """
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            code = errno.errorcode.get(e.errno, "unknown") if e.errno else "unknown"
            raise RunnerExecutionError(str(e), code=code, stderr=str(e)) from e

        stdout_buf = bytearray()
        stderr_buf = bytearray()
        readers = [
            asyncio.create_task(_drain(process.stdout, stdout_buf)),
            asyncio.create_task(_drain(process.stderr, stderr_buf)),
        ]
        try:
            try:
                await asyncio.wait_for(process.wait(), timeout=self.exec_timeout_seconds)
            except asyncio.TimeoutError as e:
                _kill(process)
                await process.wait()
                await _settle(readers)
                raise RunnerExecutionError(
                    f"Timed out after {self.exec_timeout_seconds}s",
                    code="timeout",
                    stdout=_decode(stdout_buf),
                    stderr=_decode(stderr_buf),
                    timed_out=True,
                ) from e
            await _settle(readers)
        finally:
            if process.returncode is None:
                _kill(process)
            for reader in readers:
                reader.cancel()

        stdout = _decode(stdout_buf)
        stderr = _decode(stderr_buf)
        if process.returncode != 0:
            raise RunnerExecutionError(
                f"Exited with code {process.returncode}",
                code=str(process.returncode),
                stdout=stdout,
                stderr=stderr,
            )
        if not stdout.strip():
            raise RunnerExecutionError("Exited without output", code="empty_output", stderr=stderr)
        return stdout, stderr


async def _drain(stream: asyncio.StreamReader, sink: bytearray) -> None:
    while True:
        chunk = await stream.read(READ_CHUNK_BYTES)
        if not chunk:
            return
        sink.extend(chunk)


async def _settle(readers: list[asyncio.Task]) -> None:
    # Pipes inherited by grandchildren can outlive the process; keep what was read.
    _, pending = await asyncio.wait(readers, timeout=READER_GRACE_SECONDS)
    for task in pending:
        task.cancel()


def _kill(process: asyncio.subprocess.Process) -> None:
    try:
        process.kill()
    except ProcessLookupError:
        # Exited between the timeout and the kill.
        pass


def _decode(data: bytes | bytearray) -> str:
    return bytes(data).decode("utf-8", errors="replace")


def build_runner(
    worker_config: WorkerConfig,
    openclaw_config: OpenClawConfig,
) -> Runner:
    """Select the runner named by ``worker_config.runner``."""
    if worker_config.runner == "noop":
        return NoopRunner()
    return OpenClawRunner(
        openclaw_config,
        exec_timeout_seconds=worker_config.exec_timeout_seconds,
        prompt_context_chars=worker_config.prompt_context_chars,
    )
