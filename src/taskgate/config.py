"""Environment-driven configuration for the command store, worker, runner and MemOS.

Every builder reads ``os.environ`` at call time so tests can patch the
environment with ``mock.patch.dict``.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv

RunnerName = Literal["openclaw", "noop"]
ThinkingLevel = Literal["off", "minimal", "low", "medium", "high"]

THINKING_LEVELS: tuple[str, ...] = ("off", "minimal", "low", "medium", "high")

DEFAULT_DB_PATH = "data/taskgate.duckdb"
DEFAULT_MEMOS_CUBES = (
    "openclaw-memory-operational,openclaw-memory-runtime-sync,"
    "openclaw-memory-session-reports,openclaw-memory-turn-reports,openclaw-memory-live"
)

_FALSE_VALUES = {"0", "false", "off", "no"}


def load_local_env(root: Path | None = None) -> None:
    """Load ``.env`` (without overriding) and then ``.env.local`` (overriding).

    Args:
        root: Directory holding the env files (default: current working directory).
    """
    root = root or Path.cwd()
    load_dotenv(root / ".env", override=False)
    load_dotenv(root / ".env.local", override=True)


def env_flag(name: str, default: bool) -> bool:
    """Read a boolean flag; ``0/false/off/no`` are false, any other non-empty value is true."""
    value = os.environ.get(name)
    if value is None:
        return default
    clean = value.strip().lower()
    if not clean:
        return default
    return clean not in _FALSE_VALUES


def env_int(name: str, default: int, minimum: int, maximum: int) -> int:
    """Read an integer, clamped to ``[minimum, maximum]``; unparsable values give the default."""
    try:
        parsed = int(os.environ.get(name, "").strip())
    except ValueError:
        return default
    return max(minimum, min(maximum, parsed))


def env_float(name: str, default: float, minimum: float, maximum: float) -> float:
    """Read a float, clamped to ``[minimum, maximum]``; unparsable values give the default."""
    try:
        parsed = float(os.environ.get(name, "").strip())
    except ValueError:
        return default
    if parsed != parsed:  # NaN
        return default
    return max(minimum, min(maximum, parsed))


def env_str(name: str, default: str) -> str:
    """Read a trimmed string, falling back to ``default`` when unset or blank."""
    value = os.environ.get(name, "").strip()
    return value or default


@dataclass(frozen=True)
class StoreConfig:
    """Command store configuration."""

    db_path: str


@dataclass(frozen=True)
class WorkerConfig:
    """Background worker configuration."""

    enabled: bool
    runner: RunnerName
    actor: str
    interval_seconds: int
    batch_size: int
    exec_timeout_seconds: int
    prompt_context_chars: int


@dataclass(frozen=True)
class OpenClawConfig:
    """External agent CLI configuration."""

    binary: str
    agent: str
    thinking: ThinkingLevel
    local: bool
    deliver: bool
    to: str
    session_id: str
    timeout_seconds: int


@dataclass(frozen=True)
class MemosConfig:
    """Semantic-memory search (MemOS) configuration."""

    enabled: bool
    base_url: str
    user_id: str
    readable_cube_ids: list[str] = field(default_factory=list)
    top_k: int = 0
    timeout_seconds: float = 0.0
    reason: str = ""


def build_store_config() -> StoreConfig:
    """Build store configuration.

    ``TASKGATE_DB_PATH`` set to an empty string forces the in-memory store;
    ``:memory:`` gives an in-process DuckDB database.
    """
    return StoreConfig(db_path=os.environ.get("TASKGATE_DB_PATH", DEFAULT_DB_PATH).strip())


def resolve_thinking(value: str | None) -> ThinkingLevel:
    """Map free text to a thinking level, defaulting to ``low``."""
    clean = (value or "").strip().lower()
    if clean in THINKING_LEVELS:
        return clean  # type: ignore[return-value]
    return "low"


def resolve_runner(value: str | None) -> RunnerName:
    """Map free text to a runner name; anything but ``noop`` selects ``openclaw``."""
    if (value or "").strip().lower() == "noop":
        return "noop"
    return "openclaw"


def build_worker_config() -> WorkerConfig:
    """Build worker configuration from ``TASKGATE_WORKER_*`` variables."""
    return WorkerConfig(
        enabled=env_flag("TASKGATE_WORKER_ENABLED", False),
        runner=resolve_runner(os.environ.get("TASKGATE_WORKER_RUNNER")),
        actor=env_str("TASKGATE_WORKER_ACTOR", "openclaw-worker"),
        interval_seconds=env_int("TASKGATE_WORKER_INTERVAL_SECONDS", 15, 1, 300),
        batch_size=env_int("TASKGATE_WORKER_BATCH_SIZE", 2, 1, 20),
        exec_timeout_seconds=env_int("TASKGATE_WORKER_EXEC_TIMEOUT_SECONDS", 300, 5, 1800),
        prompt_context_chars=env_int("TASKGATE_WORKER_PROMPT_CONTEXT_CHARS", 3200, 400, 12000),
    )


def build_openclaw_config() -> OpenClawConfig:
    """Build external agent CLI configuration from ``TASKGATE_OPENCLAW_*`` variables."""
    return OpenClawConfig(
        binary=env_str("TASKGATE_OPENCLAW_BIN", "openclaw"),
        agent=env_str("TASKGATE_OPENCLAW_AGENT", "main"),
        thinking=resolve_thinking(os.environ.get("TASKGATE_OPENCLAW_THINKING")),
        local=env_flag("TASKGATE_OPENCLAW_LOCAL", False),
        deliver=env_flag("TASKGATE_OPENCLAW_DELIVER", False),
        to=os.environ.get("TASKGATE_OPENCLAW_TO", "").strip(),
        session_id=env_str("TASKGATE_OPENCLAW_SESSION_ID", "dashboard-worker"),
        timeout_seconds=env_int("TASKGATE_OPENCLAW_TIMEOUT_SECONDS", 240, 10, 3600),
    )


def build_memos_config() -> MemosConfig:
    """Build MemOS configuration from ``MEMOS_*`` variables."""
    if not env_flag("MEMOS_AUTO_CONTEXT", True):
        return MemosConfig(
            enabled=False,
            base_url="",
            user_id="",
            reason="MEMOS_AUTO_CONTEXT is disabled.",
        )

    base_url = env_str("MEMOS_BASE_URL", "http://127.0.0.1:8000").rstrip("/")
    user_id = env_str("MEMOS_USER_ID", "openclaw-main")
    cubes_raw = os.environ.get("MEMOS_READABLE_CUBES", "").strip() or DEFAULT_MEMOS_CUBES
    readable_cube_ids = [item.strip() for item in cubes_raw.split(",") if item.strip()]
    top_k = env_int("MEMOS_TOP_K", 6, 1, 30)
    timeout_seconds = env_float("MEMOS_TIMEOUT_SECONDS", 7.0, 1.0, 30.0)

    if not base_url or not user_id:
        return MemosConfig(
            enabled=False,
            base_url=base_url,
            user_id=user_id,
            readable_cube_ids=readable_cube_ids,
            top_k=top_k,
            timeout_seconds=timeout_seconds,
            reason="MEMOS_BASE_URL or MEMOS_USER_ID is not configured.",
        )

    return MemosConfig(
        enabled=True,
        base_url=base_url,
        user_id=user_id,
        readable_cube_ids=readable_cube_ids,
        top_k=top_k,
        timeout_seconds=timeout_seconds,
        reason="OK",
    )
