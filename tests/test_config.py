"""Tests for environment-driven configuration."""

import os
from unittest import mock

import pytest

from taskgate.config import (
    build_memos_config,
    build_openclaw_config,
    build_store_config,
    build_worker_config,
    env_flag,
    env_float,
    env_int,
    load_local_env,
    resolve_runner,
    resolve_thinking,
)


class TestEnvHelpers:
    """Test the primitive env readers."""

    @pytest.mark.parametrize("value", ["0", "false", "OFF", " no "])
    def test_env_flag_false_values(self, value):
        with mock.patch.dict(os.environ, {"FLAG": value}):
            assert env_flag("FLAG", True) is False

    @pytest.mark.parametrize("value", ["1", "true", "yes", "anything"])
    def test_env_flag_true_values(self, value):
        with mock.patch.dict(os.environ, {"FLAG": value}):
            assert env_flag("FLAG", False) is True

    def test_env_flag_default(self):
        """Test that unset and blank use the default."""
        with mock.patch.dict(os.environ, {"FLAG": "  "}):
            assert env_flag("FLAG", True) is True
        with mock.patch.dict(os.environ, {}, clear=True):
            assert env_flag("FLAG", False) is False

    @pytest.mark.parametrize(
        "value,expected", [("7", 7), ("0", 1), ("999", 300), ("abc", 15), ("", 15)]
    )
    def test_env_int_clamps(self, value, expected):
        with mock.patch.dict(os.environ, {"NUM": value}):
            assert env_int("NUM", 15, 1, 300) == expected

    @pytest.mark.parametrize("value,expected", [("2.5", 2.5), ("100", 30.0), ("nan", 7.0)])
    def test_env_float_clamps(self, value, expected):
        with mock.patch.dict(os.environ, {"NUM": value}):
            assert env_float("NUM", 7.0, 1.0, 30.0) == expected


class TestStoreConfig:
    """Test store configuration."""

    def test_default_path(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            assert build_store_config().db_path == "data/taskgate.duckdb"

    def test_empty_path_is_preserved(self):
        """Test that an explicitly empty path stays empty (in-memory fallback)."""
        with mock.patch.dict(os.environ, {"TASKGATE_DB_PATH": "  "}):
            assert build_store_config().db_path == ""


class TestWorkerConfig:
    """Test worker configuration."""

    def test_defaults(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            config = build_worker_config()

        assert config.enabled is False
        assert config.runner == "openclaw"
        assert config.actor == "openclaw-worker"
        assert config.interval_seconds == 15
        assert config.batch_size == 2
        assert config.exec_timeout_seconds == 300
        assert config.prompt_context_chars == 3200

    def test_overrides_are_clamped(self):
        env = {
            "TASKGATE_WORKER_ENABLED": "true",
            "TASKGATE_WORKER_RUNNER": "NOOP",
            "TASKGATE_WORKER_ACTOR": "night-shift",
            "TASKGATE_WORKER_INTERVAL_SECONDS": "0",
            "TASKGATE_WORKER_BATCH_SIZE": "50",
            "TASKGATE_WORKER_EXEC_TIMEOUT_SECONDS": "1",
            "TASKGATE_WORKER_PROMPT_CONTEXT_CHARS": "99999",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            config = build_worker_config()

        assert config.enabled is True
        assert config.runner == "noop"
        assert config.actor == "night-shift"
        assert config.interval_seconds == 1
        assert config.batch_size == 20
        assert config.exec_timeout_seconds == 5
        assert config.prompt_context_chars == 12000

    @pytest.mark.parametrize(
        "value,expected", [("noop", "noop"), ("other", "openclaw"), (None, "openclaw")]
    )
    def test_resolve_runner(self, value, expected):
        assert resolve_runner(value) == expected


class TestOpenClawConfig:
    """Test external CLI configuration."""

    def test_defaults(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            config = build_openclaw_config()

        assert config.binary == "openclaw"
        assert config.agent == "main"
        assert config.thinking == "low"
        assert config.local is False
        assert config.deliver is False
        assert config.to == ""
        assert config.session_id == "dashboard-worker"
        assert config.timeout_seconds == 240

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("HIGH", "high"),
            ("off", "off"),
            ("minimal", "minimal"),
            ("extreme", "low"),
            (None, "low"),
        ],
    )
    def test_resolve_thinking(self, value, expected):
        assert resolve_thinking(value) == expected

    def test_timeout_bounds(self):
        with mock.patch.dict(os.environ, {"TASKGATE_OPENCLAW_TIMEOUT_SECONDS": "5"}, clear=True):
            assert build_openclaw_config().timeout_seconds == 10


class TestMemosConfig:
    """Test MemOS configuration."""

    def test_enabled_by_default(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            config = build_memos_config()

        assert config.enabled is True
        assert config.reason == "OK"
        assert config.base_url == "http://127.0.0.1:8000"
        assert config.user_id == "openclaw-main"
        assert len(config.readable_cube_ids) == 5
        assert config.top_k == 6
        assert config.timeout_seconds == 7.0

    def test_disabled_flag(self):
        with mock.patch.dict(os.environ, {"MEMOS_AUTO_CONTEXT": "off"}, clear=True):
            config = build_memos_config()

        assert config.enabled is False
        assert config.reason == "MEMOS_AUTO_CONTEXT is disabled."

    def test_custom_values(self):
        env = {
            "MEMOS_BASE_URL": "http://memos.internal:9000///",
            "MEMOS_READABLE_CUBES": " a, ,b ",
            "MEMOS_TOP_K": "100",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            config = build_memos_config()

        assert config.base_url == "http://memos.internal:9000"
        assert config.readable_cube_ids == ["a", "b"]
        assert config.top_k == 30


class TestLoadLocalEnv:
    """Test .env loading."""

    def test_env_local_overrides_env(self, tmp_path):
        (tmp_path / ".env").write_text("TASKGATE_TEST_A=from-env\nTASKGATE_TEST_B=from-env\n")
        (tmp_path / ".env.local").write_text("TASKGATE_TEST_B=from-local\n")

        with mock.patch.dict(os.environ, {}, clear=True):
            load_local_env(tmp_path)
            assert os.environ["TASKGATE_TEST_A"] == "from-env"
            assert os.environ["TASKGATE_TEST_B"] == "from-local"

    def test_existing_env_wins_over_dotenv(self, tmp_path):
        (tmp_path / ".env").write_text("TASKGATE_TEST_A=from-env\n")

        with mock.patch.dict(os.environ, {"TASKGATE_TEST_A": "from-shell"}, clear=True):
            load_local_env(tmp_path)
            assert os.environ["TASKGATE_TEST_A"] == "from-shell"

    def test_missing_files_are_ignored(self, tmp_path):
        with mock.patch.dict(os.environ, {}, clear=True):
            load_local_env(tmp_path)
