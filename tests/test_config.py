"""Tests for calpresence.toml loading and validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from calpresence.config import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_MAX_CONCURRENCY,
    ConfigError,
    load_config,
    resolve_env_vars,
)
from calpresence.rooms import DEFAULT_ROOMS_TIMEOUT_SECONDS, DEFAULT_ROOMS_TTL_SECONDS

pytestmark = pytest.mark.unit

MINIMAL = """
[chat]
bot_token = "xoxb-123"
"""

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_toml(tmp_path: Path, content: str) -> Path:
    """Write *content* to calpresence.toml inside *tmp_path* and return the directory."""
    (tmp_path / "calpresence.toml").write_text(content)
    return tmp_path


# ---------------------------------------------------------------------------
# resolve_env_vars
# ---------------------------------------------------------------------------


class TestResolveEnvVars:
    def test_simple_string(self, monkeypatch):
        monkeypatch.setenv("BOT_TOKEN", "xoxb-secret")
        assert resolve_env_vars("${BOT_TOKEN}") == "xoxb-secret"

    def test_partial_string(self, monkeypatch):
        monkeypatch.setenv("ROOMS_HOST", "rooms.example.com")
        assert resolve_env_vars("https://${ROOMS_HOST}/rooms.json") == (
            "https://rooms.example.com/rooms.json"
        )

    def test_nested_structures(self, monkeypatch):
        monkeypatch.setenv("TAG", "v1")
        data = {"outer": {"tags": ["${TAG}", "static"], "count": 3, "flag": True}}
        expected = {"outer": {"tags": ["v1", "static"], "count": 3, "flag": True}}
        assert resolve_env_vars(data) == expected

    def test_missing_variables_reported_together(self, monkeypatch):
        monkeypatch.delenv("MISSING_A", raising=False)
        monkeypatch.delenv("MISSING_B", raising=False)
        with pytest.raises(ConfigError, match="MISSING_A, MISSING_B"):
            resolve_env_vars("${MISSING_A}:${MISSING_B}")

    def test_error_does_not_echo_value(self, monkeypatch):
        monkeypatch.delenv("MISSING_A", raising=False)
        with pytest.raises(ConfigError) as exc_info:
            resolve_env_vars("hunter2-${MISSING_A}")
        assert "hunter2" not in str(exc_info.value)


# ---------------------------------------------------------------------------
# load_config
# ---------------------------------------------------------------------------


class TestLoadConfig:
    def test_minimal_config_uses_defaults(self, tmp_path):
        config = load_config(_write_toml(tmp_path, MINIMAL))

        assert config.name == "calpresence"
        assert config.chat.bot_token == "xoxb-123"
        assert config.logging.level == "INFO"
        assert config.logging.format == "text"
        assert config.logging.log_root is None
        assert config.reconcile.default_window_minutes == 1
        assert config.reconcile.batch_size == DEFAULT_BATCH_SIZE
        assert config.reconcile.max_concurrency == DEFAULT_MAX_CONCURRENCY
        assert config.rooms.url is None
        assert config.rooms.ttl_seconds == DEFAULT_ROOMS_TTL_SECONDS
        assert config.rooms.timeout_seconds == DEFAULT_ROOMS_TIMEOUT_SECONDS

    def test_full_config(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CHAT_BOT_TOKEN", "xoxb-env")
        content = """
[calpresence]
name = "presence-prod"

[calpresence.logging]
level = "debug"
format = "JSON"
log_root = "/var/log/calpresence"

[chat]
bot_token = "${CHAT_BOT_TOKEN}"

[reconcile]
default_window_minutes = 2
batch_size = 25
max_concurrency = 4

[rooms]
url = " https://rooms.example.com/rooms.json "
ttl_seconds = 0
timeout_seconds = 2.5
"""
        config = load_config(_write_toml(tmp_path, content))

        assert config.name == "presence-prod"
        assert config.chat.bot_token == "xoxb-env"
        assert config.logging.level == "DEBUG"
        assert config.logging.format == "json"
        assert config.logging.log_root == "/var/log/calpresence"
        assert config.reconcile.default_window_minutes == 2
        assert config.reconcile.batch_size == 25
        assert config.reconcile.max_concurrency == 4
        assert config.rooms.url == "https://rooms.example.com/rooms.json"
        assert config.rooms.ttl_seconds == 0
        assert config.rooms.timeout_seconds == 2.5

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="Config file not found"):
            load_config(tmp_path)

    def test_invalid_toml(self, tmp_path):
        with pytest.raises(ConfigError, match="Invalid TOML"):
            load_config(_write_toml(tmp_path, "[chat\nbot_token = 1"))

    @pytest.mark.parametrize("content", ["", "[chat]\n", '[chat]\nbot_token = "  "\n'])
    def test_missing_bot_token(self, tmp_path, content):
        with pytest.raises(ConfigError, match="chat.bot_token"):
            load_config(_write_toml(tmp_path, content))

    def test_unresolved_env_var(self, tmp_path, monkeypatch):
        monkeypatch.delenv("NOT_SET_TOKEN", raising=False)
        with pytest.raises(ConfigError, match="NOT_SET_TOKEN"):
            load_config(_write_toml(tmp_path, '[chat]\nbot_token = "${NOT_SET_TOKEN}"\n'))

    def test_invalid_log_format(self, tmp_path):
        content = MINIMAL + '[calpresence.logging]\nformat = "xml"\n'
        with pytest.raises(ConfigError, match="logging.format"):
            load_config(_write_toml(tmp_path, content))

    def test_section_must_be_table(self, tmp_path):
        content = 'reconcile = 5\n' + MINIMAL
        with pytest.raises(ConfigError, match=r"\[reconcile\] must be a TOML table"):
            load_config(_write_toml(tmp_path, content))

    @pytest.mark.parametrize("value", ["0", "-3", "true", '"many"'])
    def test_batch_size_must_be_positive_int(self, tmp_path, value):
        content = MINIMAL + f"[reconcile]\nbatch_size = {value}\n"
        with pytest.raises(ConfigError, match="reconcile.batch_size"):
            load_config(_write_toml(tmp_path, content))

    @pytest.mark.parametrize(
        ("rooms", "match"),
        [
            ('url = ""', "rooms.url"),
            ("url = 5", "rooms.url"),
            ("ttl_seconds = -1", "rooms.ttl_seconds"),
            ("ttl_seconds = 1.5", "rooms.ttl_seconds"),
            ("timeout_seconds = 0", "rooms.timeout_seconds"),
            ('timeout_seconds = "soon"', "rooms.timeout_seconds"),
        ],
    )
    def test_invalid_rooms_section(self, tmp_path, rooms, match):
        content = MINIMAL + f"[rooms]\n{rooms}\n"
        with pytest.raises(ConfigError, match=match):
            load_config(_write_toml(tmp_path, content))
