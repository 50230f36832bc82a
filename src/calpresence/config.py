"""Configuration loading and validation.

Reads calpresence.toml from a config directory, resolves ``${VAR}``
references against the environment, and returns a validated AppConfig.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from calpresence.providers import DEFAULT_WINDOW_MINUTES
from calpresence.rooms import DEFAULT_ROOMS_TIMEOUT_SECONDS, DEFAULT_ROOMS_TTL_SECONDS

CONFIG_FILENAME = "calpresence.toml"
DEFAULT_BATCH_SIZE = 10
DEFAULT_MAX_CONCURRENCY = 10

# Matches ${VAR_NAME} with alphanumeric and underscore names.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class ConfigError(Exception):
    """Raised when configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from [calpresence.logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class ReconcileConfig:
    """Reconciliation cadence and fan-out from the [reconcile] section."""

    default_window_minutes: int = DEFAULT_WINDOW_MINUTES
    batch_size: int = DEFAULT_BATCH_SIZE
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY


@dataclass
class ChatConfig:
    """Chat platform credentials from the [chat] section."""

    bot_token: str


@dataclass
class RoomsConfig:
    """Room directory feed from the [rooms] section.

    With no ``url`` the room fallback in link extraction is disabled.
    """

    url: str | None = None
    ttl_seconds: int = DEFAULT_ROOMS_TTL_SECONDS
    timeout_seconds: float = DEFAULT_ROOMS_TIMEOUT_SECONDS


@dataclass
class AppConfig:
    """Parsed and validated configuration."""

    chat: ChatConfig
    name: str = "calpresence"
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    reconcile: ReconcileConfig = field(default_factory=ReconcileConfig)
    rooms: RoomsConfig = field(default_factory=RoomsConfig)


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings.  Non-string leaf values (int, bool,
    float, None) are returned unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s* with env var values.

    Collects all missing variable names and reports them in a single error.
    """
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        # Never echo the original value: it may sit next to a secret.
        vars_str = ", ".join(missing)
        raise ConfigError(f"Unresolved environment variable(s) in config value: {vars_str}")

    return result


def _section(data: dict[str, Any], key: str, path: str) -> dict[str, Any]:
    section = data.get(key, {})
    if not isinstance(section, dict):
        raise ConfigError(f"[{path}] must be a TOML table")
    return section


def _positive_int(section: dict[str, Any], key: str, default: int, path: str) -> int:
    raw = section.get(key, default)
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid {path}.{key}: {raw!r}. Must be a positive integer.") from exc
    if isinstance(raw, bool) or value <= 0:
        raise ConfigError(f"Invalid {path}.{key}: {raw!r}. Must be a positive integer.")
    return value


def _parse_logging(app_section: dict[str, Any]) -> LoggingConfig:
    logging_section = _section(app_section, "logging", "calpresence.logging")
    log_format = str(logging_section.get("format", "text")).lower()
    if log_format not in ("text", "json"):
        raise ConfigError(
            f"Invalid calpresence.logging.format: {log_format!r}. Expected 'text' or 'json'."
        )
    return LoggingConfig(
        level=str(logging_section.get("level", "INFO")).upper(),
        format=log_format,
        log_root=logging_section.get("log_root"),
    )


def _parse_rooms(data: dict[str, Any]) -> RoomsConfig:
    rooms_section = _section(data, "rooms", "rooms")
    url = rooms_section.get("url")
    if url is not None and (not isinstance(url, str) or not url.strip()):
        raise ConfigError("rooms.url must be a non-empty string when set")

    raw_ttl = rooms_section.get("ttl_seconds", DEFAULT_ROOMS_TTL_SECONDS)
    if isinstance(raw_ttl, bool) or not isinstance(raw_ttl, int) or raw_ttl < 0:
        raise ConfigError(f"Invalid rooms.ttl_seconds: {raw_ttl!r}. Must be an integer >= 0.")

    raw_timeout = rooms_section.get("timeout_seconds", DEFAULT_ROOMS_TIMEOUT_SECONDS)
    try:
        timeout_seconds = float(raw_timeout)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid rooms.timeout_seconds: {raw_timeout!r}.") from exc
    if timeout_seconds <= 0:
        raise ConfigError(f"Invalid rooms.timeout_seconds: {raw_timeout!r}. Must be positive.")

    return RoomsConfig(
        url=url.strip() if url else None,
        ttl_seconds=raw_ttl,
        timeout_seconds=timeout_seconds,
    )


def load_config(config_dir: Path) -> AppConfig:
    """Load and validate ``calpresence.toml`` from *config_dir*.

    Raises
    ------
    ConfigError
        If the file is missing, contains invalid TOML, or lacks required fields.
    """
    toml_path = config_dir / CONFIG_FILENAME

    if not toml_path.exists():
        raise ConfigError(f"Config file not found: {toml_path}")

    try:
        data = tomllib.loads(toml_path.read_bytes().decode())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc

    data = resolve_env_vars(data)

    app_section = _section(data, "calpresence", "calpresence")
    name = str(app_section.get("name", "calpresence")).strip() or "calpresence"

    # --- [chat] section (required) ---
    chat_section = _section(data, "chat", "chat")
    bot_token = chat_section.get("bot_token")
    if not isinstance(bot_token, str) or not bot_token.strip():
        raise ConfigError("Missing required field: chat.bot_token")

    # --- [reconcile] section ---
    reconcile_section = _section(data, "reconcile", "reconcile")
    reconcile = ReconcileConfig(
        default_window_minutes=_positive_int(
            reconcile_section, "default_window_minutes", DEFAULT_WINDOW_MINUTES, "reconcile"
        ),
        batch_size=_positive_int(reconcile_section, "batch_size", DEFAULT_BATCH_SIZE, "reconcile"),
        max_concurrency=_positive_int(
            reconcile_section, "max_concurrency", DEFAULT_MAX_CONCURRENCY, "reconcile"
        ),
    )

    return AppConfig(
        name=name,
        chat=ChatConfig(bot_token=bot_token.strip()),
        logging=_parse_logging(app_section),
        reconcile=reconcile,
        rooms=_parse_rooms(data),
    )
