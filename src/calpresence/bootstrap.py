"""Process startup: configuration, logging and OpenTelemetry."""

from __future__ import annotations

import logging
from pathlib import Path

from calpresence.config import AppConfig, load_config
from calpresence.core.logging import configure_logging
from calpresence.core.metrics import init_metrics
from calpresence.core.telemetry import init_telemetry

logger = logging.getLogger(__name__)


def initialize(config_dir: Path) -> AppConfig:
    """Load ``calpresence.toml`` from *config_dir* and set up the ambient stack.

    Steps execute in order; a ``ConfigError`` from step 1 leaves logging and
    telemetry untouched.
    """
    # 1. Load config
    config = load_config(config_dir)

    # 2. Logging
    configure_logging(
        level=config.logging.level,
        fmt=config.logging.format,
        log_root=Path(config.logging.log_root) if config.logging.log_root else None,
        app_name=config.name,
    )
    logger.info("Loaded config: %s", config.name)

    # 3. Tracing and metrics
    init_telemetry(config.name)
    init_metrics(config.name)

    return config
