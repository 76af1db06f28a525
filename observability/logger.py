"""
observability/logger.py — Signal Analyst Structured Logger

Sets up structlog with:
  - JSON output to a rotating log file (signal_analyst.log)
  - Human-readable output to console (dev mode) or JSON (prod mode)
  - Secret redaction: token / api_key / authorization values never reach a sink
  - Consistent fields on every log line: timestamp, level, event, session_id

Usage:
    from observability.logger import get_logger, setup_logging

    setup_logging(level="DEBUG", console_output=True)   # call once at startup
    log = get_logger(__name__)
    log.info("bridge.fulfilled", method="get_states", call_id="hc_1")
    log.warning("bridge.denied", method="call_service", reason="...")
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any

import structlog

LOG_FILENAME = "signal_analyst.log"

_SECRET_KEYS = ("token", "api_key", "authorization", "password")
_REDACTED = "***"


# ─────────────────────────────────────────────────────────────────────────────
# Processors
# ─────────────────────────────────────────────────────────────────────────────


def redact_secrets(_logger: Any, _method: str, event_dict: dict) -> dict:
    """Mask any field whose name looks like a credential."""
    for key in list(event_dict):
        if any(marker in key.lower() for marker in _SECRET_KEYS) and event_dict[key]:
            event_dict[key] = _REDACTED
    return event_dict


# ─────────────────────────────────────────────────────────────────────────────
# Public API
# ─────────────────────────────────────────────────────────────────────────────


def setup_logging(
    level: str = "INFO",
    log_dir: str | Path = "./data/logs",
    json_format: bool = True,
    console_output: bool = True,
    max_bytes: int = 100 * 1024 * 1024,   # 100 MB
    backup_count: int = 5,
) -> None:
    """
    Configure structlog and stdlib logging. Call once at application startup.

    Args:
        level:          DEBUG | INFO | WARNING | ERROR | CRITICAL
        log_dir:        Directory for the rotating log file.
        json_format:    JSON on the console too (prod) or coloured output (dev).
        console_output: Whether to emit logs to stderr at all. The interactive
                        CLI owns stdout, so console logs go to stderr.
        max_bytes:      Max size of the log file before rotation.
        backup_count:   Number of rotated log files to keep.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    numeric_level = getattr(logging, level.upper(), logging.INFO)

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    handlers: list[logging.Handler] = []

    file_handler = logging.handlers.RotatingFileHandler(
        filename=log_dir / LOG_FILENAME,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(numeric_level)
    handlers.append(file_handler)

    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(numeric_level)
        handlers.append(console_handler)

    logging.basicConfig(
        format="%(message)s",
        level=numeric_level,
        handlers=handlers,
        force=True,
    )
    # httpx logs every request at INFO, including the HA URL
    logging.getLogger("httpx").setLevel(max(numeric_level, logging.WARNING))

    structlog.configure(
        processors=shared_processors
        + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    file_formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(),
        ],
        foreign_pre_chain=shared_processors,
    )
    file_handler.setFormatter(file_formatter)

    if console_output:
        console_renderer = (
            structlog.processors.JSONRenderer()
            if json_format
            else structlog.dev.ConsoleRenderer(colors=True)
        )
        handlers[-1].setFormatter(structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                console_renderer,
            ],
            foreign_pre_chain=shared_processors,
        ))


def setup_from_settings(settings, level_override: str | None = None) -> None:
    """setup_logging() driven by the `logging:` section of Settings."""
    cfg = settings.logging
    setup_logging(
        level=level_override or cfg.level,
        log_dir=cfg.log_dir,
        json_format=cfg.json_format,
        console_output=cfg.console_output,
        max_bytes=cfg.max_file_size_mb * 1024 * 1024,
        backup_count=cfg.backup_count,
    )


def get_logger(name: str = "signal_analyst", **initial_values: Any) -> structlog.stdlib.BoundLogger:
    """
    Get a bound logger with optional initial context values.

    Example:
        log = get_logger(__name__, component="bridge")
        log.info("bridge.fulfilled", method="get_states")
        # → {"event": "bridge.fulfilled", "method": "get_states",
        #    "component": "bridge", "logger": "host.bridge", ...}
    """
    logger = structlog.get_logger(name)
    if initial_values:
        logger = logger.bind(**initial_values)
    return logger


def bind_session(session_id: str, **extra: Any) -> None:
    """
    Bind session context to all subsequent log calls in this async context.

    structlog's contextvars integration attaches the values to every log
    line in this coroutine and the tasks it spawns.
    """
    structlog.contextvars.bind_contextvars(session_id=session_id, **extra)


def clear_session() -> None:
    """Clear session context vars at the end of a run."""
    structlog.contextvars.clear_contextvars()
