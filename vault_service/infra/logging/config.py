"""Logging configuration setup.

Provides logging configuration using:
- dictConfig for formatter definitions
- QueueHandler + QueueListener so storage hot paths never block on I/O
- All handlers on root logger (child loggers propagate)
- JSONL format for machine parsing
"""

from __future__ import annotations

import atexit
import logging
import logging.config
from logging.handlers import QueueHandler, QueueListener
from queue import Queue
from typing import TYPE_CHECKING, Any

from vault_service.infra.logging.formatters import JSONFormatter

if TYPE_CHECKING:
    from vault_service.core.settings.logs import LoggingSettings

_log_queue: Queue[logging.LogRecord] | None = None
_listener: QueueListener | None = None
_LOGGING_INITIALIZED = False

logger = logging.getLogger(__name__)


def shutdown() -> None:
    """Stop the QueueListener, flushing pending records.

    Registered with atexit when logging is configured; safe to call twice.
    """
    global _log_queue, _listener

    if _listener is not None:
        _listener.stop()
        _listener = None

    _log_queue = None


def setup_logging(
    log_settings: LoggingSettings | None = None,
    *,
    force: bool = False,
    **configure_kwargs: Any,
) -> None:
    """Ensure logging is configured once across entrypoints.

    Args:
        log_settings: Optional logging settings instance. If omitted, settings
            are loaded via get_logging_settings().
        force: Reconfigure logging even if it was already initialized.
        **configure_kwargs: Explicit overrides for configure_logging().
    """
    global _LOGGING_INITIALIZED

    if _LOGGING_INITIALIZED and not force:
        return

    settings_obj = log_settings
    if settings_obj is None:
        from vault_service.core.settings import get_logging_settings

        settings_obj = get_logging_settings()

    log_config = settings_obj.to_logging_kwargs()
    if configure_kwargs:
        log_config = {**log_config, **configure_kwargs}

    configure_logging(**log_config)
    _LOGGING_INITIALIZED = True


def configure_logging(
    log_level: str = "INFO",
    json_logs: bool = True,
    service_name: str = "vault-service",
    capture_warnings: bool = True,
    include_process_info: bool = False,
    include_thread_info: bool = False,
) -> None:
    """Configure root logging with a queue-backed console handler.

    Args:
        log_level: Root logger level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_logs: Enable JSONL structured logging.
        service_name: Static ``service`` field added to JSON records.
        capture_warnings: Forward Python warnings to logging system.
        include_process_info: Include process ID and name in records.
        include_thread_info: Include thread ID and name in records.
    """
    global _log_queue, _listener

    if capture_warnings:
        logging.captureWarnings(True)

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "root": {"level": log_level.upper(), "handlers": []},
        }
    )

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(
        _build_formatter(
            json_logs=json_logs,
            service_name=service_name,
            include_process_info=include_process_info,
            include_thread_info=include_thread_info,
        )
    )

    shutdown()
    _log_queue = Queue()
    _listener = QueueListener(_log_queue, console_handler, respect_handler_level=True)
    _listener.start()
    atexit.register(shutdown)

    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, QueueHandler):
            root.removeHandler(handler)
    root.addHandler(QueueHandler(_log_queue))

    logger.debug(
        "Logging configured",
        extra={"log_level": log_level, "json_logs": json_logs},
    )


def _build_formatter(
    json_logs: bool,
    service_name: str,
    include_process_info: bool,
    include_thread_info: bool,
) -> logging.Formatter:
    """Build the console formatter (JSONL or human-readable text)."""
    if json_logs:
        return JSONFormatter(
            fmt_keys={"level": "levelname", "logger": "name", "message": "message"},
            static={"service": service_name},
            include_process_info=include_process_info,
            include_thread_info=include_thread_info,
        )

    format_parts = ["%(asctime)s", "%(levelname)s", "%(name)s"]
    if include_process_info:
        format_parts.append("[%(processName)s:%(process)d]")
    if include_thread_info:
        format_parts.append("[%(threadName)s:%(thread)d]")
    format_parts.append("%(message)s")

    return logging.Formatter(
        fmt=" - ".join(format_parts),
        datefmt="%Y-%m-%d %H:%M:%S",
    )
