"""Centralized logging configuration using structlog.

Diagnostics always go to stderr; stdout is reserved for command output such
as the tunnel listing.
"""

import logging
import os
import sys
from collections.abc import Mapping

import structlog
from structlog.typing import Processor

# Environment variables read by setup_logging_from_env()
LOG_LEVEL_ENV = "POD_TUNNEL_LOG_LEVEL"
LOG_JSON_ENV = "POD_TUNNEL_LOG_JSON"
LOG_FILE_ENV = "POD_TUNNEL_LOG_FILE"

_TRUTHY = ("1", "true", "yes", "on")


def _shared_processors() -> list[Processor]:
    """Processors applied to every event before rendering."""
    return [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_file: str | None = None,
) -> None:
    """Configure structured logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: If True, output JSON formatted logs
        log_file: Optional file path to mirror logs to
    """
    log_level = getattr(logging, level.upper())

    # Reconfiguring replaces earlier handlers instead of stacking them
    root_logger = logging.getLogger()
    root_logger.handlers = []
    root_logger.setLevel(log_level)

    # Console handler on stderr
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(console_handler)

    # Renderer goes last
    processors = _shared_processors()
    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Optional file mirror, with timestamps and logger names
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        root_logger.addHandler(file_handler)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)  # type: ignore[no-any-return]


def setup_logging_from_env(environ: Mapping[str, str] | None = None) -> None:
    """Configure logging from ``POD_TUNNEL_LOG_*`` environment variables.

    ``POD_TUNNEL_LOG_LEVEL`` selects the level (unknown names fall back to
    INFO), ``POD_TUNNEL_LOG_JSON`` switches to JSON output when truthy, and
    ``POD_TUNNEL_LOG_FILE`` mirrors logs to a file.
    """
    env = os.environ if environ is None else environ
    level = env.get(LOG_LEVEL_ENV, "INFO")
    if not isinstance(getattr(logging, level.upper(), None), int):
        level = "INFO"
    setup_logging(
        level=level,
        json_format=env.get(LOG_JSON_ENV, "").strip().lower() in _TRUTHY,
        log_file=env.get(LOG_FILE_ENV) or None,
    )
