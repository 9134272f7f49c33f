"""Common utilities and shared functionality."""

from .exceptions import (
    CommandError,
    ConflictError,
    DependencyError,
    RegistryError,
    ResourceError,
    TimeoutError,
    TunnelError,
    ValidationError,
)
from .locks import ReadWriteLock
from .logging import get_logger, setup_logging, setup_logging_from_env
from .process import ProcessManager, resolve_binary, run_command
from .utils import (
    MAX_PORT,
    MIN_PORT,
    sanitize_label_value,
    sanitize_username,
    validate_port,
)

__all__ = [
    # Process management
    "ProcessManager",
    "run_command",
    "resolve_binary",
    # Exceptions
    "TunnelError",
    "ValidationError",
    "ConflictError",
    "DependencyError",
    "ResourceError",
    "RegistryError",
    "TimeoutError",
    "CommandError",
    # Locking
    "ReadWriteLock",
    # Logging
    "get_logger",
    "setup_logging",
    "setup_logging_from_env",
    # Utils
    "validate_port",
    "sanitize_username",
    "sanitize_label_value",
    "MIN_PORT",
    "MAX_PORT",
]
