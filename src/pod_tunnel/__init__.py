"""pod-tunnel - on-demand relay pods for reaching private backend services."""

# Common utilities
from .common.exceptions import (
    CommandError,
    ConflictError,
    DependencyError,
    RegistryError,
    ResourceError,
    TimeoutError,
    TunnelError,
    ValidationError,
)
from .common.logging import get_logger, setup_logging, setup_logging_from_env

# Tunnel management
from .tunnel import (
    CancellationToken,
    JsonFileStore,
    ManagerConfig,
    MemoryStore,
    RelayPodController,
    ServiceKind,
    TunnelLifecycleManager,
    TunnelOptions,
    TunnelRecord,
    TunnelRegistry,
    tunnel_id,
)

# Setup logging on package initialization
setup_logging_from_env()

# Package level logger
logger = get_logger(__name__)

__version__ = "0.1.0"


__all__ = [
    # Tunnel management
    "TunnelLifecycleManager",
    "TunnelRegistry",
    "TunnelRecord",
    "TunnelOptions",
    "ServiceKind",
    "ManagerConfig",
    "RelayPodController",
    "CancellationToken",
    "JsonFileStore",
    "MemoryStore",
    "tunnel_id",
    # Exceptions
    "TunnelError",
    "ValidationError",
    "ConflictError",
    "DependencyError",
    "ResourceError",
    "RegistryError",
    "TimeoutError",
    "CommandError",
    # Logging
    "get_logger",
    "setup_logging",
    "setup_logging_from_env",
]
