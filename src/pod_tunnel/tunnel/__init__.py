"""Relay pod tunnels: registry, pod controller and lifecycle manager."""

from .collaborators import (
    ContextSwitcher,
    EndpointResolver,
    EnvironmentIdentity,
    IdentityProvider,
    KubeContextSwitcher,
    PortAllocator,
    SSMEndpointResolver,
    StaticPortAllocator,
)
from .config import ManagerConfig
from .manager import TunnelLifecycleManager
from .models import (
    EndpointLookup,
    ServiceKind,
    TunnelOptions,
    TunnelPhase,
    TunnelRecord,
    supported_services,
    tunnel_id,
)
from .pods import RelayPodController
from .registry import JsonFileStore, MemoryStore, RegistryStore, TunnelRegistry
from .session import CancellationToken, ForwardSession, interrupt_listener

__all__ = [
    # Models
    "TunnelRecord",
    "TunnelOptions",
    "TunnelPhase",
    "ServiceKind",
    "EndpointLookup",
    "tunnel_id",
    "supported_services",
    # Configuration
    "ManagerConfig",
    # Registry
    "TunnelRegistry",
    "RegistryStore",
    "JsonFileStore",
    "MemoryStore",
    # Relay pods and sessions
    "RelayPodController",
    "ForwardSession",
    "CancellationToken",
    "interrupt_listener",
    # Manager
    "TunnelLifecycleManager",
    # Collaborators
    "ContextSwitcher",
    "EndpointResolver",
    "PortAllocator",
    "IdentityProvider",
    "KubeContextSwitcher",
    "SSMEndpointResolver",
    "StaticPortAllocator",
    "EnvironmentIdentity",
]
