"""Tunnel models.

This module defines the persisted tunnel record, the closed set of supported
service kinds and the per-tunnel lifecycle phases.
"""

import re
from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..common.exceptions import ValidationError

_NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9-]*$")


def tunnel_id(service: str, environment: str) -> str:
    """Derive the registry key for a service/environment pair.

    Args:
        service: Service name (case-insensitive)
        environment: Environment name (case-insensitive)

    Returns:
        ``"<service>-<environment>"`` in lower case
    """
    return f"{service.strip().lower()}-{environment.strip().lower()}"


def normalize_environment(environment: str) -> str:
    """Lower-case and validate an environment name.

    Raises:
        ValidationError: If the name is empty or has invalid characters
    """
    if not environment or not environment.strip():
        raise ValidationError("environment cannot be empty")
    value = environment.strip().lower()
    if not _NAME_PATTERN.match(value):
        raise ValidationError(
            f"invalid environment '{environment}': use letters, digits and hyphens"
        )
    return value


class EndpointLookup(str, Enum):
    """How the remote endpoint of a service kind is found."""

    DATABASE = "database"  # read/write and query/command selection
    PARAMETER = "parameter"  # one parameter per environment
    DIRECT = "direct"  # no lookup, caller supplies the host


class ServiceKind(str, Enum):
    """Supported backend services."""

    DB = "db"
    REDIS = "redis"
    ELASTICSEARCH = "elasticsearch"
    KAFKA = "kafka"
    MSK = "msk"
    RABBITMQ = "rabbitmq"
    GRPC = "grpc"

    @classmethod
    def parse(cls, name: str) -> "ServiceKind":
        """Parse a case-insensitive service name.

        Raises:
            ValidationError: If the name is empty or not a supported service
        """
        if not name or not name.strip():
            raise ValidationError("service cannot be empty")
        value = name.strip().lower()
        value = _SERVICE_ALIASES.get(value, value)
        try:
            return cls(value)
        except ValueError as e:
            raise ValidationError(
                f"unknown service '{name}': supported services are {supported_services()}"
            ) from e

    @property
    def remote_port(self) -> int:
        """Port the backend listens on, and that the relay pod listens on."""
        return _REMOTE_PORTS[self]

    @property
    def lookup(self) -> EndpointLookup:
        return _LOOKUPS[self]


_SERVICE_ALIASES = {"es": "elasticsearch", "database": "db"}

_REMOTE_PORTS: dict[ServiceKind, int] = {
    ServiceKind.DB: 5432,
    ServiceKind.REDIS: 6379,
    ServiceKind.ELASTICSEARCH: 9200,
    ServiceKind.KAFKA: 9092,
    ServiceKind.MSK: 9098,
    ServiceKind.RABBITMQ: 443,
    ServiceKind.GRPC: 5001,
}

_LOOKUPS: dict[ServiceKind, EndpointLookup] = {
    ServiceKind.DB: EndpointLookup.DATABASE,
    ServiceKind.REDIS: EndpointLookup.PARAMETER,
    ServiceKind.ELASTICSEARCH: EndpointLookup.PARAMETER,
    ServiceKind.KAFKA: EndpointLookup.PARAMETER,
    ServiceKind.MSK: EndpointLookup.PARAMETER,
    ServiceKind.RABBITMQ: EndpointLookup.PARAMETER,
    ServiceKind.GRPC: EndpointLookup.DIRECT,
}

for _table in (_REMOTE_PORTS, _LOOKUPS):
    _missing = set(ServiceKind) - set(_table)
    if _missing:
        raise RuntimeError(f"service kinds without a mapping: {sorted(_missing)}")


def supported_services() -> str:
    """Comma-separated list of supported service names."""
    return ", ".join(kind.value for kind in ServiceKind)


class TunnelOptions(BaseModel):
    """Service-specific sub-options for starting a tunnel."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    node_type: Literal["read", "write"] = Field(
        default="read", description="Database node to reach"
    )
    db_type: Literal["query", "command"] = Field(
        default="query", description="Database cluster to reach"
    )
    remote_host: str | None = Field(
        default=None, description="Host for services without endpoint lookup"
    )

    @field_validator("node_type", "db_type", mode="before")
    @classmethod
    def lowercase(cls, v: Any) -> Any:
        return v.lower() if isinstance(v, str) else v


class TunnelPhase(str, Enum):
    """Per-tunnel lifecycle phase."""

    CREATING = "creating"
    READY = "ready"
    ACTIVE = "active"
    TEARDOWN = "teardown"
    GONE = "gone"


class PodPhase:
    """Kubernetes pod phase strings the relay controller reacts to."""

    RUNNING = "Running"
    FAILED = ("Failed", "Error", "CrashLoopBackOff")


class TunnelRecord(BaseModel):
    """One active relay, as persisted in the tunnel registry."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: str = Field(min_length=1, description="<service>-<environment>")
    service: str = Field(min_length=1)
    environment: str = Field(min_length=1)
    pod_name: str = Field(min_length=1, description="Backing relay pod")
    local_port: int = Field(ge=1, le=65535)
    remote_host: str = Field(default="")
    remote_port: int = Field(ge=1, le=65535)
    started_at: datetime = Field(default_factory=datetime.now)
    pid: int | None = Field(default=None, description="Local forwarder process")

    @field_validator("service", "environment")
    @classmethod
    def lowercase(cls, v: str) -> str:
        return v.lower()

    @model_validator(mode="after")
    def check_id(self) -> "TunnelRecord":
        expected = tunnel_id(self.service, self.environment)
        if self.id != expected:
            raise ValueError(f"id '{self.id}' does not match '{expected}'")
        return self

    @classmethod
    def create(
        cls,
        service: str,
        environment: str,
        pod_name: str,
        local_port: int,
        remote_host: str,
        remote_port: int,
        **kwargs: Any,
    ) -> "TunnelRecord":
        """Build a record, deriving its id from service and environment."""
        return cls(
            id=tunnel_id(service, environment),
            service=service,
            environment=environment,
            pod_name=pod_name,
            local_port=local_port,
            remote_host=remote_host,
            remote_port=remote_port,
            **kwargs,
        )

    def to_json_dict(self) -> dict[str, Any]:
        """Serialize for the registry file, omitting an unset pid."""
        return self.model_dump(mode="json", exclude_none=True)
