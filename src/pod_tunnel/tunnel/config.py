"""Tunnel manager configuration model."""

import os
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

ENV_PREFIX = "POD_TUNNEL_"

DEFAULT_ENVIRONMENTS = ["snd", "dev", "sit", "preprod", "trg", "prod", "qa", "stage"]


def default_state_file() -> Path:
    """Location of the tunnel registry when none is configured."""
    return Path.home() / ".pod-tunnel" / "tunnels.json"


class ManagerConfig(BaseModel):
    """Configuration for creating and managing relay pod tunnels."""

    model_config = ConfigDict(
        str_strip_whitespace=True, validate_assignment=True, extra="forbid"
    )

    namespace: str = Field(
        default="tunnel-access", min_length=1, description="Namespace for relay pods"
    )
    image: str = Field(
        default="alpine/socat", min_length=1, description="Relay container image"
    )
    state_file: Path = Field(
        default_factory=default_state_file, description="Tunnel registry file"
    )
    ready_timeout: float = Field(
        default=90.0, gt=0, le=900, description="Seconds to wait for a relay pod"
    )
    poll_interval: float = Field(
        default=2.0, gt=0, le=60, description="Pod status polling interval"
    )
    kill_timeout: float = Field(
        default=5.0, gt=0, le=60, description="Grace period for the forwarder"
    )
    kubectl_binary: str = Field(default="kubectl", min_length=1)
    aws_binary: str = Field(default="aws", min_length=1)
    region: str = Field(default="eu-west-2", min_length=1, description="AWS region")
    environments: list[str] = Field(
        default_factory=lambda: list(DEFAULT_ENVIRONMENTS),
        description="Known environments; empty accepts any",
    )
    clusters: dict[str, str] = Field(
        default_factory=dict, description="Cluster name per environment"
    )
    ports: dict[str, dict[str, int]] = Field(
        default_factory=dict, description="Local port per service and environment"
    )

    @field_validator("namespace")
    @classmethod
    def validate_namespace(cls, v: str) -> str:
        """Validate namespace format."""
        if not v.replace("-", "").isalnum() or v != v.lower():
            raise ValueError(
                "Namespace must contain only lowercase alphanumeric characters and hyphens"
            )
        return v

    @field_validator("environments")
    @classmethod
    def lowercase_environments(cls, v: list[str]) -> list[str]:
        return [env.strip().lower() for env in v if env.strip()]

    @field_validator("clusters", "ports")
    @classmethod
    def lowercase_keys(cls, v: dict) -> dict:
        """Service and environment names are matched lower-cased."""
        return {
            key.lower(): (
                {inner.lower(): port for inner, port in value.items()}
                if isinstance(value, dict)
                else value
            )
            for key, value in v.items()
        }

    @classmethod
    def from_env(
        cls, environ: Mapping[str, str] | None = None, **overrides: object
    ) -> "ManagerConfig":
        """Build a configuration, applying ``POD_TUNNEL_*`` overrides.

        Recognised variables: ``POD_TUNNEL_NAMESPACE``, ``POD_TUNNEL_IMAGE``,
        ``POD_TUNNEL_STATE_FILE``, ``POD_TUNNEL_READY_TIMEOUT``,
        ``POD_TUNNEL_KUBECTL``, ``POD_TUNNEL_AWS`` and ``POD_TUNNEL_REGION``.
        Explicit keyword overrides win over the environment.
        """
        env = os.environ if environ is None else environ
        mapping = {
            "NAMESPACE": "namespace",
            "IMAGE": "image",
            "STATE_FILE": "state_file",
            "READY_TIMEOUT": "ready_timeout",
            "KUBECTL": "kubectl_binary",
            "AWS": "aws_binary",
            "REGION": "region",
        }
        values: dict[str, object] = {}
        for suffix, field_name in mapping.items():
            raw = env.get(ENV_PREFIX + suffix)
            if raw:
                values[field_name] = raw
        values.update(overrides)
        return cls.model_validate(values)
