"""External collaborators of the tunnel manager.

The manager depends only on the Protocols below. The default implementations
shell out to kubectl and the AWS CLI and read port mappings from
configuration; tests substitute in-memory fakes.
"""

import json
import os
import re
from collections.abc import Callable, Mapping
from typing import Protocol

from ..common.exceptions import CommandError, DependencyError
from ..common.logging import get_logger
from ..common.process import run_command
from ..common.utils import sanitize_label_value, sanitize_username
from .models import EndpointLookup, ServiceKind, TunnelOptions

logger = get_logger(__name__)


class ContextSwitcher(Protocol):
    """Points kubectl at the cluster serving an environment."""

    def ensure_context(self, environment: str) -> None: ...


class EndpointResolver(Protocol):
    """Finds the private host and port of a backend service."""

    def resolve_endpoint(
        self, kind: ServiceKind, environment: str, options: TunnelOptions
    ) -> tuple[str, int]: ...


class PortAllocator(Protocol):
    """Maps a service and environment to a fixed local port."""

    def allocate_local_port(self, service: str, environment: str) -> int: ...


class IdentityProvider(Protocol):
    """Names the operator, for pod names and ownership labels."""

    def current_identity(self) -> str: ...

    def current_email(self) -> str: ...


class EnvironmentIdentity:
    """Reads the operator's identity from ``USER``/``USERNAME`` and ``EMAIL``."""

    def __init__(self, environ: Mapping[str, str] | None = None):
        self._environ = environ

    @property
    def environ(self) -> Mapping[str, str]:
        return os.environ if self._environ is None else self._environ

    def current_identity(self) -> str:
        """Short ASCII name safe for pod names, ``unknown`` if unset."""
        for key in ("USER", "USERNAME"):
            name = sanitize_username(self.environ.get(key))
            if name:
                return name
        return "unknown"

    def current_email(self) -> str:
        return sanitize_label_value(self.environ.get("EMAIL")) or "unknown"


class KubeContextSwitcher:
    """Switches kubectl to the context of an environment's cluster."""

    def __init__(
        self,
        clusters: Mapping[str, str] | None = None,
        kubectl: str = "kubectl",
        cluster_suffix: str = "-zenith-eks-cluster",
    ):
        """Initialize the switcher.

        Args:
            clusters: Explicit cluster name per environment
            kubectl: kubectl binary
            cluster_suffix: Appended to the environment for unmapped clusters
        """
        self.clusters = {key.lower(): value for key, value in (clusters or {}).items()}
        self.kubectl = kubectl
        self.cluster_suffix = cluster_suffix

    def cluster_name(self, environment: str) -> str:
        return self.clusters.get(environment, f"{environment}{self.cluster_suffix}")

    def find_context(self, environment: str) -> str:
        """Return the kubectl context whose name or ARN matches the cluster.

        Raises:
            DependencyError: If kubectl fails or no context matches
        """
        cluster = self.cluster_name(environment)
        try:
            result = run_command([self.kubectl, "config", "get-contexts", "-o", "name"])
        except CommandError as e:
            raise DependencyError(f"failed to list kubectl contexts: {e}") from e

        arn = re.compile(rf"^arn:aws:eks:[^:]+:\d+:cluster/{re.escape(cluster)}$")
        for context in result.stdout.split():
            if context == cluster or arn.match(context):
                return context
        raise DependencyError(
            f"no matching kubectl context found for '{environment}' "
            f"(looking for cluster: {cluster})"
        )

    def ensure_context(self, environment: str) -> None:
        context = self.find_context(environment)
        try:
            run_command([self.kubectl, "config", "use-context", context])
        except CommandError as e:
            raise DependencyError(f"failed to switch context: {e}") from e
        logger.info("Switched kubectl context", environment=environment, context=context)


_PARAMETER_PATHS: dict[ServiceKind, str] = {
    ServiceKind.REDIS: "/{env}/zenith/redis/cluster-endpoint",
    ServiceKind.ELASTICSEARCH: "/{env}/zenith/elasticsearch/cluster-endpoint",
    ServiceKind.KAFKA: "/{env}/zenith/kafka/broker",
    ServiceKind.MSK: "/{env}/zenith/msk/brokers-iam-endpoint",
    ServiceKind.RABBITMQ: "/{env}/zenith/rabbitmq/brokers-console-url",
}

_DATABASE_PATH = "/{env}/zenith/database/{db_type}/db-{node_type}-endpoint"


class SSMEndpointResolver:
    """Resolves service endpoints from AWS SSM Parameter Store."""

    def __init__(self, region: str = "eu-west-2", aws: str = "aws"):
        self.region = region
        self.aws = aws
        self._strategies: dict[
            EndpointLookup, Callable[[ServiceKind, str, TunnelOptions], str]
        ] = {
            EndpointLookup.DATABASE: self._database_host,
            EndpointLookup.PARAMETER: self._parameter_host,
            EndpointLookup.DIRECT: self._direct_host,
        }
        missing = set(EndpointLookup) - set(self._strategies)
        if missing:
            raise RuntimeError(f"endpoint lookups without a strategy: {sorted(missing)}")

    def get_parameter(self, name: str) -> str:
        """Fetch and decrypt one SSM parameter.

        Raises:
            DependencyError: If the AWS CLI fails or returns unexpected JSON
        """
        try:
            result = run_command(
                [
                    self.aws,
                    "ssm",
                    "get-parameter",
                    "--name",
                    name,
                    "--with-decryption",
                    "--region",
                    self.region,
                ]
            )
        except CommandError as e:
            raise DependencyError(f"failed to get SSM parameter {name}: {e}") from e

        try:
            return str(json.loads(result.stdout)["Parameter"]["Value"]).strip()
        except (ValueError, KeyError, TypeError) as e:
            raise DependencyError(f"failed to parse SSM response for {name}: {e}") from e

    def _database_host(
        self, kind: ServiceKind, environment: str, options: TunnelOptions
    ) -> str:
        return self.get_parameter(
            _DATABASE_PATH.format(
                env=environment, db_type=options.db_type, node_type=options.node_type
            )
        )

    def _parameter_host(
        self, kind: ServiceKind, environment: str, options: TunnelOptions
    ) -> str:
        path = _PARAMETER_PATHS.get(kind)
        if path is None:
            raise DependencyError(f"no endpoint parameter for service {kind.value}")
        return self.get_parameter(path.format(env=environment))

    def _direct_host(
        self, kind: ServiceKind, environment: str, options: TunnelOptions
    ) -> str:
        return options.remote_host or ""

    def resolve_endpoint(
        self, kind: ServiceKind, environment: str, options: TunnelOptions
    ) -> tuple[str, int]:
        host = self._strategies[kind.lookup](kind, environment, options)
        logger.debug("Resolved endpoint", service=kind.value, host=host)
        return host, kind.remote_port


DEFAULT_LOCAL_PORTS: dict[str, dict[str, int]] = {
    "db": {
        "snd": 5432, "dev": 5433, "sit": 5434, "preprod": 5435,
        "trg": 5437, "prod": 5438, "qa": 5440, "stage": 5442,
    },
    "redis": {
        "snd": 6379, "dev": 6380, "sit": 6381, "preprod": 6382,
        "trg": 6383, "prod": 6384, "qa": 6385, "stage": 6386,
    },
    "elasticsearch": {
        env: 9200 for env in ("snd", "dev", "sit", "preprod", "trg", "prod", "qa", "stage")
    },
    "kafka": {
        "snd": 9092, "dev": 9093, "sit": 9094, "preprod": 9095,
        "trg": 9096, "prod": 9097, "qa": 9098, "stage": 9099,
    },
    "rabbitmq": {
        "snd": 5672, "dev": 5673, "sit": 5674, "preprod": 5675,
        "trg": 5676, "prod": 5677, "qa": 5678, "stage": 5679,
    },
    "grpc": {
        "snd": 50051, "dev": 50052, "sit": 50053, "preprod": 50054,
        "trg": 50055, "prod": 50056, "qa": 50057, "stage": 50058,
    },
}


class StaticPortAllocator:
    """Looks up local ports in a service -> environment -> port table."""

    def __init__(
        self,
        ports: Mapping[str, Mapping[str, int]] | None = None,
        defaults: Mapping[str, Mapping[str, int]] | None = DEFAULT_LOCAL_PORTS,
    ):
        """Initialize the allocator.

        Args:
            ports: Configured mappings; these win over ``defaults``
            defaults: Fallback mappings
        """
        table: dict[str, dict[str, int]] = {}
        for source in (defaults or {}, ports or {}):
            for service, envs in source.items():
                table.setdefault(service.lower(), {}).update(
                    {env.lower(): port for env, port in envs.items()}
                )
        self.ports = table

    def allocate_local_port(self, service: str, environment: str) -> int:
        service = service.lower()
        environment = environment.lower()
        try:
            return self.ports[service][environment]
        except KeyError as e:
            raise DependencyError(
                f"port mapping not found for service: {service} "
                f"in environment: {environment}"
            ) from e
