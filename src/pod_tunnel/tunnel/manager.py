"""Tunnel lifecycle manager.

Creates, tracks and tears down relay pod tunnels across independent process
invocations. The registry is the only shared memory between invocations, so
the manager keeps it in step with the cluster:

* at most one record per ``(service, environment)``;
* a record is persisted only after its pod reports running;
* every tunnel that reaches the active phase is torn down exactly once.
"""

import random
from collections.abc import Callable
from contextlib import AbstractContextManager
from typing import Protocol

from ..common.exceptions import (
    ConflictError,
    DependencyError,
    ResourceError,
    TunnelError,
    ValidationError,
)
from ..common.logging import get_logger
from ..common.process import resolve_binary
from ..common.utils import sanitize_username, validate_port
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
from .models import (
    ServiceKind,
    TunnelOptions,
    TunnelPhase,
    TunnelRecord,
    normalize_environment,
    tunnel_id,
)
from .pods import RelayPodController
from .registry import JsonFileStore, TunnelRegistry
from .session import CancellationToken, ForwardSession, interrupt_listener

logger = get_logger(__name__)

# Upper bound (exclusive) of the random pod name suffix
POD_SUFFIX_RANGE = 10000


class Session(Protocol):
    """Forwarding session as used by the manager."""

    def start(self) -> int: ...

    def run(self, token: CancellationToken) -> tuple[int | None, bool]: ...


SessionFactory = Callable[[list[str], float], Session]
InterruptListener = Callable[[CancellationToken], AbstractContextManager[CancellationToken]]


def _default_session(args: list[str], kill_timeout: float) -> Session:
    return ForwardSession(args, kill_timeout=kill_timeout)


class TunnelLifecycleManager:
    """Starts, stops, lists and reconciles relay pod tunnels."""

    def __init__(
        self,
        registry: TunnelRegistry,
        pods: RelayPodController,
        context_switcher: ContextSwitcher,
        endpoint_resolver: EndpointResolver,
        port_allocator: PortAllocator,
        identity: IdentityProvider | None = None,
        config: ManagerConfig | None = None,
        session_factory: SessionFactory = _default_session,
        listener: InterruptListener = interrupt_listener,
        rng: random.Random | None = None,
    ):
        """Initialize the manager from already-constructed collaborators.

        Args:
            registry: Loaded tunnel registry
            pods: Relay pod controller
            context_switcher: Selects the cluster for an environment
            endpoint_resolver: Finds the backend host and port
            port_allocator: Picks the local port
            identity: Names the operator for pod names
            config: Timeouts and known environments
            session_factory: Builds the forwarding session from a command line
            listener: Converts OS interrupts into token cancellation
            rng: Random source for pod name suffixes
        """
        self.registry = registry
        self.pods = pods
        self.context_switcher = context_switcher
        self.endpoint_resolver = endpoint_resolver
        self.port_allocator = port_allocator
        self.identity = identity or EnvironmentIdentity()
        self.config = config or ManagerConfig()
        self._session_factory = session_factory
        self._listener = listener
        self._rng = rng or random.Random()

    @classmethod
    def from_config(cls, config: ManagerConfig | None = None) -> "TunnelLifecycleManager":
        """Wire the default kubectl/AWS collaborators and load the registry.

        Raises:
            RegistryError: If the registry file is malformed
        """
        config = config or ManagerConfig.from_env()
        identity = EnvironmentIdentity()
        kubectl = resolve_binary(config.kubectl_binary)
        pods = RelayPodController(
            namespace=config.namespace,
            image=config.image,
            kubectl=kubectl,
            identity=identity.current_identity,
            email=identity.current_email,
        )
        return cls(
            registry=TunnelRegistry.open(JsonFileStore(config.state_file)),
            pods=pods,
            context_switcher=KubeContextSwitcher(
                clusters=config.clusters, kubectl=kubectl
            ),
            endpoint_resolver=SSMEndpointResolver(
                region=config.region, aws=resolve_binary(config.aws_binary)
            ),
            port_allocator=StaticPortAllocator(config.ports),
            identity=identity,
            config=config,
        )

    def _environment(self, environment: str) -> str:
        env = normalize_environment(environment)
        known = self.config.environments
        if known and env not in known:
            raise ValidationError(
                f"unknown environment '{environment}': known environments are "
                f"{', '.join(known)}"
            )
        return env

    def pod_name(self, kind: ServiceKind) -> str:
        """Generate a relay pod name from the operator and a random suffix."""
        user = sanitize_username(self.identity.current_identity()).lower() or "unknown"
        return f"{kind.value}tunnel-{user}-{self._rng.randrange(POD_SUFFIX_RANGE)}"

    def _phase(self, record_id: str, phase: TunnelPhase, **kw: object) -> None:
        logger.info("Tunnel phase", tunnel_id=record_id, phase=phase.value, **kw)

    def _discard_pod(self, pod_name: str) -> bool:
        """Delete a pod, logging instead of raising on failure."""
        try:
            self.pods.delete(pod_name)
        except TunnelError as e:
            logger.warning("Failed to delete relay pod", pod=pod_name, error=str(e))
            return False
        return True

    def start(
        self,
        service: str,
        environment: str,
        options: TunnelOptions | None = None,
        token: CancellationToken | None = None,
    ) -> TunnelRecord:
        """Create a tunnel and block while it forwards traffic.

        Returns after the forwarding session ends, with the tunnel torn down.

        Args:
            service: Service name, e.g. ``db``
            environment: Environment name, e.g. ``dev``
            options: Service-specific sub-options
            token: Cancellation token; cancelled by SIGINT/SIGTERM as well

        Returns:
            The record as it was persisted when the tunnel became ready

        Raises:
            ValidationError: If the service or environment is invalid
            ConflictError: If a tunnel already exists for the pair
            DependencyError: If context, endpoint or port resolution fails
            ResourceError: If the relay pod cannot be created or the
                forwarder fails
            TimeoutError: If the relay pod never becomes ready
        """
        kind = ServiceKind.parse(service)
        env = self._environment(environment)
        options = options or TunnelOptions()
        record_id = tunnel_id(kind.value, env)

        existing = self.registry.get(record_id)
        if existing is not None:
            raise ConflictError(
                f"tunnel already exists: {record_id} (pod: {existing.pod_name}, "
                f"port: {existing.local_port}); use stop first"
            )

        try:
            self.context_switcher.ensure_context(env)
        except Exception as e:
            raise DependencyError(f"failed to switch cluster context: {e}") from e

        try:
            remote_host, remote_port = self.endpoint_resolver.resolve_endpoint(
                kind, env, options
            )
            validate_port(remote_port, "Remote port")
        except Exception as e:
            raise DependencyError(f"failed to get remote endpoint: {e}") from e

        try:
            local_port = self.port_allocator.allocate_local_port(kind.value, env)
            validate_port(local_port, "Local port")
        except Exception as e:
            raise DependencyError(f"failed to get local port: {e}") from e

        pod_name = self.pod_name(kind)
        self._phase(
            record_id,
            TunnelPhase.CREATING,
            pod=pod_name,
            local=f"localhost:{local_port}",
            remote=f"{remote_host}:{remote_port}",
        )
        self.pods.create(pod_name, remote_host, remote_port)

        try:
            self.pods.wait_ready(
                pod_name,
                timeout=self.config.ready_timeout,
                interval=self.config.poll_interval,
            )
            record = TunnelRecord.create(
                service=kind.value,
                environment=env,
                pod_name=pod_name,
                local_port=local_port,
                remote_host=remote_host,
                remote_port=remote_port,
            )
        except BaseException:
            self._discard_pod(pod_name)
            self._phase(record_id, TunnelPhase.GONE, pod=pod_name)
            raise

        token = token or CancellationToken()
        # Interrupts only cancel the token from here on, so a persisted
        # record is always followed by a complete teardown
        with self._listener(token):
            try:
                self.registry.add(record)
            except BaseException:
                self._discard_pod(pod_name)
                self._phase(record_id, TunnelPhase.GONE, pod=pod_name)
                raise

            self._phase(
                record_id, TunnelPhase.READY, pod=pod_name, local_port=local_port
            )
            self._run_active(record, token)
        return record

    def _run_active(self, record: TunnelRecord, token: CancellationToken) -> None:
        """Forward until the session ends, then tear down exactly once.

        Must run inside the interrupt listener.
        """
        args = self.pods.port_forward_args(
            record.pod_name, record.local_port, record.remote_port
        )
        exit_code: int | None = None
        cancelled = False
        try:
            session = self._session_factory(args, self.config.kill_timeout)
            pid = session.start()
            self.registry.add(record.model_copy(update={"pid": pid}))
            self._phase(
                record.id,
                TunnelPhase.ACTIVE,
                connect=f"localhost:{record.local_port}",
                pid=pid,
            )
            exit_code, cancelled = session.run(token)
        finally:
            self._teardown(record)

        if not cancelled and exit_code:
            raise ResourceError(
                f"port-forward for {record.id} exited with status {exit_code}"
            )

    def _teardown(self, record: TunnelRecord) -> None:
        self._phase(record.id, TunnelPhase.TEARDOWN, pod=record.pod_name)
        self._discard_pod(record.pod_name)
        self.registry.remove(record.id)
        self._phase(record.id, TunnelPhase.GONE)

    def stop(self, service: str, environment: str) -> bool:
        """Tear down the tunnel for a service/environment pair.

        Pod deletion is best-effort, the registry entry is always removed.

        Returns:
            True if a tunnel was stopped, False if none was active

        Raises:
            ValidationError: If the service or environment is empty
        """
        if not service or not service.strip():
            raise ValidationError("service cannot be empty")
        try:
            service = ServiceKind.parse(service).value
        except ValidationError:
            # Records of services no longer supported can still be stopped
            service = service.strip().lower()
        env = normalize_environment(environment)
        record = self.registry.get_by_service_env(service, env)
        if record is None:
            logger.info(
                "No active tunnel", tunnel_id=tunnel_id(service, env)
            )
            return False

        logger.info("Stopping tunnel", tunnel_id=record.id, pod=record.pod_name)
        self._discard_pod(record.pod_name)
        self.registry.remove(record.id)
        logger.info("Tunnel stopped", tunnel_id=record.id)
        return True

    def stop_all(self) -> list[str]:
        """Tear down every tunnel and clear the registry.

        Returns:
            One message per pod that could not be deleted
        """
        records = self.registry.list()
        if not records:
            logger.info("No active tunnels to stop")
            return []

        logger.info("Stopping tunnels", count=len(records))
        failures: list[str] = []
        for record in records:
            try:
                self.pods.delete(record.pod_name)
            except TunnelError as e:
                logger.warning(
                    "Failed to delete relay pod", tunnel_id=record.id, error=str(e)
                )
                failures.append(f"{record.id}: {e}")

        self.registry.clear()
        logger.info("All tunnels stopped", failed=len(failures))
        return failures

    def cleanup_stale(self) -> list[str]:
        """Remove registry entries whose relay pod no longer exists.

        Pods without a record are never touched; they may belong to a session
        running in another terminal.

        Returns:
            IDs of the removed records
        """
        removed: list[str] = []
        for record in self.registry.list():
            if self.pods.status(record.pod_name):
                continue
            logger.info(
                "Removing stale tunnel", tunnel_id=record.id, pod=record.pod_name
            )
            self.registry.remove(record.id)
            removed.append(record.id)

        if removed:
            logger.info("Cleaned up stale tunnels", count=len(removed))
        else:
            logger.info("No stale tunnels found")
        return removed

    def records(self) -> list[TunnelRecord]:
        """Registry records ordered by id, without probing pods."""
        return self.registry.list()

    def list(self) -> str:
        """Render active tunnels, probing each pod's status live."""
        records = self.registry.list()
        if not records:
            return (
                "No active tunnels.\n\n"
                "Start a tunnel with: tunnel start <service> <environment>\n"
            )

        lines = ["Active Tunnels:", "-" * 70]
        for record in records:
            status = self.pods.status(record.pod_name) or "unknown"
            lines.extend(
                [
                    "",
                    f"{record.id}:",
                    f"  Pod:     {record.pod_name} ({status})",
                    f"  Local:   localhost:{record.local_port}",
                    f"  Remote:  {record.remote_host}:{record.remote_port}",
                    f"  Started: {record.started_at:%Y-%m-%d %H:%M:%S}",
                ]
            )
        return "\n".join(lines) + "\n"
