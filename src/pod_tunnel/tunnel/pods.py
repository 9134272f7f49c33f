"""Relay pod management through kubectl."""

import time
from collections.abc import Callable

from ..common.exceptions import CommandError, ResourceError, TimeoutError
from ..common.logging import get_logger
from ..common.process import run_command
from ..common.utils import sanitize_label_value, validate_port
from .models import PodPhase

logger = get_logger(__name__)


class RelayPodController:
    """Creates, probes and deletes the pods that forward tunnel traffic.

    Each relay pod runs a single ``socat`` container that listens on the
    remote port and forwards every accepted connection to
    ``remote_host:remote_port``.
    """

    def __init__(
        self,
        namespace: str = "tunnel-access",
        image: str = "alpine/socat",
        kubectl: str = "kubectl",
        identity: Callable[[], str] | None = None,
        email: Callable[[], str] | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the controller.

        Args:
            namespace: Namespace the relay pods live in
            image: Container image providing ``socat``
            kubectl: kubectl binary
            identity: Returns the caller's name for the ``created-by`` label
            email: Returns the caller's email for the ``creator-email`` label
            clock: Time source, for tests
            sleep: Sleep function, for tests
        """
        self.namespace = namespace
        self.image = image
        self.kubectl = kubectl
        self._identity = identity or (lambda: "unknown")
        self._email = email or (lambda: "unknown")
        self._clock = clock
        self._sleep = sleep

    def _kubectl(self, *args: str) -> list[str]:
        return [self.kubectl, "-n", self.namespace, *args]

    def labels(self, name: str) -> dict[str, str]:
        """Ownership labels attached to a relay pod."""
        return {
            "name": sanitize_label_value(name),
            "created-by": sanitize_label_value(self._identity()) or "unknown",
            "created-at": str(int(self._clock())),
            "creator-email": sanitize_label_value(self._email()) or "unknown",
        }

    def create(self, name: str, remote_host: str, remote_port: int) -> None:
        """Provision a relay pod forwarding to ``remote_host:remote_port``.

        Raises:
            ResourceError: If kubectl fails; carries kubectl's stderr
        """
        validate_port(remote_port, "Remote port")
        labels = ",".join(f"{key}={value}" for key, value in self.labels(name).items())
        args = self._kubectl(
            "run",
            name,
            "--image",
            self.image,
            "--image-pull-policy",
            "IfNotPresent",
            "--restart=Never",
            "--port",
            str(remote_port),
            "--labels",
            labels,
            "--command",
            "--",
            "socat",
            f"tcp-listen:{remote_port},fork,reuseaddr",
            f"tcp:{remote_host}:{remote_port}",
        )

        logger.info(
            "Creating relay pod",
            pod=name,
            namespace=self.namespace,
            remote=f"{remote_host}:{remote_port}",
        )
        try:
            run_command(args)
        except CommandError as e:
            raise ResourceError(f"failed to create relay pod {name}: {e}") from e

    def status(self, name: str) -> str | None:
        """Return the pod phase, or None if the pod is absent or unresolvable."""
        try:
            result = run_command(
                self._kubectl("get", "pod", name, "-o", "jsonpath={.status.phase}")
            )
        except CommandError as e:
            logger.debug("Pod status probe failed", pod=name, error=str(e))
            return None
        return result.stdout.strip() or None

    def exists(self, name: str) -> bool:
        try:
            run_command(self._kubectl("get", "pod", name, "-o", "name"))
        except CommandError:
            return False
        return True

    def wait_ready(
        self, name: str, timeout: float = 90.0, interval: float = 2.0
    ) -> None:
        """Poll the pod on a fixed interval until it is running.

        Args:
            name: Pod name
            timeout: Seconds before giving up
            interval: Seconds between status probes

        Raises:
            ResourceError: If the pod enters a terminal failure phase
            TimeoutError: If the pod is not running before the timeout
        """
        deadline = self._clock() + timeout
        while True:
            phase = self.status(name)
            if phase == PodPhase.RUNNING:
                logger.info("Relay pod is running", pod=name)
                return
            if phase in PodPhase.FAILED:
                raise ResourceError(f"relay pod {name} entered {phase} state")
            logger.debug("Waiting for relay pod", pod=name, phase=phase or "unknown")

            remaining = deadline - self._clock()
            if remaining <= 0:
                raise TimeoutError(
                    f"timeout waiting for relay pod {name} to be ready after {timeout:g}s"
                )
            self._sleep(min(interval, remaining))

    def delete(self, name: str) -> None:
        """Force-delete a relay pod.

        Raises:
            ResourceError: If kubectl fails; carries kubectl's stderr
        """
        logger.info("Deleting relay pod", pod=name, namespace=self.namespace)
        try:
            run_command(
                self._kubectl("delete", "pod", name, "--grace-period=0", "--force")
            )
        except CommandError as e:
            raise ResourceError(f"failed to delete relay pod {name}: {e}") from e

    def port_forward_args(self, name: str, local_port: int, remote_port: int) -> list[str]:
        """Command line bridging ``local_port`` to the pod's listening port."""
        return self._kubectl("port-forward", f"pod/{name}", f"{local_port}:{remote_port}")
