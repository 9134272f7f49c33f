"""Shared pytest fixtures for pod tunnel tests."""

import random
from contextlib import contextmanager
from unittest.mock import Mock

import pytest

from pod_tunnel.common.exceptions import DependencyError, ResourceError
from pod_tunnel.tunnel.config import ManagerConfig
from pod_tunnel.tunnel.manager import TunnelLifecycleManager
from pod_tunnel.tunnel.registry import MemoryStore, TunnelRegistry


class FakePods:
    """In-memory relay pod controller recording every call."""

    def __init__(self):
        self.pods: dict[str, str] = {}
        self.created: list[tuple[str, str, int]] = []
        self.deleted: list[str] = []
        self.create_error: Exception | None = None
        self.wait_error: Exception | None = None
        self.delete_error: Exception | None = None

    def create(self, name, remote_host, remote_port):
        if self.create_error is not None:
            raise self.create_error
        self.created.append((name, remote_host, remote_port))
        self.pods[name] = "Pending"

    def wait_ready(self, name, timeout=90.0, interval=2.0):
        if self.wait_error is not None:
            raise self.wait_error
        self.pods[name] = "Running"

    def status(self, name):
        return self.pods.get(name)

    def exists(self, name):
        return name in self.pods

    def delete(self, name):
        self.deleted.append(name)
        if self.delete_error is not None:
            raise self.delete_error
        if name not in self.pods:
            raise ResourceError(f'pods "{name}" not found')
        del self.pods[name]

    def port_forward_args(self, name, local_port, remote_port):
        return ["kubectl", "port-forward", f"pod/{name}", f"{local_port}:{remote_port}"]


class FakeSession:
    """Forwarding session whose run() behaviour is scripted per test."""

    def __init__(self, args, kill_timeout, behaviour):
        self.args = args
        self.kill_timeout = kill_timeout
        self.behaviour = behaviour
        self.started = False

    def start(self):
        self.started = True
        return 4242

    def run(self, token):
        return self.behaviour(token)


class FakeCollaborators:
    """Context switcher, endpoint resolver, port allocator and identity."""

    def __init__(self):
        self.endpoints = {("db", "dev"): ("10.0.0.5", 5432)}
        self.ports = {("db", "dev"): 5555}
        self.contexts: list[str] = []
        self.context_error: Exception | None = None

    def ensure_context(self, environment):
        if self.context_error is not None:
            raise self.context_error
        self.contexts.append(environment)

    def resolve_endpoint(self, kind, environment, options):
        try:
            return self.endpoints[(kind.value, environment)]
        except KeyError as e:
            raise DependencyError(f"no endpoint for {kind.value}") from e

    def allocate_local_port(self, service, environment):
        try:
            return self.ports[(service, environment)]
        except KeyError as e:
            raise DependencyError(f"no port for {service}") from e

    def current_identity(self):
        return "alice"

    def current_email(self):
        return "alice@example.com"


@contextmanager
def _no_listener(token):
    yield token


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def registry(store):
    return TunnelRegistry.open(store)


@pytest.fixture
def pods():
    return FakePods()


@pytest.fixture
def collaborators():
    return FakeCollaborators()


@pytest.fixture
def sessions():
    """Sessions created by the manager, plus the behaviour new ones get."""
    created: list[FakeSession] = []
    state = {"behaviour": lambda token: (0, False), "created": created}
    return state


@pytest.fixture
def manager(registry, pods, collaborators, sessions):
    """TunnelLifecycleManager wired to in-memory fakes."""

    def factory(args, kill_timeout):
        session = FakeSession(args, kill_timeout, sessions["behaviour"])
        sessions["created"].append(session)
        return session

    return TunnelLifecycleManager(
        registry=registry,
        pods=pods,
        context_switcher=collaborators,
        endpoint_resolver=collaborators,
        port_allocator=collaborators,
        identity=collaborators,
        config=ManagerConfig(ready_timeout=5, poll_interval=0.1),
        session_factory=factory,
        listener=_no_listener,
        rng=random.Random(7),
    )


@pytest.fixture
def completed():
    """Build a Mock shaped like subprocess.CompletedProcess."""

    def _completed(stdout="", stderr="", returncode=0):
        result = Mock()
        result.stdout = stdout
        result.stderr = stderr
        result.returncode = returncode
        return result

    return _completed
