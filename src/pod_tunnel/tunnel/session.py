"""Blocking port-forward session with interrupt-driven cancellation."""

import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from types import FrameType
from typing import Any

from ..common.logging import get_logger
from ..common.process import ProcessManager

logger = get_logger(__name__)

INTERRUPT_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class CancellationToken:
    """One-shot cancellation flag shared between a signal handler and a session."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or ``timeout`` elapses; return cancelled."""
        return self._event.wait(timeout)


@contextmanager
def interrupt_listener(token: CancellationToken) -> Iterator[CancellationToken]:
    """Cancel ``token`` on SIGINT/SIGTERM while the block runs.

    Previous handlers are restored on exit so repeated use within one
    process does not accumulate handlers. Signal handlers can only be
    installed from the main thread; elsewhere the listener does nothing.
    """
    if threading.current_thread() is not threading.main_thread():
        logger.debug("Not on main thread, interrupt listener disabled")
        yield token
        return

    def _handler(signum: int, _frame: FrameType | None) -> None:
        name = signal.Signals(signum).name
        logger.warning("Interrupted, cleaning up tunnel", signal=name)
        token.cancel(name)

    previous: dict[signal.Signals, Any] = {}
    for sig in INTERRUPT_SIGNALS:
        previous[sig] = signal.signal(sig, _handler)
    try:
        yield token
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


class ForwardSession:
    """Runs the local-to-pod forwarder until it exits or is cancelled."""

    def __init__(
        self,
        args: list[str],
        kill_timeout: float = 5.0,
        poll_interval: float = 0.2,
    ):
        self.process = ProcessManager(args, kill_timeout=kill_timeout)
        self.poll_interval = poll_interval
        self.started = False
        self._first_pid = 0

    @property
    def pid(self) -> int | None:
        return self.process.pid

    def start(self) -> int:
        """Start the forwarder and return its PID.

        A session launches its forwarder at most once; later calls return
        the PID of the first launch even if it has exited.
        """
        if self.started:
            return self._first_pid
        self._first_pid = self.process.start()
        self.started = True
        return self._first_pid

    def run(self, token: CancellationToken) -> tuple[int | None, bool]:
        """Block until the forwarder exits or ``token`` is cancelled.

        The forwarder is always stopped before returning.

        Returns:
            ``(exit_code, cancelled)``; exit_code is None if it had to be
            stopped
        """
        if not self.started:
            self.start()
        try:
            while True:
                code = self.process.poll()
                if code is not None:
                    logger.info("Port-forward exited", exit_code=code)
                    return code, token.cancelled
                if token.wait(self.poll_interval):
                    logger.info("Port-forward cancelled", reason=token.reason)
                    return None, True
        finally:
            self.process.stop()
