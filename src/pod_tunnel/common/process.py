"""Process management for kubectl and other external tools."""

import shutil
import subprocess
from types import TracebackType
from typing import Literal

from .exceptions import CommandError
from .logging import get_logger

logger = get_logger(__name__)

# Upper bound for one-shot commands such as ``kubectl get``
DEFAULT_COMMAND_TIMEOUT = 60.0


def resolve_binary(name: str) -> str:
    """Resolve a binary name through PATH, falling back to the bare name.

    Args:
        name: Binary name or path

    Returns:
        Absolute path when found on PATH, otherwise ``name`` unchanged
    """
    return shutil.which(name) or name


def run_command(
    args: list[str],
    timeout: float = DEFAULT_COMMAND_TIMEOUT,
    check: bool = True,
) -> subprocess.CompletedProcess[str]:
    """Run a one-shot command and capture its output.

    Args:
        args: Command line, binary first
        timeout: Seconds before the command is abandoned
        check: Raise CommandError on a non-zero exit status

    Returns:
        Completed process with text stdout/stderr

    Raises:
        CommandError: If the binary cannot be executed, times out, or (with
            ``check``) exits non-zero. The tool's stderr is kept verbatim.
    """
    logger.debug("Running command", args=args)
    try:
        result = subprocess.run(
            args,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        raise CommandError(args, None, f"timed out after {timeout}s") from e
    except OSError as e:
        raise CommandError(args, None, str(e)) from e

    if check and result.returncode != 0:
        raise CommandError(args, result.returncode, result.stderr or "")
    return result


class ProcessManager:
    """Manages a long-running child process with context manager support"""

    def __init__(self, args: list[str], kill_timeout: float = 5.0):
        """Initialize ProcessManager with the command to run

        Args:
            args: Command line, binary first
            kill_timeout: Seconds to wait after terminate before killing

        Raises:
            ValueError: If no command is given
        """
        if not args:
            raise ValueError("Command cannot be empty")
        self.args = list(args)
        self.kill_timeout = kill_timeout
        self._process: subprocess.Popen[bytes] | None = None
        self.returncode: int | None = None

    def start(self) -> int:
        """Start the process, inheriting this process's stdout and stderr

        Returns:
            PID of the started process

        Raises:
            CommandError: If the process cannot be started
        """
        if self._process is not None and self.is_running():
            logger.debug("Process already running", pid=self.pid)
            return self._process.pid

        logger.info("Starting process", args=self.args)
        try:
            self._process = subprocess.Popen(self.args)
        except OSError as e:
            logger.error("Failed to start process", error=str(e))
            raise CommandError(self.args, None, str(e)) from e

        self.returncode = None
        logger.debug("Process started", pid=self._process.pid)
        return self._process.pid

    def poll(self) -> int | None:
        """Return the exit status if the process has finished, else None"""
        if self._process is None:
            return self.returncode
        code = self._process.poll()
        if code is not None:
            self.returncode = code
        return code

    def is_running(self) -> bool:
        """Check if process is currently running"""
        if self._process is None:
            return False
        return self._process.poll() is None

    @property
    def pid(self) -> int | None:
        """Get process ID if running"""
        if self._process is not None and self.is_running():
            return self._process.pid
        return None

    def stop(self) -> bool:
        """Stop the process, terminating first and killing on timeout

        Returns:
            True if the process is no longer running
        """
        if self._process is None:
            return True

        if not self.is_running():
            self.returncode = self._process.returncode
            self._process = None
            return True

        logger.info("Stopping process", pid=self._process.pid)
        try:
            self._process.terminate()
            try:
                self.returncode = self._process.wait(timeout=self.kill_timeout)
            except subprocess.TimeoutExpired:
                logger.warning(
                    "Process did not terminate gracefully, force killing",
                    pid=self._process.pid,
                )
                self._process.kill()
                self.returncode = self._process.wait(timeout=self.kill_timeout)
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.error("Error stopping process", error=str(e))
            return False

        self._process = None
        return True

    def __enter__(self) -> "ProcessManager":
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> Literal[False]:
        """Context manager exit - automatically stop process

        Returns:
            False to propagate any exception
        """
        if not self.stop():
            logger.error("Process still running after context exit", args=self.args)
        return False
