"""Custom exceptions for pod tunnels."""


class TunnelError(Exception):
    """Base exception for all pod tunnel errors."""

    pass


class ValidationError(TunnelError):
    """Raised when a service or environment name is empty or unknown."""

    pass


class ConflictError(TunnelError):
    """Raised when a tunnel is already active for a service/environment pair."""

    pass


class DependencyError(TunnelError):
    """Raised when context switching or endpoint/port resolution fails."""

    pass


class ResourceError(TunnelError):
    """Raised when a relay pod or the tunnel registry cannot be operated on."""

    pass


class RegistryError(ResourceError):
    """Raised when the persisted tunnel registry cannot be read or written."""

    pass


class TimeoutError(TunnelError):
    """Raised when a relay pod never reaches the running state."""

    pass


class CommandError(TunnelError):
    """Raised when an external command exits unsuccessfully."""

    def __init__(
        self, args: list[str], returncode: int | None, stderr: str = ""
    ) -> None:
        self.args_list = list(args)
        self.returncode = returncode
        self.stderr = stderr.strip()
        message = f"{args[0] if args else 'command'} exited with {returncode}"
        if self.stderr:
            message = f"{message}: {self.stderr}"
        super().__init__(message)
