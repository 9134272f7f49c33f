"""Utility functions for pod tunnels."""

import re

# Port range constants
MIN_PORT = 1
MAX_PORT = 65535

# Kubernetes label values are limited to 63 characters
MAX_LABEL_LENGTH = 63
# Usernames are truncated to keep pod names short
MAX_POD_USERNAME_LENGTH = 20

_NON_POD_NAME_CHARS = re.compile(r"[^a-zA-Z0-9-]")
_NON_LABEL_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


def validate_port(port: int, port_name: str = "Port") -> None:
    """Validate port number range.

    Args:
        port: Port number to validate
        port_name: Name of the port for error messages

    Raises:
        ValueError: If port is not in valid range (1-65535)
    """
    if isinstance(port, bool) or not isinstance(port, int):
        raise ValueError(f"{port_name} must be between {MIN_PORT} and {MAX_PORT}")
    if not (MIN_PORT <= port <= MAX_PORT):
        raise ValueError(f"{port_name} must be between {MIN_PORT} and {MAX_PORT}")


def sanitize_username(username: str | None) -> str:
    """Strip a username down to characters that are valid in a pod name.

    Args:
        username: Raw username, e.g. from ``$USER``

    Returns:
        Username containing only ``[a-zA-Z0-9-]``, at most 20 characters
    """
    if not username:
        return ""
    return _NON_POD_NAME_CHARS.sub("", username)[:MAX_POD_USERNAME_LENGTH]


def sanitize_label_value(value: str | None) -> str:
    """Sanitize a string into a valid Kubernetes label value.

    ``@`` becomes ``at`` and every other disallowed character becomes ``-``.

    Args:
        value: Raw label value

    Returns:
        Label value of at most 63 characters
    """
    if not value:
        return ""
    value = value.replace("@", "at")
    value = _NON_LABEL_CHARS.sub("-", value)
    return value[:MAX_LABEL_LENGTH]
