"""Utility functions for slipstream wrapper."""

import ipaddress
import shlex
from pathlib import Path

# Port range constants
MIN_PORT = 1
MAX_PORT = 65535

DEFAULT_DNS_PORT = 53


def validate_port(port: int, port_name: str = "Port") -> None:
    """Validate port number range.

    Args:
        port: Port number to validate
        port_name: Name of the port for error messages

    Raises:
        ValueError: If port is not in valid range (1-65535)
    """
    if not isinstance(port, int) or not (MIN_PORT <= port <= MAX_PORT):
        raise ValueError(f"{port_name} must be between {MIN_PORT} and {MAX_PORT}")


def validate_non_empty_string(value: str, field_name: str) -> str:
    """Validate that a string is not empty or only whitespace.

    Args:
        value: String value to validate
        field_name: Name of the field for error messages

    Returns:
        Stripped string value

    Raises:
        ValueError: If string is empty or only whitespace
    """
    if not value or not value.strip():
        raise ValueError(f"{field_name} cannot be empty")
    return value.strip()


def normalize_resolver(value: str, default_port: int = DEFAULT_DNS_PORT) -> str:
    """Normalize a resolver endpoint to ``host:port``.

    A bare host gets ``default_port``. Bare IPv6 addresses are bracketed.

    Args:
        value: Resolver as ``host``, ``host:port``, ``[v6]`` or ``[v6]:port``
        default_port: Port used when none is given

    Returns:
        Normalized ``host:port`` string

    Raises:
        ValueError: If the host is empty or the port is invalid
    """
    value = validate_non_empty_string(value, "Resolver")

    if value.startswith("["):
        host, sep, rest = value[1:].partition("]")
        if not sep:
            raise ValueError(f"Unterminated IPv6 resolver: {value}")
        port_text = rest[1:] if rest.startswith(":") else ""
        if rest and not rest.startswith(":"):
            raise ValueError(f"Invalid resolver: {value}")
        ipaddress.IPv6Address(host)
        host = f"[{host}]"
    elif value.count(":") > 1:
        ipaddress.IPv6Address(value)
        host, port_text = f"[{value}]", ""
    else:
        host, _, port_text = value.partition(":")
        if not host:
            raise ValueError(f"Resolver host cannot be empty: {value}")

    if port_text:
        if not port_text.isdigit():
            raise ValueError(f"Invalid resolver port: {value}")
        port = int(port_text)
    else:
        port = default_port
    validate_port(port, "Resolver port")
    return f"{host}:{port}"


def mask_path(path: str | Path | None) -> str:
    """Mask a credential path for logging, keeping only the file name."""
    if path is None:
        return "<none>"
    return f".../{Path(path).name}"


def join_command(argv: list[str]) -> str:
    """Join an argument vector into a single shell-safe string."""
    return shlex.join(argv)
