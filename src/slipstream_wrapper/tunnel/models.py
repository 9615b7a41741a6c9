"""Tunnel configuration model.

A ``TunnelConfiguration`` is the immutable value handed to the supervisor on
every apply. Value equality decides whether an apply is a no-op.
"""

import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..common.exceptions import ConfigRejected
from ..common.utils import normalize_resolver, validate_non_empty_string

DEFAULT_TUNNEL_PORT = 5201
DEFAULT_LOCAL_PORT = 1080

# Labels are dot separated and cannot start or end with a hyphen.
_LABEL = r"(?!-)[A-Za-z0-9_-]{1,63}(?<!-)"
_DOMAIN_RE = re.compile(rf"^(?=.{{1,253}}\.?$){_LABEL}(?:\.{_LABEL})*\.?$")


class TunnelConfiguration(BaseModel):
    """Resolvers, domain and ports for one tunnel."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True, extra="forbid")

    resolvers: tuple[str, ...] = Field(min_length=1, description="Resolver endpoints as host:port")
    domain: str = Field(description="Tunnel domain served by the remote end")
    local_port: int = Field(default=DEFAULT_LOCAL_PORT, ge=1, le=65535, description="Local SOCKS5 listen port")
    key_path: Path | None = Field(default=None, description="Private key used by stage 2")
    tunnel_port: int = Field(
        default=DEFAULT_TUNNEL_PORT, ge=1, le=65535, description="Loopback port exposed by stage 1"
    )
    congestion_control: str | None = Field(default="bbr", description="Stage 1 congestion control")

    @field_validator("resolvers", mode="before")
    @classmethod
    def split_resolvers(cls, v: Any) -> Any:
        """Accept a comma/whitespace separated string as well as a sequence."""
        if isinstance(v, str):
            return tuple(part for part in re.split(r"[\s,]+", v) if part)
        return v

    @field_validator("resolvers")
    @classmethod
    def normalize_resolvers(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(normalize_resolver(item) for item in v)

    @field_validator("domain")
    @classmethod
    def validate_domain(cls, v: str) -> str:
        v = validate_non_empty_string(v, "Domain")
        if not _DOMAIN_RE.match(v):
            raise ValueError(f"Invalid domain name: {v}")
        return v.rstrip(".").lower()

    @field_validator("key_path", mode="before")
    @classmethod
    def empty_key_is_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("congestion_control")
    @classmethod
    def validate_congestion_control(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        if not re.match(r"^[a-z0-9_-]+$", v):
            raise ValueError(f"Invalid congestion control: {v}")
        return v

    @property
    def tunnel_endpoint(self) -> str:
        """Loopback endpoint stage 2 connects through."""
        return f"127.0.0.1:{self.tunnel_port}"

    def summary(self) -> dict[str, Any]:
        """Loggable view without the key location."""
        return {
            "domain": self.domain,
            "resolvers": list(self.resolvers),
            "local_port": self.local_port,
            "tunnel_port": self.tunnel_port,
            "has_key": self.key_path is not None,
        }


def parse_configuration(data: "TunnelConfiguration | Mapping[str, Any]") -> TunnelConfiguration:
    """Validate caller input into a ``TunnelConfiguration``.

    Args:
        data: An existing configuration or a mapping with the apply fields
            (``resolvers``, ``domain``, ``local_port``/``localPort``,
            ``key_path``/``keyPath``)

    Returns:
        Validated configuration

    Raises:
        ConfigRejected: If required fields are missing or malformed
    """
    if isinstance(data, TunnelConfiguration):
        return data

    if not isinstance(data, Mapping):
        raise ConfigRejected(f"Configuration must be a mapping, got {type(data).__name__}")

    aliases = {"localPort": "local_port", "keyPath": "key_path", "tunnelPort": "tunnel_port"}
    normalized = {aliases.get(key, key): value for key, value in data.items()}

    try:
        return TunnelConfiguration.model_validate(normalized)
    except ValidationError as e:
        errors = [
            f"{'.'.join(str(part) for part in error['loc']) or 'config'}: {error['msg']}"
            for error in e.errors()
        ]
        raise ConfigRejected("Invalid tunnel configuration: " + "; ".join(errors), errors=errors) from e
