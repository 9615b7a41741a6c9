"""Tunnel configuration and stage command lines."""

from .commands import build_stage1_command, build_stage2_command
from .models import (
    DEFAULT_LOCAL_PORT,
    DEFAULT_TUNNEL_PORT,
    TunnelConfiguration,
    parse_configuration,
)

__all__ = [
    "TunnelConfiguration",
    "parse_configuration",
    "build_stage1_command",
    "build_stage2_command",
    "DEFAULT_LOCAL_PORT",
    "DEFAULT_TUNNEL_PORT",
]
