"""Argument vectors for the two tunnel stages."""

from pathlib import Path

from ..common.utils import join_command
from ..config import SupervisorSettings
from .models import DEFAULT_TUNNEL_PORT, TunnelConfiguration


def build_stage1_command(binary_path: str | Path, config: TunnelConfiguration) -> list[str]:
    """Build the slipstream client command line.

    ``<binary> --domain=<d> --resolver=<ip:port>... [--congestion-control=bbr]``
    """
    argv = [str(binary_path), f"--domain={config.domain}"]
    argv.extend(f"--resolver={resolver}" for resolver in config.resolvers)
    if config.congestion_control:
        argv.append(f"--congestion-control={config.congestion_control}")
    if config.tunnel_port != DEFAULT_TUNNEL_PORT:
        argv.append(f"--tcp-listen-port={config.tunnel_port}")
    return argv


def build_stage2_command(
    binary_path: str | Path,
    config: TunnelConfiguration,
    settings: SupervisorSettings,
) -> list[str]:
    """Build the SSH dynamic-forward command riding on stage 1.

    The SOCKS5 listener binds to loopback on ``config.local_port`` and the
    SSH connection goes to the loopback port stage 1 exposes.
    """
    argv = [
        str(binary_path),
        "-N",
        "-D",
        f"127.0.0.1:{config.local_port}",
        "-p",
        str(config.tunnel_port),
    ]
    if config.key_path is not None:
        argv.extend(["-i", str(config.key_path)])
    argv.extend(
        [
            "-o", "StrictHostKeyChecking=no",
            "-o", "UserKnownHostsFile=/dev/null",
            "-o", "ExitOnForwardFailure=yes",
            "-o", "ServerAliveInterval=15",
            "-o", "BatchMode=yes",
        ]
    )
    argv.extend(settings.ssh_extra_args)
    argv.append(f"{settings.ssh_user}@{settings.ssh_host}")

    if settings.stage2_privileged and settings.privileged_prefix:
        return [*settings.privileged_prefix, join_command(argv)]
    return argv
