"""Command line front end for the tunnel supervisor."""

import threading
import tomllib
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .common.exceptions import ConfigRejected, ProvisionError
from .common.logging import setup_logging
from .config import SupervisorSettings
from .process.provisioner import BinaryProvisioner
from .supervisor.events import SinkEvent
from .supervisor.state import ErrorEvent, LogEntry, StageState, StatusEvent, SupervisorState
from .supervisor.supervisor import TunnelSupervisor

app = typer.Typer(add_completion=False, help="Supervise a slipstream + SSH SOCKS5 tunnel")
console = Console()

_STATE_COLORS = {
    StageState.RUNNING: "green",
    StageState.FAILED: "red",
    StageState.STOPPED: "dim",
}


def load_settings(config_file: Path | None) -> SupervisorSettings:
    if config_file is None:
        return SupervisorSettings()
    return SupervisorSettings.from_toml(config_file)


def load_tunnel_table(config_file: Path | None) -> dict[str, Any]:
    """Read the ``[tunnel]`` table of the config file, if any."""
    if config_file is None:
        return {}
    try:
        with config_file.open("rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigRejected(f"Cannot read config file {config_file}: {e}") from e
    return dict(data.get("tunnel", {}))


def merge_tunnel_options(
    table: dict[str, Any],
    domain: str | None,
    resolvers: list[str] | None,
    port: int | None,
    key: Path | None,
) -> dict[str, Any]:
    """Command line options override values from the config file."""
    merged = dict(table)
    if domain is not None:
        merged["domain"] = domain
    if resolvers:
        merged["resolvers"] = resolvers
    if port is not None:
        merged["local_port"] = port
    if key is not None:
        merged["key_path"] = key
    return merged


def render_event(event: SinkEvent, show_output: bool = True) -> None:
    if isinstance(event, StatusEvent):
        stage1 = _colored(event.stage1.kind, str(event.stage1))
        stage2 = _colored(event.stage2.kind, str(event.stage2))
        console.print(f"[bold]tunnel[/bold] {stage1}  [bold]socks[/bold] {stage2}")
    elif isinstance(event, ErrorEvent):
        console.print(f"[red]{escape(event.title)}[/red]")
        if event.detail:
            console.print(event.detail, markup=False, highlight=False)
    elif isinstance(event, LogEntry) and show_output:
        console.print(f"[dim]{escape(event.source)}[/dim] {escape(event.line)}", highlight=False)


def _colored(kind: StageState, text: str) -> str:
    color = _STATE_COLORS.get(kind, "yellow")
    return f"[{color}]{text}[/{color}]"


@app.command()
def run(
    domain: str | None = typer.Option(None, "--domain", "-d", help="Tunnel domain"),
    resolver: list[str] | None = typer.Option(None, "--resolver", "-r", help="Resolver ip[:port], repeatable"),
    port: int | None = typer.Option(None, "--port", "-p", help="Local SOCKS5 port"),
    key: Path | None = typer.Option(None, "--key", "-k", help="SSH private key"),
    config_file: Path | None = typer.Option(None, "--config", "-c", help="TOML file with [tunnel]/[supervisor]"),
    log_level: str | None = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING..."),
    json_logs: bool = typer.Option(False, "--json-logs", help="Render logs as JSON"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Hide raw process output"),
) -> None:
    """Start the tunnel and keep it up until interrupted."""
    setup_logging(level=log_level, json_format=json_logs)

    try:
        settings = load_settings(config_file)
        tunnel = merge_tunnel_options(load_tunnel_table(config_file), domain, resolver, port, key)
    except ConfigRejected as e:
        console.print(f"[red]Configuration rejected:[/red] {escape(str(e))}")
        raise typer.Exit(2)

    supervisor = TunnelSupervisor(settings)
    supervisor.sink.subscribe(lambda event: render_event(event, show_output=not quiet))
    console.print(Panel(f"Starting tunnel for {escape(str(tunnel.get('domain', '?')))}", subtitle="Ctrl-C to stop"))

    started = False
    gave_up = threading.Event()
    try:
        result = supervisor.apply(tunnel)
        started = result.state is not SupervisorState.FAILED
        while started and not gave_up.wait(1.0):
            if supervisor.state is SupervisorState.FAILED:
                gave_up.set()
    except ConfigRejected as e:
        console.print(f"[red]Configuration rejected:[/red] {escape(str(e))}")
        raise typer.Exit(2)
    except KeyboardInterrupt:
        console.print("[yellow]Stopping...[/yellow]")
        return
    finally:
        supervisor.close()

    if not started:
        console.print("[red]Tunnel failed to start.[/red]")
        raise typer.Exit(1)
    if gave_up.is_set():
        console.print("[red]Tunnel gave up restarting.[/red]")
        raise typer.Exit(1)


@app.command()
def check(
    config_file: Path | None = typer.Option(None, "--config", "-c", help="TOML file with [supervisor]"),
) -> None:
    """Provision both binaries and show where they resolve."""
    setup_logging(level="WARNING")
    try:
        settings = load_settings(config_file)
    except ConfigRejected as e:
        console.print(f"[red]Configuration rejected:[/red] {e}")
        raise typer.Exit(2)

    provisioner = BinaryProvisioner(settings)
    table = Table(title="Binaries")
    table.add_column("Stage")
    table.add_column("Binary")
    table.add_column("Path")

    failed = False
    for stage, name in (("tunnel", settings.stage1_binary), ("socks", settings.stage2_binary)):
        try:
            path = str(provisioner.ensure(name))
        except ProvisionError as e:
            path = f"[red]{e}[/red]"
            failed = True
        table.add_row(stage, name, path)

    console.print(table)
    if failed:
        raise typer.Exit(1)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
