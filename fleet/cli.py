"""Typer command line for the desktop instance fleet.

Every command resolves its collaborators through the shared service
container, so the CLI and the HTTP API drive the same controller, monitor
and backup manager. Fleet errors exit with the code carried by the error.
"""
from __future__ import annotations

import signal
from itertools import islice
from typing import Any, NoReturn

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .container import get_services
from .errors import ConfirmationDeclined, ExitCode, FleetError

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    help="Manage a fleet of containerized desktop instances.",
    no_args_is_help=True,
    add_completion=False,
)

JSON_OPTION = typer.Option(False, "--json", help="Emit machine-readable JSON.")


def _fail(error: FleetError) -> NoReturn:
    err_console.print(f"[red]Error:[/red] {error}")
    raise typer.Exit(code=int(error.exit_code))


def _format_bytes(size: int) -> str:
    value = float(size)
    for unit in ("B", "KiB", "MiB", "GiB"):
        if value < 1024:
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} TiB"


def _percent(resources: dict[str, Any] | None, key: str) -> str:
    if not resources:
        return "-"
    return f"{resources[key]:.1f}"


@app.callback(invoke_without_command=True)
def _root(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", "-V", help="Show the version and exit."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log progress to stderr."),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"fleet {__version__}")
        raise typer.Exit(code=0)

    from .observability import setup_json_logging

    setup_json_logging(level="INFO" if verbose else "WARNING")


# =============================================================================
# Lifecycle
# =============================================================================

@app.command()
def start() -> None:
    """Start the main instance."""
    try:
        instance = get_services().controller.start_main()
    except FleetError as e:
        _fail(e)
    console.print(f"[green]Main instance running.[/green] Access via: http://localhost:{instance.display_port}")
    console.print(f"VNC port: {instance.vnc_port}")


@app.command()
def stop() -> None:
    """Stop and remove every fleet container (data is kept)."""
    try:
        stopped = get_services().controller.stop_all()
    except FleetError as e:
        _fail(e)
    console.print(f"[green]All instances stopped[/green] ({len(stopped)})")


@app.command()
def scale(count: int = typer.Argument(..., help="Target number of instances.")) -> None:
    """Scale the fleet to COUNT instances."""
    try:
        result = get_services().controller.scale_to(count)
    except FleetError as e:
        _fail(e)
    for name in result.created:
        console.print(f"[green]+[/green] {name}")
    for name in result.removed:
        console.print(f"[yellow]-[/yellow] {name}")
    if not result.changed:
        console.print(f"Fleet already at {count} instance(s).")
    else:
        console.print(f"[green]Scaling completed[/green]: {count} instance(s)")


@app.command()
def status(as_json: bool = JSON_OPTION) -> None:
    """Show instances, ports and resource usage."""
    try:
        rows = get_services().controller.status()
    except FleetError as e:
        _fail(e)
    if as_json:
        console.print_json(data=rows)
        return
    if not rows:
        console.print("No instances running.")
        return

    table = Table("Name", "Status", "Display", "VNC", "CPU %", "Memory %")
    for row in rows:
        table.add_row(
            row["name"],
            row["runtime_status"],
            str(row["display_port"] or "-"),
            str(row["vnc_port"] or "-"),
            _percent(row["resources"], "cpu_percent"),
            _percent(row["resources"], "memory_percent"),
        )
    console.print(table)


@app.command()
def logs(
    name: str = typer.Argument(..., help="Instance name."),
    tail: int = typer.Option(100, "--tail", "-n", min=1, help="Number of lines to show."),
    follow: bool = typer.Option(False, "--follow", "-f", help="Keep streaming new lines."),
) -> None:
    """Show the container log of an instance."""
    try:
        lines = get_services().controller.logs(name, tail=tail, follow=follow)
        if not follow:
            lines = islice(lines, tail)
        for line in lines:
            typer.echo(line)
    except FleetError as e:
        _fail(e)
    except KeyboardInterrupt:
        pass


@app.command()
def create(
    name: str = typer.Argument(..., help="Instance name."),
    port: int | None = typer.Argument(None, help="Host port for the browser display."),
    vnc_port: int | None = typer.Argument(None, help="Host port for VNC."),
) -> None:
    """Create a named instance, optionally on explicit ports."""
    try:
        instance = get_services().controller.create_instance(name, port=port, vnc_port=vnc_port)
    except FleetError as e:
        _fail(e)
    console.print(f"[green]Instance {instance.name} created.[/green] Access via: http://localhost:{instance.display_port}")
    console.print(f"VNC port: {instance.vnc_port}")


@app.command()
def remove(
    name: str = typer.Argument(..., help="Instance name."),
    keep_data: bool = typer.Option(False, "--keep-data", help="Keep data and log directories."),
) -> None:
    """Remove an instance and delete its data."""
    try:
        get_services().controller.remove_instance(name, purge=not keep_data)
    except FleetError as e:
        _fail(e)
    console.print(f"[green]Instance {name} removed.[/green]")


# =============================================================================
# Monitoring
# =============================================================================

@app.command()
def health(
    gate: bool = typer.Option(False, "--gate", help="Exit 1 when the fleet is degraded."),
    as_json: bool = JSON_OPTION,
) -> None:
    """Check every instance once."""
    try:
        report = get_services().monitor.check_fleet()
    except FleetError as e:
        _fail(e)

    if as_json:
        console.print_json(data=report.to_dict())
    else:
        table = Table("Name", "Container", "Service", "Status", "Notes")
        for record in report.records:
            notes = "; ".join(filter(None, [record.error, *record.warnings]))
            table.add_row(
                record.name,
                record.container_state.value,
                "up" if record.service_reachable else "down",
                record.status.value,
                notes,
            )
        if report.records:
            console.print(table)
        colour = "green" if report.healthy else "red"
        console.print(f"Fleet status: [{colour}]{report.fleet_status.value}[/{colour}]")

    if gate and not report.healthy:
        raise typer.Exit(code=int(ExitCode.DEGRADED))


@app.command()
def monitor() -> None:
    """Poll the fleet continuously and send alerts until interrupted."""
    from .observability import attach_monitor_log

    services = get_services()
    attach_monitor_log(services.monitor_log_path())
    health_monitor = services.monitor

    def _handle(signum, frame):
        err_console.print("Stopping monitor after the current cycle...")
        health_monitor.stop()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)

    console.print(
        f"Monitoring fleet every {services.settings.monitor.interval}s "
        f"(log: {services.monitor_log_path()})"
    )
    services.scheduler.start()
    try:
        health_monitor.run_forever()
    finally:
        services.shutdown()


@app.command()
def metrics(as_json: bool = JSON_OPTION) -> None:
    """Show detailed resource usage, disk usage and port mappings."""
    from .observability import collect_fleet_metrics

    try:
        data = collect_fleet_metrics(get_services().controller)
    except FleetError as e:
        _fail(e)
    if as_json:
        console.print_json(data=data)
        return

    table = Table("Name", "Status", "Display", "VNC", "CPU %", "Memory %", "Memory")
    for row in data["instances"]:
        resources = row["resources"]
        table.add_row(
            row["name"],
            row["runtime_status"],
            str(row["display_port"] or "-"),
            str(row["vnc_port"] or "-"),
            _percent(resources, "cpu_percent"),
            _percent(resources, "memory_percent"),
            _format_bytes(resources["memory_usage"]) if resources else "-",
        )
    console.print(table)

    if data["data_usage"]:
        usage = Table("Data directory", "Size")
        for entry in data["data_usage"]:
            usage.add_row(entry["name"], _format_bytes(entry["bytes"]))
        console.print(usage)

    if data["log_files"]:
        log_table = Table("Log file", "Size")
        for entry in data["log_files"]:
            log_table.add_row(entry["path"], _format_bytes(entry["bytes"]))
        console.print(log_table)


@app.command()
def alerts() -> None:
    """Send a test alert through every configured channel."""
    results = get_services().notifier.send_test()
    if not results:
        console.print("[yellow]No alert channels configured[/yellow] (set ALERT_EMAIL or WEBHOOK_URL).")
        return
    for channel, delivered in results.items():
        mark = "[green]sent[/green]" if delivered else "[red]failed[/red]"
        console.print(f"{channel}: {mark}")
    if not all(results.values()):
        raise typer.Exit(code=int(ExitCode.RUNTIME))


# =============================================================================
# Backups
# =============================================================================

@app.command()
def backup(name: str | None = typer.Argument(None, help="Instance to back up (default: whole fleet).")) -> None:
    """Create a backup archive."""
    try:
        archive = get_services().backups.backup(name)
    except FleetError as e:
        _fail(e)
    console.print(f"[green]Backup created:[/green] {archive.path} ({_format_bytes(archive.size)})")


@app.command()
def restore(
    archive: str = typer.Argument(..., help="Archive path or file name in backups/."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Stop the fleet and restore an archive over the current data."""
    backups = get_services().backups
    try:
        path = backups.resolve(archive)
        confirmed = yes or typer.confirm(
            f"Restoring {path.name} stops all instances and overwrites their data. Continue?",
            default=False,
        )
        if not confirmed:
            raise ConfirmationDeclined("Restore cancelled")
        backups.restore(path, confirmed=True)
    except FleetError as e:
        _fail(e)
    console.print("[green]Restore completed.[/green] Run 'fleet start' or 'fleet scale' to bring instances back.")


@app.command("list")
def list_backups(as_json: bool = JSON_OPTION) -> None:
    """List backup archives, newest first."""
    archives = get_services().backups.list()
    if as_json:
        console.print_json(data=[a.to_dict() for a in archives])
        return
    if not archives:
        console.print("No backups found.")
        return
    table = Table("Archive", "Scope", "Created", "Size")
    for item in archives:
        table.add_row(item.name, item.scope, item.created_at.strftime("%Y-%m-%d %H:%M:%S"), _format_bytes(item.size))
    console.print(table)


@app.command()
def cleanup(days: int | None = typer.Argument(None, min=0, help="Maximum archive age in days.")) -> None:
    """Delete backup archives older than DAYS (default: retention_days)."""
    services = get_services()
    max_age = days if days is not None else services.settings.backup.retention_days
    deleted = services.backups.cleanup(max_age)
    for item in deleted:
        console.print(f"[yellow]deleted[/yellow] {item.name}")
    console.print(f"{len(deleted)} backup(s) older than {max_age} days removed.")


# =============================================================================
# HTTP API
# =============================================================================

@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host", help="Interface to listen on."),
    port: int = typer.Option(5000, "--port", help="Port to listen on."),
) -> None:
    """Run the HTTP API with the background monitor."""
    from .app import serve as run_server

    run_server(host=host, port=port)


def main() -> None:  # pragma: no cover - thin wrapper
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
