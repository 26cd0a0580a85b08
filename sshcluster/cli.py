"""Main CLI entry point for sshcluster."""

import json
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path

import typer
import yaml
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from sshcluster.config import Settings
from sshcluster.context import Context
from sshcluster.credentials import public_key_from_file
from sshcluster.exceptions import EncodingError, SSHClusterError
from sshcluster.logging_config import get_logger, setup_logging
from sshcluster.models.objects import Machine

app = typer.Typer(
    name="sshcluster",
    help="Provision and repair Kubernetes clusters on machines reachable over SSH",
    add_completion=False,
)
create_app = typer.Typer(help="Create resources", no_args_is_help=True)
delete_app = typer.Typer(help="Delete resources", no_args_is_help=True)
get_app = typer.Typer(help="Display resources", no_args_is_help=True)
recover_app = typer.Typer(help="Recover cluster components", no_args_is_help=True)
app.add_typer(create_app, name="create")
app.add_typer(delete_app, name="delete")
app.add_typer(get_app, name="get")
app.add_typer(recover_app, name="recover")

console = Console()
logger = get_logger(__name__)

DURATION_PATTERN = re.compile(r"(\d+(?:\.\d+)?)(h|ms|m|s)")
DURATION_UNITS = {"h": "hours", "m": "minutes", "s": "seconds", "ms": "milliseconds"}


@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    log_file: str | None = typer.Option(None, "--log-file", help="Path to log file"),
    config_path: str | None = typer.Option(None, "--config", "-c", help="Path to settings file"),
    kubeconfig: str | None = typer.Option(
        None, "--kubeconfig", help="Kubeconfig of the API server holding cluster state"
    ),
    state_file: str | None = typer.Option(
        None, "--state-file", help="Where to write the local copy of cluster state"
    ),
):
    """Global options for all commands."""
    log_path = Path(log_file) if log_file else None
    setup_logging(verbose=verbose, log_file=log_path)
    ctx.obj = {"config": config_path, "kubeconfig": kubeconfig, "state_file": state_file}
    logger.debug("Logging initialized")


@app.command()
def version() -> None:
    """Show version information."""
    from sshcluster import __version__

    typer.echo(f"sshcluster version {__version__}")


def parse_duration(value: str) -> timedelta:
    """Parse a duration such as ``300s``, ``5m`` or ``1h30m``; a bare number is seconds."""
    value = value.strip()
    if re.fullmatch(r"\d+", value):
        return timedelta(seconds=int(value))
    if not value or DURATION_PATTERN.sub("", value):
        raise typer.BadParameter(f"invalid duration {value!r}, expected e.g. '300s' or '5m'")
    total = timedelta()
    for amount, unit in DURATION_PATTERN.findall(value):
        total += timedelta(**{DURATION_UNITS[unit]: float(amount)})
    return total


def load_settings(ctx: typer.Context) -> Settings:
    options = ctx.obj or {}
    settings = Settings.load(options.get("config"))
    if options.get("kubeconfig"):
        settings.kubeconfig = options["kubeconfig"]
    if options.get("state_file"):
        settings.state_file = Path(options["state_file"])
    return settings


def sync_state(context: Context) -> None:
    from sshcluster.state import StateFile

    StateFile(context.settings.state_file).pull(context.store, context.settings.cluster_name)


def fail(error: SSHClusterError) -> typer.Exit:
    """Report a fatal error on a single line and return the exit to raise."""
    message = error.message
    if error.details:
        message = f"{message} ({error.details})"
    message = " ".join(message.split())
    logger.error(message)
    console.print(f"[red]Error:[/red] {escape(message)}", soft_wrap=True)
    return typer.Exit(code=1)


@create_app.command("machine")
def create_machine(
    ctx: typer.Context,
    ip: str = typer.Option(..., "--ip", help="IP of the machine"),
    port: int | None = typer.Option(None, "--port", help="SSH port"),
    role: str = typer.Option(..., "--role", help="Role of the machine. Can be master/node"),
    public_keys: str | None = typer.Option(
        None, "--publicKeys", help="Comma separated list of public host key files for the machine"
    ),
    iface: str = typer.Option(
        "eth0", "--iface", help="Interface that the virtual IP binds to in case of master"
    ),
) -> None:
    """Add a machine to the cluster."""
    from sshcluster.machine import MachineLifecycle

    try:
        keys = []
        if public_keys:
            keys = [public_key_from_file(f.strip()) for f in public_keys.split(",") if f.strip()]
        with Context.init(load_settings(ctx)) as context:
            MachineLifecycle(context).create(ip, role, port=port, public_keys=keys, iface=iface)
            sync_state(context)
    except SSHClusterError as e:
        raise fail(e)

    console.print(f"[green]✓[/green] Machine {ip} created successfully")


@delete_app.command("machine")
def delete_machine(
    ctx: typer.Context,
    ip: str = typer.Option(..., "--ip", help="IP of the machine"),
    drain_timeout: str | None = typer.Option(
        None,
        "--drain-timeout",
        help="The length of time to wait before giving up on a drain, zero means infinite",
    ),
    drain_grace_period: int | None = typer.Option(
        None,
        "--drain-graceperiod",
        help="Seconds given to each pod to terminate gracefully; negative uses the pod's default",
    ),
) -> None:
    """Delete a machine from the cluster."""
    from sshcluster.machine import MachineLifecycle

    timeout = parse_duration(drain_timeout) if drain_timeout is not None else None
    try:
        with Context.init(load_settings(ctx)) as context:
            MachineLifecycle(context).delete(
                ip, drain_timeout=timeout, drain_grace_period=drain_grace_period
            )
            sync_state(context)
    except SSHClusterError as e:
        raise fail(e)

    console.print(f"[green]✓[/green] Machine {ip} deleted successfully")


@get_app.command("machine")
def get_machine(
    ctx: typer.Context,
    ip: str | None = typer.Option(None, "--ip", help="IP of the machine"),
    output: str = typer.Option("", "--output", "-o", help="Output format: yaml or json"),
) -> None:
    """Display one or all machines."""
    from sshcluster.machine import MachineLifecycle

    if output not in ("", "yaml", "json"):
        raise fail(SSHClusterError(f"Unsupported output format {output!r}"))

    try:
        with Context.init(load_settings(ctx)) as context:
            lifecycle = MachineLifecycle(context)
            machines = [lifecycle.get(ip)] if ip else lifecycle.list_machines()
            if output:
                from sshcluster.state import plain_object

                items = [plain_object(m) for m in machines]
                if output == "yaml":
                    typer.echo(yaml.safe_dump(items, default_flow_style=False), nl=False)
                else:
                    typer.echo(json.dumps(items))
                return
            console.print(machine_table(context, machines))
    except SSHClusterError as e:
        raise fail(e)


def machine_table(context: Context, machines: list[Machine]) -> Table:
    table = Table(title="Machines")
    table.add_column("Name", style="cyan")
    table.add_column("Roles", style="magenta")
    table.add_column("Bootstrapped", style="green")
    table.add_column("Kubelet", style="blue")
    table.add_column("Etcd Member", style="yellow")
    table.add_column("Age")

    for machine in sorted(machines, key=lambda m: m.name):
        try:
            status = context.codec.get_machine_status(machine)
            bootstrapped = "✓" if status.bootstrapped else "✗"
            kubelet = status.kubelet_version or "N/A"
            member = str(status.etcd_member) if status.etcd_member else "-"
        except EncodingError:
            bootstrapped, kubelet, member = "?", "?", "?"
        table.add_row(
            machine.name,
            ",".join(machine.spec.roles),
            bootstrapped,
            kubelet,
            member,
            _age(machine.metadata.creation_timestamp),
        )
    return table


def _age(created: datetime | None) -> str:
    if created is None:
        return "N/A"
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    age = datetime.now(timezone.utc) - created
    return f"{age.days}d" if age.days > 0 else f"{age.seconds // 3600}h"


@recover_app.command("etcd")
def recover_etcd(
    ctx: typer.Context,
    snapshot: str = typer.Option(
        ..., "--snapshot", help="Path of the etcd snapshot used to recover the cluster"
    ),
) -> None:
    """Recover the etcd cluster from a snapshot."""
    from sshcluster.recovery import EtcdRecovery

    try:
        with Context.init(load_settings(ctx)) as context:
            EtcdRecovery(context).recover(snapshot)
            sync_state(context)
    except SSHClusterError as e:
        raise fail(e)

    console.print("[green]✓[/green] Recovered etcd successfully")


if __name__ == "__main__":
    app()
