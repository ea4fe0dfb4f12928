# src/hivenode/cli/app.py
from __future__ import annotations

from typing import Callable, Dict, List, Optional

import typer

from hivenode.config.loader import load_config
from hivenode.hive import Hive, NodeResult
from hivenode.logging.log import init_logging
from hivenode.observers.console import ConsoleObserver
from hivenode.observers.dispatcher import EventBus
from hivenode.observers.logger import LoggerObserver
from hivenode.proxy.node import NodeProxy
from hivenode.ssh.models import CommandResponse, RunOptions

# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="Hive node remote execution CLI")

NodeOption = typer.Option(None, "--node", "-n", help="Node name (repeatable); default is every node")


def _open_hive(config: str, debug: bool, quiet_events: bool = False) -> Hive:
    cfg = load_config(config)
    run = init_logging(cfg.name, base_dir=cfg.log_dir, verbose=debug)

    observers = [LoggerObserver(run.logger)]
    if not quiet_events:
        observers.append(ConsoleObserver())

    typer.echo(f"  Hive     : {cfg.name}")
    typer.echo(f"  Run ID   : {run.run_id}")
    typer.echo(f"  Logs     : {run.run_dir}")
    typer.echo("")

    return Hive(cfg, bus=EventBus(observers=observers), run_id=run.run_id, log_dir=run.run_dir)


def _report(results: Dict[str, NodeResult], show: Callable[[str, object], None]) -> None:
    failed = False
    for name in sorted(results):
        result = results[name]
        if result.ok:
            show(name, result.value)
        else:
            failed = True
            typer.secho(f"[{name}] FAILED: {result.error}", fg=typer.colors.RED)
    if failed:
        raise typer.Exit(code=1)


def _show_response(name: str, response: CommandResponse) -> None:
    color = typer.colors.GREEN if response.success else typer.colors.RED
    typer.secho(f"[{name}] exit={response.exit_code}", fg=color, bold=True)
    if response.output_text:
        typer.echo(response.output_text.rstrip("\n"))
    if response.error_text:
        typer.secho(response.error_text.rstrip("\n"), fg=typer.colors.YELLOW)


def _run(config: str, nodes: Optional[List[str]], debug: bool, action: Callable[[NodeProxy], CommandResponse]) -> None:
    hive = _open_hive(config, debug, quiet_events=True)
    try:
        results = hive.invoke(action, names=nodes or None)
    finally:
        hive.close()

    _report(results, _show_response)
    if any(not r.value.success for r in results.values()):
        raise typer.Exit(code=1)


# ------------------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------------------

@app.command()
def run(
    config: str = typer.Argument(..., help="Hive definition YAML"),
    command: str = typer.Argument(..., help="Command to run as the login user"),
    node: Optional[List[str]] = NodeOption,
    redact: bool = typer.Option(False, "--redact", help="Keep arguments out of the node logs"),
    debug: bool = typer.Option(False, "--debug"),
):
    """Run a command on hive nodes."""
    options = RunOptions(use_defaults=True, log_output=True, redact=redact)
    _run(config, node, debug, lambda n: n.run_command(command, options=options))


@app.command()
def sudo(
    config: str = typer.Argument(..., help="Hive definition YAML"),
    command: str = typer.Argument(..., help="Command to run as root"),
    node: Optional[List[str]] = NodeOption,
    redact: bool = typer.Option(False, "--redact", help="Keep arguments out of the node logs"),
    debug: bool = typer.Option(False, "--debug"),
):
    """Run a command as root on hive nodes."""
    options = RunOptions(use_defaults=True, log_output=True, redact=redact)
    _run(config, node, debug, lambda n: n.sudo_command(command, options=options))


@app.command()
def status(
    config: str = typer.Argument(..., help="Hive definition YAML"),
    node: Optional[List[str]] = NodeOption,
    timeout: float = typer.Option(30.0, "--timeout", help="Seconds to wait for each node"),
    debug: bool = typer.Option(False, "--debug"),
):
    """Check that hive nodes are reachable."""
    hive = _open_hive(config, debug)

    def check(n: NodeProxy) -> str:
        n.connect(timeout)
        return n.status

    try:
        results = hive.invoke(check, names=node or None)
    finally:
        hive.close()

    _report(results, lambda name, value: typer.secho(f"[{name}] {value}", fg=typer.colors.GREEN))


@app.command()
def reboot(
    config: str = typer.Argument(..., help="Hive definition YAML"),
    node: Optional[List[str]] = NodeOption,
    wait: bool = typer.Option(True, "--wait/--no-wait", help="Wait for the nodes to come back"),
    debug: bool = typer.Option(False, "--debug"),
):
    """Reboot hive nodes."""
    hive = _open_hive(config, debug)

    def do_reboot(n: NodeProxy) -> str:
        n.reboot(wait=wait)
        return n.status

    try:
        results = hive.invoke(do_reboot, names=node or None)
    finally:
        hive.close()

    _report(results, lambda name, value: typer.secho(f"[{name}] {value}", fg=typer.colors.GREEN))


@app.command()
def prepare(
    config: str = typer.Argument(..., help="Hive definition YAML"),
    node: Optional[List[str]] = NodeOption,
    debug: bool = typer.Option(False, "--debug"),
):
    """Create the remote folders hivenode uses."""
    hive = _open_hive(config, debug)

    def do_prepare(n: NodeProxy) -> str:
        n.prepare_host_folders()
        return "prepared"

    try:
        results = hive.invoke(do_prepare, names=node or None)
    finally:
        hive.close()

    _report(results, lambda name, value: typer.secho(f"[{name}] {value}", fg=typer.colors.GREEN))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
