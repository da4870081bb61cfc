"""
Command-line interface for tproxy-hijacker.
"""

import json
import os
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from . import __version__
from .core.config import HijackConfig
from .core.credentials import credential_manager
from .core.errors import DeployError, DestroyError, HijackError
from .core.logging_config import get_logger, setup_logging
from .devices.runners import get_runner
from .enforcement.hijacker import Hijacker, plan_commands

console = Console()

app = typer.Typer(
    help="tproxy-hijacker - transparent TCP interception with iptables TPROXY",
    no_args_is_help=True,
)
logger = get_logger(__name__)


def version_callback(value: bool):
    if value:
        console.print(f"tproxy-hijacker version {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show version information",
    ),
):
    """
    tproxy-hijacker - transparent TCP interception with iptables TPROXY
    """


def load_config(
    config_file: Optional[Path],
    interface: Optional[str] = None,
    proxy_port: Optional[int] = None,
    redirect_port: Optional[int] = None,
    route_table: Optional[int] = None,
    ignore_mark: Optional[int] = None,
    divert_mark: Optional[int] = None,
) -> HijackConfig:
    """Load the configuration file, if any, and apply command-line overrides."""
    overrides = {
        "interface_name": interface,
        "proxy_port": proxy_port,
        "redirect_port": redirect_port,
        "route_table_id": route_table,
        "ignore_mark": ignore_mark,
        "divert_mark": divert_mark,
    }
    if config_file:
        logger.debug("Loading configuration from: %s", config_file)
        return HijackConfig.from_file(config_file).merge(**overrides)
    return HijackConfig(**{k: v for k, v in overrides.items() if v is not None})


def _load_config_or_exit(config_file: Optional[Path], **overrides) -> HijackConfig:
    try:
        config = load_config(config_file, **overrides)
    except (HijackError, ValidationError) as e:
        console.print(f"[red]Error loading configuration: {e}[/red]")
        logger.error("Error loading configuration: %s", e)
        raise typer.Exit(1)
    logger.info("Loaded configuration for interface %s", config.interface_name)
    return config


def _build_hijacker(
    config: HijackConfig,
    host: Optional[str],
    username: Optional[str],
    private_key: Optional[str],
    port: int,
    dry_run: bool,
    non_interactive: bool,
    ssh_agent: bool,
) -> Hijacker:
    credential_manager.set_non_interactive(
        non_interactive or os.environ.get("TPROXY_HIJACKER_NONINTERACTIVE") == "1"
    )
    credential_manager.set_allow_ssh_agent(ssh_agent)

    runner = get_runner(
        host=host,
        username=username,
        private_key=private_key,
        port=port,
        dry_run=dry_run,
    )
    try:
        return Hijacker.build(config, runner=runner, dry_run=dry_run)
    except HijackError as e:
        console.print(f"[red]Cannot initialize firewall: {e}[/red]")
        logger.error("Cannot initialize firewall: %s", e)
        raise typer.Exit(1)


@app.command()
def deploy(
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Configuration file (YAML or JSON)"
    ),
    interface: Optional[str] = typer.Option(None, help="Interface to intercept"),
    proxy_port: Optional[int] = typer.Option(None, help="Port the proxy listens on"),
    redirect_port: Optional[int] = typer.Option(None, help="Port to intercept"),
    route_table: Optional[int] = typer.Option(None, help="Policy routing table id"),
    ignore_mark: Optional[int] = typer.Option(None, help="Mark of already processed traffic"),
    divert_mark: Optional[int] = typer.Option(None, help="Mark of traffic to divert"),
    host: Optional[str] = typer.Option(None, help="Deploy on a remote host over SSH"),
    username: Optional[str] = typer.Option(None, help="SSH username"),
    private_key: Optional[str] = typer.Option(None, help="SSH private key"),
    port: int = typer.Option(22, help="SSH port"),
    dry_run: bool = typer.Option(False, help="Show the changes without making them"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    non_interactive: bool = typer.Option(
        False,
        "--non-interactive",
        help="Fail instead of prompting for credentials (can also set TPROXY_HIJACKER_NONINTERACTIVE=1)",
    ),
    ssh_agent: bool = typer.Option(
        True, "--ssh-agent/--no-ssh-agent", help="Enable or disable SSH agent usage"
    ),
    verbose: int = typer.Option(
        0, "-v", "--verbose", count=True, help="Increase verbosity (-v, -vv)"
    ),
):
    """Deploy the TPROXY intercept rules."""
    setup_logging(min(verbose, 2))

    config = _load_config_or_exit(
        config_file,
        interface=interface,
        proxy_port=proxy_port,
        redirect_port=redirect_port,
        route_table=route_table,
        ignore_mark=ignore_mark,
        divert_mark=divert_mark,
    )

    mode_text = "DRY RUN" if dry_run else "LIVE"
    console.print(f"[bold yellow]Deploying traffic redirect rules ({mode_text})...[/bold yellow]")

    if not dry_run and not yes:
        confirm = typer.confirm("This will change the firewall and routing tables. Are you sure?")
        if not confirm:
            console.print("Deploy cancelled.")
            logger.info("Deploy cancelled by user")
            raise typer.Exit()

    hijacker = _build_hijacker(
        config, host, username, private_key, port, dry_run, non_interactive, ssh_agent
    )

    try:
        result = hijacker.deploy()
    except DeployError as e:
        console.print(f"[red]✗ Traffic redirect rules deploy failed at stage '{e.stage}': {e.cause}[/red]")
        console.print("[yellow]Rules applied before the failure are still in place; run 'destroy' to clean up.[/yellow]")
        raise typer.Exit(1)
    finally:
        if hijacker.runner:
            hijacker.runner.close()

    if dry_run and hijacker.runner:
        for command in hijacker.runner.executed_commands:
            console.print(f"  {command}")

    console.print("[green]✓ Traffic redirect rules deploy successful![/green]")
    display_deploy_summary(result)


@app.command()
def destroy(
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Configuration file (YAML or JSON)"
    ),
    interface: Optional[str] = typer.Option(None, help="Interface to intercept"),
    proxy_port: Optional[int] = typer.Option(None, help="Port the proxy listens on"),
    redirect_port: Optional[int] = typer.Option(None, help="Port to intercept"),
    route_table: Optional[int] = typer.Option(None, help="Policy routing table id"),
    ignore_mark: Optional[int] = typer.Option(None, help="Mark of already processed traffic"),
    divert_mark: Optional[int] = typer.Option(None, help="Mark of traffic to divert"),
    host: Optional[str] = typer.Option(None, help="Destroy on a remote host over SSH"),
    username: Optional[str] = typer.Option(None, help="SSH username"),
    private_key: Optional[str] = typer.Option(None, help="SSH private key"),
    port: int = typer.Option(22, help="SSH port"),
    dry_run: bool = typer.Option(False, help="Show the changes without making them"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    non_interactive: bool = typer.Option(
        False, "--non-interactive", help="Fail instead of prompting for credentials"
    ),
    ssh_agent: bool = typer.Option(
        True, "--ssh-agent/--no-ssh-agent", help="Enable or disable SSH agent usage"
    ),
    verbose: int = typer.Option(
        0, "-v", "--verbose", count=True, help="Increase verbosity (-v, -vv)"
    ),
):
    """Remove the TPROXY intercept rules, policy route and tunables."""
    setup_logging(min(verbose, 2))

    config = _load_config_or_exit(
        config_file,
        interface=interface,
        proxy_port=proxy_port,
        redirect_port=redirect_port,
        route_table=route_table,
        ignore_mark=ignore_mark,
        divert_mark=divert_mark,
    )

    if not dry_run and not yes:
        confirm = typer.confirm(
            f"This will flush the whole {config.table} table. Are you sure?"
        )
        if not confirm:
            console.print("Destroy cancelled.")
            logger.info("Destroy cancelled by user")
            raise typer.Exit()

    hijacker = _build_hijacker(
        config, host, username, private_key, port, dry_run, non_interactive, ssh_agent
    )

    try:
        hijacker.destroy()
    except DestroyError as e:
        console.print("[red]✗ Traffic redirect rules destroy finished with errors:[/red]")
        for stage, error in e.failures:
            console.print(f"[red]  {stage}: {error}[/red]")
        raise typer.Exit(1)
    finally:
        if hijacker.runner:
            hijacker.runner.close()

    if dry_run and hijacker.runner:
        for command in hijacker.runner.executed_commands:
            console.print(f"  {command}")

    console.print("[green]✓ Traffic redirect rules destroyed[/green]")


@app.command()
def plan(
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Configuration file (YAML or JSON)"
    ),
    interface: Optional[str] = typer.Option(None, help="Interface to intercept"),
    proxy_port: Optional[int] = typer.Option(None, help="Port the proxy listens on"),
    redirect_port: Optional[int] = typer.Option(None, help="Port to intercept"),
    route_table: Optional[int] = typer.Option(None, help="Policy routing table id"),
    ignore_mark: Optional[int] = typer.Option(None, help="Mark of already processed traffic"),
    divert_mark: Optional[int] = typer.Option(None, help="Mark of traffic to divert"),
    output_format: str = typer.Option("text", help="Output format: text, json"),
    output_file: Optional[Path] = typer.Option(None, help="Output file path"),
):
    """Print the commands a deploy issues, without touching the host."""
    config = _load_config_or_exit(
        config_file,
        interface=interface,
        proxy_port=proxy_port,
        redirect_port=redirect_port,
        route_table=route_table,
        ignore_mark=ignore_mark,
        divert_mark=divert_mark,
    )

    commands = plan_commands(config)
    if output_format == "json":
        report = json.dumps(commands, indent=2)
    elif output_format == "text":
        report = "\n".join(commands)
    else:
        console.print(f"[red]Unsupported output format: {output_format}[/red]")
        raise typer.Exit(1)

    if output_file:
        output_file.write_text(report + "\n")
        console.print(f"✓ Plan saved to {output_file}")
    else:
        typer.echo(report)


@app.command()
def status(
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Configuration file (YAML or JSON)"
    ),
    interface: Optional[str] = typer.Option(None, help="Interface to intercept"),
    proxy_port: Optional[int] = typer.Option(None, help="Port the proxy listens on"),
    redirect_port: Optional[int] = typer.Option(None, help="Port to intercept"),
    route_table: Optional[int] = typer.Option(None, help="Policy routing table id"),
    ignore_mark: Optional[int] = typer.Option(None, help="Mark of already processed traffic"),
    divert_mark: Optional[int] = typer.Option(None, help="Mark of traffic to divert"),
    host: Optional[str] = typer.Option(None, help="Inspect a remote host over SSH"),
    username: Optional[str] = typer.Option(None, help="SSH username"),
    private_key: Optional[str] = typer.Option(None, help="SSH private key"),
    port: int = typer.Option(22, help="SSH port"),
    non_interactive: bool = typer.Option(
        False, "--non-interactive", help="Fail instead of prompting for credentials"
    ),
    ssh_agent: bool = typer.Option(
        True, "--ssh-agent/--no-ssh-agent", help="Enable or disable SSH agent usage"
    ),
    verbose: int = typer.Option(
        0, "-v", "--verbose", count=True, help="Increase verbosity (-v, -vv)"
    ),
):
    """Show which parts of the topology are present on the host."""
    setup_logging(min(verbose, 2))

    config = _load_config_or_exit(
        config_file,
        interface=interface,
        proxy_port=proxy_port,
        redirect_port=redirect_port,
        route_table=route_table,
        ignore_mark=ignore_mark,
        divert_mark=divert_mark,
    )
    hijacker = _build_hijacker(
        config, host, username, private_key, port, False, non_interactive, ssh_agent
    )

    try:
        result = hijacker.status()
    except HijackError as e:
        console.print(f"[red]Error reading firewall state: {e}[/red]")
        raise typer.Exit(1)
    finally:
        if hijacker.runner:
            hijacker.runner.close()

    display_status(result)
    if not result.is_deployed:
        raise typer.Exit(3)


@app.command()
def validate(
    config_file: Path = typer.Argument(..., help="Configuration file (YAML or JSON)"),
):
    """Validate a configuration file."""
    config = _load_config_or_exit(config_file)
    console.print(f"[green]✓ Configuration is valid[/green] ({config.interface_name})")


@app.command()
def create_example(
    output_file: Path = typer.Argument(..., help="Path for the example configuration"),
    format: str = typer.Option("yaml", help="Format for the example: yaml, json"),
):
    """Create an example configuration file."""
    config = HijackConfig.example()

    if format == "yaml":
        content = config.export_to_yaml()
    elif format == "json":
        content = config.export_to_json()
    else:
        console.print(f"[red]Unsupported format: {format}[/red]")
        raise typer.Exit(1)

    output_file.write_text(content)
    console.print(f"✓ Example configuration saved to {output_file}")


def display_deploy_summary(result):
    """Display deploy results summary."""
    console.print("\n[bold]Deploy Summary[/bold]")

    table = Table()
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")

    table.add_row("Mode", "DRY RUN" if result.dry_run else "LIVE")
    table.add_row("Table", result.table)
    table.add_row("Stages Completed", str(len(result.stages)))
    table.add_row("Operations Applied", str(result.operations_applied))
    table.add_row("Already Present", str(result.operations_skipped))

    console.print(table)


def display_status(result):
    """Display the deployment status of each custom chain."""
    console.print(f"\n[bold]Topology Status ({result.table})[/bold]")

    table = Table()
    table.add_column("Chain", style="cyan")
    table.add_column("Present", style="white")
    table.add_column("Rules", style="white")

    for chain, expected in result.expected_rule_counts.items():
        present = chain in result.chains_present
        count = result.rule_counts.get(chain, 0)
        table.add_row(
            chain,
            "[green]yes[/green]" if present else "[red]no[/red]",
            f"{count}/{expected}" if present else "-",
        )

    console.print(table)
    console.print(
        "Entry hooks: "
        + (", ".join(result.hooks_present) if result.hooks_present else "none")
    )
    console.print(
        "Policy rule: " + ("present" if result.policy_rule_present else "missing")
    )

    if result.is_deployed:
        console.print("[green]✓ Topology is deployed[/green]")
    elif result.is_partial:
        console.print("[yellow]⚠ Topology is partially deployed; run 'destroy' to clean up[/yellow]")
    else:
        console.print("Topology is not deployed")


def main():
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
