"""Cline ACP CLI.

Default mode is stdio: the process speaks ACP JSON-RPC on stdin/stdout and
is meant to be launched by an editor.

Usage:
    cline-acp                              # Stdio agent (default)
    cline-acp --address 127.0.0.1:50051    # Use a specific Cline instance
    cline-acp --no-existing                # Always start a fresh instance
    cline-acp --verbose --log-file acp.log # Debug logging, copied to a file

    cline-acp instances                    # List running Cline instances
    cline-acp instances --json             # ... as JSON
    cline-acp config                       # Show effective configuration
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

import click

from .config import AgentConfig


def _build_config(**overrides: Any) -> AgentConfig:
    try:
        return AgentConfig.from_env().with_overrides(**overrides)
    except ValueError as e:
        raise click.UsageError(str(e)) from e


@click.group(invoke_without_command=True)
@click.option("--cline-path", default=None, help="Path to the cline CLI binary")
@click.option("--address", default=None, help="host:port of a running Cline instance (skips discovery)")
@click.option(
    "--proto-dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Directory holding Cline's .proto files",
)
@click.option("--no-existing", is_flag=True, help="Always start a new Cline instance")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging (stderr)")
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Also write logs to this file",
)
@click.pass_context
def main(
    ctx: click.Context,
    cline_path: str | None,
    address: str | None,
    proto_dir: Path | None,
    no_existing: bool,
    verbose: bool,
    log_file: Path | None,
) -> None:
    """Cline ACP - run Cline as an Agent Client Protocol agent.

    By default, runs in stdio mode for editor integration.
    """
    config = _build_config(
        cline_path=cline_path,
        address=address,
        proto_dir=proto_dir,
        use_existing=False if no_existing else None,
        verbose=True if verbose else None,
        log_file=log_file,
    )
    ctx.obj = config

    # If a subcommand is invoked, let it handle everything
    if ctx.invoked_subcommand is not None:
        return

    _run_stdio_agent(config)


def _run_stdio_agent(config: AgentConfig) -> None:
    """Run the agent over stdio with stdout isolation."""
    from .stdio import isolate_stdio

    isolate_stdio(verbose=config.verbose, log_file=config.log_file)

    from .acp.agent import run_stdio_agent

    try:
        asyncio.run(run_stdio_agent(config))
    except KeyboardInterrupt:
        pass


# =============================================================================
# Instance commands
# =============================================================================


@main.command("instances")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_obj
def instances(config: AgentConfig, as_json: bool) -> None:
    """List running Cline instances.

    Examples:

        # Table of instances
        cline-acp instances

        # JSON output for scripting
        cline-acp instances --json
    """
    from .cline.process_manager import ClineProcessManager

    manager = ClineProcessManager(cline_path=config.cline_path, proto_dir=config.proto_dir)
    found = asyncio.run(manager.get_existing_instances())

    if as_json:
        click.echo(json.dumps([i.to_dict() for i in found], indent=2))
        return

    if not found:
        click.echo("No Cline instances found.")
        return

    click.echo(f"{'Address':<22} {'PID':>8} {'Default':<8}")
    click.echo("-" * 40)
    for info in found:
        default = "yes" if info.is_default else ""
        click.echo(f"{info.address:<22} {info.pid:>8} {default:<8}")

    click.echo(f"\nTotal: {len(found)} instance(s)")


# =============================================================================
# Config command
# =============================================================================


@main.command("config")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_obj
def show_config(config: AgentConfig, as_json: bool) -> None:
    """Show the effective configuration (environment plus flags)."""
    values = {
        "cline_path": config.cline_path,
        "address": config.address,
        "proto_dir": str(config.proto_dir) if config.proto_dir else None,
        "use_existing": config.use_existing,
        "auto_start": config.auto_start,
        "verbose": config.verbose,
        "log_file": str(config.log_file) if config.log_file else None,
    }

    if as_json:
        click.echo(json.dumps(values, indent=2))
        return

    click.echo("Cline ACP Configuration")
    click.echo("=" * 40)
    for key, value in values.items():
        display = click.style("not set", fg="yellow") if value is None else str(value)
        click.echo(f"{key + ':':<14} {display}")


if __name__ == "__main__":
    main()
