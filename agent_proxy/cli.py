"""agent-proxy CLI — manage the local Vertex AI proxy server.

Commands:

    start       Spawn the server in the background.
    stop        Stop the background server.
    status      Print configuration and server state.
    restart     Stop, then start.
    serve       Run the server in the foreground (used by ``start``).

Usage::

    agent-proxy start
    agent-proxy --debug status
    python -m agent_proxy serve
"""

from __future__ import annotations

import click

from agent_proxy import __version__
from agent_proxy.config import AgentConfig, config_path, load_config
from agent_proxy.errors import ConfigError
from agent_proxy.logs import configure_logging, log_path
from agent_proxy.supervisor import ProcessResult, ProcessSupervisor


def _load_config() -> AgentConfig:
    try:
        return load_config()
    except ConfigError as e:
        raise click.ClickException(str(e)) from e


def _report(result: ProcessResult) -> None:
    if not result.success:
        raise click.ClickException(result.message)
    click.echo(result.message)


@click.group()
@click.version_option(__version__, prog_name="agent-proxy")
@click.option("--debug", is_flag=True, help="Echo debug logs to the terminal.")
@click.pass_context
def cli(ctx: click.Context, debug: bool) -> None:
    """Local OpenAI-compatible proxy backed by Vertex AI."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    if ctx.invoked_subcommand != "serve":
        configure_logging(debug=debug, log_file=log_path(), console=debug)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@cli.command("start")
def start_cmd() -> None:
    """Start the server in the background."""
    config = _load_config()
    _report(ProcessSupervisor().start(config))


@cli.command("stop")
def stop_cmd() -> None:
    """Stop the background server. Does nothing if none is running."""
    _report(ProcessSupervisor().stop())


@cli.command("restart")
def restart_cmd() -> None:
    """Stop the background server, then start it again."""
    config = _load_config()
    _report(ProcessSupervisor().restart(config))


@cli.command("status")
def status_cmd() -> None:
    """Print configuration and server state."""
    config = _load_config()
    status = ProcessSupervisor().status()

    click.echo(f"Configuration file: {config_path()}")
    click.echo(f"  Project: {config.vertex_ai_project}")
    click.echo(f"  Location: {config.vertex_ai_location}")
    click.echo(f"  Model: {config.vertex_ai_model}")
    click.echo(f"  Port: {config.proxy_port}")
    click.echo(f"  Debug: {str(config.debug_mode).lower()}")
    if config.prompts_enabled:
        click.echo(f"  Prompts: {config.prompts_base_path} (system: {config.system_prompt_path})")
    click.echo(f"Server status: {status.message}")
    if status.unresponsive:
        click.echo(f"Warning: process {status.pid} is alive but not listening; check {log_path()}")


# ---------------------------------------------------------------------------
# Foreground server
# ---------------------------------------------------------------------------


@cli.command("serve")
@click.pass_context
def serve_cmd(ctx: click.Context) -> None:
    """Run the server in the foreground until terminated."""
    config = _load_config()
    configure_logging(
        debug=config.debug_mode or ctx.obj["debug"],
        log_file=log_path(),
        console=False,
    )

    from agent_proxy.main import serve

    serve(config)


def main() -> None:
    cli(obj={})
