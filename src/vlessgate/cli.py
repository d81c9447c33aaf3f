"""vlessgate CLI - Command line interface."""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import TYPE_CHECKING, Any

import click
import structlog
from rich.console import Console
from rich.table import Table

if TYPE_CHECKING:
    from vlessgate.core.config import RelaySettings

console = Console()

BANNER = r"""
        _                             _
 __   _| | ___  ___ ___  __ _  __ _| |_ ___
 \ \ / / |/ _ \/ __/ __|/ _` |/ _` | __/ _ \
  \ V /| |  __/\__ \__ \ (_| | (_| | ||  __/
   \_/ |_|\___||___/___/\__, |\__,_|\__\___|
                        |___/
        WebSocket tunnel relay
"""


def configure_logging(level: str, json_output: bool = False) -> None:
    """Configure structlog for the process."""
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
    )


def _load_settings(config_file: str | None, overrides: dict[str, Any]) -> RelaySettings:
    from vlessgate.core.config import RelaySettings, get_settings, load_config_from_file

    if not config_file and not any(v is not None for v in overrides.values()):
        return get_settings()

    values: dict[str, Any] = {}
    if config_file:
        values.update(load_config_from_file(config_file))
    values.update({k: v for k, v in overrides.items() if v is not None})
    return RelaySettings(**values)


@click.group()
@click.option(
    "--config", "-c",
    "config_file",
    type=click.Path(exists=True),
    help="Path to YAML or TOML config file",
)
@click.pass_context
def main(ctx: click.Context, config_file: str | None):
    """vlessgate - WebSocket tunnel relay.

    Settings come from VLESSGATE_* environment variables (UUID and PROXY are
    also honoured), an optional config file, and command line options, in
    increasing order of precedence.

    Examples:

        vlessgate serve --uuid 90cd4a77-141a-43c9-991b-08263cfe9c10

        vlessgate serve --bind 127.0.0.1:8080 --proxy proxy.example:8443

        vlessgate config show
    """
    ctx.ensure_object(dict)
    ctx.obj["config_file"] = config_file


@main.command()
@click.option("--uuid", "uuid_", envvar="VLESSGATE_UUID", help="Pre-shared client UUID")
@click.option("--proxy", envvar="VLESSGATE_PROXY", help="Fallback relay, host[:port]")
@click.option("--bind", "-b", help="Listen address (default: 0.0.0.0:8080)")
@click.option("--connect-timeout", "-t", type=float, help="Outbound connect timeout in seconds")
@click.option("--no-metrics", is_flag=True, default=False, help="Disable /metrics endpoint")
@click.option(
    "--log-level",
    "-l",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    help="Log level (default: info)",
)
@click.option("--json-logs", is_flag=True, default=False, help="Emit logs as JSON lines")
@click.pass_context
def serve(
    ctx: click.Context,
    uuid_: str | None,
    proxy: str | None,
    bind: str | None,
    connect_timeout: float | None,
    no_metrics: bool,
    log_level: str | None,
    json_logs: bool,
):
    """Run the relay server."""
    overrides: dict[str, Any] = {
        "uuid": uuid_,
        "proxy": proxy,
        "bind": bind,
        "connect_timeout": connect_timeout,
        "log_level": log_level,
    }
    if no_metrics:
        overrides["metrics_enabled"] = False
    if json_logs:
        overrides["log_json"] = True

    try:
        settings = _load_settings(ctx.obj.get("config_file"), overrides)
        settings.to_relay_config()
    except ValueError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        sys.exit(1)

    configure_logging(settings.log_level, settings.log_json)

    console.print(BANNER, style="cyan")
    console.print(f"Listening on {settings.bind}", style="yellow")
    fallback = settings.fallback
    if fallback:
        console.print(f"Fallback: {fallback}", style="dim")
    else:
        console.print("Fallback: disabled (set --proxy to enable)", style="dim")
    console.print(
        f"Metrics: {'enabled at /metrics' if settings.metrics_enabled else 'disabled'}",
        style="dim",
    )

    try:
        asyncio.run(run_server(settings))
    except KeyboardInterrupt:
        console.print("\nShutting down...", style="yellow")


async def run_server(settings: RelaySettings) -> None:
    """Run the relay server until cancelled."""
    from vlessgate.server.relay import RelayServer

    server = RelayServer(settings)
    try:
        await server.start()
        console.print("Server started, press Ctrl+C to stop", style="green")
        await asyncio.Event().wait()
    finally:
        await server.stop()


@main.command()
def version():
    """Show version information."""
    from vlessgate import __version__

    console.print(BANNER, style="cyan")
    console.print(f"[bold]Version:[/bold] {__version__}")
    console.print(f"[bold]Python:[/bold] {sys.version}")


@main.group()
def config():
    """View and validate configuration settings.

    Examples:

        vlessgate config show            # Show all config settings

        vlessgate config export          # Export as env vars

        vlessgate config validate        # Validate current config
    """
    pass


@config.command("show")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.option("--section", "-s", help="Show only specific section (identity, server, relay, logging)")
@click.pass_context
def config_show(ctx: click.Context, json_output: bool, section: str | None):
    """Show current configuration settings."""
    try:
        settings = _load_settings(ctx.obj.get("config_file"), {})
    except ValueError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        sys.exit(1)

    display = settings.to_display_dict()

    if section:
        section = section.lower()
        if section not in display:
            console.print(f"[red]Unknown section:[/red] {section}")
            console.print(f"[dim]Available: {', '.join(display.keys())}[/dim]")
            sys.exit(1)
        display = {section: display[section]}

    if json_output:
        import json
        console.print(json.dumps(display, indent=2))
        return

    console.print("[bold]Current Configuration[/bold]\n")

    for section_name, values in display.items():
        table = Table(title=section_name.replace("_", " ").title())
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="green")
        table.add_column("Env Variable", style="dim")

        for key, value in values.items():
            env_var = f"VLESSGATE_{key.upper()}"
            value_str = str(value) if value is not None else "[dim]None[/dim]"
            table.add_row(key, value_str, env_var)

        console.print(table)
        console.print()


@config.command("export")
@click.option("--shell", type=click.Choice(["bash", "powershell", "cmd"]), default="bash", help="Shell format")
@click.pass_context
def config_export(ctx: click.Context, shell: str):
    """Export current configuration as environment variables.

    The UUID is never exported.
    """
    try:
        settings = _load_settings(ctx.obj.get("config_file"), {})
    except ValueError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        sys.exit(1)

    console.print(f"# vlessgate configuration export ({shell})")

    for key, value in settings.to_env_dict().items():
        if shell == "bash":
            console.print(f'export {key}="{value}"')
        elif shell == "powershell":
            console.print(f'$env:{key}="{value}"')
        elif shell == "cmd":
            console.print(f"set {key}={value}")


@config.command("validate")
@click.pass_context
def config_validate(ctx: click.Context):
    """Validate current configuration."""
    from vlessgate.core.config import clear_settings

    clear_settings()

    try:
        settings = _load_settings(ctx.obj.get("config_file"), {})
    except ValueError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        sys.exit(1)

    errors = []
    warnings = []

    if not settings.uuid:
        errors.append("uuid is not set (VLESSGATE_UUID)")
    if not settings.proxy:
        warnings.append("proxy is not set, unreachable destinations will not fall back")
    if settings.connect_timeout == 0:
        warnings.append("connect_timeout is 0, outbound connects may hang indefinitely")
    if settings.replay_buffer_limit == 0:
        warnings.append("replay_buffer_limit is 0, request bytes are retained without limit")
    if settings.log_level.lower() not in ("debug", "info", "warning", "error"):
        errors.append(f"log_level ({settings.log_level}) must be one of debug, info, warning, error")

    if errors:
        console.print("[red bold]Configuration Errors:[/red bold]")
        for error in errors:
            console.print(f"  [red]x[/red] {error}")
        console.print()

    if warnings:
        console.print("[yellow bold]Configuration Warnings:[/yellow bold]")
        for warning in warnings:
            console.print(f"  [yellow]![/yellow] {warning}")
        console.print()

    if not errors and not warnings:
        console.print("[green]OK - Configuration is valid[/green]")
    elif not errors:
        console.print("[green]OK - Configuration is valid (with warnings)[/green]")
    else:
        console.print("[red]ERROR - Configuration has errors[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
