"""CLI commands for wahook."""

import sys

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from wahook import __logo__, __version__

app = typer.Typer(
    name="wahook",
    help=f"{__logo__} wahook - WhatsApp webhook gateway",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} wahook v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """wahook - WhatsApp webhook gateway."""
    pass


# ============================================================================
# Onboard / Setup
# ============================================================================


@app.command()
def onboard():
    """Initialize wahook configuration."""
    from wahook.config.loader import get_config_path, save_config
    from wahook.config.schema import Config

    config_path = get_config_path()

    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    save_config(Config())
    console.print(f"[green]✓[/green] Created config at {config_path}")

    console.print(f"\n{__logo__} wahook is ready!")
    console.print("\nNext steps:")
    console.print(
        "  1. Set [cyan]webhook.url[/cyan], [cyan]api.apiKey[/cyan] "
        "and [cyan]bridge.token[/cyan] in the config"
    )
    console.print("  2. Start the bridge: [cyan]wahook bridge start[/cyan]")
    console.print("  3. Serve: [cyan]wahook serve[/cyan] and scan the QR from [cyan]GET /qr[/cyan]")


# ============================================================================
# Serve / Status
# ============================================================================


def _configure_logging(level: str) -> None:
    from wahook.utils.helpers import get_logs_path

    logger.remove()
    logger.add(sys.stderr, level=level.upper())
    logger.add(
        get_logs_path() / "wahook.log",
        level=level.upper(),
        rotation="10 MB",
        retention=5,
    )


@app.command()
def serve(
    host: str = typer.Option(None, "--host", help="Bind host (default: from config)"),
    port: int = typer.Option(None, "--port", "-p", help="API port (default: from config)"),
    log_level: str = typer.Option("info", "--log-level", help="Log level"),
):
    """Run the gateway in the foreground."""
    from wahook.api.server import run_server
    from wahook.config.loader import load_config

    config = load_config()
    if host:
        config.api.host = host
    if port:
        config.api.port = port

    _configure_logging(log_level)
    console.print(f"{__logo__} Starting wahook on {config.api.host}:{config.api.port}...")
    run_server(config, log_level=log_level)


@app.command()
def status(
    url: str = typer.Option(None, "--url", help="Gateway base URL (default: from config)"),
):
    """Show the running gateway's session status."""
    import httpx

    from wahook.config.loader import load_config

    config = load_config()
    host = "127.0.0.1" if config.api.host in ("0.0.0.0", "::") else config.api.host
    base_url = url or f"http://{host}:{config.api.port}"
    headers = {config.api.api_key_header: config.api.api_key} if config.api.api_key else {}

    try:
        response = httpx.get(f"{base_url}/status", headers=headers, timeout=5.0)
    except httpx.HTTPError as e:
        console.print(f"[red]Gateway unreachable at {base_url}: {e}[/red]")
        raise typer.Exit(1)
    if response.status_code != 200:
        console.print(f"[red]Status request failed ({response.status_code}): {response.text}[/red]")
        raise typer.Exit(1)

    data = response.json()

    table = Table(title=f"{__logo__} wahook status")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Status", str(data.get("status")))
    for key in ("phase", "authenticated", "ready", "has_qr", "auth_attempts", "reconnect_pending"):
        table.add_row(key, str(data.get(key)))
    table.add_row("Active presences", str(data.get("active_presences")))
    table.add_row("Uptime (s)", str(data.get("uptime")))
    table.add_row("Webhook", config.webhook.url or "[dim]not configured[/dim]")
    console.print(table)


# ============================================================================
# Session Commands
# ============================================================================


session_app = typer.Typer(help="Manage the persisted WhatsApp session")
app.add_typer(session_app, name="session")


@session_app.command("reset")
def session_reset(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Delete the persisted session; the next start pairs from a fresh QR."""
    from wahook.bridge.runtime import BridgeRuntimeManager
    from wahook.config.loader import load_config

    config = load_config()
    auth_path = config.session.auth_path
    if not yes and not typer.confirm(f"Delete session at {auth_path}?"):
        raise typer.Exit()

    manager = BridgeRuntimeManager(config.bridge, config.session)
    if manager.reset_session():
        console.print(f"[green]✓[/green] Session removed: {auth_path}")
    else:
        console.print(f"[yellow]No session found at {auth_path}[/yellow]")


# ============================================================================
# Bridge process manager
# ============================================================================


bridge_app = typer.Typer(help="Manage the WhatsApp bridge process")
app.add_typer(bridge_app, name="bridge")


def _bridge_manager():
    from wahook.bridge.runtime import BridgeRuntimeManager
    from wahook.config.loader import load_config

    config = load_config()
    return BridgeRuntimeManager(config.bridge, config.session)


@bridge_app.command("start")
def bridge_start(
    port: int = typer.Option(None, "--port", "-p", help="Bridge port (default: from config)"),
):
    """Start the WhatsApp bridge in background."""
    manager = _bridge_manager()
    try:
        status = manager.start_bridge(port)
    except RuntimeError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    console.print(
        f"[green]✓[/green] Bridge running (pid {status.pids[0] if status.pids else '?'}, port {status.port})"
    )
    console.print(f"Log: {status.log_path}")


@bridge_app.command("stop")
def bridge_stop(
    port: int = typer.Option(None, "--port", "-p", help="Bridge port (default: from config)"),
):
    """Stop the WhatsApp bridge."""
    stopped = _bridge_manager().stop_bridge(port)
    if stopped == 0:
        console.print("[yellow]Bridge is not running[/yellow]")
        return
    console.print(f"[green]✓[/green] Bridge stopped ({stopped} process{'es' if stopped != 1 else ''})")


@bridge_app.command("restart")
def bridge_restart(
    port: int = typer.Option(None, "--port", "-p", help="Bridge port (default: from config)"),
):
    """Restart the WhatsApp bridge."""
    try:
        status = _bridge_manager().restart_bridge(port)
    except RuntimeError as e:
        console.print(f"[red]Bridge restart failed: {e}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] Bridge restarted on port {status.port}")


@bridge_app.command("status")
def bridge_status(
    port: int = typer.Option(None, "--port", "-p", help="Bridge port (default: from config)"),
):
    """Show WhatsApp bridge status."""
    status = _bridge_manager().status_bridge(port)
    if not status.running:
        console.print(f"[yellow]Bridge not running on port {status.port}[/yellow]")
        return
    console.print(f"[green]Bridge running[/green] on port {status.port} (pid {status.pids[0]})")
    console.print(f"Log: {status.log_path}")


if __name__ == "__main__":
    app()
