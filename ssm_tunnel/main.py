"""
Main entry point for SSM Tunnel.

This module provides the command-line interface for running a port
forwarding session in the foreground and managing configuration.
"""

import asyncio
import logging
import signal
from typing import Any, Optional

import typer

from .application.session import SessionController
from .core.domain.config import SessionConfig
from .core.domain.events import OutputLevel, OutputLine, SessionStatusEvent
from .core.domain.session import SessionState
from .core.services.notifications import Subscription
from .infrastructure.clients.control_plane import HttpControlPlane
from .infrastructure.config.loader import ConfigLoader
from .infrastructure.config.models import ApplicationConfig
from .infrastructure.logging.setup import setup_logging
from .infrastructure.services.bridge import check_local_port_availability

# Create CLI application
cli = typer.Typer(
    name="ssm-tunnel",
    help="Forward a local port to a remote host through a managed session"
)

logger = logging.getLogger(__name__)


@cli.command()
def start(
    target: str = typer.Option(..., "--target", "-t", help="Managed instance ID"),
    host: str = typer.Option(..., "--host", help="Remote host reachable from the instance"),
    port: str = typer.Option(..., "--port", "-p", help="Remote port"),
    local_port: str = typer.Option(..., "--local-port", "-l", help="Local port on 127.0.0.1"),
    region: str = typer.Option(..., "--region", "-r", help="Region of the instance"),
    profile: str = typer.Option("default", "--profile", help="Credential profile name"),
    duration: Optional[float] = typer.Option(
        None, "--duration", "-d", help="Session duration in seconds"
    ),
    config_file: Optional[str] = typer.Option(
        None, "--config", "-c", help="Configuration file path"
    ),
    endpoint_url: Optional[str] = typer.Option(
        None, "--endpoint-url", help="Control plane endpoint override"
    ),
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Logging level"
    ),
    debug: bool = typer.Option(
        False, "--debug", help="Enable debug mode"
    )
) -> None:
    """Run a port forwarding session until Ctrl+C or timeout."""

    # Load configuration
    config_loader = ConfigLoader()
    try:
        config = config_loader.load_config(config_file)
    except (OSError, ValueError) as e:
        typer.echo(f"Error loading configuration: {e}", err=True)
        raise typer.Exit(code=1)

    # Override with command line arguments
    if endpoint_url:
        config.control_plane.endpoint_url = endpoint_url
    if log_level:
        config.logging.level = log_level.upper()
    if debug:
        config.debug = True
        config.logging.level = "DEBUG"

    # Output lines are printed to stdout; keep the console log quiet
    if not config.debug:
        config.logging.console_enabled = False
    setup_logging(config.logging)

    session_config = SessionConfig(
        target=target,
        host=host,
        port_number=port,
        local_port_number=local_port,
        region=region,
        profile=profile,
        session_duration=duration,
    )

    try:
        exit_code = asyncio.run(run_session(config, session_config))
    except KeyboardInterrupt:
        logger.info("Session interrupted by user")
        exit_code = 0
    if exit_code:
        raise typer.Exit(code=exit_code)


@cli.command()
def check_port(
    local_port: str = typer.Argument(..., help="Local port to check")
) -> None:
    """Check whether a local port can be bound on 127.0.0.1."""

    result = asyncio.run(check_local_port_availability(local_port))
    if result.available:
        typer.echo(f"Local port {local_port} is available")
        return

    typer.echo(result.error, err=True)
    raise typer.Exit(code=1)


@cli.command()
def init_config(
    output: str = typer.Option(
        "config.yaml", "--output", "-o", help="Output configuration file"
    ),
    format: str = typer.Option(
        "yaml", "--format", "-f", help="Configuration format (yaml/json)"
    )
) -> None:
    """Generate a default configuration file."""

    config = ApplicationConfig()
    config_loader = ConfigLoader()

    try:
        config_loader.save_config(config, output, format)
        typer.echo(f"Default configuration saved to {output}")
    except ValueError as e:
        typer.echo(f"Error saving configuration: {e}", err=True)
        raise typer.Exit(code=1)


@cli.command()
def validate_config(
    config_file: str = typer.Argument(...,
                                      help="Configuration file to validate")
) -> None:
    """Validate a configuration file."""

    config_loader = ConfigLoader()

    try:
        config = config_loader.load_config(config_file)
        typer.echo(f"Configuration file {config_file} is valid")
        typer.echo(f"Application: {config.name} v{config.version}")
        typer.echo(f"Session duration: {config.session.session_duration:g}s")
    except (OSError, ValueError, TypeError) as e:
        typer.echo(f"Configuration validation failed: {e}", err=True)
        raise typer.Exit(code=1)


async def run_session(config: ApplicationConfig, session_config: SessionConfig) -> int:
    """
    Run one session in the foreground.

    Args:
        config: Application configuration
        session_config: Session to start

    Returns:
        Process exit code
    """
    control_plane = HttpControlPlane(session_config.region, config.control_plane)
    controller = SessionController(control_plane, config)

    output = controller.output.subscribe()
    status = controller.status_events.subscribe()
    printer = asyncio.create_task(print_output(output))

    def signal_handler(signum: int, frame: Any) -> None:
        logger.info(f"Received signal {signum}, stopping session...")
        asyncio.create_task(controller.stop())

    try:
        result = await controller.start(session_config)
        if not result.success:
            return 1

        typer.echo(f"Forwarding {result.local_address} ({result.local_url})")

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        async for change in status:
            if change.status in (SessionStatusEvent.DISCONNECTED, SessionStatusEvent.ERROR):
                break

        return 0 if controller.state == SessionState.DISCONNECTED else 1
    finally:
        await controller.close()
        await control_plane.close()
        await printer


async def print_output(subscription: Subscription[OutputLine]) -> None:
    """Echo output lines until the stream ends."""
    async for line in subscription:
        typer.echo(line.format(), err=line.level is OutputLevel.ERROR)


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
