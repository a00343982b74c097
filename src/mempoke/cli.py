"""
MemPoke command line interface.

Probes every memcached node registered in Consul under a tag and exposes the
results as Prometheus metrics.
"""

import asyncio
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import ProbeSettings, load_settings
from .errors import ConfigurationError, RateLimitExceeded
from .logging import setup_logging
from .service import MemPokeService

console = Console(stderr=True)


def settings_table(settings: ProbeSettings) -> Table:
    table = Table(title=f"MemPoke {__version__}")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Consul", settings.consul_base_url)
    table.add_row("Services tag", settings.services_tag)
    table.add_row("Poll interval", f"{settings.poll_interval}s")
    table.add_row("Probe interval", f"{settings.probe_interval}s")
    table.add_row("Command timeout", f"{settings.command_timeout}s")
    table.add_row("Metrics endpoint", f"{settings.http_host}:{settings.http_port}")
    return table


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--consul-hostname", help="Consul hostname (default: localhost)")
@click.option("--consul-port", type=int, help="Consul port (default: 8500)")
@click.option(
    "--consul-scheme", type=click.Choice(["http", "https"]), help="Consul scheme (default: http)"
)
@click.option("--services-tag", help="Tag to select services to probe (required)")
@click.option("--http-port", type=int, help="Http port for metrics endpoint (default: 8080)")
@click.option("--poll-interval", type=int, help="Min seconds between catalog polls (default: 60)")
@click.option("--probe-interval", type=float, help="Seconds between probes (default: 1)")
@click.option("--command-timeout", type=float, help="Deadline of a probe command (default: 1)")
@click.option(
    "--config",
    "config_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="YAML file with settings",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL", "OFF"], case_sensitive=False),
    help="Logging level (default: INFO)",
)
@click.option("--log-format", type=click.Choice(["json", "text"]), help="Log format (default: json)")
@click.version_option(__version__, prog_name="mempoke")
def main(config_file: Path | None, **options) -> None:
    """Memcached Probe (MemPoke)."""
    try:
        settings = load_settings(config_file, **options)
    except ConfigurationError as e:
        console.print(f"[bold red]Invalid configuration:[/bold red] {e}")
        sys.exit(2)

    setup_logging(settings.service_name, settings.log_level, settings.log_format)
    console.print(settings_table(settings))

    try:
        asyncio.run(_serve(settings))
    except RateLimitExceeded as e:
        console.print(f"[bold red]Invalid discovery pacing:[/bold red] {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted[/yellow]")


async def _serve(settings: ProbeSettings) -> None:
    service = MemPokeService(settings)
    await service.serve()


if __name__ == "__main__":
    main()
