import json

import click

from .config.settings import load_settings
from .gateway.allowlists import ALLOWED_TARGETS


@click.group()
def cli():
    """corsgate CLI"""


@cli.command("serve")
@click.option("--host", default=None, help="Bind address (default: $HOST or 0.0.0.0)")
@click.option("--port", default=None, type=int, help="Bind port (default: $PORT or 3001)")
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
)
def serve(host, port, log_level):
    settings = load_settings()
    from .main import run

    run(
        host=host or settings.host,
        port=port or settings.port,
        log_level=log_level or settings.log_level,
    )


@cli.command("targets")
def targets():
    click.echo(json.dumps(dict(ALLOWED_TARGETS.targets), indent=2))


if __name__ == "__main__":
    cli()
