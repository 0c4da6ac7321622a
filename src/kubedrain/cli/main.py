# src/kubedrain/cli/main.py
"""
This module is the main entry point for the KubeDrain CLI.

It aggregates all commands from the submodules (drain, usage, start, etc.)
"""

import logging

import typer

from ..core.config import config
from . import drain, start

# --- Setup Logger ---
logging.basicConfig(
    level=config.LOG_LEVEL.upper(),
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


app = typer.Typer(
    name="kubedrain",
    help="Select nodes from Prometheus metrics, drain them safely and terminate their instances.",
    add_completion=False,
)


def version_callback(value: bool):
    """
    Prints the version of KubeDrain.
    """
    if value:
        from .. import __version__

        typer.echo(f"KubeDrain version: {__version__}")
        raise typer.Exit()


@app.command()
def version():
    """
    Show the version of KubeDrain.
    """
    from .. import __version__

    typer.echo(f"KubeDrain version: {__version__}")


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
):
    """
    KubeDrain CLI main entry point.
    """
    pass


# Register command sub-apps
app.add_typer(drain.drain_app, name="drain")
app.add_typer(drain.usage_app, name="usage")
app.add_typer(drain.evicted_app, name="evicted-pods")
app.add_typer(start.app, name="start")


if __name__ == "__main__":
    app()
