"""CLI entry point for difflens.

Commands:
  review   run an AI review over a GitHub compare range or a local patch file
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from difflens_cli.commands.review import review_cmd

console = Console()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=verbose)],
    )


@click.group()
@click.version_option(
    version=importlib.metadata.version("difflens"),
    prog_name="difflens",
)
@click.option(
    "--config",
    "config_path",
    default=".difflens.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="DIFFLENS_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """AI-powered code review for diffs and commit ranges."""
    _configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


main.add_command(review_cmd)
