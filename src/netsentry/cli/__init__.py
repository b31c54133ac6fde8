"""CLI entry point — Click group with global options."""

from __future__ import annotations

import logging
from pathlib import Path

import click

from netsentry import __version__
from netsentry.config import NetSentryConfig


@click.group()
@click.version_option(version=__version__, prog_name="netsentry")
@click.option(
    "--rules",
    "-r",
    "rules_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Path to the rules file (default: per-user data directory).",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.pass_context
def main(ctx: click.Context, rules_path: Path | None, verbose: bool) -> None:
    """NetSentry — watch this machine's network connections and bandwidth."""
    config = NetSentryConfig.load()
    if rules_path is not None:
        config.rules_file = rules_path
    config.verbose = verbose

    ctx.ensure_object(dict)
    ctx.obj["config"] = config

    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _register_commands() -> None:
    from netsentry.cli.connections import connections  # noqa: F811
    from netsentry.cli.kill import kill  # noqa: F811
    from netsentry.cli.rules import rules  # noqa: F811
    from netsentry.cli.top import top  # noqa: F811
    from netsentry.cli.watch import watch  # noqa: F811

    main.add_command(watch)
    main.add_command(connections)
    main.add_command(top)
    main.add_command(rules)
    main.add_command(kill)


_register_commands()
