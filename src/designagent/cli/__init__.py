"""Command-line interface for designagent.

Commands:
- policy check: Validate a policy document
- policy eval: Evaluate a tool invocation against the rules
- events watch: Print realtime entity events for a service
- config show / config set: Manage ~/.designagent/config.json
"""

from __future__ import annotations

import click

from designagent.cli.config import (
    config_group,
    get_config_dir,
    get_config_file,
    load_config,
    save_config,
    setup_logging,
)
from designagent.cli.events import events
from designagent.cli.policy import policy


@click.group()
@click.version_option(package_name="designagent")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """designagent - Policy, recovery and realtime sync for the design agent."""
    setup_logging(verbose)


cli.add_command(policy)
cli.add_command(events)
cli.add_command(config_group)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    "cli",
    "main",
    "get_config_dir",
    "get_config_file",
    "load_config",
    "save_config",
]
