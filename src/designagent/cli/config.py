"""Configuration utilities for the designagent CLI.

Settings live in ~/.designagent/config.json:
    {"server_url": "...", "token": "...", "policy_file": "..."}
Command-line options always win over the file.
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import click

from designagent.core.config import ServerConfig

CONFIG_KEYS = ("server_url", "token", "policy_file")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def get_config_dir() -> Path:
    """Get the configuration directory.

    Returns:
        Path to ~/.designagent.
    """
    return Path.home() / ".designagent"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def load_config() -> dict[str, str]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, str]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def get_policy_file(option: str | None) -> Path | None:
    """Policy file from the option or the config file."""
    value = option or load_config().get("policy_file")
    return Path(value).expanduser() if value else None


def get_server_config(server_url: str | None, token: str | None) -> ServerConfig:
    """Build a ServerConfig from options, falling back to the config file.

    Raises:
        click.UsageError: If no server URL or token is available.
    """
    config = load_config()
    server_url = server_url or config.get("server_url")
    token = token or config.get("token")
    if not server_url:
        raise click.UsageError("No server URL. Use --server or 'designagent config set server_url'.")
    if not token:
        raise click.UsageError("No token. Use --token or 'designagent config set token'.")
    return ServerConfig(server_url=server_url, token=token)


def setup_logging(verbose: bool) -> None:
    """Send designagent logs to stderr, keeping stdout for command output."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    package_logger = logging.getLogger("designagent")
    for existing in package_logger.handlers[:]:
        package_logger.removeHandler(existing)
    package_logger.addHandler(handler)
    package_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    package_logger.propagate = False


@click.group("config")
def config_group() -> None:
    """Show or change stored settings."""


@config_group.command("show")
def show_config() -> None:
    """Print stored settings (token masked)."""
    config = load_config()
    if not config:
        click.echo(f"No configuration at {get_config_file()}")
        return
    for key in sorted(config):
        value = config[key]
        if key == "token" and value:
            value = value[:4] + "..." if len(value) > 8 else "***"
        click.echo(f"{key} = {value}")


@config_group.command("set")
@click.argument("key", type=click.Choice(CONFIG_KEYS))
@click.argument("value")
def set_config(key: str, value: str) -> None:
    """Store a setting."""
    config = load_config()
    config[key] = value
    save_config(config)
    click.echo(f"Saved {key} to {get_config_file()}")
