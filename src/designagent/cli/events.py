"""Realtime event commands for the designagent CLI.

Commands:
- events watch: Print entity events of a service until interrupted
"""

from __future__ import annotations

import asyncio
import json
import sys

import click

from designagent.cli.config import get_server_config
from designagent.core.config import ServerConfig
from designagent.sync import ConnectionState, EntityEvent, SyncStore, TransportClient

POLL_INTERVAL = 0.5


@click.group()
def events() -> None:
    """Realtime event commands."""


@events.command("watch")
@click.argument("service_id")
@click.option("--server", "server_url", default=None, help="Server URL.")
@click.option("--token", default=None, help="Bearer token.")
def watch(service_id: str, server_url: str | None, token: str | None) -> None:
    """Connect to the event feed and print entity events as JSON lines."""
    config = get_server_config(server_url, token)
    try:
        error = asyncio.run(_watch(config, service_id))
    except KeyboardInterrupt:
        click.echo("Stopped.", err=True)
        return
    if error:
        click.echo(f"Error: {error}", err=True)
        sys.exit(1)


async def _watch(config: ServerConfig, service_id: str) -> str | None:
    """Run until the client gives up; returns the final error."""
    store = SyncStore(service_id)
    client = TransportClient(config, service_id, store=store)

    def print_event(event: EntityEvent) -> None:
        click.echo(json.dumps(event.to_dict()))

    client.add_listener(print_event)
    await client.connect()
    try:
        while True:
            await asyncio.sleep(POLL_INTERVAL)
            task = client.reconnect_task
            if client.state is ConnectionState.DISCONNECTED and (task is None or task.done()):
                return store.error
    finally:
        await client.disconnect()
