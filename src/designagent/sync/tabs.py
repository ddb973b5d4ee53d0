"""Multi-tab coordination for SyncStores sharing a service.

This module provides:
- BroadcastChannel: Minimal same-origin pub/sub interface
- NullBroadcastChannel: No-op channel for targets without multi-tab support
- LocalBroadcastHub, LocalBroadcastChannel: In-process channel bus
- TabCoordinator: Rebroadcasts applied events to sibling stores

Architecture:
    TransportClient ─apply─► SyncStore (tab A)
           │
           └─► TabCoordinator A ─post─► channel ─► TabCoordinator B ─apply─► SyncStore (tab B)

Convergence relies on SyncStore deduplication: a sibling that already
saw an event ignores the rebroadcast.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Protocol

from designagent.sync.types import EntityEvent, EventFormatError

if TYPE_CHECKING:
    from designagent.sync.store import SyncStore

logger = logging.getLogger(__name__)

MessageHandler = Callable[[dict[str, Any]], None]

CHANNEL_PREFIX = "designagent-events-"


class BroadcastChannel(Protocol):
    """Same-origin broadcast channel."""

    def post_message(self, message: dict[str, Any]) -> None:
        """Send a message to every other channel with the same name."""
        ...

    def on_message(self, handler: MessageHandler | None) -> None:
        """Install (or clear) the inbound message handler."""
        ...

    def close(self) -> None:
        """Release the channel."""
        ...


ChannelFactory = Callable[[str], BroadcastChannel]


class NullBroadcastChannel:
    """Channel that drops everything."""

    def __init__(self, name: str = "") -> None:
        self.name = name

    def post_message(self, message: dict[str, Any]) -> None:
        pass

    def on_message(self, handler: MessageHandler | None) -> None:
        pass

    def close(self) -> None:
        pass


class LocalBroadcastHub:
    """In-process bus connecting LocalBroadcastChannels by name.

    Usage:
        hub = LocalBroadcastHub()
        tab_a = TabCoordinator("svc-1", channel_factory=hub.channel)
        tab_b = TabCoordinator("svc-1", channel_factory=hub.channel)
    """

    def __init__(self) -> None:
        self._channels: dict[str, list[LocalBroadcastChannel]] = {}

    def channel(self, name: str) -> LocalBroadcastChannel:
        """Open a new channel on this hub."""
        channel = LocalBroadcastChannel(self, name)
        self._channels.setdefault(name, []).append(channel)
        return channel

    def open_channels(self, name: str) -> int:
        """Number of open channels with this name."""
        return len(self._channels.get(name, []))

    def _deliver(self, sender: LocalBroadcastChannel, message: dict[str, Any]) -> None:
        # Structured clone: receivers never share objects with the sender
        encoded = json.dumps(message)
        for channel in list(self._channels.get(sender.name, [])):
            if channel is not sender:
                channel._receive(json.loads(encoded))

    def _detach(self, channel: LocalBroadcastChannel) -> None:
        channels = self._channels.get(channel.name, [])
        if channel in channels:
            channels.remove(channel)
        if not channels:
            self._channels.pop(channel.name, None)


class LocalBroadcastChannel:
    """One endpoint on a LocalBroadcastHub."""

    def __init__(self, hub: LocalBroadcastHub, name: str) -> None:
        self.name = name
        self._hub = hub
        self._handler: MessageHandler | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def post_message(self, message: dict[str, Any]) -> None:
        if self._closed:
            raise RuntimeError(f"Channel {self.name} is closed")
        self._hub._deliver(self, message)

    def on_message(self, handler: MessageHandler | None) -> None:
        self._handler = handler

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._handler = None
            self._hub._detach(self)

    def _receive(self, message: dict[str, Any]) -> None:
        if self._handler is None:
            return
        try:
            self._handler(message)
        except Exception:
            logger.exception("Broadcast handler on %s failed", self.name)


class TabCoordinator:
    """Keeps sibling SyncStores of one service converged.

    Without a channel factory the coordinator uses a NullBroadcastChannel
    and does nothing.
    """

    def __init__(
        self,
        service_id: str,
        channel_factory: ChannelFactory | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            service_id: Service whose events are shared.
            channel_factory: Opens a channel by name (e.g. hub.channel).
        """
        self.service_id = service_id
        self.channel_name = f"{CHANNEL_PREFIX}{service_id}"
        factory = channel_factory or NullBroadcastChannel
        self._channel: BroadcastChannel | None = factory(self.channel_name)
        self._channel.on_message(self._handle_message)
        self._store: SyncStore | None = None

    def set_store(self, store: SyncStore) -> None:
        """Set the store that inbound events are applied to."""
        self._store = store

    def broadcast_event(self, event: EntityEvent) -> None:
        """Publish an applied event to sibling tabs."""
        if self._channel is None:
            return
        self._channel.post_message({"type": "event", "payload": event.to_dict()})

    def close(self) -> None:
        """Release the channel. Further broadcasts are dropped."""
        if self._channel is not None:
            self._channel.on_message(None)
            self._channel.close()
            self._channel = None

    def _handle_message(self, message: dict[str, Any]) -> None:
        if message.get("type") != "event" or self._store is None:
            return
        try:
            event = EntityEvent.from_dict(message.get("payload"))
        except EventFormatError as e:
            logger.warning("Malformed event from sibling tab: %s", e)
            return
        if self._store.apply_event(event):
            logger.debug("Applied event %s from sibling tab", event.id)
