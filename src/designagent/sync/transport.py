"""Realtime event transport feeding a SyncStore.

This module provides:
- TransportClient: WebSocket client that receives entity events for a
  service, applies them to a SyncStore and acknowledges them

Architecture:
    Server ─entity.event─► TransportClient ─apply─► SyncStore
                │   ▲                         └─► listeners
                │   └── event.ack                └─► TabCoordinator
                │
         (on reconnect / resync_required: snapshot_loader → set_context)

State machine:
    DISCONNECTED → CONNECTING → CONNECTED ⇄ RECONNECTING → DISCONNECTED

A close frame with code 1000 or 1008 from the server ends the session
without reconnecting. Any other disconnect or connect failure reconnects
with exponential backoff until ``max_reconnect_attempts`` consecutive
failures.

Frames are JSON text: {"type": "<event name>", "payload": {...}}.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import ssl
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from designagent.core.config import TransportConfig
from designagent.sync.store import SyncStore
from designagent.sync.types import ConnectionState, ContextSnapshot, EntityEvent, EventFormatError

if TYPE_CHECKING:
    from websockets.asyncio.client import ClientConnection

    from designagent.core.config import ServerConfig
    from designagent.sync.tabs import TabCoordinator

logger = logging.getLogger(__name__)

EventListener = Callable[[EntityEvent], None]
SnapshotLoader = Callable[[str], Awaitable[ContextSnapshot]]
SleepFn = Callable[[float], Awaitable[None]]

# Close codes meaning the server ended the session on purpose
SERVER_DISCONNECT_CODES = frozenset({1000, 1008})


class TransportClient:
    """Realtime event client for one service.

    Usage:
        store = SyncStore("svc-1")
        client = TransportClient(server_config, "svc-1", snapshot_loader=load)
        await client.connect(store)
        remove = client.add_listener(lambda event: print(event.type))
        ...
        await client.disconnect()
    """

    def __init__(
        self,
        config: ServerConfig,
        service_id: str,
        transport_config: TransportConfig | None = None,
        store: SyncStore | None = None,
        tabs: TabCoordinator | None = None,
        snapshot_loader: SnapshotLoader | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        """Initialize the transport client.

        Args:
            config: Server URL, token and SSL settings.
            service_id: Service subscribed to on every connection.
            transport_config: Reconnection settings (defaults if None).
            store: Store fed by inbound events. A fresh one is created if None.
            tabs: Rebroadcasts newly applied events to sibling tabs.
            snapshot_loader: Fetches a full snapshot; called after every
                reconnection and whenever the store requires a resync.
            sleep: Coroutine function used for backoff delays, in seconds.
        """
        self._config = config
        self.service_id = service_id
        self._transport = transport_config or TransportConfig()
        self._store = store or SyncStore(service_id)
        self._tabs = tabs
        self._snapshot_loader = snapshot_loader
        self._sleep = sleep

        self._ws: ClientConnection | None = None
        self._listeners: list[EventListener] = []
        self._reconnect_attempt = 0
        self._reconnect_task: asyncio.Task[None] | None = None
        self._listen_task: asyncio.Task[None] | None = None
        self._has_connected = False
        self._closing = False

        if self._tabs is not None:
            self._tabs.set_store(self._store)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def store(self) -> SyncStore:
        return self._store

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._store.connection_state

    @property
    def connected(self) -> bool:
        """Check if currently connected."""
        return self._ws is not None and self.state is ConnectionState.CONNECTED

    @property
    def reconnect_attempt(self) -> int:
        """Consecutive failed attempts since the last successful connection."""
        return self._reconnect_attempt

    @property
    def reconnect_task(self) -> asyncio.Task[None] | None:
        """Pending reconnection task, if any."""
        return self._reconnect_task

    @property
    def ws_url(self) -> str:
        return self._config.ws_url

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self, store: SyncStore | None = None) -> None:
        """Connect and subscribe to the service.

        On failure the client moves to RECONNECTING and retries in the
        background; errors are reported through the store, never raised.

        Args:
            store: Replaces the store given at construction.
        """
        if self.connected:
            return

        if store is not None:
            self._store = store
            if self._tabs is not None:
                self._tabs.set_store(store)

        self._closing = False
        await self._cancel_reconnect()
        self._store.set_connection_state(ConnectionState.CONNECTING)

        if not await self._open():
            self._start_reconnect()

    async def disconnect(self) -> None:
        """Close the connection and stop reconnecting."""
        self._closing = True
        self._reconnect_attempt = 0
        await self._cancel_reconnect()

        listen_task = self._listen_task
        self._listen_task = None
        if listen_task is not None and listen_task is not asyncio.current_task():
            listen_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await listen_task

        await self._close_connection()
        self._store.set_connection_state(ConnectionState.DISCONNECTED)
        logger.info("TransportClient disconnected from %s", self.ws_url)

    async def _open(self) -> bool:
        """Make one connection attempt.

        Returns:
            True if connected.
        """
        ssl_context: ssl.SSLContext | None = None
        if self._config.is_secure:
            ssl_context = ssl.create_default_context()
            if not self._config.verify_ssl:
                ssl_context.check_hostname = False
                ssl_context.verify_mode = ssl.CERT_NONE

        try:
            ws = await websockets.connect(
                self.ws_url,
                additional_headers=self._config.auth_headers,
                ssl=ssl_context,
                open_timeout=self._transport.open_timeout,
                close_timeout=5,
            )
        except (OSError, TimeoutError, WebSocketException) as e:
            logger.debug("Connection attempt failed: %s", e)
            self._store.set_error(f"Connection error: {e}")
            return False

        self._ws = ws
        self._reconnect_attempt = 0
        self._store.set_connection_state(ConnectionState.CONNECTED)
        self._store.set_error(None)
        logger.info("TransportClient connected to %s", self.ws_url)

        if self._has_connected or self._store.resync_required:
            await self._resync()
        self._has_connected = True

        await self.subscribe()
        self._listen_task = asyncio.create_task(self._listen(ws))
        return True

    async def _listen(self, ws: ClientConnection) -> None:
        """Read frames until the connection closes."""
        close_code: int | None = None
        try:
            async for message in ws:
                if isinstance(message, bytes):
                    try:
                        message = message.decode("utf-8")
                    except UnicodeDecodeError:
                        logger.warning("Invalid binary message received (%d bytes)", len(message))
                        continue
                await self._handle_message(message)
            close_code = ws.close_code
        except ConnectionClosed as e:
            close_code = e.rcvd.code if e.rcvd is not None else None
        except OSError as e:
            logger.debug("Connection error: %s", e)
        except Exception as e:
            logger.warning("TransportClient listen error: %s", e)
            logger.debug("Full traceback:", exc_info=True)
            self._store.set_error(f"Connection error: {e}")
            with contextlib.suppress(WebSocketException, OSError):
                await ws.close()

        if self._closing or self._ws is not ws:
            return

        self._ws = None
        self._listen_task = None
        self._store.set_connection_state(ConnectionState.DISCONNECTED)

        if close_code in SERVER_DISCONNECT_CODES:
            logger.info("Server closed the connection (code %s)", close_code)
            self._store.set_error("Server disconnected the connection")
            return

        logger.warning("TransportClient connection lost (code %s)", close_code)
        self._start_reconnect()

    async def _close_connection(self) -> None:
        if self._ws is not None:
            with contextlib.suppress(WebSocketException, OSError):
                await self._ws.close()
            self._ws = None

    # -------------------------------------------------------------------------
    # Reconnection
    # -------------------------------------------------------------------------

    def _start_reconnect(self) -> None:
        """Start the background reconnection loop (at most one)."""
        if self._closing:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._store.set_connection_state(ConnectionState.RECONNECTING)
        self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        while not self._closing:
            if self._reconnect_attempt >= self._transport.max_reconnect_attempts:
                logger.error(
                    "Giving up after %d reconnection attempts", self._reconnect_attempt
                )
                self._store.set_error("Maximum reconnection attempts reached")
                self._store.set_connection_state(ConnectionState.DISCONNECTED)
                return

            delay = self._transport.delay_for(self._reconnect_attempt)
            self._reconnect_attempt += 1
            self._store.set_connection_state(ConnectionState.RECONNECTING)
            logger.warning(
                "Reconnecting in %.1fs (attempt %d/%d)",
                delay,
                self._reconnect_attempt,
                self._transport.max_reconnect_attempts,
            )
            await self._sleep(delay)

            if self._closing:
                return
            if await self._open():
                return

    async def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _resync(self) -> None:
        """Replace the store snapshot from the snapshot loader."""
        if self._snapshot_loader is None:
            return
        try:
            snapshot = await self._snapshot_loader(self.service_id)
        except Exception as e:
            logger.warning("Failed to load snapshot for %s: %s", self.service_id, e)
            self._store.set_error(f"Resync failed: {e}")
            return
        self._store.set_context(snapshot)

    # -------------------------------------------------------------------------
    # Subscriptions and listeners
    # -------------------------------------------------------------------------

    async def subscribe(self, service_id: str | None = None) -> bool:
        """Join a service's event channel.

        Returns:
            True if the request was sent.
        """
        return await self._send("subscribe", {"serviceId": service_id or self.service_id})

    async def unsubscribe(self, service_id: str | None = None) -> bool:
        """Leave a service's event channel."""
        return await self._send("unsubscribe", {"serviceId": service_id or self.service_id})

    def add_listener(self, listener: EventListener) -> Callable[[], None]:
        """Register an event listener.

        Returns:
            Callable that removes the listener.
        """
        self._listeners.append(listener)
        return lambda: self.remove_listener(listener)

    def remove_listener(self, listener: EventListener) -> None:
        with contextlib.suppress(ValueError):
            self._listeners.remove(listener)

    async def _send(self, msg_type: str, payload: dict[str, Any]) -> bool:
        if self._ws is None:
            return False
        try:
            await self._ws.send(json.dumps({"type": msg_type, "payload": payload}))
        except (WebSocketException, OSError) as e:
            logger.debug("Failed to send %s: %s", msg_type, e)
            return False
        return True

    # -------------------------------------------------------------------------
    # Inbound messages
    # -------------------------------------------------------------------------

    async def _handle_message(self, message: str) -> None:
        """Handle one inbound frame.

        Supported message types:
        - entity.event: {"type": "entity.event", "payload": EntityEvent}
        - subscription.confirmed: {"payload": {"serviceId": ...}}
        - error: {"payload": {"message": ...}}
        """
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            logger.warning("Invalid message received: %s", message[:100])
            return
        if not isinstance(data, dict):
            logger.warning("Invalid message received: %s", message[:100])
            return

        msg_type = data.get("type")
        payload = data.get("payload")

        if msg_type == "entity.event":
            await self._handle_event(payload)
        elif msg_type == "subscription.confirmed":
            service_id = payload.get("serviceId") if isinstance(payload, dict) else None
            logger.debug("Subscribed to service %s", service_id)
        elif msg_type == "error":
            text = payload.get("message") if isinstance(payload, dict) else None
            self._store.set_error(str(text or "Unknown server error"))
        else:
            logger.debug("Ignoring message type %s", msg_type)

    async def _handle_event(self, payload: Any) -> None:
        try:
            event = EntityEvent.from_dict(payload)
        except EventFormatError as e:
            logger.warning("Malformed entity event: %s", e)
            event_id = payload.get("id") if isinstance(payload, dict) else None
            if isinstance(event_id, str):
                await self._ack(event_id)
            return

        if self._store.apply_event(event) and self._tabs is not None:
            self._tabs.broadcast_event(event)

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning("Event listener error: %s", e)
                logger.debug("Full traceback:", exc_info=True)

        if self._store.resync_required:
            await self._resync()

        await self._ack(event.id)

    async def _ack(self, event_id: str) -> None:
        await self._send("event.ack", {"eventId": event_id, "received": True})
