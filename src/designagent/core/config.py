"""Shared configuration classes for designagent.

This module defines configuration classes used by the tool executor
(HTTP) and the transport client (WebSocket).
"""

from __future__ import annotations

from dataclasses import dataclass

EVENTS_PATH = "/ws/events"


@dataclass
class ServerConfig:
    """Configuration for connecting to the service-design backend.

    Used by both the tool executor and the TransportClient to ensure
    consistent connection settings.

    Attributes:
        server_url: Base URL of the server (e.g., "https://bpa.example.com").
        token: Bearer token for the current user.
        timeout: Request/connection timeout in seconds.
        verify_ssl: Whether to verify SSL certificates (default True).
    """

    server_url: str
    token: str
    timeout: float = 30.0
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        """Normalize server URL."""
        self.server_url = self.server_url.rstrip("/")

    @property
    def ws_url(self) -> str:
        """Get the realtime events WebSocket URL.

        The token is not part of the URL; it travels in the handshake
        headers (see auth_headers).
        """
        url = self.server_url
        if url.startswith("https://"):
            url = "wss://" + url[8:]
        elif url.startswith("http://"):
            url = "ws://" + url[7:]
        return f"{url}{EVENTS_PATH}"

    @property
    def auth_headers(self) -> dict[str, str]:
        """Headers carrying the bearer token."""
        return {"Authorization": f"Bearer {self.token}"}

    @property
    def is_secure(self) -> bool:
        """Check if using HTTPS/WSS."""
        return self.ws_url.startswith("wss://")


@dataclass
class TransportConfig:
    """Reconnection settings for the TransportClient.

    Attributes:
        reconnect_delay: Delay before the first reconnection attempt (seconds).
        max_reconnect_delay: Upper bound for the backoff delay (seconds).
        backoff_multiplier: Multiplier applied per failed attempt.
        max_reconnect_attempts: Consecutive failures before giving up.
        open_timeout: Timeout for the WebSocket opening handshake (seconds).
    """

    reconnect_delay: float = 1.0
    max_reconnect_delay: float = 30.0
    backoff_multiplier: float = 2.0
    max_reconnect_attempts: int = 10
    open_timeout: float = 10.0

    def delay_for(self, attempt: int) -> float:
        """Backoff delay for a zero-based reconnection attempt."""
        return min(
            self.reconnect_delay * self.backoff_multiplier**attempt,
            self.max_reconnect_delay,
        )
