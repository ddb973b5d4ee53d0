"""Core module - Shared configuration and error types."""

from designagent.core.config import ServerConfig, TransportConfig
from designagent.core.errors import APIError, DesignAgentError

__all__ = [
    # Config
    "ServerConfig",
    "TransportConfig",
    # Errors
    "APIError",
    "DesignAgentError",
]
