"""Real-time synchronization of service context.

Architecture:
    TransportClient (websockets) ─► SyncStore (dedup + version) ─► TabCoordinator
                                                                       │
                                                    sibling SyncStores ◄┘

Components:
- **SyncStore**: Versioned, deduplicated ContextSnapshot for one service
- **TransportClient**: Realtime connection with reconnect/backoff and resync
- **TabCoordinator**: Rebroadcast over a BroadcastChannel (null by default)
"""

from designagent.sync.store import MAX_PROCESSED_EVENTS, SyncStore
from designagent.sync.tabs import (
    BroadcastChannel,
    LocalBroadcastChannel,
    LocalBroadcastHub,
    NullBroadcastChannel,
    TabCoordinator,
)
from designagent.sync.transport import SERVER_DISCONNECT_CODES, TransportClient
from designagent.sync.types import (
    ConnectionState,
    ContextSnapshot,
    EntityAction,
    EntityEvent,
    EntityType,
    EventFormatError,
)

__all__ = [
    # Store
    "MAX_PROCESSED_EVENTS",
    "SyncStore",
    # Transport
    "SERVER_DISCONNECT_CODES",
    "TransportClient",
    # Tabs
    "BroadcastChannel",
    "LocalBroadcastChannel",
    "LocalBroadcastHub",
    "NullBroadcastChannel",
    "TabCoordinator",
    # Types
    "ConnectionState",
    "ContextSnapshot",
    "EntityAction",
    "EntityEvent",
    "EntityType",
    "EventFormatError",
]
