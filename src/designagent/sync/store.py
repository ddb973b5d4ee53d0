"""Versioned, deduplicated snapshot of a service's entities.

This module provides:
- SyncStore: Holds one ContextSnapshot and applies EntityEvents to it

Events are idempotent by id: a replayed id is a no-op. The set of seen ids
is bounded; when an id is evicted its timestamp raises an eviction
watermark, and the evicted ids stamped exactly at the watermark are kept.
An unseen event older than the watermark may be a redelivery whose id was
already forgotten, so it is not applied and the store asks for a full
resync instead (``resync_required``). Events at the watermark are only
rejected when their id is one of the kept ids.

Single-writer: all mutation must happen on one task/thread.
"""

from __future__ import annotations

import logging
from collections import OrderedDict

from designagent.sync.types import (
    ConnectionState,
    ContextSnapshot,
    EntityAction,
    EntityEvent,
    EntityType,
)

logger = logging.getLogger(__name__)

MAX_PROCESSED_EVENTS = 1000


class SyncStore:
    """Local state for one service.

    Usage:
        store = SyncStore("svc-1")
        store.set_context(await api.get_snapshot("svc-1"))
        store.apply_event(event)  # True if applied, False if duplicate
        if store.resync_required:
            store.set_context(await api.get_snapshot("svc-1"))
    """

    def __init__(self, service_id: str, max_processed_events: int = MAX_PROCESSED_EVENTS) -> None:
        """Initialize an empty store.

        Args:
            service_id: Service this store tracks.
            max_processed_events: Size of the dedup window.
        """
        self.service_id = service_id
        self._max_processed = max_processed_events
        self._context = ContextSnapshot.empty(service_id)
        self._processed: OrderedDict[str, int] = OrderedDict()  # id -> timestamp
        self._eviction_watermark: int | None = None
        self._watermark_ids: set[str] = set()
        self.connection_state = ConnectionState.DISCONNECTED
        self.error: str | None = None
        self.last_event_timestamp: int | None = None
        self.resync_required = False

    @property
    def context(self) -> ContextSnapshot:
        """Current snapshot."""
        return self._context

    @property
    def version(self) -> int:
        """Snapshot version."""
        return self._context.version

    @property
    def processed_count(self) -> int:
        """Number of event ids in the dedup window."""
        return len(self._processed)

    def has_processed(self, event_id: str) -> bool:
        """Check if an event id is in the dedup window."""
        return event_id in self._processed

    def set_context(self, context: ContextSnapshot) -> None:
        """Replace the snapshot wholesale and clear any error."""
        self._context = context
        self.error = None
        if self.resync_required:
            logger.info("Resynced %s at version %d", self.service_id, context.version)
        self.resync_required = False

    def set_connection_state(self, state: ConnectionState) -> None:
        if state is not self.connection_state:
            logger.debug("Connection state %s -> %s", self.connection_state.value, state.value)
        self.connection_state = state

    def set_error(self, error: str | None) -> None:
        self.error = error

    def reset(self) -> None:
        """Empty snapshot, empty dedup window, disconnected."""
        self._context = ContextSnapshot.empty(self.service_id)
        self._processed.clear()
        self._eviction_watermark = None
        self._watermark_ids.clear()
        self.connection_state = ConnectionState.DISCONNECTED
        self.error = None
        self.last_event_timestamp = None
        self.resync_required = False

    def apply_event(self, event: EntityEvent) -> bool:
        """Apply an event to the snapshot.

        Args:
            event: Event to apply.

        Returns:
            True if the event was applied, False if it was a duplicate,
            belongs to another service, or is too old to be trusted.
        """
        if event.service_id != self.service_id:
            logger.warning(
                "Ignoring event %s for service %s (store tracks %s)",
                event.id,
                event.service_id,
                self.service_id,
            )
            return False

        if event.id in self._processed or event.id in self._watermark_ids:
            logger.debug("Duplicate event %s ignored", event.id)
            return False

        if self._eviction_watermark is not None and event.timestamp < self._eviction_watermark:
            logger.warning(
                "Event %s predates the dedup window (%d < %d), resync required",
                event.id,
                event.timestamp,
                self._eviction_watermark,
            )
            self.resync_required = True
            return False

        self._remember(event)
        self._apply_to_context(event)

        self._context.version += 1
        self._context.timestamp = event.timestamp
        self.last_event_timestamp = event.timestamp
        return True

    def _remember(self, event: EntityEvent) -> None:
        self._processed[event.id] = event.timestamp
        while len(self._processed) > self._max_processed:
            evicted_id, evicted_ts = self._processed.popitem(last=False)
            if self._eviction_watermark is None or evicted_ts > self._eviction_watermark:
                self._eviction_watermark = evicted_ts
                self._watermark_ids = {evicted_id}
            elif evicted_ts == self._eviction_watermark:
                self._watermark_ids.add(evicted_id)

    def _apply_to_context(self, event: EntityEvent) -> None:
        if event.entity_type is EntityType.SERVICE:
            if event.action is EntityAction.UPDATED and event.data and "name" in event.data:
                self._context.service_name = str(event.data["name"])
            return

        items = self._context.collection(event.entity_type)

        if event.action is EntityAction.CREATED:
            if event.data is None:
                return
            if any(item.get("id") == event.entity_id for item in items):
                return
            entity = dict(event.data)
            entity.setdefault("id", event.entity_id)
            items.append(entity)

        elif event.action is EntityAction.UPDATED:
            if event.data is None:
                return
            for item in items:
                if item.get("id") == event.entity_id:
                    item.update(event.data)
                    break
            # Missing entity: the event raced ahead of the initial fetch

        elif event.action is EntityAction.DELETED:
            items[:] = [item for item in items if item.get("id") != event.entity_id]
