"""Types for real-time context synchronization.

This module provides:
- EntityType, EntityAction, ConnectionState: Wire enums
- EntityEvent: One change to one entity, as delivered by the realtime feed
- EventFormatError: Malformed wire event
- ContextSnapshot: Locally held, versioned copy of a service's entities

Wire format (camelCase keys):
    {"id": "evt-1", "type": "form.created", "entityType": "form",
     "action": "created", "entityId": "form-1", "serviceId": "svc-1",
     "userId": "user-1", "timestamp": 1700000000000, "data": {...}}
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventFormatError(ValueError):
    """Inbound event is missing fields or has invalid values."""


class EntityType(str, Enum):
    """Kinds of entity carried by events."""

    FORM = "form"
    SECTION = "section"
    FIELD = "field"
    ROLE = "role"
    TRANSITION = "transition"
    REGISTRATION = "registration"
    DETERMINANT = "determinant"
    SERVICE = "service"

    @classmethod
    def parse(cls, value: str) -> EntityType:
        """Parse a wire value, accepting legacy aliases."""
        try:
            return cls(ENTITY_TYPE_ALIASES.get(value, value))
        except ValueError:
            raise EventFormatError(f"Unknown entity type: {value!r}") from None


# Older servers send nested form entities under these names
ENTITY_TYPE_ALIASES: dict[str, str] = {
    "formSection": "section",
    "formField": "field",
}


class EntityAction(str, Enum):
    """Change applied to an entity."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class ConnectionState(str, Enum):
    """Realtime connection state."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass
class EntityEvent:
    """A single entity change.

    Attributes:
        id: Unique event id, used for deduplication.
        entity_type: Kind of entity.
        action: created / updated / deleted.
        entity_id: Affected entity.
        service_id: Service the entity belongs to.
        user_id: User who made the change.
        timestamp: Epoch milliseconds.
        data: Entity data (created / updated).
        previous_data: Entity data before an update, when sent.
    """

    id: str
    entity_type: EntityType
    action: EntityAction
    entity_id: str
    service_id: str
    user_id: str = ""
    timestamp: int = field(default_factory=now_ms)
    data: dict[str, Any] | None = None
    previous_data: dict[str, Any] | None = None

    @property
    def type(self) -> str:
        """Event name in "entity.action" form."""
        return f"{self.entity_type.value}.{self.action.value}"

    @classmethod
    def from_dict(cls, data: Any) -> EntityEvent:
        """Create from a wire dictionary.

        Raises:
            EventFormatError: If required fields are missing or invalid.
        """
        if not isinstance(data, dict):
            raise EventFormatError(f"Event must be an object, got {type(data).__name__}")

        for key in ("id", "entityType", "action", "entityId", "serviceId"):
            value = data.get(key)
            if not isinstance(value, str) or not value:
                raise EventFormatError(f"Event missing {key!r}")

        try:
            action = EntityAction(data["action"])
        except ValueError:
            raise EventFormatError(f"Unknown event action: {data['action']!r}") from None

        timestamp = data.get("timestamp")
        if timestamp is None:
            timestamp = now_ms()
        elif isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            raise EventFormatError(f"Invalid event timestamp: {timestamp!r}")

        # "payload" is accepted for clients that post the entity under that key
        entity_data = data.get("data", data.get("payload"))
        if entity_data is not None and not isinstance(entity_data, dict):
            raise EventFormatError("Event data must be an object")
        previous = data.get("previousData")

        return cls(
            id=data["id"],
            entity_type=EntityType.parse(data["entityType"]),
            action=action,
            entity_id=data["entityId"],
            service_id=data["serviceId"],
            user_id=str(data.get("userId") or ""),
            timestamp=int(timestamp),
            data=entity_data,
            previous_data=previous if isinstance(previous, dict) else None,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire dictionary."""
        result: dict[str, Any] = {
            "id": self.id,
            "type": self.type,
            "entityType": self.entity_type.value,
            "action": self.action.value,
            "entityId": self.entity_id,
            "serviceId": self.service_id,
            "userId": self.user_id,
            "timestamp": self.timestamp,
        }
        if self.data is not None:
            result["data"] = self.data
        if self.previous_data is not None:
            result["previousData"] = self.previous_data
        return result


# Snapshot attribute holding each entity type's collection
COLLECTIONS: dict[EntityType, str] = {
    EntityType.FORM: "forms",
    EntityType.SECTION: "sections",
    EntityType.FIELD: "fields",
    EntityType.ROLE: "roles",
    EntityType.TRANSITION: "transitions",
    EntityType.REGISTRATION: "registrations",
    EntityType.DETERMINANT: "determinants",
}


@dataclass
class ContextSnapshot:
    """Versioned copy of all entities of one service.

    Entities are plain mappings keyed by "id", in insertion order.
    """

    service_id: str
    service_name: str = ""
    forms: list[dict[str, Any]] = field(default_factory=list)
    sections: list[dict[str, Any]] = field(default_factory=list)
    fields: list[dict[str, Any]] = field(default_factory=list)
    roles: list[dict[str, Any]] = field(default_factory=list)
    transitions: list[dict[str, Any]] = field(default_factory=list)
    registrations: list[dict[str, Any]] = field(default_factory=list)
    determinants: list[dict[str, Any]] = field(default_factory=list)
    version: int = 0
    timestamp: int = field(default_factory=now_ms)

    @classmethod
    def empty(cls, service_id: str) -> ContextSnapshot:
        """Snapshot with no entities at version 0."""
        return cls(service_id=service_id)

    def collection(self, entity_type: EntityType) -> list[dict[str, Any]]:
        """Get the collection holding an entity type.

        Raises:
            KeyError: For SERVICE, which has no collection.
        """
        return getattr(self, COLLECTIONS[entity_type])

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContextSnapshot:
        """Create from an API response dictionary."""
        return cls(
            service_id=data["serviceId"],
            service_name=data.get("serviceName", ""),
            version=int(data.get("version", 0)),
            timestamp=int(data.get("timestamp") or now_ms()),
            **{name: list(data.get(name) or []) for name in COLLECTIONS.values()},
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the API dictionary."""
        result: dict[str, Any] = {
            "serviceId": self.service_id,
            "serviceName": self.service_name,
            "version": self.version,
            "timestamp": self.timestamp,
        }
        for name in COLLECTIONS.values():
            result[name] = [dict(entity) for entity in getattr(self, name)]
        return result
