"""Tests for SyncStore."""

from __future__ import annotations

from typing import Any

import pytest

from designagent.sync.store import SyncStore
from designagent.sync.types import (
    ConnectionState,
    ContextSnapshot,
    EntityAction,
    EntityEvent,
    EntityType,
    EventFormatError,
)


def make_event(
    event_id: str,
    action: EntityAction = EntityAction.CREATED,
    entity_id: str = "form-1",
    entity_type: EntityType = EntityType.FORM,
    timestamp: int = 1_000,
    data: dict[str, Any] | None = None,
    service_id: str = "svc-1",
) -> EntityEvent:
    if data is None and action is not EntityAction.DELETED:
        data = {"id": entity_id, "name": "Intake"}
    return EntityEvent(
        id=event_id,
        entity_type=entity_type,
        action=action,
        entity_id=entity_id,
        service_id=service_id,
        user_id="user-1",
        timestamp=timestamp,
        data=data,
    )


@pytest.fixture
def store() -> SyncStore:
    return SyncStore("svc-1")


class TestApplyEvent:
    """Tests for SyncStore.apply_event."""

    def test_created_appends(self, store: SyncStore) -> None:
        """A created event adds the entity and bumps the version."""
        assert store.apply_event(make_event("e1")) is True
        assert store.context.forms == [{"id": "form-1", "name": "Intake"}]
        assert store.version == 1
        assert store.last_event_timestamp == 1_000
        assert store.context.timestamp == 1_000

    def test_duplicate_is_noop(self, store: SyncStore) -> None:
        """Replaying an event id changes nothing."""
        event = make_event("e1")
        assert store.apply_event(event) is True
        assert store.apply_event(event) is False
        assert len(store.context.forms) == 1
        assert store.version == 1
        assert store.has_processed("e1")

    def test_create_then_delete(self, store: SyncStore) -> None:
        """create + delete leaves an empty collection at version 2."""
        store.apply_event(make_event("e1"))
        store.apply_event(make_event("e2", EntityAction.DELETED, timestamp=2_000))
        assert store.context.forms == []
        assert store.version == 2

    def test_created_existing_id_not_duplicated(self, store: SyncStore) -> None:
        """A second create for the same entity keeps one copy."""
        store.apply_event(make_event("e1"))
        store.apply_event(make_event("e2", data={"id": "form-1", "name": "Other"}))
        assert store.context.forms == [{"id": "form-1", "name": "Intake"}]
        assert store.version == 2

    def test_created_without_id_in_data(self, store: SyncStore) -> None:
        """The entity id is filled in from the event."""
        store.apply_event(make_event("e1", data={"name": "No id"}))
        assert store.context.forms[0]["id"] == "form-1"

    def test_created_data_is_copied(self, store: SyncStore) -> None:
        """Stored entities do not alias the event data."""
        event = make_event("e1")
        store.apply_event(event)
        assert event.data is not None
        event.data["name"] = "changed"
        assert store.context.forms[0]["name"] == "Intake"

    def test_updated_merges(self, store: SyncStore) -> None:
        """An update merges fields into the existing entity."""
        store.apply_event(make_event("e1", data={"id": "form-1", "name": "A", "order": 1}))
        store.apply_event(
            make_event("e2", EntityAction.UPDATED, data={"name": "B"}, timestamp=2_000)
        )
        assert store.context.forms == [{"id": "form-1", "name": "B", "order": 1}]

    def test_update_of_missing_entity(self, store: SyncStore) -> None:
        """Updating an unknown entity leaves the collection alone but counts."""
        assert store.apply_event(make_event("e1", EntityAction.UPDATED)) is True
        assert store.context.forms == []
        assert store.version == 1

    def test_delete_of_missing_entity(self, store: SyncStore) -> None:
        """Deleting an unknown entity is harmless."""
        store.apply_event(make_event("e1", EntityAction.DELETED))
        assert store.context.forms == []

    @pytest.mark.parametrize(
        ("entity_type", "collection"),
        [
            (EntityType.SECTION, "sections"),
            (EntityType.FIELD, "fields"),
            (EntityType.ROLE, "roles"),
            (EntityType.TRANSITION, "transitions"),
            (EntityType.REGISTRATION, "registrations"),
            (EntityType.DETERMINANT, "determinants"),
        ],
    )
    def test_routes_to_collection(
        self, store: SyncStore, entity_type: EntityType, collection: str
    ) -> None:
        """Each entity type lands in its own collection."""
        store.apply_event(make_event("e1", entity_type=entity_type, entity_id="x-1"))
        assert [e["id"] for e in getattr(store.context, collection)] == ["x-1"]
        assert store.context.forms == []

    def test_service_update_changes_name(self, store: SyncStore) -> None:
        """service.updated with a name renames the service."""
        store.apply_event(
            make_event(
                "e1",
                EntityAction.UPDATED,
                entity_type=EntityType.SERVICE,
                entity_id="svc-1",
                data={"name": "Business Licence"},
            )
        )
        assert store.context.service_name == "Business Licence"
        assert store.version == 1

    def test_service_created_only_bumps_version(self, store: SyncStore) -> None:
        """Other service events only count."""
        store.apply_event(
            make_event("e1", entity_type=EntityType.SERVICE, entity_id="svc-1")
        )
        assert store.context.service_name == ""
        assert store.version == 1

    def test_other_service_ignored(self, store: SyncStore) -> None:
        """Events for another service are not applied."""
        assert store.apply_event(make_event("e1", service_id="svc-2")) is False
        assert store.version == 0
        assert not store.has_processed("e1")


class TestDedupWindow:
    """Tests for the bounded dedup window."""

    def test_window_is_bounded(self) -> None:
        """Old ids are evicted once the window is full."""
        store = SyncStore("svc-1", max_processed_events=3)
        for i in range(5):
            store.apply_event(make_event(f"e{i}", entity_id=f"f{i}", timestamp=1_000 + i))
        assert store.processed_count == 3
        assert not store.has_processed("e0")
        assert store.has_processed("e4")

    def test_event_older_than_window_requires_resync(self) -> None:
        """An unseen event older than evicted ones is not applied."""
        store = SyncStore("svc-1", max_processed_events=2)
        for i in range(3):
            store.apply_event(make_event(f"e{i}", entity_id=f"f{i}", timestamp=1_000 + i))
        version = store.version

        assert store.apply_event(make_event("late", entity_id="f9", timestamp=999)) is False
        assert store.resync_required is True
        assert store.version == version
        assert len(store.context.forms) == 3

    def test_evicted_id_at_watermark_is_duplicate(self) -> None:
        """Redelivery of an id evicted at the watermark is a plain duplicate."""
        store = SyncStore("svc-1", max_processed_events=2)
        for i in range(3):
            store.apply_event(make_event(f"e{i}", entity_id=f"f{i}", timestamp=1_000 + i))

        assert not store.has_processed("e0")
        assert store.apply_event(make_event("e0", entity_id="f0", timestamp=1_000)) is False
        assert store.resync_required is False
        assert store.version == 3

    def test_fresh_event_sharing_watermark_timestamp_applies(self) -> None:
        """A burst in the same millisecond does not force a resync."""
        store = SyncStore("svc-1", max_processed_events=2)
        for i in range(3):
            store.apply_event(make_event(f"e{i}", entity_id=f"f{i}", timestamp=1_000))

        assert store.apply_event(make_event("e3", entity_id="f3", timestamp=1_000)) is True
        assert store.resync_required is False
        assert store.version == 4
        # e0 and e1 were both evicted at the watermark
        assert store.apply_event(make_event("e1", entity_id="f1", timestamp=1_000)) is False
        assert store.resync_required is False
        assert store.version == 4

    def test_newer_events_still_apply_after_eviction(self) -> None:
        """Events newer than the watermark are applied normally."""
        store = SyncStore("svc-1", max_processed_events=1)
        store.apply_event(make_event("e1", entity_id="f1", timestamp=1_000))
        store.apply_event(make_event("e2", entity_id="f2", timestamp=2_000))
        assert store.apply_event(make_event("e3", entity_id="f3", timestamp=3_000)) is True
        assert store.resync_required is False

    def test_set_context_clears_resync(self) -> None:
        """Installing a fresh snapshot clears the resync flag and error."""
        store = SyncStore("svc-1", max_processed_events=1)
        store.apply_event(make_event("e1", entity_id="f1", timestamp=1_000))
        store.apply_event(make_event("e2", entity_id="f2", timestamp=2_000))
        store.apply_event(make_event("old", entity_id="f0", timestamp=500))
        store.set_error("boom")
        assert store.resync_required is True

        store.set_context(ContextSnapshot(service_id="svc-1", version=7))
        assert store.resync_required is False
        assert store.error is None
        assert store.version == 7


class TestLifecycle:
    """Tests for reset and state."""

    def test_reset(self, store: SyncStore) -> None:
        """reset empties everything."""
        store.apply_event(make_event("e1"))
        store.set_connection_state(ConnectionState.CONNECTED)
        store.set_error("oops")
        store.reset()

        assert store.version == 0
        assert store.context.forms == []
        assert store.processed_count == 0
        assert store.connection_state is ConnectionState.DISCONNECTED
        assert store.error is None
        assert store.last_event_timestamp is None
        # Replayed ids apply again after a reset
        assert store.apply_event(make_event("e1")) is True

    def test_initial_state(self, store: SyncStore) -> None:
        """A new store is empty and disconnected."""
        assert store.version == 0
        assert store.connection_state is ConnectionState.DISCONNECTED
        assert store.context.service_id == "svc-1"


class TestEntityEventWire:
    """Tests for EntityEvent.from_dict."""

    def test_from_dict(self) -> None:
        """Wire keys are camelCase."""
        event = EntityEvent.from_dict(
            {
                "id": "e1",
                "type": "field.updated",
                "entityType": "formField",
                "action": "updated",
                "entityId": "fld-1",
                "serviceId": "svc-1",
                "userId": "u1",
                "timestamp": 1_700_000_000_000,
                "data": {"label": "Name"},
                "previousData": {"label": "Nom"},
            }
        )
        assert event.entity_type is EntityType.FIELD
        assert event.type == "field.updated"
        assert event.previous_data == {"label": "Nom"}

    def test_payload_key_accepted(self) -> None:
        """Entity data may arrive under "payload"."""
        event = EntityEvent.from_dict(
            {"id": "e1", "entityType": "role", "action": "created", "entityId": "r1",
             "serviceId": "svc-1", "payload": {"name": "Reviewer"}}
        )
        assert event.data == {"name": "Reviewer"}

    @pytest.mark.parametrize(
        "data",
        [
            "not a dict",
            {"entityType": "form", "action": "created", "entityId": "f", "serviceId": "s"},
            {"id": "e", "entityType": "widget", "action": "created", "entityId": "f", "serviceId": "s"},
            {"id": "e", "entityType": "form", "action": "moved", "entityId": "f", "serviceId": "s"},
            {"id": "e", "entityType": "form", "action": "created", "entityId": "f",
             "serviceId": "s", "timestamp": "yesterday"},
            {"id": "e", "entityType": "form", "action": "created", "entityId": "f",
             "serviceId": "s", "data": [1, 2]},
        ],
    )
    def test_malformed(self, data: object) -> None:
        """Malformed events raise EventFormatError."""
        with pytest.raises(EventFormatError):
            EntityEvent.from_dict(data)

    def test_snapshot_from_dict(self) -> None:
        """Snapshots load from API dictionaries."""
        snapshot = ContextSnapshot.from_dict(
            {"serviceId": "svc-1", "serviceName": "Permits", "version": 3,
             "forms": [{"id": "f1"}], "roles": None}
        )
        assert snapshot.version == 3
        assert snapshot.forms == [{"id": "f1"}]
        assert snapshot.roles == []
        assert snapshot.to_dict()["serviceName"] == "Permits"
