import uuid

import pytest
from sqlalchemy.exc import OperationalError

from filetracker import models
from filetracker.exceptions import NotFoundError, StoreError
from filetracker.store import DocumentStore, SubscriptionHub
from .conftest import TestingSessionLocal


@pytest.fixture
def local_hub():
    return SubscriptionHub(TestingSessionLocal)


def test_crud_round_trip(db, local_hub):
    store = DocumentStore(db, local_hub)
    new_id = store.insert("studyIds", {"participant_id": "S-1"})
    assert store.get("studyIds", str(new_id)).participant_id == "S-1"
    store.update("studyIds", new_id, {"description": "updated"})
    assert store.find("studyIds", {"description": "updated"})[0].id == new_id
    store.delete("studyIds", new_id)
    with pytest.raises(NotFoundError):
        store.get("studyIds", new_id)


def test_get_with_malformed_id_is_not_found(db):
    with pytest.raises(NotFoundError):
        DocumentStore(db).get("fileRequests", "not-a-uuid")


def test_find_supports_in_filters_and_ordering(db, local_hub):
    store = DocumentStore(db, local_hub)
    for pid in ("S-3", "S-1", "S-2"):
        store.insert("studyIds", {"participant_id": pid})
    found = store.find("studyIds", {"participant_id": ["S-1", "S-3"]}, order="-participant_id")
    assert [e.participant_id for e in found] == ["S-3", "S-1"]


def test_unknown_collection(db):
    with pytest.raises(ValueError):
        DocumentStore(db).find("widgets")


def test_live_query_delivers_on_open_and_after_writes(db, local_hub):
    store = DocumentStore(db, local_hub)
    deliveries = []
    query = store.subscribe("studyIds", {"is_active": True}, order="participant_id")
    unsubscribe = query.listen(lambda rows: deliveries.append([r.participant_id for r in rows]))
    assert deliveries == [[]]

    store.insert("studyIds", {"participant_id": "L-1"})
    store.insert("studyIds", {"participant_id": "L-2", "is_active": False})
    assert deliveries == [[], ["L-1"], ["L-1"]]

    unsubscribe()
    assert not query.active
    store.insert("studyIds", {"participant_id": "L-3"})
    assert len(deliveries) == 3


def test_live_query_only_fires_for_its_collection(db, local_hub):
    store = DocumentStore(db, local_hub)
    deliveries = []
    store.subscribe("fileRequests").listen(deliveries.append)
    store.insert("studyIds", {"participant_id": "L-9"})
    assert len(deliveries) == 1


def test_failing_listener_does_not_break_the_write(db, local_hub):
    store = DocumentStore(db, local_hub)

    def explode(rows):
        if rows:
            raise RuntimeError("listener bug")

    store.subscribe("studyIds").listen(explode)
    new_id = store.insert("studyIds", {"participant_id": "L-5"})
    assert db.get(models.StudyId, new_id) is not None


def test_write_failure_raises_store_error_and_rolls_back(db, local_hub, monkeypatch):
    store = DocumentStore(db, local_hub)

    def broken_commit():
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(db, "commit", broken_commit)
    with pytest.raises(StoreError) as exc:
        store.insert("studyIds", {"participant_id": "F-1"})
    assert exc.value.message == "Failed to create studyIds"
    monkeypatch.undo()
    assert db.query(models.StudyId).count() == 0


def test_upsert_creates_then_merges(db, local_hub):
    store = DocumentStore(db, local_hub)
    store.upsert("adminEmails", "a@example.com", {"added_by": "one"})
    store.upsert("adminEmails", "a@example.com", {"added_by": "two"})
    rows = store.find("adminEmails")
    assert [(r.email, r.added_by) for r in rows] == [("a@example.com", "two")]
    assert store.get_or_none("admins", str(uuid.uuid4())) is None
