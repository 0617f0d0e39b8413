from datetime import timedelta

import pytest

from bizdata.database import utcnow


def test_user_crud(store):
    user = store.create_user("a@x.com", "hash", "Alice")
    assert user.id
    assert user.role == "user"
    assert user.created_at == user.updated_at

    assert store.get_user(user.id).email == "a@x.com"
    assert store.get_user_by_email("a@x.com").id == user.id
    assert store.get_user_by_email("missing@x.com") is None

    updated = store.update_user(user.id, name="Alicia", role=None)
    assert updated.name == "Alicia"
    assert updated.role == "user"
    assert updated.created_at == user.created_at
    assert updated.updated_at >= user.updated_at

    assert store.update_user("missing", name="x") is None
    assert store.delete_user(user.id) is True
    assert store.delete_user(user.id) is False
    assert store.list_users() == []


def test_records_filtered_by_owner(store):
    first = store.create_record("alice", "Lead", "Sales", "First lead", value=10)
    store.create_record("bob", "Invoice", "Finance", "Bob's invoice")

    assert first.status == "active"
    assert first.meta == {}
    assert [r.id for r in store.list_records(owner_id="alice")] == [first.id]
    assert len(store.list_records()) == 2


def test_record_update_keeps_identity_fields(store):
    record = store.create_record(
        "alice", "Lead", "Sales", "First lead", meta={"tags": ["hot"]}
    )
    updated = store.update_record(record.id, title="Qualified lead", value=99.5)

    assert updated.id == record.id
    assert updated.owner_id == "alice"
    assert updated.title == "Qualified lead"
    assert updated.value == 99.5
    assert updated.meta == {"tags": ["hot"]}
    assert updated.created_at == record.created_at

    fetched = store.get_record(record.id)
    assert fetched.title == "Qualified lead"


def test_record_owner_cannot_be_reassigned(store):
    record = store.create_record("alice", "Lead", "Sales", "First lead")
    with pytest.raises(ValueError):
        store.update_record(record.id, owner_id="bob")
    assert store.get_record(record.id).owner_id == "alice"


def test_record_delete_reports_existence(store):
    record = store.create_record("alice", "Lead", "Sales", "First lead")
    assert store.delete_record(record.id) is True
    assert store.delete_record(record.id) is False
    assert store.get_record(record.id) is None
    assert store.update_record(record.id, title="x") is None


def test_session_lookup_filters_expired(store):
    now = utcnow()
    store.create_session("alice", "live", now + timedelta(days=7))
    store.create_session("alice", "stale", now - timedelta(seconds=1))

    assert store.get_session_by_token("live").user_id == "alice"
    assert store.get_session_by_token("stale") is None
    # expired rows linger until cleaned up
    assert store.delete_expired_sessions() == 1
    assert store.delete_session("stale") is False


def test_delete_user_sessions(store):
    expires = utcnow() + timedelta(days=1)
    store.create_session("alice", "t1", expires)
    store.create_session("alice", "t2", expires)
    store.create_session("bob", "t3", expires)

    assert store.delete_user_sessions("alice") == 2
    assert store.get_session_by_token("t3") is not None
    assert store.delete_session("t3") is True
