import pytest
from pymongo.errors import DuplicateKeyError

from store import LocalStore, SLOTS, USERS, VEHICLES


def test_requires_database():
    with pytest.raises(ValueError):
        LocalStore(None)


def test_insert_assigns_id_and_version(store):
    vehicle_id = store.insert_with_id(VEHICLES, {"brand": "Mazda"})
    doc = store.get_by_id(VEHICLES, vehicle_id)
    assert doc["id"] == vehicle_id
    assert doc["version"] == 1
    assert "_id" not in doc


def test_insert_keeps_explicit_id(store):
    assert store.insert_with_id(VEHICLES, {"id": "v-1", "brand": "Kia"}) == "v-1"
    assert store.get_by_id(VEHICLES, "v-1")["brand"] == "Kia"


def test_get_all_preserves_insertion_order(store):
    for brand in ["a", "b", "c"]:
        store.insert_with_id(VEHICLES, {"brand": brand})
    assert [d["brand"] for d in store.get_all(VEHICLES)] == ["a", "b", "c"]


def test_update_is_compare_and_set(store):
    vehicle_id = store.insert_with_id(VEHICLES, {"saleStatus": "draft"})

    updated = store.update(VEHICLES, vehicle_id, {"saleStatus": "pending_validation"}, expected={"saleStatus": "draft"})
    assert updated["saleStatus"] == "pending_validation"
    assert updated["version"] == 2

    # Second writer still expects draft and loses
    assert store.update(VEHICLES, vehicle_id, {"saleStatus": "pending_validation"}, expected={"saleStatus": "draft"}) is None
    assert store.get_by_id(VEHICLES, vehicle_id)["version"] == 2


def test_update_missing_record(store):
    assert store.update(VEHICLES, "nope", {"brand": "x"}) is None


def test_delete_with_expectation(store):
    vehicle_id = store.insert_with_id(VEHICLES, {"status": "sold"})
    assert not store.delete(VEHICLES, vehicle_id, expected={"status": "active"})
    assert store.delete(VEHICLES, vehicle_id)
    assert store.get_by_id(VEHICLES, vehicle_id) is None


def test_set_all_replaces_collection(store):
    store.insert_with_id(VEHICLES, {"brand": "old"})
    store.set_all(VEHICLES, [{"id": "1", "brand": "x"}, {"id": "2", "brand": "y"}])
    assert [d["id"] for d in store.get_all(VEHICLES)] == ["1", "2"]
    assert store.count(VEHICLES) == 2


def test_unique_email(store):
    store.insert_with_id(USERS, {"email": "a@x.com"})
    with pytest.raises(DuplicateKeyError):
        store.insert_with_id(USERS, {"email": "a@x.com"})


def test_scalar_slots(store):
    assert store.get_value("current_user") is None
    store.set_value("current_user", "u1")
    store.set_value("current_user", "u2")
    assert store.get_value("current_user") == "u2"
    assert store.count(SLOTS) == 1
    store.clear_value("current_user")
    assert store.get_value("current_user") is None


def test_clear_all(store):
    store.insert_with_id(VEHICLES, {"brand": "x"})
    store.set_value("session_id", "s")
    store.clear_all()
    assert store.count(VEHICLES) == 0
    assert store.get_value("session_id") is None


def test_ping(store):
    assert store.ping()
