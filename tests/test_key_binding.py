import re
from datetime import datetime, timedelta, timezone

from captcha_broker.key_binding import DEFAULT_USER_NAME, bind_key, generate_api_key


def _t(minutes):
    return datetime(2026, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=minutes)


def test_first_bind_claims_key_and_creates_user(stores):
    stores.api_keys.create("C_master.k1", name="Alice")

    body, status = bind_key(stores, "C_master.k1", "visitor-1", now=_t(0))

    assert status == 200
    assert body["status"] == "valid"
    assert body["apiKey"] == "C_master.k1"
    assert body["name"] == "Alice"
    assert body["visitorId"] == "visitor-1"
    assert body["lastUsedAt"] == _t(0).isoformat()
    user = stores.users.find_by_visitor("visitor-1")
    assert user["name"] == "Alice"
    assert user["status"] == "active"


def test_rebinding_same_pair_is_idempotent_and_advances_last_used(stores):
    stores.api_keys.create("C_master.k1", name="Alice")

    bind_key(stores, "C_master.k1", "visitor-1", now=_t(0))
    body, status = bind_key(stores, "C_master.k1", "visitor-1", now=_t(5))

    assert status == 200
    assert len(stores.api_keys.docs) == 1
    assert stores.api_keys.docs[0]["last_used_at"] == _t(5)
    assert len(stores.users.docs) == 1


def test_rebinding_updates_existing_user_name(stores):
    stores.users.create("Old Name", visitor_id="visitor-1")
    stores.api_keys.create("NH.k", name="New Name")

    bind_key(stores, "NH.k", "visitor-1")

    assert stores.users.find_by_visitor("visitor-1")["name"] == "New Name"


def test_unnamed_key_gives_default_user_name(stores):
    stores.api_keys.create("NH.anon")
    bind_key(stores, "NH.anon", "visitor-9")
    assert stores.users.find_by_visitor("visitor-9")["name"] == DEFAULT_USER_NAME


def test_visitor_bound_elsewhere_conflicts(stores):
    stores.api_keys.create("A", name="a")
    stores.api_keys.create("B", name="b")
    bind_key(stores, "A", "V")

    body, status = bind_key(stores, "B", "V")

    assert status == 409
    assert body["status"] == "conflict"
    assert stores.api_keys.find_by_key("A")["visitor_id"] == "V"
    assert stores.api_keys.find_by_key("B")["visitor_id"] is None


def test_key_bound_to_other_visitor_is_unavailable(stores):
    stores.api_keys.create("K", name="k")
    bind_key(stores, "K", "V1")

    body, status = bind_key(stores, "K", "V2")

    assert status == 403
    assert body["status"] == "unavailable"
    assert stores.api_keys.find_by_key("K")["visitor_id"] == "V1"
    assert stores.users.find_by_visitor("V2") is None


def test_unknown_key(stores):
    body, status = bind_key(stores, "missing", "V")
    assert status == 404
    assert body["status"] == "invalid"


def test_expired_status_is_rejected(stores):
    stores.api_keys.create("E", status="expire")
    body, status = bind_key(stores, "E", "V")
    assert (body["status"], status) == ("expire", 403)
    assert stores.api_keys.find_by_key("E")["visitor_id"] is None


def test_past_expiry_is_rejected(stores):
    stores.api_keys.create("E2", expires_at=_t(0))
    body, status = bind_key(stores, "E2", "V", now=_t(1))
    assert (body["status"], status) == ("expire", 403)


def test_conflict_is_checked_before_key_existence(stores):
    stores.api_keys.create("A")
    bind_key(stores, "A", "V")
    body, status = bind_key(stores, "does-not-exist", "V")
    assert status == 409


def test_concurrent_bind_of_same_visitor_maps_to_conflict(stores):
    stores.api_keys.create("A")
    stores.api_keys.create("B")
    # Simulate a racing request that bound V to A after our conflict check
    original = stores.api_keys.find_by_visitor
    stores.api_keys.find_by_visitor = lambda visitor_id: None
    stores.api_keys.docs[0]["visitor_id"] = "V"
    try:
        body, status = bind_key(stores, "B", "V")
    finally:
        stores.api_keys.find_by_visitor = original
    assert (body["status"], status) == ("conflict", 409)
    assert stores.api_keys.find_by_key("B")["visitor_id"] is None


def test_generated_key_format():
    key = generate_api_key()
    assert re.fullmatch(r"(C_master|R_H|PC_CAP|NH|LOL)\.[0-9a-f]{64}", key)
    assert generate_api_key() != key
