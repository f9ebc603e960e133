from datetime import datetime, timezone

from models import AuditLog, MillInput
from scheduler import next_run_at
from utils.cache import TTLCache


def test_party_names_unique_case_insensitive(client, auth, make_party):
    party = make_party("Shree Textiles")
    r = client.post("/api/v1/parties", json={"name": "  shree textiles "}, headers=auth)
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "CONFLICT"

    # renaming to its own name is fine
    r = client.put(f"/api/v1/parties/{party['id']}", json={"name": "SHREE TEXTILES"}, headers=auth)
    assert r.status_code == 200
    assert r.json()["name"] == "SHREE TEXTILES"


def test_party_delete_refused_while_in_use(client, auth, make_order, db):
    order = make_order()
    r = client.delete(f"/api/v1/parties/{order['party_id']}", headers=auth)
    assert r.status_code == 409
    err = r.json()["error"]
    assert err["code"] == "PARTY_IN_USE"
    assert "1 order(s)" in err["message"]
    assert err["details"] == {"order_count": 1}

    client.delete(f"/api/v1/orders/{order['id']}", headers=auth)
    assert client.delete(f"/api/v1/parties/{order['party_id']}", headers=auth).status_code == 204
    entry = db.query(AuditLog).filter(AuditLog.resource == "party", AuditLog.action == "delete").one()
    assert entry.details["name"] == "Shree Textiles"


def test_quality_delete_refused_while_in_use(client, auth, make_order, make_quality):
    q = make_quality()
    make_order(items=[{"quantity": 1, "quality_id": q["id"]}])
    r = client.delete(f"/api/v1/qualities/{q['id']}", headers=auth)
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "QUALITY_IN_USE"


def test_mill_delete_takes_its_inputs(client, auth, make_order, make_mill, db):
    order = make_order()
    mill = make_mill()
    for chalan in ("C1", "C2"):
        client.post(
            "/api/v1/mill-inputs",
            json={"order_id": order["id"], "mill_id": mill["id"], "mill_date": "2026-10-02",
                  "chalan_no": chalan, "greigh_mtr": 10, "pcs": 1},
            headers=auth,
        )

    assert client.delete(f"/api/v1/mills/{mill['id']}", headers=auth).status_code == 204
    assert db.query(MillInput).count() == 0
    entry = db.query(AuditLog).filter(AuditLog.resource == "mill", AuditLog.action == "delete").one()
    assert entry.details["deleted_mill_inputs"] == 2


def test_process_name_and_priority(client, auth):
    ok = {"name": "Bleach & Wash (hot)", "priority": 5}
    assert client.post("/api/v1/processes", json=ok, headers=auth).status_code == 201

    r = client.post("/api/v1/processes", json={"name": "Dye; drop", "priority": 5}, headers=auth)
    assert r.status_code == 400
    assert "Process name can only contain" in r.json()["error"]["message"]

    assert client.post("/api/v1/processes", json={"name": "Steam", "priority": 0},
                       headers=auth).status_code == 400
    assert client.post("/api/v1/processes", json={"name": "Steam", "priority": 101},
                       headers=auth).status_code == 400


def test_processes_listed_by_priority(client, auth):
    for name, priority in (("Singeing", 10), ("Mercerise", 90), ("Curing", 50)):
        client.post("/api/v1/processes", json={"name": name, "priority": priority}, headers=auth)
    r = client.get("/api/v1/processes", headers=auth)
    assert [p["name"] for p in r.json()["items"]] == ["Mercerise", "Curing", "Singeing"]


def test_active_mills_cache_dropped_on_write(client, auth, make_mill, cache):
    make_mill("Arvind Mills")
    r = client.get("/api/v1/mills/active", headers=auth)
    assert [m["name"] for m in r.json()] == ["Arvind Mills"]
    assert cache.get("mills:active") is not None

    make_mill("Bombay Dyeing")
    assert cache.get("mills:active") is None
    r = client.get("/api/v1/mills/active", headers=auth)
    assert [m["name"] for m in r.json()] == ["Arvind Mills", "Bombay Dyeing"]

    inactive = make_mill("Closed Mill")
    client.put(f"/api/v1/mills/{inactive['id']}", json={"name": "Closed Mill", "is_active": False}, headers=auth)
    r = client.get("/api/v1/mills/active", headers=auth)
    assert "Closed Mill" not in [m["name"] for m in r.json()]


def test_ttl_cache_expires():
    now = [100.0]
    cache = TTLCache(ttl_seconds=10, clock=lambda: now[0])
    cache.set("mills:active", ["a"])
    cache.set("processes:list", ["p"])
    assert cache.get("mills:active") == ["a"]

    now[0] += 10
    assert cache.get("mills:active") is None

    calls = []
    assert cache.get_or_set("mills:active", lambda: calls.append(1) or ["b"]) == ["b"]
    assert cache.get_or_set("mills:active", lambda: calls.append(1) or ["c"]) == ["b"]
    assert calls == [1]

    cache.invalidate("mills:")
    assert cache.get("mills:active") is None


def test_next_retention_run():
    tz = timezone.utc
    assert next_run_at(datetime(2026, 10, 19, 1, 30, tzinfo=tz), hour=2) == datetime(2026, 10, 19, 2, 0, tzinfo=tz)
    assert next_run_at(datetime(2026, 10, 19, 2, 0, tzinfo=tz), hour=2) == datetime(2026, 10, 20, 2, 0, tzinfo=tz)
    assert next_run_at(datetime(2026, 12, 31, 23, 0, tzinfo=tz), hour=2) == datetime(2027, 1, 1, 2, 0, tzinfo=tz)
