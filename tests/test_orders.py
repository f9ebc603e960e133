import json

from models import AuditLog, Lab, MillInput


def test_order_numbers_are_sequential(make_order, make_party):
    party = make_party()
    first = make_order(party_id=party["id"])
    second = make_order(party_id=party["id"])
    assert first["order_no"] == "ORD-01"
    assert second["order_no"] == "ORD-02"
    assert first["status"] == "pending"
    assert first["party"]["name"] == "Shree Textiles"


def test_order_requires_items_with_positive_quantity(client, auth, make_party):
    party = make_party()
    body = {"order_type": "Printing", "arrival_date": "2026-10-01", "party_id": party["id"]}

    r = client.post("/api/v1/orders", json={**body, "items": []}, headers=auth)
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "VALIDATION_ERROR"

    r = client.post("/api/v1/orders", json={**body, "items": [{"quantity": 5}, {"quantity": 0}]}, headers=auth)
    assert r.status_code == 400
    assert "item 2" in r.json()["error"]["message"]

    for bad in (float("nan"), float("inf")):
        raw = json.dumps({**body, "items": [{"quantity": bad}]})
        r = client.post("/api/v1/orders", content=raw, headers={**auth, "Content-Type": "application/json"})
        assert r.status_code == 400


def test_order_unknown_party_or_quality(client, auth, make_party):
    r = client.post(
        "/api/v1/orders",
        json={"order_type": "Dying", "arrival_date": "2026-10-01", "party_id": 999, "items": [{"quantity": 1}]},
        headers=auth,
    )
    assert r.status_code == 404
    assert r.json()["error"]["code"] == "NOT_FOUND"

    party = make_party()
    r = client.post(
        "/api/v1/orders",
        json={"order_type": "Dying", "arrival_date": "2026-10-01", "party_id": party["id"],
              "items": [{"quantity": 1, "quality_id": 42}]},
        headers=auth,
    )
    assert r.status_code == 404


def test_po_and_style_unique_per_party(client, auth, make_order, make_party):
    p1 = make_party("Party One")
    p2 = make_party("Party Two")
    make_order(party_id=p1["id"], po_number="PO1", style_no="S1")

    r = client.post(
        "/api/v1/orders",
        json={"order_type": "Dying", "arrival_date": "2026-10-02", "party_id": p1["id"],
              "po_number": "PO1", "style_no": "S1", "items": [{"quantity": 3}]},
        headers=auth,
    )
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "DUPLICATE_ORDER"
    assert r.json()["error"]["retryable"] is False

    # other party, or only one of the pair present: allowed
    make_order(party_id=p2["id"], po_number="PO1", style_no="S1")
    make_order(party_id=p1["id"], po_number="PO1")
    make_order(party_id=p1["id"], po_number="PO1")


def test_put_replaces_fields_and_keeps_item_identity(client, auth, make_order, make_quality):
    q = make_quality()
    order = make_order(items=[{"quantity": 10, "description": "A"}, {"quantity": 20, "description": "B"}])
    keep = order["items"][1]["id"]

    r = client.put(
        f"/api/v1/orders/{order['id']}",
        json={
            "order_type": "Printing",
            "arrival_date": "2026-10-05",
            "party_id": order["party_id"],
            "po_number": "PO9",
            "style_no": "S9",
            "items": [{"id": keep, "quantity": 25, "quality_id": q["id"]}, {"quantity": 7}],
        },
        headers=auth,
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["order_type"] == "Printing"
    assert body["order_no"] == order["order_no"]
    assert [it["id"] for it in body["items"]][0] == keep
    assert body["items"][0]["quantity"] == 25
    assert body["items"][0]["quality"]["name"] == q["name"]
    assert len(body["items"]) == 2
    assert order["items"][0]["id"] not in [it["id"] for it in body["items"]]


def test_put_rejects_foreign_item_id(client, auth, make_order):
    a = make_order()
    b = make_order(party_id=a["party_id"])
    r = client.put(
        f"/api/v1/orders/{a['id']}",
        json={"order_type": "Dying", "arrival_date": "2026-10-01", "party_id": a["party_id"],
              "items": [{"id": b["items"][0]["id"], "quantity": 1}]},
        headers=auth,
    )
    assert r.status_code == 400


def test_put_duplicate_excludes_itself(client, auth, make_order):
    order = make_order(po_number="PO1", style_no="S1")
    body = {"order_type": "Dying", "arrival_date": "2026-10-01", "party_id": order["party_id"],
            "po_number": "PO1", "style_no": "S1", "items": [{"id": order["items"][0]["id"], "quantity": 50}]}
    assert client.put(f"/api/v1/orders/{order['id']}", json=body, headers=auth).status_code == 200

    other = make_order(party_id=order["party_id"], po_number="PO2", style_no="S2")
    body["items"] = [{"quantity": 1}]
    r = client.put(f"/api/v1/orders/{other['id']}", json=body, headers=auth)
    assert r.status_code == 409


def test_status_transitions(client, auth, make_order, db):
    order = make_order()
    url = f"/api/v1/orders/{order['id']}/status"

    r = client.patch(url, json={"status": "delivered"}, headers=auth)
    assert r.status_code == 200
    assert r.json()["status"] == "delivered"

    # same status: no-op, no new audit entry
    before = db.query(AuditLog).filter(AuditLog.action == "status_change").count()
    assert client.patch(url, json={"status": "delivered"}, headers=auth).status_code == 200
    assert db.query(AuditLog).filter(AuditLog.action == "status_change").count() == before == 1

    r = client.patch(url, json={"status": "pending"}, headers=auth)
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "INVALID_TRANSITION"

    r = client.patch(url, json={"status": "shipped"}, headers=auth)
    assert r.status_code == 400

    entry = db.query(AuditLog).filter(AuditLog.action == "status_change").one()
    assert entry.details["old"] == {"status": "pending"}
    assert entry.details["new"] == {"status": "delivered"}


def test_delete_order_keeps_forensic_snapshot(client, auth, make_order, make_mill, db):
    order = make_order(po_number="PO1", style_no="S1")
    mill = make_mill()
    r = client.post(
        "/api/v1/mill-inputs",
        json={"order_id": order["id"], "mill_id": mill["id"], "mill_date": "2026-10-02",
              "chalan_no": "C1", "greigh_mtr": 100, "pcs": 10},
        headers=auth,
    )
    assert r.status_code == 201

    r = client.delete(f"/api/v1/orders/{order['id']}", headers=auth)
    assert r.status_code == 200
    assert client.get(f"/api/v1/orders/{order['id']}", headers=auth).status_code == 404

    entry = (
        db.query(AuditLog)
        .filter(AuditLog.action == "delete", AuditLog.resource == "order",
                AuditLog.resource_id == str(order["id"]))
        .one()
    )
    assert entry.details["po_number"] == "PO1"
    assert entry.details["style_no"] == "S1"
    assert entry.details["dependents"]["mill_inputs"] == 1
    assert entry.severity == "warning"
    assert entry.username == "alice"

    # ledger rows went with the order
    assert db.query(MillInput).count() == 0


def test_delete_order_soft_deletes_its_labs(client, auth, make_order, db):
    order = make_order(items=[{"quantity": 10}, {"quantity": 20}])
    r = client.post(f"/api/v1/labs/seed-from-order/{order['id']}", json={"lab_send_date": "2026-10-04"},
                    headers=auth)
    lab_ids = sorted(lab["id"] for lab in r.json()["labs"])

    assert client.delete(f"/api/v1/orders/{order['id']}", headers=auth).status_code == 200

    labs = db.query(Lab).filter(Lab.order_id == order["id"]).order_by(Lab.id).all()
    assert [lab.id for lab in labs] == lab_ids
    assert all(lab.soft_deleted for lab in labs)

    entry = db.query(AuditLog).filter(AuditLog.action == "delete", AuditLog.resource == "order").one()
    assert entry.details["dependents"]["labs"] == 2
    assert sorted(entry.details["dependents"]["labs_soft_deleted"]) == lab_ids


def test_order_logs_history(client, auth, make_order):
    order = make_order()
    client.patch(f"/api/v1/orders/{order['id']}/status", json={"status": "delivered"}, headers=auth)

    r = client.get(f"/api/v1/orders/{order['id']}/logs", headers=auth)
    assert r.status_code == 200
    actions = [e["action"] for e in r.json()]
    assert actions[0] == "status_change"
    assert "create" in actions


def test_list_orders_paginates_and_filters(client, auth, make_order, make_party):
    party = make_party()
    for _ in range(3):
        make_order(party_id=party["id"])
    make_order(party_id=party["id"], order_type="Printing")

    r = client.get("/api/v1/orders", params={"page": 1, "limit": 3}, headers=auth)
    body = r.json()
    assert len(body["items"]) == 3
    assert body["pagination"] == {
        "current_page": 1, "total_pages": 2, "total_count": 4, "has_next_page": True, "has_prev_page": False,
    }

    r = client.get("/api/v1/orders", params={"order_type": "Printing"}, headers=auth)
    assert r.json()["pagination"]["total_count"] == 1

    assert client.get("/api/v1/orders", params={"limit": 101}, headers=auth).status_code == 400
    assert client.get("/api/v1/orders", params={"page": 0}, headers=auth).status_code == 400


def test_requires_bearer_token(client):
    r = client.get("/api/v1/orders")
    assert r.status_code == 401
    assert r.json() == {
        "success": False,
        "error": {"code": "UNAUTHORIZED", "message": "Authentication required", "retryable": False},
    }

    r = client.get("/api/v1/orders", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401


def test_get_order_by_number(client, auth, make_order, db):
    order = make_order()
    r = client.get("/api/v1/orders/by-no/ord-01", headers=auth)
    assert r.status_code == 200
    assert r.json()["id"] == order["id"]
    assert r.json()["order_no"] == "ORD-01"

    r = client.get("/api/v1/orders/by-no/ORD-99", headers=auth)
    assert r.status_code == 404
    assert r.json()["error"]["message"] == "Order not found"

    entry = db.query(AuditLog).filter(AuditLog.action == "view", AuditLog.resource == "order").one()
    assert entry.resource_id == str(order["id"])


def test_reset_counter_only_on_empty_order_book(client, auth, admin_auth, make_order, db):
    first = make_order()
    second = make_order(party_id=first["party_id"])

    assert client.post("/api/v1/orders/reset-counter", headers=auth).status_code == 403

    r = client.post("/api/v1/orders/reset-counter", headers=admin_auth)
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "ORDERS_EXIST"
    assert r.json()["error"]["message"] == "Cannot reset counter when orders exist. Delete all orders first."

    for order in (first, second):
        client.delete(f"/api/v1/orders/{order['id']}", headers=auth)
    r = client.post("/api/v1/orders/reset-counter", headers=admin_auth)
    assert r.status_code == 200
    assert r.json()["previous_seq"] == 2

    assert make_order(party_id=first["party_id"])["order_no"] == "ORD-01"
    entry = db.query(AuditLog).filter(AuditLog.resource == "order_counter").one()
    assert entry.action == "update"
    assert entry.username == "root"
