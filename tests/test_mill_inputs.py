import json
from datetime import date

import pytest
from sqlalchemy.exc import IntegrityError

from exceptions import ConflictError
from models import AuditLog, MillInput
from services.mill_inputs import _commit


def _input(order_id, mill_id, chalan="C1", greigh=100, pcs=10, **extra):
    body = {"order_id": order_id, "mill_id": mill_id, "mill_date": "2026-10-02",
            "chalan_no": chalan, "greigh_mtr": greigh, "pcs": pcs}
    body.update(extra)
    return body


def test_chalan_unique_within_order_only(client, auth, make_order, make_mill, make_quality):
    q = make_quality()
    o1 = make_order(items=[{"quantity": 100, "quality_id": q["id"]}])
    o2 = make_order(party_id=o1["party_id"])
    mill = make_mill()

    r = client.post("/api/v1/mill-inputs", json=_input(o1["id"], mill["id"]), headers=auth)
    assert r.status_code == 201, r.text
    assert r.json()["order_no"] == o1["order_no"]
    assert r.json()["mill"]["name"] == mill["name"]

    r = client.post("/api/v1/mill-inputs", json=_input(o1["id"], mill["id"], greigh=50, pcs=5), headers=auth)
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "CHALAN_CONFLICT"

    r = client.post("/api/v1/mill-inputs", json=_input(o2["id"], mill["id"]), headers=auth)
    assert r.status_code == 201


def test_chalan_is_trimmed_before_the_check(client, auth, make_order, make_mill):
    order = make_order()
    mill = make_mill()
    assert client.post("/api/v1/mill-inputs", json=_input(order["id"], mill["id"], chalan="C7"),
                       headers=auth).status_code == 201
    r = client.post("/api/v1/mill-inputs", json=_input(order["id"], mill["id"], chalan="  C7 "), headers=auth)
    assert r.status_code == 409


def test_every_post_is_a_new_row(client, auth, make_order, make_mill, db):
    order = make_order()
    mill = make_mill()
    for chalan in ("C1", "C2", "C3"):
        assert client.post("/api/v1/mill-inputs", json=_input(order["id"], mill["id"], chalan=chalan),
                           headers=auth).status_code == 201
    assert db.query(MillInput).filter(MillInput.order_id == order["id"]).count() == 3


def test_storage_constraint_backs_the_precheck(db, make_order, make_mill):
    order = make_order()
    mill = make_mill()
    common = dict(order_id=order["id"], order_no=order["order_no"], mill_id=mill["id"],
                  mill_date=date(2026, 10, 2), chalan_no="C1", greigh_mtr=10, pcs=1)
    db.add(MillInput(**common))
    db.commit()
    db.add(MillInput(**common))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


@pytest.mark.parametrize(
    "override, message",
    [
        ({"greigh_mtr": 0}, "Valid greigh meters is required"),
        ({"pcs": 0}, "Valid number of pieces is required"),
        ({"additional_meters": [{"greigh_mtr": 5, "pcs": 1}, {"greigh_mtr": -1, "pcs": 1}]},
         "Valid greigh meters is required for additional entry 2"),
        ({"additional_meters": [{"greigh_mtr": 5, "pcs": 0}]},
         "Valid number of pieces is required for additional entry 1"),
    ],
)
def test_numeric_validation_names_the_entry(client, auth, make_order, make_mill, override, message):
    order = make_order()
    mill = make_mill()
    r = client.post("/api/v1/mill-inputs", json={**_input(order["id"], mill["id"]), **override}, headers=auth)
    assert r.status_code == 400
    assert r.json()["error"]["message"] == message


def _post_raw(client, url, body, auth):
    # json.dumps writes NaN / Infinity literals, which the json= shortcut refuses
    return client.post(url, content=json.dumps(body), headers={**auth, "Content-Type": "application/json"})


@pytest.mark.parametrize("bad", [float("nan"), float("inf"), float("-inf")])
def test_non_finite_meters_are_rejected(client, auth, make_order, make_mill, db, bad):
    order = make_order()
    mill = make_mill()
    r = _post_raw(client, "/api/v1/mill-inputs", _input(order["id"], mill["id"], greigh=bad), auth)
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "VALIDATION_ERROR"

    body = _input(order["id"], mill["id"], chalan="C2", additional_meters=[{"greigh_mtr": bad, "pcs": 1}])
    r = _post_raw(client, "/api/v1/mill-inputs", body, auth)
    assert r.status_code == 400
    assert db.query(MillInput).count() == 0


class _FailingCommit:
    def __init__(self, message):
        self.message = message
        self.rolled_back = False

    def commit(self):
        raise IntegrityError("INSERT INTO mill_inputs ...", {}, Exception(self.message))

    def rollback(self):
        self.rolled_back = True


def test_only_the_chalan_constraint_maps_to_chalan_conflict():
    db = _FailingCommit("UNIQUE constraint failed: mill_inputs.order_id, mill_inputs.chalan_no")
    with pytest.raises(ConflictError) as exc:
        _commit(db)
    assert exc.value.code == "CHALAN_CONFLICT"
    assert db.rolled_back

    db = _FailingCommit('duplicate key value violates unique constraint "uq_mill_inputs_order_chalan"')
    with pytest.raises(ConflictError):
        _commit(db)

    db = _FailingCommit("FOREIGN KEY constraint failed")
    with pytest.raises(IntegrityError):
        _commit(db)
    assert db.rolled_back


def test_unknown_references(client, auth, make_order, make_mill):
    order = make_order()
    mill = make_mill()
    assert client.post("/api/v1/mill-inputs", json=_input(999, mill["id"]), headers=auth).status_code == 404
    assert client.post("/api/v1/mill-inputs", json=_input(order["id"], 999), headers=auth).status_code == 404
    r = client.post("/api/v1/mill-inputs", json=_input(order["id"], mill["id"], quality_id=999), headers=auth)
    assert r.status_code == 404
    r = client.post(
        "/api/v1/mill-inputs",
        json=_input(order["id"], mill["id"], additional_meters=[{"greigh_mtr": 1, "pcs": 1, "quality_id": 999}]),
        headers=auth,
    )
    assert r.status_code == 404
    assert "additional entry 1" in r.json()["error"]["message"]


def test_additional_meters_keep_their_order(client, auth, make_order, make_mill):
    order = make_order()
    mill = make_mill()
    extra = [{"greigh_mtr": 30, "pcs": 3, "notes": "first"}, {"greigh_mtr": 20, "pcs": 2, "notes": "second"}]
    r = client.post("/api/v1/mill-inputs", json=_input(order["id"], mill["id"], additional_meters=extra),
                    headers=auth)
    assert r.status_code == 201
    assert [a["notes"] for a in r.json()["additional_meters"]] == ["first", "second"]
    assert r.json()["additional_meters"][0]["greigh_mtr"] == 30


def test_update_requires_full_payload_and_rechecks_chalan(client, auth, make_order, make_mill, db):
    order = make_order()
    mill = make_mill()
    a = client.post("/api/v1/mill-inputs", json=_input(order["id"], mill["id"], chalan="C1"), headers=auth).json()
    client.post("/api/v1/mill-inputs", json=_input(order["id"], mill["id"], chalan="C2"), headers=auth)

    body = {"mill_id": mill["id"], "mill_date": "2026-10-03", "chalan_no": "C1", "greigh_mtr": 90, "pcs": 9}
    # same chalan as itself is fine
    assert client.put(f"/api/v1/mill-inputs/{a['id']}", json=body, headers=auth).status_code == 200

    r = client.put(f"/api/v1/mill-inputs/{a['id']}", json={**body, "chalan_no": "C2"}, headers=auth)
    assert r.status_code == 409

    partial = {"chalan_no": "C3"}
    assert client.put(f"/api/v1/mill-inputs/{a['id']}", json=partial, headers=auth).status_code == 400

    r = client.put(f"/api/v1/mill-inputs/{a['id']}", json={**body, "chalan_no": "C3"}, headers=auth)
    assert r.status_code == 200
    assert r.json()["chalan_no"] == "C3"

    entry = (
        db.query(AuditLog)
        .filter(AuditLog.resource == "mill_input", AuditLog.action == "update")
        .order_by(AuditLog.id.desc())
        .first()
    )
    assert entry.details["old_chalan_no"] == "C1"
    assert entry.details["new_chalan_no"] == "C3"
    assert "chalan_no" in entry.details["changed_fields"]


def test_delete_mill_input_is_audited(client, auth, make_order, make_mill, db):
    order = make_order()
    mill = make_mill()
    row = client.post("/api/v1/mill-inputs", json=_input(order["id"], mill["id"]), headers=auth).json()
    assert client.delete(f"/api/v1/mill-inputs/{row['id']}", headers=auth).status_code == 204
    assert client.get(f"/api/v1/mill-inputs/{row['id']}", headers=auth).status_code == 404

    entry = db.query(AuditLog).filter(AuditLog.resource == "mill_input", AuditLog.action == "delete").one()
    assert entry.details["chalan_no"] == "C1"
    assert entry.details["order_id"] == order["id"]


def test_list_filters_by_order(client, auth, make_order, make_mill):
    o1 = make_order()
    o2 = make_order(party_id=o1["party_id"])
    mill = make_mill()
    client.post("/api/v1/mill-inputs", json=_input(o1["id"], mill["id"], chalan="A"), headers=auth)
    client.post("/api/v1/mill-inputs", json=_input(o1["id"], mill["id"], chalan="B"), headers=auth)
    client.post("/api/v1/mill-inputs", json=_input(o2["id"], mill["id"], chalan="A"), headers=auth)

    r = client.get("/api/v1/mill-inputs", params={"order_id": o1["id"]}, headers=auth)
    assert r.json()["pagination"]["total_count"] == 2
    assert {i["chalan_no"] for i in r.json()["items"]} == {"A", "B"}
