"""Tests for Processing module (batches, can assignment, reopen cascade)."""
import pytest
from werkzeug.security import generate_password_hash

from app.kithul import create_app
from app.kithul.db import session_scope
from app.kithul.models import AuditEvent, Base, User
from app.kithul.modules.admin.models import CollectionCenter
from app.kithul.roles import ADMINISTRATOR, FIELD_COLLECTION, LABELING, PACKAGING, PROCESSING


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("APP_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("AUTH_RATE_LIMIT", "1000")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        pw = generate_password_hash("password1")
        s.add_all(
            [
                User(user_id="admin", password_hash=pw, name="Admin", role=ADMINISTRATOR),
                User(user_id="fc1", password_hash=pw, name="Amal", role=FIELD_COLLECTION),
                User(user_id="proc1", password_hash=pw, name="Proc", role=PROCESSING),
                User(user_id="pack1", password_hash=pw, name="Pack", role=PACKAGING),
                User(user_id="lab1", password_hash=pw, name="Label", role=LABELING),
                CollectionCenter(center_id="center001", center_name="Galle Collection Center", location="Galle", center_agent="John Silva"),
            ]
        )
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client, user_id="proc1"):
    r = client.post("/api/auth/login", json={"userId": user_id, "password": "password1"})
    assert r.status_code == 200
    return {"Authorization": f"Bearer {r.json['token']}"}


def _collect(client, cans):
    """cans: list of (serial, can type, quantity). Returns the full can ids."""
    h = _login(client, "fc1")
    draft_id = client.post("/api/field-collection/drafts", json={"date": "2025-01-06"}, headers=h).json["draftId"]
    ids = []
    for serial, can_type, qty in cans:
        r = client.post(
            "/api/field-collection/cans",
            json={
                "draftId": draft_id,
                "collectionCenterId": "center001",
                "productType": can_type,
                "serialNumber": serial,
                "quantity": qty,
            },
            headers=h,
        )
        assert r.status_code == 201
        ids.append(r.json["canId"])
    return ids


def _batch(client, h, product="treacle", day="2025-01-07"):
    r = client.post("/api/processing/batches", json={"productType": product, "scheduledDate": day}, headers=h)
    assert r.status_code == 201
    return r.json


def test_role_guard(client):
    r = client.get("/api/processing/batches", headers=_login(client, "pack1"))
    assert r.status_code == 403


def test_create_batch_numbers_per_product(client):
    h = _login(client)
    first = _batch(client, h)
    assert first["batchId"].startswith("pb")
    assert first["batchNumber"] == "01"
    assert first["status"] == "in-progress"
    assert first["productType"] == "treacle"
    assert first["scheduledDate"] == "2025-01-07"
    assert first["canIds"] == []

    assert _batch(client, h)["batchNumber"] == "02"
    assert _batch(client, h, product="jaggery")["batchNumber"] == "01"


def test_create_batch_rejects_unknown_product(client):
    r = client.post("/api/processing/batches", json={"productType": "honey"}, headers=_login(client))
    assert r.status_code == 400
    assert "productType" in r.json["details"]


def test_list_and_filter(client):
    h = _login(client)
    _batch(client, h, day="2025-01-05")
    _batch(client, h, product="jaggery", day="2025-01-09")

    r = client.get("/api/processing/batches", headers=h)
    assert [b["productType"] for b in r.json["batches"]] == ["jaggery", "treacle"]

    r = client.get("/api/processing/batches?productType=treacle", headers=h)
    assert [b["scheduledDate"] for b in r.json["batches"]] == ["2025-01-05"]

    assert client.get("/api/processing/batches?productType=sap", headers=h).status_code == 400


def test_assign_cans_and_available_list(client):
    sap1, sap2, tcl = _collect(client, [("1", "sap", 10), ("2", "sap", 5.5), ("3", "treacle", 4)])
    h = _login(client)

    r = client.get("/api/processing/cans?productType=treacle", headers=h)
    assert [c["canId"] for c in r.json["cans"]] == [sap1, sap2]
    assert r.json["cans"][0]["collectionCenter"]["id"] == "center001"
    r = client.get("/api/processing/cans?productType=jaggery", headers=h)
    assert [c["canId"] for c in r.json["cans"]] == [tcl]

    batch = _batch(client, h)
    r = client.put(f"/api/processing/batches/{batch['batchId']}/cans", json={"canIds": [sap1, sap2, sap1]}, headers=h)
    assert r.status_code == 200
    assert r.json["canIds"] == [sap1, sap2]
    assert r.json["canCount"] == 2
    assert r.json["totalQuantity"] == 15.5

    assert client.get("/api/processing/cans?productType=treacle", headers=h).json["cans"] == []
    r = client.get(f"/api/processing/cans?productType=treacle&forBatch={batch['batchId']}", headers=h)
    assert [c["assignedBatchId"] for c in r.json["cans"]] == [batch["batchId"], batch["batchId"]]

    r = client.get(f"/api/processing/batches/{batch['batchId']}", headers=h)
    assert r.json["canIds"] == [sap1, sap2]

    # replacing the set frees the dropped can
    r = client.put(f"/api/processing/batches/{batch['batchId']}/cans", json={"canIds": [sap2]}, headers=h)
    assert r.json["canCount"] == 1
    assert [c["canId"] for c in client.get("/api/processing/cans", headers=h).json["cans"]] == [sap1]


def test_assign_rejects_foreign_and_taken_cans(client):
    sap1, tcl = _collect(client, [("1", "sap", 10), ("3", "treacle", 4)])
    h = _login(client)
    b1 = _batch(client, h)
    b2 = _batch(client, h)

    r = client.put(f"/api/processing/batches/{b1['batchId']}/cans", json={"canIds": [tcl]}, headers=h)
    assert r.status_code == 400
    assert r.json["error"] == f"Cans not found: {tcl}"

    client.put(f"/api/processing/batches/{b1['batchId']}/cans", json={"canIds": [sap1]}, headers=h)
    r = client.put(f"/api/processing/batches/{b2['batchId']}/cans", json={"canIds": [sap1]}, headers=h)
    assert r.status_code == 400
    assert r.json["error"] == f"Cans already assigned to another batch: {sap1}"

    r = client.put(f"/api/processing/batches/{b2['batchId']}/cans", json={"canIds": "nope"}, headers=h)
    assert r.status_code == 400


def test_assign_limit(client):
    h = _login(client)
    batch = _batch(client, h)
    ids = [f"SAP-{n:08d}" for n in range(16)]
    r = client.put(f"/api/processing/batches/{batch['batchId']}/cans", json={"canIds": ids}, headers=h)
    assert r.status_code == 400
    assert r.json["error"] == "A batch can contain at most 15 cans"


def test_update_batch(client):
    h = _login(client)
    batch = _batch(client, h)
    bid = batch["batchId"]

    r = client.patch(
        f"/api/processing/batches/{bid}",
        json={"totalSapOutput": 42.5, "gasUsedKg": 3, "notes": "slow boil"},
        headers=h,
    )
    assert r.status_code == 200
    assert r.json["totalSapOutput"] == 42.5
    assert r.json["gasUsedKg"] == 3
    assert r.json["notes"] == "slow boil"

    r = client.patch(f"/api/processing/batches/{bid}", json={"notes": ""}, headers=h)
    assert r.json["notes"] is None

    r = client.patch(f"/api/processing/batches/{bid}", json={}, headers=h)
    assert r.status_code == 400
    assert r.json["error"] == "No fields to update"

    r = client.patch(f"/api/processing/batches/{bid}", json={"productType": "jaggery"}, headers=h)
    assert r.status_code == 400
    assert r.json["error"] == "Cannot move batch between products"

    r = client.patch(f"/api/processing/batches/{bid}", json={"gasUsedKg": -1}, headers=h)
    assert r.status_code == 400


def test_submit_locks_cans(client):
    (sap1,) = _collect(client, [("1", "sap", 10)])
    h = _login(client)
    bid = _batch(client, h)["batchId"]
    client.put(f"/api/processing/batches/{bid}/cans", json={"canIds": [sap1]}, headers=h)

    r = client.post(f"/api/processing/batches/{bid}/submit", headers=h)
    assert r.status_code == 200
    assert r.json["status"] == "completed"

    r = client.put(f"/api/processing/batches/{bid}/cans", json={"canIds": []}, headers=h)
    assert r.status_code == 400
    assert r.json["error"] == "Batch is not editable"


def test_reopen_only_completed(client):
    h = _login(client)
    bid = _batch(client, h)["batchId"]
    r = client.post(f"/api/processing/batches/{bid}/reopen", headers=h)
    assert r.status_code == 400
    assert r.json["error"] == "Only completed batches can be reopened"

    client.patch(f"/api/processing/batches/{bid}", json={"status": "cancelled"}, headers=h)
    r = client.post(f"/api/processing/batches/{bid}/submit", headers=h)
    assert r.status_code == 400
    assert r.json["error"] == "Cancelled batches cannot be submitted"


def test_reopen_removes_downstream_packaging(app, client):
    h = _login(client)
    bid = _batch(client, h)["batchId"]
    client.post(f"/api/processing/batches/{bid}/submit", headers=h)

    ph = _login(client, "pack1")
    pkg = client.post("/api/packaging/batches", json={"processingBatchId": bid}, headers=ph).json
    r = client.patch(
        f"/api/packaging/batches/{pkg['packagingId']}",
        json={"finishedQuantity": 20, "bottleQuantity": 20, "lidQuantity": 20, "status": "completed"},
        headers=ph,
    )
    assert r.status_code == 200

    lh = _login(client, "lab1")
    r = client.post("/api/labeling/batches", json={"packagingId": pkg["packagingId"]}, headers=lh)
    assert r.status_code == 201
    assert len(client.get("/api/labeling/batches", headers=lh).json["batches"]) == 1

    r = client.post(f"/api/processing/batches/{bid}/reopen", headers=h)
    assert r.status_code == 200
    assert r.json["status"] == "in-progress"
    assert client.get(f"/api/packaging/batches/{pkg['packagingId']}", headers=ph).status_code == 404
    assert client.get("/api/labeling/batches", headers=lh).json["batches"] == []

    with session_scope(app) as s:
        ev = s.query(AuditEvent).filter(AuditEvent.action == "processing.batch.reopen").one()
        assert ev.reason == "Packaging removed on reopen"


def test_delete_batch_frees_cans(client):
    (sap1,) = _collect(client, [("1", "sap", 10)])
    h = _login(client)
    bid = _batch(client, h)["batchId"]
    client.put(f"/api/processing/batches/{bid}/cans", json={"canIds": [sap1]}, headers=h)
    client.post(f"/api/processing/batches/{bid}/submit", headers=h)

    assert client.delete(f"/api/processing/batches/{bid}", headers=h).status_code == 204
    assert client.get(f"/api/processing/batches/{bid}", headers=h).status_code == 404
    assert [c["canId"] for c in client.get("/api/processing/cans", headers=h).json["cans"]] == [sap1]


def test_unknown_batch(client):
    r = client.get("/api/processing/batches/pb-missing", headers=_login(client))
    assert r.status_code == 404
    assert r.json["error"] == "Processing batch not found"


def test_assign_cans_requires_object_body(client):
    h = _login(client)
    bid = _batch(client, h)["batchId"]
    r = client.put(f"/api/processing/batches/{bid}/cans", json=["can-1"], headers=h)
    assert r.status_code == 400
    assert r.json["error"] == "canIds must be a list of can ids"
