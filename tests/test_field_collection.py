"""Tests for Field Collection module (drafts, center completion, cans)."""
import pytest
from werkzeug.security import generate_password_hash

from app.kithul import create_app
from app.kithul.db import session_scope
from app.kithul.models import Base, User
from app.kithul.modules.admin.models import CollectionCenter
from app.kithul.roles import ADMINISTRATOR, FIELD_COLLECTION, PROCESSING


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
                User(user_id="fc2", password_hash=pw, name="Bimal", role=FIELD_COLLECTION),
                User(user_id="proc1", password_hash=pw, name="Proc", role=PROCESSING),
                CollectionCenter(center_id="center001", center_name="Galle Collection Center", location="Galle", center_agent="John Silva"),
                CollectionCenter(center_id="center002", center_name="Kurunegala Collection Center", location="Kurunegala", center_agent="Mary Perera"),
                CollectionCenter(center_id="center009", center_name="Closed Center", location="Nowhere", center_agent="Nobody", is_active=False),
            ]
        )
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client, user_id="fc1"):
    r = client.post("/api/auth/login", json={"userId": user_id, "password": "password1"})
    assert r.status_code == 200
    return {"Authorization": f"Bearer {r.json['token']}"}


def _draft(client, h, day="2025-01-06"):
    r = client.post("/api/field-collection/drafts", json={"date": day}, headers=h)
    assert r.status_code == 201
    return r.json["draftId"]


def _can(client, h, draft_id, **overrides):
    payload = {
        "draftId": draft_id,
        "collectionCenterId": "center001",
        "productType": "sap",
        "serialNumber": "1",
        "brixValue": 18.5,
        "phValue": 5.2,
        "quantity": 12.5,
    }
    payload.update(overrides)
    return client.post("/api/field-collection/cans", json=payload, headers=h)


def test_processing_role_is_forbidden(client):
    r = client.get("/api/field-collection/drafts", headers=_login(client, "proc1"))
    assert r.status_code == 403


def test_create_draft_one_per_day(client):
    h = _login(client)
    r = client.post("/api/field-collection/drafts", json={"date": "2025-01-06"}, headers=h)
    assert r.status_code == 201
    assert r.json["draftId"].startswith("d")
    assert r.json["status"] == "draft"
    assert r.json["date"] == "2025-01-06"
    assert r.json["createdBy"] == "fc1"

    r = client.post("/api/field-collection/drafts", json={"date": "2025-01-06"}, headers=h)
    assert r.status_code == 409
    assert r.json["error"] == "Draft for this date already exists"

    # another collector may use the same date
    assert client.post("/api/field-collection/drafts", json={"date": "2025-01-06"}, headers=_login(client, "fc2")).status_code == 201


def test_draft_defaults_to_today(client):
    r = client.post("/api/field-collection/drafts", json={}, headers=_login(client))
    assert r.status_code == 201
    assert r.json["date"]


def test_can_ids_from_serial_and_explicit(client):
    h = _login(client)
    draft_id = _draft(client, h)

    r = _can(client, h, draft_id, serialNumber="42")
    assert r.status_code == 201
    assert r.json["canId"] == "SAP-00000042"
    assert r.json["collectionCenterId"] == "center001"

    r = _can(client, h, draft_id, serialNumber=None, canId="tcl-00000007", productType="treacle")
    assert r.status_code == 201
    assert r.json["canId"] == "TCL-00000007"
    assert r.json["productType"] == "treacle"


def test_can_validation(client):
    h = _login(client)
    draft_id = _draft(client, h)

    r = _can(client, h, draft_id, serialNumber=None)
    assert r.status_code == 400
    assert r.json["error"] == "Either canId or serialNumber (8 digits) is required"

    r = _can(client, h, draft_id, serialNumber=None, canId="TCL-00000001")
    assert r.status_code == 400
    assert r.json["error"] == "Invalid can ID format. Expected SAP-########"

    r = _can(client, h, draft_id, serialNumber="123456789")
    assert r.status_code == 400

    r = _can(client, h, draft_id, brixValue=120, quantity=0)
    assert r.status_code == 400
    assert {"brixValue", "quantity"} <= set(r.json["details"])

    r = _can(client, h, draft_id, collectionCenterId="center009")
    assert r.status_code == 400
    assert r.json["error"] == "Invalid collection center ID: center009"


def test_can_optional_quality_readings(client):
    h = _login(client)
    draft_id = _draft(client, h)
    r = _can(client, h, draft_id, brixValue=None, phValue=None)
    assert r.status_code == 201
    assert r.json["brixValue"] is None
    assert r.json["phValue"] is None


def test_center_resolution_by_name_and_pk(app, client):
    h = _login(client)
    draft_id = _draft(client, h)

    r = _can(client, h, draft_id, collectionCenterId="kurunegala", serialNumber="2")
    assert r.status_code == 201
    assert r.json["collectionCenterId"] == "center002"

    with session_scope(app) as s:
        pk = s.query(CollectionCenter).filter(CollectionCenter.center_id == "center001").one().id
    r = _can(client, h, draft_id, collectionCenterId=str(pk), serialNumber="3")
    assert r.status_code == 201
    assert r.json["collectionCenterId"] == "center001"


def test_duplicate_can_across_tables(client):
    h = _login(client)
    draft_id = _draft(client, h)
    assert _can(client, h, draft_id, serialNumber="5").status_code == 201
    r = _can(client, h, draft_id, serialNumber="5")
    assert r.status_code == 409
    assert r.json["error"] == "Can ID already exists"


def test_draft_detail_groups_cans_by_center(client):
    h = _login(client)
    draft_id = _draft(client, h)
    _can(client, h, draft_id, serialNumber="1")
    _can(client, h, draft_id, serialNumber="2", collectionCenterId="center002")
    _can(client, h, draft_id, serialNumber="3", productType="treacle", quantity=4)

    r = client.get(f"/api/field-collection/drafts/{draft_id}", headers=h)
    assert r.status_code == 200
    assert r.json["canCount"] == 3
    groups = {g["centerId"]: g for g in r.json["cans"]}
    assert [g["name"] for g in r.json["cans"]] == ["Galle Collection Center", "Kurunegala Collection Center"]
    assert sorted(c["canId"] for c in groups["center001"]["cans"]) == ["SAP-00000001", "TCL-00000003"]

    r = client.get(f"/api/field-collection/drafts/{draft_id}/centers/center002/cans", headers=h)
    assert [c["canId"] for c in r.json["cans"]] == ["SAP-00000002"]


def test_draft_list_totals_and_filters(client):
    h = _login(client)
    d1 = _draft(client, h, "2025-01-06")
    d2 = _draft(client, h, "2025-01-07")
    _can(client, h, d1, serialNumber="1", quantity=10)
    _can(client, h, d1, serialNumber="2", productType="treacle", quantity=5)
    _can(client, h, d2, serialNumber="3", quantity=7)

    r = client.get("/api/field-collection/drafts", headers=h)
    drafts = r.json["drafts"]
    assert [d["draftId"] for d in drafts] == [d2, d1]
    assert drafts[1]["canCount"] == 2
    assert drafts[1]["totalQuantity"] == 15
    assert drafts[1]["createdByName"] == "Amal"

    r = client.get("/api/field-collection/drafts?productType=treacle", headers=h)
    assert [d["draftId"] for d in r.json["drafts"]] == [d1]

    r = client.get("/api/field-collection/drafts?productType=honey", headers=h)
    assert r.status_code == 400


def test_ownership(client):
    h1 = _login(client, "fc1")
    draft_id = _draft(client, h1)
    _can(client, h1, draft_id, serialNumber="1")

    h2 = _login(client, "fc2")
    assert client.get(f"/api/field-collection/drafts/{draft_id}", headers=h2).status_code == 403
    assert client.get("/api/field-collection/drafts", headers=h2).json["drafts"] == []
    r = client.put("/api/field-collection/cans/SAP-00000001", json={"quantity": 3}, headers=h2)
    assert r.status_code == 403

    admin = _login(client, "admin")
    assert client.get(f"/api/field-collection/drafts/{draft_id}", headers=admin).status_code == 200
    assert len(client.get("/api/field-collection/drafts", headers=admin).json["drafts"]) == 1


def test_submit_locks_draft_and_reopen_unlocks(client):
    h = _login(client)
    draft_id = _draft(client, h)
    _can(client, h, draft_id, serialNumber="1")

    r = client.post(f"/api/field-collection/drafts/{draft_id}/submit", headers=h)
    assert r.status_code == 200
    assert r.json["status"] == "submitted"

    r = _can(client, h, draft_id, serialNumber="2")
    assert r.status_code == 400
    assert r.json["error"] == "Draft is not editable"
    assert client.put("/api/field-collection/cans/SAP-00000001", json={"quantity": 3}, headers=h).status_code == 400

    r = client.post(f"/api/field-collection/drafts/{draft_id}/reopen", headers=h)
    assert r.json["status"] == "draft"
    r = client.put("/api/field-collection/cans/SAP-00000001", json={"quantity": 3, "phValue": 6}, headers=h)
    assert r.status_code == 200
    assert r.json["quantity"] == 3
    assert r.json["phValue"] == 6


def test_status_update_requires_center_completion(client):
    h = _login(client)
    draft_id = _draft(client, h)
    client.post(f"/api/field-collection/drafts/{draft_id}/submit", headers=h)

    r = client.put(f"/api/field-collection/drafts/{draft_id}", json={"status": "draft"}, headers=h)
    assert r.status_code == 400
    assert r.json["error"] == "At least one center must be submitted before saving the draft"

    r = client.post(f"/api/field-collection/drafts/{draft_id}/centers/center001/submit", headers=h)
    assert r.status_code == 200
    assert r.json["completed"] is True

    r = client.put(f"/api/field-collection/drafts/{draft_id}", json={"status": "draft"}, headers=h)
    assert r.status_code == 200

    r = client.put(f"/api/field-collection/drafts/{draft_id}", json={}, headers=h)
    assert r.status_code == 400
    assert r.json["error"] == "No fields to update"


def test_center_completion_roundtrip(client):
    h = _login(client)
    draft_id = _draft(client, h)
    client.post(f"/api/field-collection/drafts/{draft_id}/centers/center001/submit", headers=h)
    client.post(f"/api/field-collection/drafts/{draft_id}/centers/center001/submit", headers=h)
    client.post(f"/api/field-collection/drafts/{draft_id}/centers/center002/submit", headers=h)

    r = client.get(f"/api/field-collection/drafts/{draft_id}/completed-centers", headers=h)
    assert sorted(c["centerId"] for c in r.json["completedCenters"]) == ["center001", "center002"]

    client.post(f"/api/field-collection/drafts/{draft_id}/centers/center001/reopen", headers=h)
    r = client.get(f"/api/field-collection/drafts/{draft_id}/completed-centers", headers=h)
    assert [c["centerId"] for c in r.json["completedCenters"]] == ["center002"]


def test_delete_can_and_draft(client):
    h = _login(client)
    draft_id = _draft(client, h)
    _can(client, h, draft_id, serialNumber="1")
    _can(client, h, draft_id, serialNumber="2", productType="treacle")
    client.post(f"/api/field-collection/drafts/{draft_id}/centers/center001/submit", headers=h)

    assert client.delete("/api/field-collection/cans/SAP-00000001", headers=h).status_code == 204
    assert client.delete("/api/field-collection/cans/SAP-00000001", headers=h).status_code == 404

    assert client.delete(f"/api/field-collection/drafts/{draft_id}", headers=h).status_code == 204
    assert client.get(f"/api/field-collection/drafts/{draft_id}", headers=h).status_code == 404
    # can ids are free again
    new_draft = _draft(client, h, "2025-02-01")
    assert _can(client, h, new_draft, serialNumber="2", productType="treacle").status_code == 201


def test_assigned_can_cannot_be_deleted(client):
    h = _login(client)
    draft_id = _draft(client, h)
    _can(client, h, draft_id, serialNumber="1")

    ph = _login(client, "proc1")
    batch = client.post("/api/processing/batches", json={"productType": "treacle"}, headers=ph).json
    r = client.put(f"/api/processing/batches/{batch['batchId']}/cans", json={"canIds": ["SAP-00000001"]}, headers=ph)
    assert r.status_code == 200

    r = client.delete("/api/field-collection/cans/SAP-00000001", headers=h)
    assert r.status_code == 400
    assert r.json["error"] == "Can is assigned to a processing batch"


def test_draft_with_completed_batch_cannot_be_deleted(client):
    h = _login(client)
    draft_id = _draft(client, h)
    _can(client, h, draft_id, serialNumber="1")

    ph = _login(client, "proc1")
    batch_id = client.post("/api/processing/batches", json={}, headers=ph).json["batchId"]
    client.put(f"/api/processing/batches/{batch_id}/cans", json={"canIds": ["SAP-00000001"]}, headers=ph)
    client.post(f"/api/processing/batches/{batch_id}/submit", headers=ph)

    r = client.delete(f"/api/field-collection/drafts/{draft_id}", headers=h)
    assert r.status_code == 400


def test_lookups(client):
    h = _login(client)
    r = client.get("/api/field-collection/centers", headers=h)
    assert [c["centerId"] for c in r.json["centers"]] == ["center001", "center002"]

    r = client.get("/api/field-collection/field-collectors", headers=h)
    assert [u["userId"] for u in r.json["collectors"]] == ["fc1", "fc2"]
