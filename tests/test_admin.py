"""Tests for Admin module (users, audit trail, collection centers)."""
from datetime import date

import pytest
from werkzeug.security import generate_password_hash

from app.kithul import create_app
from app.kithul.db import session_scope
from app.kithul.models import Base, User
from app.kithul.modules.admin.models import CollectionCenter
from app.kithul.modules.field_collection.models import FieldCollectionDraft, TreacleCan
from app.kithul.roles import ADMINISTRATOR, PROCESSING


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
        s.add_all(
            [
                User(user_id="admin", password_hash=generate_password_hash("password1"), name="Admin", role=ADMINISTRATOR),
                User(user_id="boss2", password_hash=generate_password_hash("password1"), name="Boss", role=ADMINISTRATOR),
                User(user_id="proc1", password_hash=generate_password_hash("password1"), name="Proc", role=PROCESSING),
                CollectionCenter(center_id="center001", center_name="Galle Collection Center", location="Galle", center_agent="John Silva"),
            ]
        )
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client, user_id="admin"):
    r = client.post("/api/auth/login", json={"userId": user_id, "password": "password1"})
    assert r.status_code == 200
    return {"Authorization": f"Bearer {r.json['token']}"}


def _user_pk(app, user_id):
    with session_scope(app) as s:
        return s.query(User).filter(User.user_id == user_id).one().id


def test_admin_requires_administrator(client):
    r = client.get("/api/admin/users", headers=_login(client, "proc1"))
    assert r.status_code == 403
    assert r.json == {"error": "Forbidden"}


def test_roles(client):
    r = client.get("/api/admin/roles", headers=_login(client))
    assert r.status_code == 200
    assert r.json["roles"] == ["Administrator", "Field Collection", "Processing", "Packaging", "Labeling"]


def test_user_list_hides_administrators(client):
    r = client.get("/api/admin/users", headers=_login(client))
    assert r.status_code == 200
    assert [u["userId"] for u in r.json["users"]] == ["proc1"]


def test_user_create_update_delete(app, client):
    h = _login(client)
    r = client.post(
        "/api/admin/users",
        json={"userId": "pack1", "password": "password1", "name": "Packer", "role": "packaging"},
        headers=h,
    )
    assert r.status_code == 201
    assert r.json["role"] == "Packaging"
    pk = r.json["id"]

    r = client.post(
        "/api/admin/users",
        json={"userId": "pack1", "password": "password1", "name": "Again", "role": "Packaging"},
        headers=h,
    )
    assert r.status_code == 409
    assert r.json["error"] == "User ID already exists"

    r = client.patch(f"/api/admin/users/{pk}", json={"role": "Labeling", "isActive": False}, headers=h)
    assert r.status_code == 200
    assert r.json["role"] == "Labeling"
    assert r.json["isActive"] is False

    r = client.get("/api/admin/audit", headers=h)
    actions = [e["action"] for e in r.json["events"]]
    assert "admin.user.create" in actions
    assert "admin.user.role_change" in actions
    change = next(e for e in r.json["events"] if e["action"] == "admin.user.role_change")
    assert change["metadata"]["previous_role"] == "Packaging"
    assert change["metadata"]["new_role"] == "Labeling"

    r = client.delete(f"/api/admin/users/{pk}", headers=h)
    assert r.status_code == 204
    assert client.get(f"/api/admin/users/{pk}", headers=h).status_code == 404


def test_user_create_rejects_admin_role(client):
    r = client.post(
        "/api/admin/users",
        json={"userId": "root2", "password": "password1", "name": "Root", "role": "Administrator"},
        headers=_login(client),
    )
    assert r.status_code == 400
    assert r.json["error"] == "Unsupported role"


def test_user_update_requires_fields(app, client):
    pk = _user_pk(app, "proc1")
    r = client.patch(f"/api/admin/users/{pk}", json={}, headers=_login(client))
    assert r.status_code == 400
    assert r.json["error"] == "No updates provided"


def test_administrator_accounts_are_off_limits(app, client):
    h = _login(client)
    pk = _user_pk(app, "boss2")
    assert client.get(f"/api/admin/users/{pk}", headers=h).status_code == 403
    assert client.patch(f"/api/admin/users/{pk}", json={"name": "X"}, headers=h).status_code == 403
    assert client.delete(f"/api/admin/users/{pk}", headers=h).status_code == 403


def test_cannot_delete_self(app, client):
    pk = _user_pk(app, "admin")
    r = client.delete(f"/api/admin/users/{pk}", headers=_login(client))
    assert r.status_code == 400
    assert r.json["error"] == "You cannot delete your own account"


def test_invalid_user_id(client):
    r = client.get("/api/admin/users/abc", headers=_login(client))
    assert r.status_code == 400
    assert r.json["error"] == "Invalid user id"


def test_center_crud(client):
    h = _login(client)
    payload = {
        "centerId": "center009",
        "centerName": "Ella Collection Center",
        "location": "Ella",
        "centerAgent": "Kamal Perera",
        "contactPhone": "+94 71 000 0009",
    }
    r = client.post("/api/admin/centers", json=payload, headers=h)
    assert r.status_code == 201
    center = r.json
    assert center["centerId"] == "center009"
    assert center["isActive"] is True

    r = client.post("/api/admin/centers", json=payload, headers=h)
    assert r.status_code == 409
    assert r.json["error"] == "Center ID already exists"

    r = client.patch(f"/api/admin/centers/{center['id']}", json={"isActive": False, "location": "Badulla"}, headers=h)
    assert r.status_code == 200
    assert r.json["isActive"] is False
    assert r.json["location"] == "Badulla"

    r = client.patch(f"/api/admin/centers/{center['id']}", json={"centerId": "center001"}, headers=h)
    assert r.status_code == 409

    r = client.get("/api/admin/centers", headers=h)
    assert [c["centerName"] for c in r.json["centers"]] == ["Ella Collection Center", "Galle Collection Center"]

    assert client.delete(f"/api/admin/centers/{center['id']}", headers=h).status_code == 204
    r = client.get(f"/api/admin/centers/{center['id']}", headers=h)
    assert r.status_code == 404
    assert r.json["error"] == "Center not found"


def test_center_validation(client):
    r = client.post("/api/admin/centers", json={"centerId": "x"}, headers=_login(client))
    assert r.status_code == 400
    assert {"centerId", "centerName", "location", "centerAgent"} <= set(r.json["details"])


def test_center_with_cans_cannot_be_deleted(app, client):
    with session_scope(app) as s:
        center = s.query(CollectionCenter).filter(CollectionCenter.center_id == "center001").one()
        draft = FieldCollectionDraft(draft_id="d1", collection_date=date(2025, 1, 6), status="draft", created_by="admin")
        s.add(draft)
        s.flush()
        s.add(TreacleCan(can_id="TCL-00000001", draft_id=draft.id, collection_center_id=center.id, product_type="treacle", quantity=5))
        center_pk = center.id

    r = client.delete(f"/api/admin/centers/{center_pk}", headers=_login(client))
    assert r.status_code == 400
    assert r.json["error"] == "Cannot delete center with associated cans. Deactivate instead."
