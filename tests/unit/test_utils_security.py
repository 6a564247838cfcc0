import pytest
from fastapi import FastAPI, Depends
from fastapi.testclient import TestClient

from backend.users import service as users_service
from backend.utils.security import get_current_user, require_admin, COOKIE_NAME


def _make_app():
    app = FastAPI()

    @app.get("/me")
    def me(user=Depends(get_current_user)):
        return user

    @app.get("/admin")
    def admin(user=Depends(require_admin)):
        return {"ok": True}

    return app


@pytest.fixture
def fake_profiles(monkeypatch):
    monkeypatch.setattr(
        "backend.users.repository.get_user_from_access_token",
        lambda token: {"id": "u1", "email": "a@b.c", "user_metadata": {"first_name": "Ada"}} if token == "good" else {},
    )
    monkeypatch.setattr(
        "backend.users.repository.get_user_profile",
        lambda uid: {"id": uid, "user_type": "school", "last_name": "Obi", "phone_number": "0803", "school_id": "s1"},
    )
    monkeypatch.setattr(
        "backend.users.repository.get_school",
        lambda sid: {"id": sid, "name": "Kings College", "phone_number": "+2348012345678"},
    )


def test_get_current_user_bearer_merges_profile(fake_profiles):
    client = TestClient(_make_app())
    r = client.get("/me", headers={"Authorization": "Bearer good"})
    assert r.status_code == 200
    user = r.json()
    assert user["id"] == "u1"
    assert user["user_type"] == "school"
    assert user["first_name"] == "Ada"
    assert user["last_name"] == "Obi"
    assert user["school"]["name"] == "Kings College"
    assert user["role"] == "user"


def test_get_current_user_cookie_fallback(fake_profiles):
    client = TestClient(_make_app())
    client.cookies.set(COOKIE_NAME, "good")
    assert client.get("/me").json()["id"] == "u1"


def test_get_current_user_missing_or_invalid_token(fake_profiles):
    client = TestClient(_make_app())
    assert client.get("/me").status_code == 401
    assert client.get("/me", headers={"Authorization": "Bearer bad"}).status_code == 401


def test_get_current_user_backend_error_is_401(monkeypatch):
    def _boom(token):
        raise RuntimeError("supabase down")
    monkeypatch.setattr("backend.users.repository.get_user_from_access_token", _boom)
    client = TestClient(_make_app())
    r = client.get("/me", headers={"Authorization": "Bearer good"})
    assert r.status_code == 401


def test_require_admin(monkeypatch, fake_profiles):
    client = TestClient(_make_app())
    assert client.get("/admin", headers={"Authorization": "Bearer good"}).status_code == 403

    monkeypatch.setattr("backend.users.repository.get_user_profile", lambda uid: {"id": uid, "role": "admin"})
    assert client.get("/admin", headers={"Authorization": "Bearer good"}).status_code == 200


def test_determine_role(monkeypatch):
    monkeypatch.setattr(users_service, "ADMIN_EMAILS", ["ops@example.com"])
    assert users_service.determine_role("OPS@example.com", None) == "admin"
    assert users_service.determine_role("x@example.com", {"role": "ADMIN"}) == "admin"
    assert users_service.determine_role("x@example.com", {}) == "user"
