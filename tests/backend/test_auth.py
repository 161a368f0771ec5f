from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
from fastapi.testclient import TestClient

from backend.widgets.main import create_app

URL = "https://www.example.com/"
TOKEN = "owner-token"


def _token(secret: str, subject: str, roles: list[str]) -> str:
    payload = {
        "sub": subject,
        "roles": roles,
        "exp": datetime.now(timezone.utc) + timedelta(hours=1),
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def _client(monkeypatch) -> TestClient:
    monkeypatch.setenv("PERSISTENCE_ENABLED", "false")
    monkeypatch.setenv("AUTH_ENABLED", "true")
    monkeypatch.setenv("JWT_SECRET", "test-secret")
    return TestClient(create_app())


def _create_counter(client: TestClient) -> str:
    response = client.post("/counter/create", json={"url": URL, "token": TOKEN})
    assert response.status_code == 200
    return response.json()["id"]


def test_purge_blocks_missing_token_when_enabled(monkeypatch) -> None:
    client = _client(monkeypatch)
    widget_id = _create_counter(client)
    response = client.post(f"/admin/widgets/counter/{widget_id}/purge")
    assert response.status_code == 401


def test_purge_rejects_invalid_token(monkeypatch) -> None:
    client = _client(monkeypatch)
    widget_id = _create_counter(client)
    token = _token("wrong-secret", "ops-1", ["admin"])
    response = client.post(
        f"/admin/widgets/counter/{widget_id}/purge",
        headers={"Authorization": f"Bearer {token}"},
    )
    assert response.status_code == 401


def test_purge_requires_admin_role(monkeypatch) -> None:
    client = _client(monkeypatch)
    widget_id = _create_counter(client)
    token = _token("test-secret", "viewer-1", ["viewer"])
    response = client.post(
        f"/admin/widgets/counter/{widget_id}/purge",
        headers={"Authorization": f"Bearer {token}"},
    )
    assert response.status_code == 403
    assert response.json()["detail"] == "admin role required"


def test_purge_with_admin_token(monkeypatch) -> None:
    client = _client(monkeypatch)
    widget_id = _create_counter(client)
    token = _token("test-secret", "ops-1", ["admin"])
    headers = {"Authorization": f"Bearer {token}"}

    response = client.post(f"/admin/widgets/counter/{widget_id}/purge", headers=headers)
    assert response.status_code == 200
    assert response.json() == {"id": widget_id, "deleted": True}
    assert client.get(f"/counter/{widget_id}").status_code == 404

    again = client.post(f"/admin/widgets/counter/{widget_id}/purge", headers=headers)
    assert again.status_code == 404


def test_widget_routes_do_not_need_operator_token(monkeypatch) -> None:
    client = _client(monkeypatch)
    widget_id = _create_counter(client)
    assert client.post(f"/counter/{widget_id}/visit").status_code == 200


def test_purge_open_when_auth_disabled(client) -> None:
    widget_id = _create_counter(client)
    response = client.post(f"/admin/widgets/counter/{widget_id}/purge")
    assert response.status_code == 200
