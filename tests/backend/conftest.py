from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from backend.widgets.main import create_app

PAGE_URL = "https://www.example.com/guestbook"
OWNER_TOKEN = "owner-secret-1"


@pytest.fixture()
def client(monkeypatch: pytest.MonkeyPatch) -> TestClient:
    monkeypatch.setenv("PERSISTENCE_ENABLED", "false")
    monkeypatch.setenv("AUTH_ENABLED", "false")
    app = create_app()
    return TestClient(app)
