from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from tokenpool.api.app import create_app
from tokenpool.config import AppConfig, AuthConfig

ADMIN_SECRET = "admin-secret-for-tests"


@pytest.fixture()
def app_config() -> AppConfig:
    return AppConfig(
        auth=AuthConfig(
            session_secret="session-secret-for-tests-0123456789abcdef",
            admin_secret=ADMIN_SECRET,
        )
    )


@pytest.fixture()
def app(app_config, session_factory, clock, registry):
    return create_app(app_config, session_factory=session_factory, clock=clock, registry=registry)


@pytest.fixture()
def client(app) -> TestClient:
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def admin_headers() -> dict[str, str]:
    return {"X-Admin-Secret": ADMIN_SECRET}


@pytest.fixture()
def login(client):
    """Log a key in and return bearer headers; the cookie jar is left empty."""

    def _login(key: str) -> dict[str, str]:
        response = client.post("/api/login", json={"key": key})
        assert response.status_code == 200, response.text
        client.cookies.clear()
        return {"Authorization": f"Bearer {response.json()['data']['session']}"}

    return _login
