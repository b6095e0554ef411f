from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from fakes import FakeClock, make_settings
from todo_app.backend import build_backend
from todo_app.main import create_app

PASSWORD = "Secret123!"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def backend(settings, clock):
    return build_backend(settings, clock=clock, bcrypt_rounds=4)


@pytest.fixture
def app(settings, backend, clock):
    return create_app(settings, backend, clock=clock)


@pytest.fixture
def client(app):
    # Entering the client runs the lifespan, which subscribes the session store to auth events
    with TestClient(app) as c:
        yield c


def sign_up(client: TestClient, email: str = "user@example.com", name: str = "Test User", password: str = PASSWORD) -> dict:
    res = client.post("/api/v1/auth/sign-up", json={"email": email, "password": password, "name": name})
    assert res.status_code == 201, res.text
    return res.json()


def auth_headers(session: dict) -> dict:
    return {"Authorization": f"Bearer {session['access_token']}"}


@pytest.fixture
def user_headers(client) -> dict:
    return auth_headers(sign_up(client))


@pytest.fixture
def admin_headers(client) -> dict:
    return auth_headers(sign_up(client, email="admin@example.com", name="Admin"))
