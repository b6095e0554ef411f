import pytest

from fakes import make_settings


@pytest.fixture
def settings(tmp_path):
    return make_settings(
        persistence_backend="sqlite",
        sqlite_db_path=str(tmp_path / "todos.db"),
        storage_dir=str(tmp_path / "storage"),
    )


def test_health_reports_sqlite(client):
    assert client.get("/").json() == {"message": "Healthy", "backend": "sqlite"}


def test_todo_lifecycle_on_sqlite(client, user_headers):
    res = client.post(
        "/api/v1/todos/",
        json={"title": "Persisted", "due_date": "2025-06-20", "priority": "high"},
        headers=user_headers,
    )
    assert res.status_code == 201
    todo = res.json()
    assert todo["completed"] is False
    assert todo["due_date"].startswith("2025-06-20T00:00:00")

    res = client.post(f"/api/v1/todos/{todo['id']}/toggle", headers=user_headers)
    assert res.json()["completed"] is True

    res = client.get("/api/v1/todos/", params={"filter": "completed"}, headers=user_headers)
    body = res.json()
    assert [t["title"] for t in body["items"]] == ["Persisted"]

    res = client.get("/api/v1/notifications/", params={"refresh": "true"}, headers=user_headers)
    titles = [n["title"] for n in res.json()["items"]]
    assert titles == ["Task Completed", "Welcome to Todo App"]


def test_avatar_stored_on_disk(client, user_headers, tmp_path):
    res = client.post(
        "/api/v1/profile/avatar",
        files={"file": ("me.png", b"png-bytes", "image/png")},
        headers=user_headers,
    )
    assert res.status_code == 200
    assert list((tmp_path / "storage" / "profile-avatars" / "avatars").iterdir())
