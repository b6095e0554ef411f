from urllib.parse import urlparse

from conftest import auth_headers, sign_up
from todo_app.profiles import MAX_AVATAR_BYTES


def me(client, headers) -> dict:
    res = client.get("/api/v1/auth/me", headers=headers)
    assert res.status_code == 200
    return res.json()


class TestProfile:
    def test_get_and_update_profile(self, client, user_headers):
        res = client.get("/api/v1/profile", headers=user_headers)
        assert res.status_code == 200
        profile = res.json()
        assert profile["email"] == "user@example.com"
        assert profile["name"] == "Test User"
        assert profile["role"] == "user"
        assert profile["avatar_url"] is None

        res = client.patch("/api/v1/profile", json={"name": "  Renamed  "}, headers=user_headers)
        assert res.status_code == 200
        assert res.json()["name"] == "Renamed"
        assert me(client, user_headers)["name"] == "Renamed"

    def test_name_too_short(self, client, user_headers):
        res = client.patch("/api/v1/profile", json={"name": "A"}, headers=user_headers)
        assert res.status_code == 422
        assert res.json()["error"] == "ValidationError"

    def test_avatar_upload_and_public_url(self, client, user_headers):
        user_id = me(client, user_headers)["id"]
        png = b"\x89PNG\r\n\x1a\nfake-image"
        res = client.post(
            "/api/v1/profile/avatar",
            files={"file": ("Me.PNG", png, "image/png")},
            headers=user_headers,
        )
        assert res.status_code == 200
        url = res.json()["avatar_url"]
        assert url.startswith(f"http://testserver/storage/v1/object/public/profile-avatars/avatars/{user_id}-")
        assert url.endswith(".png")
        assert me(client, user_headers)["avatar_url"] == url

        public = client.get(urlparse(url).path)
        assert public.status_code == 200
        assert public.content == png
        assert public.headers["content-type"] == "image/png"
        assert public.headers["x-content-type-options"] == "nosniff"

    def test_avatar_must_be_an_image(self, client, user_headers):
        res = client.post(
            "/api/v1/profile/avatar",
            files={"file": ("x.png", b"<script>alert(1)</script>", "text/html")},
            headers=user_headers,
        )
        assert res.status_code == 422
        assert res.json() == {"error": "InvalidUploadError", "message": "Avatar must be an image"}
        assert me(client, user_headers)["avatar_url"] is None

    def test_avatar_size_limit(self, client, user_headers):
        res = client.post(
            "/api/v1/profile/avatar",
            files={"file": ("big.png", b"\0" * (MAX_AVATAR_BYTES + 1), "image/png")},
            headers=user_headers,
        )
        assert res.status_code == 422
        assert res.json()["message"] == "Avatar must be 2MB or smaller"

    def test_extension_follows_image_type(self, client, user_headers):
        res = client.post(
            "/api/v1/profile/avatar",
            files={"file": ("page.html", b"gif-bytes", "image/gif")},
            headers=user_headers,
        )
        assert res.status_code == 200
        assert res.json()["avatar_url"].endswith(".gif")

    def test_missing_public_object(self, client):
        res = client.get("/storage/v1/object/public/profile-avatars/avatars/none.png")
        assert res.status_code == 404
        assert res.json() == {"error": "NotFoundError", "message": "Object not found"}


class TestAdmin:
    def test_users_are_forbidden_admin_endpoints(self, client, user_headers):
        for path in ["/api/v1/admin/users", "/api/v1/admin/users/count"]:
            res = client.get(path, headers=user_headers)
            assert res.status_code == 403
            assert res.json() == {"error": "AuthorizationError", "message": "Forbidden"}
        res = client.patch("/api/v1/admin/users/someone/role", json={"role": "admin"}, headers=user_headers)
        assert res.status_code == 403

    def test_list_and_count_users(self, client, admin_headers):
        sign_up(client, email="one@example.com", name="One")
        sign_up(client, email="two@example.com", name="Two")
        res = client.get("/api/v1/admin/users", headers=admin_headers)
        assert res.status_code == 200
        assert sorted(u["email"] for u in res.json()) == ["admin@example.com", "one@example.com", "two@example.com"]
        res = client.get("/api/v1/admin/users/count", headers=admin_headers)
        assert res.json() == {"total_users": 3}

    def test_role_change_needs_explicit_refresh(self, client, admin_headers):
        session = sign_up(client, email="promote@example.com", name="Promote")
        headers = auth_headers(session)
        user_id = session["user"]["id"]

        res = client.patch(f"/api/v1/admin/users/{user_id}/role", json={"role": "admin"}, headers=admin_headers)
        assert res.status_code == 200
        assert res.json()["role"] == "admin"

        # cached for the session until re-read
        assert me(client, headers)["role"] == "user"
        assert client.get("/api/v1/admin/users", headers=headers).status_code == 403

        res = client.get("/api/v1/auth/me", params={"refresh": "true"}, headers=headers)
        assert res.json()["role"] == "admin"
        assert res.json()["is_admin"] is True
        assert client.get("/api/v1/admin/users", headers=headers).status_code == 200

    def test_changing_own_role_applies_immediately(self, client, admin_headers):
        admin_id = me(client, admin_headers)["id"]
        res = client.patch(f"/api/v1/admin/users/{admin_id}/role", json={"role": "user"}, headers=admin_headers)
        assert res.status_code == 200
        identity = me(client, admin_headers)
        assert identity["role"] == "user"
        assert "Users" not in [n["name"] for n in identity["navigation"]]
        assert client.get("/api/v1/admin/users", headers=admin_headers).status_code == 403

    def test_unknown_user_and_bad_role(self, client, admin_headers):
        res = client.patch("/api/v1/admin/users/missing/role", json={"role": "user"}, headers=admin_headers)
        assert res.status_code == 404
        assert res.json()["message"] == "User not found"
        admin_id = me(client, admin_headers)["id"]
        res = client.patch(f"/api/v1/admin/users/{admin_id}/role", json={"role": "owner"}, headers=admin_headers)
        assert res.status_code == 422


class TestDashboard:
    def _seed(self, client, headers):
        # fixed now: 2025-06-15T12:00:00Z
        for title, due, completed in [
            ("Future", "2025-06-20", False),
            ("Later today", "2025-06-15T18:00:00Z", False),
            ("Past", "2025-06-01", False),
            ("Done", "2025-06-30", True),
        ]:
            res = client.post(
                "/api/v1/todos/",
                json={"title": title, "due_date": due, "completed": completed},
                headers=headers,
            )
            assert res.status_code == 201

    def test_user_stats(self, client, user_headers):
        self._seed(client, user_headers)
        res = client.get("/api/v1/dashboard/stats", headers=user_headers)
        assert res.status_code == 200
        assert res.json() == {
            "total_todos": 4,
            "completed_todos": 1,
            "upcoming_todos": 2,
            "total_users": None,
        }

    def test_admin_sees_user_count(self, client, admin_headers):
        sign_up(client, email="other@example.com", name="Other")
        res = client.get("/api/v1/dashboard/stats", headers=admin_headers)
        assert res.json() == {
            "total_todos": 0,
            "completed_todos": 0,
            "upcoming_todos": 0,
            "total_users": 2,
        }
