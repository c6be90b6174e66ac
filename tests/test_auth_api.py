from app.core.config import settings

PASSWORD = "Secret123"


async def _register(client, username="alice", email="alice@example.com", password=PASSWORD):
    return await client.post(
        "/api/auth/register",
        json={"username": username, "email": email, "password": password},
    )


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


class TestRegister:
    async def test_register_returns_user_and_token(self, client):
        resp = await _register(client)
        assert resp.status_code == 201
        body = resp.json()
        assert body["token"]
        assert body["user"]["username"] == "alice"
        assert body["user"]["email"] == "alice@example.com"
        assert "password_hash" not in body["user"]
        assert "login_attempts" not in body["user"]

    async def test_duplicate_email_and_username(self, client):
        await _register(client)
        resp = await _register(client, username="other", email="ALICE@example.com")
        assert resp.status_code == 409
        assert resp.json()["error"] == "ConflictError"

        resp = await _register(client, email="other@example.com")
        assert resp.status_code == 409

    async def test_invalid_payload_is_400(self, client):
        resp = await _register(client, username="a!")
        assert resp.status_code == 400
        assert resp.json()["error"] == "ValidationError"

        resp = await _register(client, password="short")
        assert resp.status_code == 400

    async def test_csrf_token_required(self, app_client):
        resp = await _register(app_client)
        assert resp.status_code == 403
        assert resp.json()["detail"] == "Invalid CSRF token"


class TestLogin:
    async def test_login(self, client):
        await _register(client)
        resp = await client.post("/api/auth/login", json={"email": "Alice@Example.com", "password": PASSWORD})
        assert resp.status_code == 200
        body = resp.json()
        assert body["user"]["username"] == "alice"
        assert body["user"]["last_login_at"] is not None

    async def test_unknown_email(self, client):
        resp = await client.post("/api/auth/login", json={"email": "nobody@example.com", "password": PASSWORD})
        assert resp.status_code == 401

    async def test_lockout_after_five_failures(self, client):
        await _register(client)
        for attempt in range(1, 6):
            resp = await client.post("/api/auth/login", json={"email": "alice@example.com", "password": "wrong"})
            assert resp.status_code == 401
            assert resp.json()["attemptsLeft"] == 5 - attempt

        resp = await client.post("/api/auth/login", json={"email": "alice@example.com", "password": PASSWORD})
        assert resp.status_code == 423
        minutes = settings.security.LOCK_DURATION_MINUTES
        assert resp.json()["detail"] == f"Account is locked, please try again in {minutes} minutes"

    async def test_success_resets_attempts(self, client):
        await _register(client)
        await client.post("/api/auth/login", json={"email": "alice@example.com", "password": "wrong"})
        await client.post("/api/auth/login", json={"email": "alice@example.com", "password": PASSWORD})
        resp = await client.post("/api/auth/login", json={"email": "alice@example.com", "password": "wrong"})
        assert resp.json()["attemptsLeft"] == 4

    async def test_rate_limited(self, client):
        from app.api.routes.auth import limiter

        limiter.enabled = True
        limiter.reset()
        statuses = []
        for _ in range(6):
            resp = await client.post("/api/auth/login", json={"email": "nobody@example.com", "password": "x"})
            statuses.append(resp.status_code)
        limiter.reset()

        assert statuses[:5] == [401] * 5
        assert statuses[5] == 429
        assert resp.json()["error"] == "RateLimitError"


class TestSession:
    async def test_me(self, client):
        token = (await _register(client)).json()["token"]
        resp = await client.get("/api/auth/me", headers=_bearer(token))
        assert resp.status_code == 200
        assert resp.json()["user"]["username"] == "alice"

    async def test_me_without_token(self, client):
        resp = await client.get("/api/auth/me")
        assert resp.status_code == 401

    async def test_me_with_bad_token(self, client):
        resp = await client.get("/api/auth/me", headers=_bearer("garbage"))
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Invalid token"

    async def test_me_with_non_numeric_subject(self, client):
        from app.core.security import create_access_token

        token = create_access_token(data={"sub": "alice"})
        resp = await client.get("/api/auth/me", headers=_bearer(token))
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Invalid token payload"

    async def test_update_profile(self, client):
        token = (await _register(client)).json()["token"]
        await _register(client, username="bob", email="bob@example.com")

        resp = await client.patch(
            "/api/auth/profile",
            json={"username": "alice2", "avatar": "https://example.com/a.png"},
            headers=_bearer(token),
        )
        assert resp.status_code == 200
        assert resp.json()["user"]["username"] == "alice2"
        assert resp.json()["user"]["avatar"] == "https://example.com/a.png"

        resp = await client.patch("/api/auth/profile", json={"username": "bob"}, headers=_bearer(token))
        assert resp.status_code == 409

    async def test_change_password(self, client):
        token = (await _register(client)).json()["token"]

        resp = await client.post(
            "/api/auth/change-password",
            json={"currentPassword": "wrong", "newPassword": "NewSecret456"},
            headers=_bearer(token),
        )
        assert resp.status_code == 401

        resp = await client.post(
            "/api/auth/change-password",
            json={"currentPassword": PASSWORD, "newPassword": "NewSecret456"},
            headers=_bearer(token),
        )
        assert resp.status_code == 200

        resp = await client.post("/api/auth/login", json={"email": "alice@example.com", "password": "NewSecret456"})
        assert resp.status_code == 200


async def test_auth_unavailable_without_primary(client):
    from app.core.database import db_helper

    db_helper.available = False
    resp = await _register(client)
    assert resp.status_code == 503


async def test_health_and_csrf_cookie(app_client):
    resp = await app_client.get("/api/csrf-token")
    assert resp.cookies.get(settings.security.CSRF_COOKIE_NAME) == resp.json()["csrfToken"]

    health = (await app_client.get("/api/health")).json()
    assert health["primary"] is True
    assert health["cache"] is True
    assert health["blob"] is True
