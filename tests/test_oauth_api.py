from urllib.parse import parse_qs, urlparse
import json

import httpx
import pytest
from pydantic import SecretStr

from app.core.config import settings
from app.core.security import sign_oauth_state
from app.models.user import AuthProvider
from app.services.oauth_service import OAuthService


@pytest.fixture
def github_configured(monkeypatch):
    monkeypatch.setattr(settings.oauth, "GITHUB_CLIENT_ID", "client-id")
    monkeypatch.setattr(settings.oauth, "GITHUB_CLIENT_SECRET", SecretStr("client-secret"))


def _github_transport(email=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/login/oauth/access_token":
            return httpx.Response(200, json={"access_token": "gh-token"})
        if request.url.path == "/user":
            return httpx.Response(200, json={"id": 7, "login": "octo-cat", "email": email, "avatar_url": "https://a/7"})
        if request.url.path == "/user/emails":
            return httpx.Response(200, json=[{"email": "Octo@Example.com", "primary": True}])
        return httpx.Response(404)
    return httpx.MockTransport(handler)


async def test_unconfigured_provider_is_404(client):
    resp = await client.get("/api/auth/google")
    assert resp.status_code == 404


async def test_redirect_to_provider(client, github_configured):
    resp = await client.get("/api/auth/github")
    assert resp.status_code == 307
    location = urlparse(resp.headers["location"])
    assert location.netloc == "github.com"
    query = parse_qs(location.query)
    assert query["client_id"] == ["client-id"]
    assert query["redirect_uri"] == ["http://localhost:3001/api/auth/github/callback"]
    assert query["state"][0]


async def test_callback_with_bad_state_redirects_to_login(client, github_configured):
    resp = await client.get("/api/auth/github/callback", params={"code": "abc", "state": "forged"})
    assert resp.status_code == 307
    assert resp.headers["location"] == "http://localhost:3000/login?error=oauth_failed"


async def test_callback_creates_user(client, github_configured):
    from main import app

    app.state.oauth_service = OAuthService(settings.oauth, transport=_github_transport())
    state = sign_oauth_state({"provider": "github", "redirect_uri": None})

    resp = await client.get("/api/auth/github/callback", params={"code": "abc", "state": state})
    assert resp.status_code == 307
    location = urlparse(resp.headers["location"])
    assert location.path == "/auth/callback"
    query = parse_qs(location.query)
    assert query["token"][0]
    user = json.loads(query["user"][0])
    assert user["email"] == "octo@example.com"
    assert user["username"] == "octo_cat"
    assert user["provider"] == "github"


async def test_github_profile_without_any_email():
    service = OAuthService(settings.oauth)

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        profile = await service._github_profile(http, {}, {"id": 1, "login": "octo"})
    assert profile.provider == AuthProvider.GITHUB
    assert profile.email == "octo@github.com"
