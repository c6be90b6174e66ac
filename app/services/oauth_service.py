# app/services/oauth_service.py
import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode
import httpx
from app.core.config import OAuthConfig
from app.core.exceptions import AuthenticationError, NotFoundError
from app.models.user import AuthProvider

logger = logging.getLogger(__name__)


@dataclass
class ProviderEndpoints:
    authorize_url: str
    token_url: str
    profile_url: str
    scope: str


PROVIDERS = {
    AuthProvider.GOOGLE: ProviderEndpoints(
        authorize_url="https://accounts.google.com/o/oauth2/v2/auth",
        token_url="https://oauth2.googleapis.com/token",
        profile_url="https://openidconnect.googleapis.com/v1/userinfo",
        scope="openid profile email",
    ),
    AuthProvider.GITHUB: ProviderEndpoints(
        authorize_url="https://github.com/login/oauth/authorize",
        token_url="https://github.com/login/oauth/access_token",
        profile_url="https://api.github.com/user",
        scope="user:email",
    ),
}


@dataclass
class OAuthProfile:
    provider: AuthProvider
    provider_id: str
    email: str
    username: str
    avatar_url: Optional[str] = None


class OAuthService:
    """Authorization code flow для Google и GitHub"""

    def __init__(self, config: OAuthConfig, api_prefix: str = "/api", transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self.api_prefix = api_prefix
        self.transport = transport

    def _credentials(self, provider: AuthProvider) -> tuple[str, str]:
        if provider == AuthProvider.GOOGLE:
            client_id, secret = self.config.GOOGLE_CLIENT_ID, self.config.GOOGLE_CLIENT_SECRET
        elif provider == AuthProvider.GITHUB:
            client_id, secret = self.config.GITHUB_CLIENT_ID, self.config.GITHUB_CLIENT_SECRET
        else:
            client_id, secret = None, None
        if not client_id or not secret:
            raise NotFoundError(f"OAuth provider {provider.value} is not configured")
        return client_id, secret.get_secret_value()

    def ensure_configured(self, provider: AuthProvider) -> None:
        """NotFoundError, если для провайдера нет client id и secret"""
        self._credentials(provider)

    def callback_url(self, provider: AuthProvider) -> str:
        return f"{self.config.CALLBACK_BASE_URL.rstrip('/')}{self.api_prefix}/auth/{provider.value}/callback"

    def authorization_url(self, provider: AuthProvider, state: str) -> str:
        client_id, _ = self._credentials(provider)
        endpoints = PROVIDERS[provider]
        params = {
            "client_id": client_id,
            "redirect_uri": self.callback_url(provider),
            "response_type": "code",
            "scope": endpoints.scope,
            "state": state,
        }
        return f"{endpoints.authorize_url}?{urlencode(params)}"

    async def fetch_profile(self, provider: AuthProvider, code: str) -> OAuthProfile:
        """Обмен code на access token и загрузка профиля"""
        client_id, client_secret = self._credentials(provider)
        endpoints = PROVIDERS[provider]

        async with httpx.AsyncClient(timeout=self.config.HTTP_TIMEOUT, transport=self.transport) as client:
            try:
                token_resp = await client.post(
                    endpoints.token_url,
                    data={
                        "client_id": client_id,
                        "client_secret": client_secret,
                        "code": code,
                        "grant_type": "authorization_code",
                        "redirect_uri": self.callback_url(provider),
                    },
                    headers={"Accept": "application/json"},
                )
                token_resp.raise_for_status()
                access_token = token_resp.json().get("access_token")
                if not access_token:
                    raise AuthenticationError("OAuth provider returned no access token")

                auth_headers = {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}
                profile_resp = await client.get(endpoints.profile_url, headers=auth_headers)
                profile_resp.raise_for_status()
                data = profile_resp.json()

                if provider == AuthProvider.GOOGLE:
                    return self._google_profile(data)
                return await self._github_profile(client, auth_headers, data)
            except (httpx.HTTPError, ValueError) as e:
                logger.warning(f"OAuth {provider.value} exchange failed: {e}")
                raise AuthenticationError("OAuth authentication failed")

    @staticmethod
    def _google_profile(data: dict) -> OAuthProfile:
        email = data.get("email")
        if not email:
            raise AuthenticationError("OAuth profile has no email")
        return OAuthProfile(
            provider=AuthProvider.GOOGLE,
            provider_id=str(data.get("sub")),
            email=email.lower(),
            username=data.get("name") or email.split("@")[0],
            avatar_url=data.get("picture"),
        )

    @staticmethod
    async def _github_profile(client: httpx.AsyncClient, headers: dict, data: dict) -> OAuthProfile:
        login = data.get("login") or data.get("name") or str(data.get("id"))
        email = data.get("email")
        if not email:
            # Приватный email: берём основной из /user/emails
            resp = await client.get("https://api.github.com/user/emails", headers=headers)
            if resp.status_code == 200:
                emails = resp.json()
                primary = next((e for e in emails if e.get("primary")), None) or (emails[0] if emails else None)
                email = primary.get("email") if primary else None
        if not email:
            email = f"{login}@github.com"
        return OAuthProfile(
            provider=AuthProvider.GITHUB,
            provider_id=str(data.get("id")),
            email=email.lower(),
            username=login,
            avatar_url=data.get("avatar_url"),
        )
