# app/api/routes/oauth.py
from typing import Optional
from urllib.parse import urlencode
from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse
from app.core.config import settings
from app.core.exceptions import AppException
from app.core.schemas.auth import UserResponse
from app.core.security import sign_oauth_state, load_oauth_state
from app.core.utils import get_auth_service, get_oauth_service
from app.models.user import AuthProvider
from app.services.auth_service import AuthService
from app.services.oauth_service import OAuthService
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["oauth"])


def _frontend_base(redirect_uri: Optional[str]) -> str:
    """redirect_uri принимаем только из списка доверенных origin"""
    allowed = {settings.oauth.FRONTEND_URL.rstrip("/"), *(o.rstrip("/") for o in settings.cors_origins)}
    if redirect_uri and redirect_uri.rstrip("/") in allowed:
        return redirect_uri.rstrip("/")
    return settings.oauth.FRONTEND_URL.rstrip("/")


def _failure_redirect() -> RedirectResponse:
    return RedirectResponse(f"{settings.oauth.FRONTEND_URL.rstrip('/')}/login?error=oauth_failed")


def _start(provider: AuthProvider, oauth_service: OAuthService, redirect_uri: Optional[str]) -> RedirectResponse:
    state = sign_oauth_state({"provider": provider.value, "redirect_uri": redirect_uri})
    return RedirectResponse(oauth_service.authorization_url(provider, state))


async def _finish(
    provider: AuthProvider,
    code: Optional[str],
    state: Optional[str],
    oauth_service: OAuthService,
    auth_service: AuthService,
) -> RedirectResponse:
    # Ненастроенный провайдер: 404, а не редирект
    oauth_service.ensure_configured(provider)

    payload = load_oauth_state(state) if state else None
    if not code or not payload or payload.get("provider") != provider.value:
        logger.warning(f"OAuth {provider.value} callback with missing code or bad state")
        return _failure_redirect()

    try:
        profile = await oauth_service.fetch_profile(provider, code)
        user, token = await auth_service.login_oauth_user(
            provider=profile.provider,
            provider_id=profile.provider_id,
            email=profile.email,
            username=profile.username,
            avatar_url=profile.avatar_url,
        )
    except AppException as e:
        logger.warning(f"OAuth {provider.value} login failed: {e.detail}")
        return _failure_redirect()

    logger.info(f"OAuth {provider.value} login for user ID: {user.id}")
    query = urlencode({"token": token, "user": UserResponse.model_validate(user).model_dump_json()})
    return RedirectResponse(f"{_frontend_base(payload.get('redirect_uri'))}/auth/callback?{query}")


@router.get("/google")
async def google_login(
    redirect_uri: Optional[str] = Query(None),
    oauth_service: OAuthService = Depends(get_oauth_service),
):
    return _start(AuthProvider.GOOGLE, oauth_service, redirect_uri)


@router.get("/google/callback")
async def google_callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    oauth_service: OAuthService = Depends(get_oauth_service),
    auth_service: AuthService = Depends(get_auth_service),
):
    return await _finish(AuthProvider.GOOGLE, code, state, oauth_service, auth_service)


@router.get("/github")
async def github_login(
    redirect_uri: Optional[str] = Query(None),
    oauth_service: OAuthService = Depends(get_oauth_service),
):
    return _start(AuthProvider.GITHUB, oauth_service, redirect_uri)


@router.get("/github/callback")
async def github_callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    oauth_service: OAuthService = Depends(get_oauth_service),
    auth_service: AuthService = Depends(get_auth_service),
):
    return await _finish(AuthProvider.GITHUB, code, state, oauth_service, auth_service)
