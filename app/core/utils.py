# app/core/utils.py
from typing import AsyncGenerator, Optional
from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.config import settings
from app.core.database import db_helper
from app.core.exceptions import AuthenticationError, AuthorizationError, PrimaryUnavailableError
from app.core.security import verify_csrf_token
from app.repositories.user_repository import UserRepository
from app.services.auth_service import AuthService
from app.services.media_service import MediaService
from app.services.oauth_service import OAuthService
from app.services.webauthn_service import WebAuthnService
from app.models.user import User
import logging

logger = logging.getLogger(__name__)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.api_prefix.strip('/')}/auth/login", auto_error=False)

CSRF_SAFE_METHODS = {"GET", "HEAD", "OPTIONS"}


async def get_primary_session() -> AsyncGenerator[AsyncSession, None]:
    """Сессия основной БД; пользователи живут только там"""
    if not db_helper.available:
        raise PrimaryUnavailableError()
    async for session in db_helper.session_getter():
        yield session


def get_user_repository(session: AsyncSession = Depends(get_primary_session)) -> UserRepository:
    return UserRepository(session)


def get_auth_service(user_repo: UserRepository = Depends(get_user_repository)) -> AuthService:
    return AuthService(user_repo)


def get_webauthn_service(
    request: Request,
    user_repo: UserRepository = Depends(get_user_repository),
) -> WebAuthnService:
    return WebAuthnService(user_repo, request.app.state.challenge_store, settings.webauthn)


def get_media_service(request: Request) -> MediaService:
    return request.app.state.media_service


def get_oauth_service(request: Request) -> OAuthService:
    return request.app.state.oauth_service


async def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    auth_service: AuthService = Depends(get_auth_service),
) -> User:
    """Зависимость для получения текущего пользователя из токена"""
    if not token:
        raise AuthenticationError("Not authenticated")
    try:
        return await auth_service.get_current_user(token)
    except AuthenticationError as e:
        logger.warning(f"Authentication failed: {e.detail}")
        raise


async def verify_csrf(request: Request) -> None:
    """Double-submit проверка для запросов, меняющих состояние"""
    if not settings.security.CSRF_ENABLED or request.method in CSRF_SAFE_METHODS:
        return
    cookie_token = request.cookies.get(settings.security.CSRF_COOKIE_NAME)
    header_token = request.headers.get(settings.security.CSRF_HEADER_NAME)
    if not verify_csrf_token(cookie_token, header_token):
        logger.warning(f"CSRF check failed for {request.method} {request.url.path}")
        raise AuthorizationError("Invalid CSRF token")
