# app/api/routes/auth.py
from fastapi import APIRouter, Depends, Request, status
from slowapi import Limiter
from slowapi.util import get_remote_address
from app.core.config import settings
from app.core.schemas.auth import (
    UserCreate,
    UserLogin,
    UserResponse,
    AuthResponse,
    MeResponse,
    ProfileUpdate,
    ProfileResponse,
    PasswordChange,
)
from app.core.schemas.media import MessageResponse
from app.core.exceptions import AuthenticationError, ConflictError, LockedError
from app.core.utils import get_auth_service, get_current_user, verify_csrf
from app.services.auth_service import AuthService
from app.models.user import User
import logging

# Настройка логгера
logger = logging.getLogger(__name__)

# Rate limiter (можно использовать Redis в продакшене)
limiter = Limiter(key_func=get_remote_address)

router = APIRouter(prefix="/auth", tags=["authentication"], dependencies=[Depends(verify_csrf)])


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register_user(
    request: Request,
    user_create: UserCreate,
    auth_service: AuthService = Depends(get_auth_service),
):
    """Регистрация нового пользователя"""
    client_ip = request.client.host if request.client else "unknown"
    logger.info(f"Registration attempt from IP: {client_ip} for email: {user_create.email}")

    try:
        user, token = await auth_service.register_user(user_create)
    except ConflictError as e:
        logger.warning(f"Registration conflict for email {user_create.email}: {e.detail}")
        raise

    logger.info(f"Successful registration for user ID: {user.id}")
    return AuthResponse(message="Registration successful", user=UserResponse.model_validate(user), token=token)


@router.post("/login", response_model=AuthResponse)
@limiter.limit(settings.security.AUTH_RATE_LIMIT)
async def login(
    request: Request,
    credentials: UserLogin,
    auth_service: AuthService = Depends(get_auth_service),
):
    """Вход по email и паролю с блокировкой аккаунта после серии ошибок"""
    client_ip = request.client.host if request.client else "unknown"
    logger.info(f"Login attempt from IP: {client_ip} for email: {credentials.email}")

    try:
        user, token = await auth_service.authenticate_user(credentials.email, credentials.password)
    except LockedError:
        logger.warning(f"Login to locked account {credentials.email} from IP: {client_ip}")
        raise
    except AuthenticationError:
        logger.warning(f"Authentication failed for email: {credentials.email} from IP: {client_ip}")
        raise

    logger.info(f"Successful login for user ID: {user.id}")
    return AuthResponse(message="Login successful", user=UserResponse.model_validate(user), token=token)


@router.get("/me", response_model=MeResponse)
async def get_me(current_user: User = Depends(get_current_user)):
    """Получение информации о текущем пользователе"""
    return MeResponse(user=UserResponse.model_validate(current_user))


@router.patch("/profile", response_model=ProfileResponse)
async def update_profile(
    profile: ProfileUpdate,
    current_user: User = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
):
    user = await auth_service.update_profile(current_user, profile)
    return ProfileResponse(message="Profile updated", user=UserResponse.model_validate(user))


@router.post("/change-password", response_model=MessageResponse)
@limiter.limit(settings.security.AUTH_RATE_LIMIT)
async def change_password(
    request: Request,
    change: PasswordChange,
    current_user: User = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
):
    try:
        await auth_service.change_password(current_user, change)
    except AuthenticationError:
        logger.warning(f"Password change rejected for user ID: {current_user.id}")
        raise
    logger.info(f"Password changed for user ID: {current_user.id}")
    return MessageResponse(message="Password changed successfully")
