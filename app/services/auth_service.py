# app/services/auth_service.py
from typing import Tuple, Optional
from datetime import datetime, timedelta, timezone
import logging
from app.core.security import (
    get_password_hash,
    verify_password,
    random_password,
    create_access_token,
    decode_token,
)
from app.repositories.user_repository import UserRepository
from app.core.schemas.auth import UserCreate, ProfileUpdate, PasswordChange
from app.core.config import settings
from app.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    LockedError,
    NotFoundError,
)
from app.models.user import User, AuthProvider

logger = logging.getLogger(__name__)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_locked(user: User) -> bool:
    lock_until = _as_utc(user.lock_until)
    return bool(lock_until and lock_until > datetime.now(timezone.utc))


class AuthService:
    def __init__(self, user_repository: UserRepository):
        self.user_repository = user_repository

    async def register_user(self, user_create: UserCreate) -> Tuple[User, str]:
        """Регистрация нового пользователя"""
        existing_user = await self.user_repository.get_by_email_or_username(
            user_create.email, user_create.username
        )
        if existing_user:
            if existing_user.email.lower() == user_create.email:
                raise ConflictError("Email is already registered")
            raise ConflictError("Username is already taken")

        password_hash = get_password_hash(user_create.password)
        user = await self.user_repository.create(
            username=user_create.username,
            email=user_create.email,
            password_hash=password_hash,
        )
        return user, self.generate_token(user.id)

    async def authenticate_user(self, email: str, password: str) -> Tuple[User, str]:
        """Вход по email/паролю с блокировкой после серии неудачных попыток"""
        user = await self.user_repository.get_by_email(email.lower())
        if not user:
            raise AuthenticationError("Invalid email or password")

        if is_locked(user):
            raise LockedError(
                f"Account is locked, please try again in {settings.security.LOCK_DURATION_MINUTES} minutes"
            )

        if not user.is_active:
            raise AuthorizationError("Account is disabled")

        if not verify_password(password, user.password_hash):
            max_attempts = settings.security.MAX_LOGIN_ATTEMPTS
            user = await self.user_repository.register_failed_login(
                user,
                max_attempts=max_attempts,
                lock_duration=timedelta(minutes=settings.security.LOCK_DURATION_MINUTES),
            )
            attempts_left = max(0, max_attempts - user.login_attempts)
            logger.warning(f"Failed login for user ID {user.id}, attempts left: {attempts_left}")
            raise AuthenticationError(
                "Invalid email or password",
                extra={"attemptsLeft": attempts_left},
            )

        await self.user_repository.reset_login_attempts(user)
        return user, self.generate_token(user.id)

    async def get_current_user(self, token: str) -> User:
        """Получение текущего пользователя из токена"""
        try:
            payload = decode_token(token)
        except ValueError as e:
            raise AuthenticationError(str(e))

        # Проверяем тип токена
        if payload.get("type") != "access":
            raise AuthenticationError("Invalid token type for this operation")

        user_id = payload.get("sub")
        if not user_id:
            raise AuthenticationError("Invalid token payload")

        try:
            user_id = int(user_id)
        except (TypeError, ValueError):
            raise AuthenticationError("Invalid token payload")

        user = await self.user_repository.get_by_id(user_id)
        if not user:
            raise NotFoundError("User not found")
        if not user.is_active:
            raise AuthorizationError("Account is disabled")
        return user

    async def update_profile(self, user: User, profile: ProfileUpdate) -> User:
        if profile.username and profile.username != user.username:
            taken = await self.user_repository.get_by_username(profile.username)
            if taken and taken.id != user.id:
                raise ConflictError("Username is already taken")
        return await self.user_repository.update_profile(user, profile.username, profile.avatar)

    async def change_password(self, user: User, change: PasswordChange) -> None:
        if not verify_password(change.current_password, user.password_hash):
            raise AuthenticationError("Current password is incorrect")
        await self.user_repository.update_password(user.id, get_password_hash(change.new_password))

    async def login_oauth_user(
        self,
        provider: AuthProvider,
        provider_id: str,
        email: str,
        username: str,
        avatar_url: Optional[str],
    ) -> Tuple[User, str]:
        """Найти пользователя по email или создать нового для OAuth провайдера"""
        user = await self.user_repository.get_by_email(email)
        if not user:
            user = await self.user_repository.create(
                username=await self._free_username(username),
                email=email,
                password_hash=get_password_hash(random_password()),
                provider=provider,
                provider_id=provider_id,
                avatar_url=avatar_url,
            )
            logger.info(f"Created {provider.value} user ID: {user.id}")
        if not user.is_active:
            raise AuthorizationError("Account is disabled")
        await self.user_repository.update_last_login(user.id)
        return user, self.generate_token(user.id)

    async def _free_username(self, wanted: str) -> str:
        """Имя от провайдера, приведённое к нашим правилам и без коллизий"""
        base = "".join(c if c.isascii() and (c.isalnum() or c == "_") else "_" for c in wanted)[:24]
        if len(base) < 3:
            base = f"user_{base}"
        candidate = base
        suffix = 1
        while await self.user_repository.get_by_username(candidate):
            candidate = f"{base}_{suffix}"
            suffix += 1
        return candidate

    def generate_token(self, user_id: int) -> str:
        return create_access_token(data={"sub": str(user_id)})
