# app/repositories/user_repository.py
from typing import Optional, List
from datetime import datetime, timedelta, timezone
from sqlalchemy import select, update, delete, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from app.models.user import User, UserRole, AuthProvider, WebAuthnCredential


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_email(self, email: str) -> Optional[User]:
        """Получить пользователя по email"""
        stmt = select(User).where(func.lower(User.email) == email.lower())
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_username(self, username: str) -> Optional[User]:
        """Получить пользователя по username"""
        stmt = select(User).where(User.username == username)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_email_or_username(self, email: str, username: str) -> Optional[User]:
        stmt = select(User).where(
            or_(func.lower(User.email) == email.lower(), User.username == username)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def get_by_id(self, user_id: int) -> Optional[User]:
        """Получить пользователя по ID"""
        stmt = select(User).where(User.id == user_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(
        self,
        username: str,
        email: str,
        password_hash: str,
        provider: AuthProvider = AuthProvider.LOCAL,
        provider_id: Optional[str] = None,
        avatar_url: Optional[str] = None,
    ) -> User:
        """Создать нового пользователя"""
        db_user = User(
            username=username,
            email=email.lower(),
            password_hash=password_hash,
            avatar_url=avatar_url,
            role=UserRole.USER.value,  # По умолчанию обычный пользователь
            is_active=True,
            login_attempts=0,
            provider=provider.value,
            provider_id=provider_id,
            created_at=datetime.now(timezone.utc),
            updated_at=datetime.now(timezone.utc),
        )
        self.session.add(db_user)
        await self.session.commit()
        await self.session.refresh(db_user)
        return db_user

    async def update_profile(self, user: User, username: Optional[str], avatar_url: Optional[str]) -> User:
        """Обновить username/аватар"""
        if username:
            user.username = username
        if avatar_url:
            user.avatar_url = avatar_url
        user.updated_at = datetime.now(timezone.utc)
        await self.session.commit()
        await self.session.refresh(user)
        return user

    async def update_password(self, user_id: int, new_password_hash: str) -> None:
        """Обновить пароль пользователя"""
        stmt = update(User).where(User.id == user_id).values(
            password_hash=new_password_hash,
            updated_at=datetime.now(timezone.utc)
        )
        await self.session.execute(stmt)
        await self.session.commit()

    async def register_failed_login(self, user: User, max_attempts: int, lock_duration: timedelta) -> User:
        """Увеличить счётчик неудачных входов, заблокировать после max_attempts"""
        now = datetime.now(timezone.utc)
        lock_until = user.lock_until
        if lock_until is not None and lock_until.tzinfo is None:
            lock_until = lock_until.replace(tzinfo=timezone.utc)

        if lock_until is not None and lock_until <= now:
            # Блокировка истекла: начинаем счёт заново
            user.login_attempts = 1
            user.lock_until = None
        else:
            user.login_attempts = (user.login_attempts or 0) + 1
            if user.login_attempts >= max_attempts and lock_until is None:
                user.lock_until = now + lock_duration
        await self.session.commit()
        await self.session.refresh(user)
        return user

    async def reset_login_attempts(self, user: User) -> None:
        """Сброс счётчика и обновление last_login_at после успешного входа"""
        now = datetime.now(timezone.utc)
        user.login_attempts = 0
        user.lock_until = None
        user.last_login_at = now
        user.updated_at = now
        await self.session.commit()
        await self.session.refresh(user)

    async def update_last_login(self, user_id: int) -> None:
        """Обновить время последнего входа"""
        stmt = update(User).where(User.id == user_id).values(
            last_login_at=datetime.now(timezone.utc),
            updated_at=datetime.now(timezone.utc)
        )
        await self.session.execute(stmt)
        await self.session.commit()

    # --- WebAuthn ---

    async def get_by_credential_id(self, credential_id: str) -> Optional[User]:
        stmt = (
            select(User)
            .join(WebAuthnCredential, WebAuthnCredential.user_id == User.id)
            .where(WebAuthnCredential.credential_id == credential_id)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_credentials(self, user_id: int) -> List[WebAuthnCredential]:
        stmt = (
            select(WebAuthnCredential)
            .where(WebAuthnCredential.user_id == user_id)
            .order_by(WebAuthnCredential.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def add_credential(
        self,
        user_id: int,
        credential_id: str,
        public_key: str,
        counter: int,
        transports: List[str],
    ) -> WebAuthnCredential:
        credential = WebAuthnCredential(
            user_id=user_id,
            credential_id=credential_id,
            public_key=public_key,
            counter=counter,
            transports=transports,
            created_at=datetime.now(timezone.utc),
        )
        self.session.add(credential)
        await self.session.commit()
        await self.session.refresh(credential)
        return credential

    async def update_credential_counter(self, credential_id: str, counter: int) -> None:
        stmt = (
            update(WebAuthnCredential)
            .where(WebAuthnCredential.credential_id == credential_id)
            .values(counter=counter)
        )
        await self.session.execute(stmt)
        await self.session.commit()

    async def delete_credential(self, user_id: int, credential_id: str) -> bool:
        stmt = delete(WebAuthnCredential).where(
            WebAuthnCredential.user_id == user_id,
            WebAuthnCredential.credential_id == credential_id,
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount > 0
