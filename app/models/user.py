# app/models/user.py
from sqlalchemy import Column, Integer, String, DateTime, func, ForeignKey, Boolean, JSON
from sqlalchemy.orm import relationship
import enum
from .base import Base


class UserRole(str, enum.Enum):
    USER = "user"
    ADMIN = "admin"


class AuthProvider(str, enum.Enum):
    LOCAL = "local"
    GOOGLE = "google"
    GITHUB = "github"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(30), unique=True, index=True, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)
    avatar_url = Column(String, nullable=True)
    role = Column(String, default=UserRole.USER.value, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    last_login_at = Column(DateTime(timezone=True), nullable=True)

    # Блокировка после серии неудачных входов
    login_attempts = Column(Integer, default=0, nullable=False)
    lock_until = Column(DateTime(timezone=True), nullable=True)

    provider = Column(String, default=AuthProvider.LOCAL.value, nullable=False)
    provider_id = Column(String, index=True, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    webauthn_credentials = relationship(
        "WebAuthnCredential",
        back_populates="user",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self):
        return f"<User(id={self.id}, username={self.username})>"


class WebAuthnCredential(Base):
    __tablename__ = "webauthn_credentials"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    credential_id = Column(String, unique=True, index=True, nullable=False)  # base64url
    public_key = Column(String, nullable=False)  # base64url
    counter = Column(Integer, default=0, nullable=False)
    transports = Column(JSON, default=list)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="webauthn_credentials")
