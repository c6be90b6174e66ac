# app/core/schemas/auth.py
from pydantic import BaseModel, EmailStr, Field, ConfigDict, field_validator
from pydantic.alias_generators import to_camel
from typing import Optional, List, Any, Dict
from datetime import datetime
import re

USERNAME_RE = re.compile(r"^[a-zA-Z0-9_]+$")


def validate_username(value: str) -> str:
    value = value.strip()
    if len(value) < 3:
        raise ValueError("Username must be at least 3 characters long")
    if len(value) > 30:
        raise ValueError("Username must be at most 30 characters long")
    if not USERNAME_RE.match(value):
        raise ValueError("Username may only contain letters, digits and underscores")
    return value


class PasswordComplexity:
    """Проверка сложности пароля"""
    MIN_LENGTH = 8
    MAX_LENGTH = 128

    @classmethod
    def validate(cls, password: str) -> None:
        errors = []
        if len(password) < cls.MIN_LENGTH:
            errors.append(f"Password must be at least {cls.MIN_LENGTH} characters long")
        if len(password) > cls.MAX_LENGTH:
            errors.append(f"Password must be at most {cls.MAX_LENGTH} characters long")
        if errors:
            raise ValueError("; ".join(errors))


class UserCreate(BaseModel):
    username: str = Field(..., description="Public user name")
    email: EmailStr = Field(..., description="User email address")
    password: str = Field(..., description="User password")

    @field_validator('username')
    @classmethod
    def check_username(cls, v):
        return validate_username(v)

    @field_validator('email')
    @classmethod
    def lowercase_email(cls, v):
        return v.lower()

    @field_validator('password')
    @classmethod
    def validate_password(cls, v):
        """Валидация сложности пароля"""
        PasswordComplexity.validate(v)
        return v


class UserLogin(BaseModel):
    email: EmailStr = Field(..., description="User email address")
    password: str = Field(..., description="User password", min_length=1)

    @field_validator('email')
    @classmethod
    def lowercase_email(cls, v):
        return v.lower()


class ProfileUpdate(BaseModel):
    username: Optional[str] = None
    avatar: Optional[str] = None

    @field_validator('username')
    @classmethod
    def check_username(cls, v):
        return validate_username(v) if v else v


class PasswordChange(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    current_password: str = Field(..., min_length=1)
    new_password: str

    @field_validator('new_password')
    @classmethod
    def validate_password(cls, v):
        PasswordComplexity.validate(v)
        return v


class UserResponse(BaseModel):
    """Пользователь без пароля, счётчиков входа и WebAuthn ключей"""
    id: int
    username: str
    email: str
    avatar: Optional[str] = Field(None, validation_alias="avatar_url")
    role: str = "user"
    is_active: bool = True
    provider: str = "local"
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class AuthResponse(BaseModel):
    message: str
    user: UserResponse
    token: str


class MeResponse(BaseModel):
    user: UserResponse


class ProfileResponse(BaseModel):
    message: str
    user: UserResponse


class CsrfTokenResponse(BaseModel):
    csrfToken: str


# --- WebAuthn ---

class WebAuthnRegisterOptionsRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    user_id: int
    username: str
    display_name: Optional[str] = None


class WebAuthnCredentialPayload(BaseModel):
    """Ответ браузера (PublicKeyCredential в JSON) плюс наши поля"""
    model_config = ConfigDict(extra="allow")

    id: str
    rawId: str
    type: str = "public-key"
    response: Dict[str, Any]

    def credential(self) -> Dict[str, Any]:
        data = self.model_dump(exclude={"userId", "tempId"})
        data.setdefault("clientExtensionResults", {})
        return data


class WebAuthnRegisterRequest(WebAuthnCredentialPayload):
    userId: Optional[int] = None


class WebAuthnLoginRequest(WebAuthnCredentialPayload):
    tempId: Optional[str] = None


class WebAuthnCredentialInfo(BaseModel):
    id: str
    createdAt: Optional[datetime] = None


class WebAuthnCredentialsResponse(BaseModel):
    credentials: List[WebAuthnCredentialInfo]


class WebAuthnLoginResponse(BaseModel):
    success: bool = True
    token: str
    user: UserResponse


class SuccessResponse(BaseModel):
    success: bool = True
    message: str
