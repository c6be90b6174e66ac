# app/core/security.py
import bcrypt
import hmac
import secrets
from jose import jwt, JWTError, ExpiredSignatureError
from itsdangerous import BadData, URLSafeTimedSerializer
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from app.core.config import settings


def get_password_hash(password: str) -> str:
    """Хеширование пароля с помощью bcrypt"""
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Проверка пароля"""
    try:
        return bcrypt.checkpw(
            plain_password.encode('utf-8'),
            hashed_password.encode('utf-8')
        )
    except ValueError:
        # Битый хеш в базе
        return False


def random_password() -> str:
    """Пароль-заглушка для пользователей OAuth"""
    return secrets.token_urlsafe(24)


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Создание JWT access token"""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(
            minutes=settings.security.JWT_ACCESS_TOKEN_EXPIRE_MINUTES
        )
    to_encode.update({"exp": expire, "type": "access"})

    # Получаем реальное значение секрета
    secret_key = settings.security.JWT_SECRET_KEY.get_secret_value()

    return jwt.encode(
        to_encode,
        secret_key,
        algorithm=settings.security.JWT_ALGORITHM
    )


def decode_token(token: str) -> Dict[str, Any]:
    """Декодирование и валидация JWT токена"""
    try:
        secret_key = settings.security.JWT_SECRET_KEY.get_secret_value()
        payload = jwt.decode(
            token,
            secret_key,
            algorithms=[settings.security.JWT_ALGORITHM]
        )
        return payload
    except ExpiredSignatureError:
        raise ValueError("Token expired")
    except JWTError:
        raise ValueError("Invalid token")


# --- Подписанные токены (CSRF, OAuth state) ---

def _serializer(salt: str) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(
        settings.security.JWT_SECRET_KEY.get_secret_value(), salt=salt
    )


def generate_csrf_token() -> str:
    """Новый CSRF токен (подписанная случайная строка)"""
    return _serializer("personal-media.csrf").dumps(secrets.token_urlsafe(16))


def verify_csrf_token(cookie_token: Optional[str], header_token: Optional[str]) -> bool:
    """Double-submit: токен из cookie и из заголовка совпадают и подпись действительна"""
    if not cookie_token or not header_token:
        return False
    if not hmac.compare_digest(cookie_token, header_token):
        return False
    try:
        _serializer("personal-media.csrf").loads(
            cookie_token, max_age=settings.security.CSRF_MAX_AGE_SECONDS
        )
    except BadData:
        return False
    return True


def sign_oauth_state(payload: Dict[str, Any]) -> str:
    return _serializer("personal-media.oauth").dumps(payload)


def load_oauth_state(state: str) -> Optional[Dict[str, Any]]:
    """Данные из state или None, если подпись неверна или истекла"""
    try:
        return _serializer("personal-media.oauth").loads(
            state, max_age=settings.oauth.STATE_MAX_AGE_SECONDS
        )
    except BadData:
        return None


def cookie_settings(max_age: int) -> Dict[str, Any]:
    return {
        "httponly": True,
        "samesite": "strict",
        "secure": settings.security.SECURE_COOKIES,
        "max_age": max_age,
        "path": "/",
    }
