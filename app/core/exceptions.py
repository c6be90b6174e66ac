# app/core/exceptions.py
from typing import Any, Dict, Optional
from fastapi import status


class AppException(Exception):
    """Базовое исключение для приложения"""
    def __init__(self, status_code: int, detail: str, extra: Optional[Dict[str, Any]] = None):
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail
        self.extra = extra or {}


class ValidationError(AppException):
    """Ошибка валидации данных"""
    def __init__(self, detail: str = "Validation error"):
        super().__init__(status.HTTP_400_BAD_REQUEST, detail)


class UnsupportedMediaTypeError(ValidationError):
    """Файл не является разрешённым фото или видео"""
    def __init__(self, detail: str = "Only images and videos are allowed"):
        super().__init__(detail)


class PayloadTooLargeError(AppException):
    def __init__(self, detail: str = "File too large"):
        super().__init__(status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail)


class AuthenticationError(AppException):
    """Ошибка аутентификации"""
    def __init__(self, detail: str = "Authentication failed", extra: Optional[Dict[str, Any]] = None):
        super().__init__(status.HTTP_401_UNAUTHORIZED, detail, extra)


class AuthorizationError(AppException):
    """Ошибка авторизации (неактивный аккаунт, неверный CSRF)"""
    def __init__(self, detail: str = "Not authorized"):
        super().__init__(status.HTTP_403_FORBIDDEN, detail)


class NotFoundError(AppException):
    """Ресурс не найден"""
    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status.HTTP_404_NOT_FOUND, detail)


class ConflictError(AppException):
    """Дубликат username/email"""
    def __init__(self, detail: str = "Resource already exists"):
        super().__init__(status.HTTP_409_CONFLICT, detail)


class LockedError(AppException):
    """Аккаунт временно заблокирован"""
    def __init__(self, detail: str = "Account is locked"):
        super().__init__(status.HTTP_423_LOCKED, detail)


class RateLimitError(AppException):
    """Ошибка превышения лимита запросов"""
    def __init__(self, detail: str = "Too many requests"):
        super().__init__(status.HTTP_429_TOO_MANY_REQUESTS, detail)


class UpstreamError(AppException):
    """Сбой записи в основное хранилище или blob store"""
    def __init__(self, detail: str = "Upstream storage failure"):
        super().__init__(status.HTTP_500_INTERNAL_SERVER_ERROR, detail)


class PrimaryUnavailableError(AppException):
    """Основное хранилище недоступно"""
    def __init__(self, detail: str = "Primary store not available"):
        super().__init__(status.HTTP_503_SERVICE_UNAVAILABLE, detail)


class BlobUnavailableError(AppException):
    def __init__(self, detail: str = "Blob store not available"):
        super().__init__(status.HTTP_503_SERVICE_UNAVAILABLE, detail)
