# app/api/routes/system.py
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, Response
from app.core.config import settings
from app.core.schemas.auth import CsrfTokenResponse
from app.core.security import generate_csrf_token, cookie_settings
from app.core.utils import get_media_service
from app.services.media_service import MediaService

router = APIRouter(tags=["system"])


@router.get("/csrf-token", response_model=CsrfTokenResponse)
async def get_csrf_token(response: Response):
    """Новый CSRF токен: в теле ответа и в httponly cookie"""
    token = generate_csrf_token()
    response.set_cookie(
        settings.security.CSRF_COOKIE_NAME,
        token,
        **cookie_settings(settings.security.CSRF_MAX_AGE_SECONDS),
    )
    return CsrfTokenResponse(csrfToken=token)


@router.get("/health", summary="Health check")
async def health_check(service: MediaService = Depends(get_media_service)):
    """Состояние хранилищ. Кэш доступен всегда, иначе сервис бы не стартовал"""
    return {
        "status": "ok" if service.primary_available else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "primary": service.primary_available,
        "cache": True,
        "blob": service.blob_available,
    }
