# main.py
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from datetime import datetime, timezone
from contextlib import asynccontextmanager
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
from app.api.routes import api_router
from app.api.routes.auth import limiter
from app.core.config import settings
from app.core.database import db_helper, cache_db_helper
from app.core.exceptions import AppException, RateLimitError
from app.models import Base, CacheBase
from app.services.blob_service import BlobStore
from app.services.challenge_store import ChallengeStore
from app.services.media_service import MediaService
from app.services.mirror_outbox import MirrorOutbox
from app.services.oauth_service import OAuthService

# Настройка логирования
logging.basicConfig(
    level=logging.INFO if settings.debug else logging.WARNING,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

DEFAULT_JWT_SECRET = "your-secret-key-change-in-production"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Контекстный менеджер для жизненного цикла приложения"""
    # Startup
    logger.info(f"Starting {settings.app_name} in {'DEBUG' if settings.debug else 'PRODUCTION'} mode")

    if settings.security.JWT_SECRET_KEY.get_secret_value() == DEFAULT_JWT_SECRET:
        logger.warning("JWT secret is the built-in default, set SECURITY__JWT_SECRET_KEY in production")

    # Без локального кэша сервис работать не может, поэтому ошибка здесь фатальна
    await cache_db_helper.create_tables(CacheBase.metadata)
    logger.info(f"Cache: {cache_db_helper.masked_url}")

    if settings.db.DB_ENABLED and await db_helper.probe():
        if settings.db.DB_CREATE_TABLES:
            await db_helper.create_tables(Base.metadata)
        logger.info(f"Primary store connected: {db_helper.masked_url}")
    else:
        db_helper.available = False
        logger.warning("Primary store not available, running in cache-only mode")

    blob_store = BlobStore(settings.minio)
    if await blob_store.probe():
        logger.info(f"Blob store connected: {settings.minio.minio_url}/{settings.minio.MINIO_BUCKET_NAME}")
    else:
        logger.warning("Blob store not available, uploads are stored without file bytes")

    outbox = MirrorOutbox(
        max_size=settings.media.MIRROR_QUEUE_SIZE,
        max_attempts=settings.media.MIRROR_MAX_ATTEMPTS,
        retry_delay=settings.media.MIRROR_RETRY_DELAY,
    )
    outbox.start()

    app.state.media_service = MediaService(
        primary_db=db_helper,
        cache_db=cache_db_helper,
        blob_store=blob_store,
        outbox=outbox,
        media_config=settings.media,
        cache_config=settings.cache,
        file_url_prefix=f"{settings.api_prefix}/media/file",
    )
    app.state.challenge_store = ChallengeStore(
        ttl_seconds=settings.webauthn.CHALLENGE_TTL_SECONDS,
        max_entries=settings.webauthn.MAX_PENDING_CHALLENGES,
    )
    app.state.oauth_service = OAuthService(settings.oauth, api_prefix=settings.api_prefix)

    yield

    # Shutdown
    await outbox.stop()
    await db_helper.dispose()
    await cache_db_helper.dispose()
    logger.info("Application shutdown complete")


app = FastAPI(
    title=settings.app_name,
    debug=settings.debug,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# Настройка CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.limiter = limiter

# Подключение роутеров
app.include_router(api_router, prefix=settings.api_prefix)


@app.get("/", summary="Root endpoint", tags=["root"])
async def root():
    """Корневой эндпоинт API"""
    return {
        "message": f"Welcome to {settings.app_name} API",
        "docs": {
            "swagger": "/docs",
            "redoc": "/redoc"
        } if settings.debug else None,
        "environment": "development" if settings.debug else "production",
        "timestamp": _now()
    }


# Глобальный обработчик исключений
@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException):
    """Глобальный обработчик кастомных исключений"""
    logger.warning(f"AppException: {exc.detail} (type: {type(exc).__name__})")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            **exc.extra,
            "detail": exc.detail,
            "error": type(exc).__name__,
            "timestamp": _now()
        }
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Ошибки валидации тела запроса отдаём как 400"""
    messages = [
        f"{'.'.join(str(p) for p in err.get('loc', ()) if p != 'body')}: {err.get('msg')}"
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={
            "detail": "; ".join(messages) or "Validation error",
            "error": "ValidationError",
            "timestamp": _now()
        }
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    client_ip = request.client.host if request.client else "unknown"
    logger.warning(f"Rate limit exceeded for IP: {client_ip} on {request.url.path}")
    return await app_exception_handler(request, RateLimitError("Too many attempts, please try again later"))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.detail,
            "error": "NotFoundError" if exc.status_code == 404 else "HTTPException",
            "timestamp": _now()
        },
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Глобальный обработчик всех исключений"""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "error": "InternalServerError",
            "timestamp": _now(),
            "debug_info": str(exc) if settings.debug else None
        }
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=3001,
        reload=settings.debug,
        log_level="info" if settings.debug else "warning",
        access_log=False  # Логи доступа лучше настраивать через Nginx или подобное
    )
