# app/core/config.py
from pydantic_settings import BaseSettings
from pydantic import BaseModel, Field, SecretStr
from typing import List, Optional
from functools import lru_cache


class DataBaseConfig(BaseModel):
    """Основное хранилище (PostgreSQL)"""
    DB_HOST: str = Field("localhost", description="Database host")
    DB_PORT: int = Field(5432, description="Database port")
    DB_NAME: str = Field("personal_media", description="Database name")
    DB_USER: str = Field("postgres", description="Database user")
    DB_PASSWORD: SecretStr = Field(SecretStr("postgres"), description="Database password")  # SecretStr скрывает значение в логах
    DB_URL: Optional[str] = Field(None, description="Full database URL, overrides host/port/name")
    DB_ENABLED: bool = Field(True, description="Use the primary store at all")
    DB_CREATE_TABLES: bool = Field(False, description="Create primary tables on startup instead of alembic")
    DB_ECHO: bool = Field(False, description="Enable SQL echo")
    DB_POOL_SIZE: int = Field(5, description="Database pool size")
    DB_MAX_OVERFLOW: int = Field(10, description="Database max overflow")

    @property
    def DATABASE_URL(self) -> str:
        if self.DB_URL:
            return self.DB_URL
        # SecretStr.get_secret_value() чтобы получить реальное значение
        return f"postgresql+asyncpg://{self.DB_USER}:{self.DB_PASSWORD.get_secret_value()}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    naming_convention: dict[str, str] = {
        "ix": "ix_%(column_0_label)s",
        "uq": "uq_%(table_name)s_%(column_0_N_name)s",
        "ck": "ck_%(table_name)s_%(constraint_name)s",
        "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
        "pk": "pk_%(table_name)s",
    }


class CacheConfig(BaseModel):
    """Локальный кэш (SQLite)"""
    SQLITE_DB_PATH: str = Field("cache.db", description="SQLite cache file")
    CACHE_URL: Optional[str] = Field(None, description="Full cache URL, overrides SQLITE_DB_PATH")
    TRUST_NONEMPTY_CACHE: bool = Field(True, description="Serve a non-empty cache result without asking the primary store")
    SYNC_PAGE_SIZE: int = Field(100, description="Primary page size during full sync", ge=1)

    @property
    def DATABASE_URL(self) -> str:
        return self.CACHE_URL or f"sqlite+aiosqlite:///{self.SQLITE_DB_PATH}"


class MinIOConfig(BaseModel):
    MINIO_ENABLED: bool = Field(True, description="Use the blob store")
    MINIO_ENDPOINT: str = Field("localhost:9000", description="MinIO endpoint")
    MINIO_ACCESS_KEY: str = Field("minioadmin", description="MinIO access key")
    MINIO_SECRET_KEY: SecretStr = Field(SecretStr("minioadmin"), description="MinIO secret key")
    MINIO_SECURE: bool = Field(False, description="Use HTTPS for MinIO")
    MINIO_BUCKET_NAME: str = Field("personal-media", description="MinIO bucket name")

    @property
    def minio_url(self) -> str:
        protocol = "https" if self.MINIO_SECURE else "http"
        return f"{protocol}://{self.MINIO_ENDPOINT}"


class SecurityConfig(BaseModel):
    JWT_SECRET_KEY: SecretStr = Field(
        SecretStr("your-secret-key-change-in-production"), description="JWT secret key"
    )
    JWT_ALGORITHM: str = Field("HS256", description="JWT algorithm")
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(60 * 24 * 7, description="Access token expiration")
    MAX_LOGIN_ATTEMPTS: int = Field(5, description="Failed logins before the account is locked")
    LOCK_DURATION_MINUTES: int = Field(120, description="Account lock duration")
    AUTH_RATE_LIMIT: str = Field("5/15minutes", description="slowapi limit for login and password change")
    CSRF_ENABLED: bool = Field(True, description="Require X-CSRF-Token on state-changing requests")
    CSRF_COOKIE_NAME: str = Field("_csrf", description="CSRF cookie name")
    CSRF_HEADER_NAME: str = Field("X-CSRF-Token", description="CSRF header name")
    CSRF_MAX_AGE_SECONDS: int = Field(60 * 60 * 24, description="CSRF token lifetime")
    SECURE_COOKIES: bool = Field(False, description="Mark cookies as Secure")


class OAuthConfig(BaseModel):
    GOOGLE_CLIENT_ID: Optional[str] = None
    GOOGLE_CLIENT_SECRET: Optional[SecretStr] = None
    GITHUB_CLIENT_ID: Optional[str] = None
    GITHUB_CLIENT_SECRET: Optional[SecretStr] = None
    CALLBACK_BASE_URL: str = Field("http://localhost:3001", description="Public base URL of this API")
    FRONTEND_URL: str = Field("http://localhost:3000", description="Where OAuth results are sent")
    STATE_MAX_AGE_SECONDS: int = Field(600, description="OAuth state lifetime")
    HTTP_TIMEOUT: int = Field(15, description="Provider request timeout in seconds")


class WebAuthnConfig(BaseModel):
    RP_ID: str = Field("localhost", description="Relying party id")
    RP_NAME: str = Field("PersonalMedia", description="Relying party name")
    ORIGIN: str = Field("http://localhost:3000", description="Expected client origin")
    CHALLENGE_TTL_SECONDS: int = Field(300, description="Pending challenge lifetime")
    MAX_PENDING_CHALLENGES: int = Field(10_000, description="Pending challenge capacity")


class MediaConfig(BaseModel):
    MAX_FILE_SIZE: int = Field(100 * 1024 * 1024, description="Per-file size ceiling in bytes")
    MAX_FILES: int = Field(10, description="Files per upload request")
    REJECT_ORPHAN_REPLIES: bool = Field(False, description="404 for replies to a missing parent instead of a no-op")
    MIRROR_QUEUE_SIZE: int = Field(1000, description="Pending mirror writes")
    MIRROR_MAX_ATTEMPTS: int = Field(3, description="Retries per failed mirror write")
    MIRROR_RETRY_DELAY: float = Field(2.0, description="Seconds between retry rounds")


class Settings(BaseSettings):
    app_name: str = Field("PersonalMedia", description="Application name")
    debug: bool = Field(False, description="Debug mode")
    api_prefix: str = Field("/api", description="Prefix for all routes")
    cors_origins: List[str] = Field(
        default_factory=lambda: [
            "http://localhost:5173",
            "http://localhost:3000",
        ],
        description="CORS origins"
    )

    db: DataBaseConfig = DataBaseConfig()
    cache: CacheConfig = CacheConfig()
    minio: MinIOConfig = MinIOConfig()
    security: SecurityConfig = SecurityConfig()
    oauth: OAuthConfig = OAuthConfig()
    webauthn: WebAuthnConfig = WebAuthnConfig()
    media: MediaConfig = MediaConfig()

    class Config:
        env_file = ".env"
        env_file_encoding = 'utf-8'
        case_sensitive = False
        env_nested_delimiter = '__'  # Для вложенных объектов


@lru_cache()
def get_settings() -> Settings:
    """Кэшированный экземпляр настроек"""
    return Settings()


settings = get_settings()
