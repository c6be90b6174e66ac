import os
import tempfile
import uuid
from typing import AsyncIterator, Dict, Optional

import pytest

from app.core.config import settings

# Оба хранилища на временных SQLite файлах, blob store подменяется в фикстурах.
# Настройки меняем до первого импорта app.core.database: движки создаются при импорте
_TMP_DIR = tempfile.mkdtemp(prefix="personal-media-tests-")
settings.db.DB_URL = f"sqlite+aiosqlite:///{os.path.join(_TMP_DIR, 'primary.db')}"
settings.db.DB_CREATE_TABLES = True
settings.cache.CACHE_URL = f"sqlite+aiosqlite:///{os.path.join(_TMP_DIR, 'cache.db')}"
settings.minio.MINIO_ENABLED = False
settings.security.CSRF_ENABLED = True

import httpx  # noqa: E402

from app.core.database import DatabaseHelper, db_helper, cache_db_helper  # noqa: E402
from app.models import Base, CacheBase  # noqa: E402
from app.services.blob_service import BlobInfo, BlobStoreError  # noqa: E402
from app.services.media_service import MediaService  # noqa: E402
from app.services.mirror_outbox import MirrorOutbox  # noqa: E402


class FakeBlobStore:
    """Blob store в памяти с тем же интерфейсом, что и BlobStore"""

    def __init__(self, available: bool = True):
        self.enabled = True
        self.available = available
        self.objects: Dict[str, tuple] = {}
        self.fail_uploads = False
        self.opened = 0
        self.closed = 0

    async def probe(self) -> bool:
        return self.available

    async def upload(self, data: bytes, filename: str, content_type: str, metadata: Optional[dict] = None) -> BlobInfo:
        if self.fail_uploads:
            raise BlobStoreError("upload refused")
        file_id = uuid.uuid4().hex
        self.objects[file_id] = (data, filename, content_type)
        return BlobInfo(file_id=file_id, filename=filename, content_type=content_type, length=len(data))

    async def stat(self, file_id: str) -> Optional[BlobInfo]:
        if file_id not in self.objects:
            return None
        data, filename, content_type = self.objects[file_id]
        return BlobInfo(file_id=file_id, filename=filename, content_type=content_type, length=len(data))

    async def iter_file(self, file_id: str, chunk_size: int = 1024) -> AsyncIterator[bytes]:
        data = self.objects[file_id][0]
        self.opened += 1
        try:
            for start in range(0, len(data), chunk_size):
                yield data[start:start + chunk_size]
        finally:
            self.closed += 1

    async def delete(self, file_id: str) -> bool:
        return self.objects.pop(file_id, None) is not None


async def _reset(helper: DatabaseHelper, metadata) -> None:
    await helper.drop_tables(metadata)
    await helper.create_tables(metadata)


@pytest.fixture
def blob_store() -> FakeBlobStore:
    return FakeBlobStore()


@pytest.fixture
async def primary_db() -> AsyncIterator[DatabaseHelper]:
    helper = DatabaseHelper(url=f"sqlite+aiosqlite:///{os.path.join(_TMP_DIR, 'svc-primary.db')}", echo=False)
    await _reset(helper, Base.metadata)
    helper.available = True
    yield helper
    await helper.dispose()


@pytest.fixture
async def cache_db() -> AsyncIterator[DatabaseHelper]:
    helper = DatabaseHelper(url=f"sqlite+aiosqlite:///{os.path.join(_TMP_DIR, 'svc-cache.db')}", echo=False)
    await _reset(helper, CacheBase.metadata)
    yield helper
    await helper.dispose()


@pytest.fixture
async def outbox() -> AsyncIterator[MirrorOutbox]:
    box = MirrorOutbox(max_size=100, max_attempts=3, retry_delay=0.01)
    yield box
    await box.stop()


@pytest.fixture
def media_service(primary_db, cache_db, blob_store, outbox) -> MediaService:
    return MediaService(
        primary_db=primary_db,
        cache_db=cache_db,
        blob_store=blob_store,
        outbox=outbox,
        media_config=settings.media.model_copy(),
        cache_config=settings.cache.model_copy(),
    )


@pytest.fixture
async def app_client(blob_store) -> AsyncIterator[httpx.AsyncClient]:
    """Клиент к ASGI приложению с пройденным lifespan и свежими базами"""
    from main import app
    from app.api.routes.auth import limiter

    await db_helper.drop_tables(Base.metadata)
    await cache_db_helper.drop_tables(CacheBase.metadata)
    limiter.enabled = False

    async with app.router.lifespan_context(app):
        app.state.media_service.blob_store = blob_store
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            yield client

    limiter.enabled = True


@pytest.fixture
async def client(app_client) -> httpx.AsyncClient:
    """Клиент с CSRF токеном в cookie и в заголовке по умолчанию"""
    resp = await app_client.get("/api/csrf-token")
    assert resp.status_code == 200
    app_client.headers[settings.security.CSRF_HEADER_NAME] = resp.json()["csrfToken"]
    return app_client
