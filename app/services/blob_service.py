# app/services/blob_service.py
import io
import logging
import uuid
from dataclasses import dataclass
from typing import AsyncIterator, Dict, Optional
from urllib.parse import quote, unquote
from minio import Minio
from minio.error import S3Error
from starlette.concurrency import run_in_threadpool
from urllib3.exceptions import HTTPError as Urllib3HTTPError
from app.core.config import MinIOConfig

logger = logging.getLogger(__name__)

BLOB_ERRORS = (S3Error, Urllib3HTTPError, OSError)
FILENAME_META = "filename"


class BlobStoreError(Exception):
    """Сбой операции blob store"""


@dataclass
class BlobInfo:
    file_id: str
    filename: str
    content_type: str
    length: int


class BlobStore:
    """Хранение байтов файлов в бакете MinIO. Ключ объекта = непрозрачный file_id"""

    def __init__(self, config: MinIOConfig):
        self.bucket = config.MINIO_BUCKET_NAME
        self.enabled = config.MINIO_ENABLED
        self.available = False
        self.client = Minio(
            endpoint=config.MINIO_ENDPOINT,
            access_key=config.MINIO_ACCESS_KEY,
            secret_key=config.MINIO_SECRET_KEY.get_secret_value(),
            secure=config.MINIO_SECURE,
        )

    async def probe(self) -> bool:
        """Проверяет доступность и создаёт бакет при первом запуске"""
        if not self.enabled:
            self.available = False
            return False
        try:
            exists = await run_in_threadpool(self.client.bucket_exists, bucket_name=self.bucket)
            if not exists:
                await run_in_threadpool(self.client.make_bucket, bucket_name=self.bucket)
                logger.info(f"Created bucket {self.bucket}")
            self.available = True
        except BLOB_ERRORS as e:
            logger.warning(f"Blob store unavailable: {e}")
            self.available = False
        return self.available

    async def upload(self, data: bytes, filename: str, content_type: str, metadata: Optional[Dict[str, str]] = None) -> BlobInfo:
        file_id = uuid.uuid4().hex
        # В заголовках S3 метаданных допустим только ASCII
        user_meta = {FILENAME_META: quote(filename)}
        for key, value in (metadata or {}).items():
            user_meta[key] = quote(str(value))
        try:
            await run_in_threadpool(
                self.client.put_object,
                bucket_name=self.bucket,
                object_name=file_id,
                data=io.BytesIO(data),
                length=len(data),
                content_type=content_type,
                metadata=user_meta,
            )
        except BLOB_ERRORS as e:
            raise BlobStoreError(f"Failed to store {filename}: {e}") from e
        return BlobInfo(file_id=file_id, filename=filename, content_type=content_type, length=len(data))

    async def stat(self, file_id: str) -> Optional[BlobInfo]:
        """Метаданные объекта или None, если его нет"""
        try:
            obj = await run_in_threadpool(self.client.stat_object, bucket_name=self.bucket, object_name=file_id)
        except S3Error as e:
            if e.code in ("NoSuchKey", "NoSuchObject", "NoSuchBucket"):
                return None
            raise BlobStoreError(str(e)) from e
        except (Urllib3HTTPError, OSError) as e:
            raise BlobStoreError(str(e)) from e
        meta = obj.metadata or {}
        raw_name = meta.get(f"x-amz-meta-{FILENAME_META}") or file_id
        return BlobInfo(
            file_id=file_id,
            filename=unquote(raw_name),
            content_type=obj.content_type or "application/octet-stream",
            length=obj.size,
        )

    async def iter_file(self, file_id: str, chunk_size: int = 64 * 1024) -> AsyncIterator[bytes]:
        """Поток байтов объекта. Соединение закрывается на любом выходе, включая обрыв клиента"""
        try:
            response = await run_in_threadpool(self.client.get_object, bucket_name=self.bucket, object_name=file_id)
        except BLOB_ERRORS as e:
            raise BlobStoreError(str(e)) from e
        try:
            while True:
                chunk = await run_in_threadpool(response.read, chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            response.close()
            response.release_conn()

    async def delete(self, file_id: str) -> bool:
        try:
            await run_in_threadpool(self.client.remove_object, bucket_name=self.bucket, object_name=file_id)
            return True
        except BLOB_ERRORS as e:
            logger.error(f"Error deleting blob {file_id}: {e}")
            return False
