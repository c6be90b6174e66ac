# app/services/media_service.py
import logging
import os
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Tuple, TypeVar
from app.core.config import MediaConfig, CacheConfig
from app.core.database import DatabaseHelper
from app.core.exceptions import (
    ValidationError,
    UnsupportedMediaTypeError,
    PayloadTooLargeError,
    NotFoundError,
    UpstreamError,
    PrimaryUnavailableError,
    BlobUnavailableError,
)
from app.core.locks import KeyedLock
from app.core.schemas.media import (
    MediaRecord,
    MediaOut,
    MediaKind,
    RecordSource,
    Likes,
    Favorites,
    Comment,
    utcnow,
)
from app.repositories.cache_repository import CacheMediaRepository
from app.repositories.media_repository import PrimaryMediaRepository
from app.services.blob_service import BlobStore, BlobStoreError, BlobInfo
from app.services.mirror_outbox import MirrorOutbox, MIRROR_ERRORS

logger = logging.getLogger(__name__)

T = TypeVar("T")

PHOTO_MIMETYPES = {"image/jpeg", "image/jpg", "image/png", "image/gif"}
VIDEO_MIMETYPES = {
    "video/mp4",
    "video/quicktime",
    "video/mov",
    "video/x-msvideo",
    "video/avi",
    "video/msvideo",
    "video/webm",
}
ALLOWED_EXTENSIONS = {".jpeg", ".jpg", ".png", ".gif", ".mp4", ".mov", ".avi", ".webm"}


@dataclass
class UploadedFile:
    """Файл из multipart-запроса, уже прочитанный в память"""
    filename: str
    content_type: str
    data: bytes


def classify(filename: str, content_type: str) -> MediaKind:
    """Тип медиа по заявленному mimetype; расширение тоже должно быть из списка разрешённых"""
    mimetype = (content_type or "").split(";")[0].strip().lower()
    extension = os.path.splitext(filename or "")[1].lower()
    if extension not in ALLOWED_EXTENSIONS:
        raise UnsupportedMediaTypeError()
    if mimetype in PHOTO_MIMETYPES:
        return MediaKind.PHOTO
    if mimetype in VIDEO_MIMETYPES:
        return MediaKind.VIDEO
    raise UnsupportedMediaTypeError()


def decode_filename(name: str) -> str:
    """Клиенты иногда присылают UTF-8 имя, прочитанное как latin-1"""
    try:
        return name.encode("latin-1").decode("utf-8")
    except UnicodeError:
        return name


class MediaService:
    """
    Фасад над двумя хранилищами медиа.

    Чтение: сначала локальный кэш; если он пуст (или политика не доверяет кэшу),
    читаем основное хранилище и заполняем кэш. Ошибки основного хранилища
    при чтении не пробрасываются. Лайки, избранное и комментарии всегда берутся
    из кэша, в основное хранилище они только зеркалируются.
    """

    def __init__(
        self,
        primary_db: DatabaseHelper,
        cache_db: DatabaseHelper,
        blob_store: BlobStore,
        outbox: MirrorOutbox,
        media_config: MediaConfig,
        cache_config: CacheConfig,
        file_url_prefix: str = "/api/media/file",
    ):
        self.primary_db = primary_db
        self.cache_db = cache_db
        self.blob_store = blob_store
        self.outbox = outbox
        self.media_config = media_config
        self.cache_config = cache_config
        self.file_url_prefix = file_url_prefix.rstrip("/")
        self.locks = KeyedLock()

    @property
    def primary_available(self) -> bool:
        return self.primary_db.available

    @property
    def blob_available(self) -> bool:
        return self.blob_store.available

    @asynccontextmanager
    async def _cache(self) -> AsyncIterator[CacheMediaRepository]:
        async with self.cache_db.session_factory() as session:
            yield CacheMediaRepository(session)

    @asynccontextmanager
    async def _primary(self) -> AsyncIterator[PrimaryMediaRepository]:
        async with self.primary_db.session_factory() as session:
            yield PrimaryMediaRepository(session)

    async def _primary_read(
        self, description: str, fn: Callable[[PrimaryMediaRepository], Awaitable[T]]
    ) -> Optional[T]:
        """Чтение из основного хранилища; None если оно недоступно или упало"""
        if not self.primary_available:
            return None
        try:
            async with self._primary() as repo:
                return await fn(repo)
        except MIRROR_ERRORS as e:
            logger.warning(f"Primary read failed ({description}), serving cache only: {e}")
            return None

    async def _mirror(
        self,
        media_id: str,
        description: str,
        fn: Callable[[PrimaryMediaRepository], Awaitable[bool]],
        coalesce_key: Optional[str] = None,
    ) -> None:
        """Зеркальная запись в основное хранилище (best effort, через outbox)"""
        if not self.primary_available:
            return

        async def op() -> None:
            async with self._primary() as repo:
                found = await fn(repo)
            if found is False:
                logger.info(f"Mirror write skipped, target missing in primary store: {description}")

        await self.outbox.submit(description, op, coalesce_key=coalesce_key, scope=media_id)

    # --- Обогащение ---

    async def _enrich(
        self, repo: CacheMediaRepository, record: MediaRecord, source: RecordSource
    ) -> MediaOut:
        return MediaOut(
            **record.model_dump(),
            likes=await repo.get_likes(record.id),
            favorites=await repo.get_favorites(record.id),
            comments=await repo.get_comments(record.id),
            source=source,
        )

    async def _enrich_all(self, records: List[MediaRecord], source: RecordSource) -> List[MediaOut]:
        async with self._cache() as repo:
            return [await self._enrich(repo, record, source) for record in records]

    # --- Чтение ---

    async def list_media(self, kind: Optional[MediaKind] = None) -> List[MediaOut]:
        async with self._cache() as repo:
            records = await repo.get_all_media(kind)

        source = RecordSource.CACHE
        if not records or not self.cache_config.TRUST_NONEMPTY_CACHE:
            primary_records = await self._primary_read(
                f"list {kind.value if kind else 'all'}", lambda r: r.list_media(kind)
            )
            if primary_records:
                async with self._cache() as repo:
                    for record in primary_records:
                        await repo.save_media(record)
                records = primary_records
                source = RecordSource.PRIMARY

        return await self._enrich_all(records, source)

    async def _find(self, media_id: str) -> Tuple[Optional[MediaRecord], RecordSource]:
        async with self._cache() as repo:
            record = await repo.get_media(media_id)
        if record is not None and self.cache_config.TRUST_NONEMPTY_CACHE:
            return record, RecordSource.CACHE

        primary_record = await self._primary_read(f"get {media_id}", lambda r: r.get_media(media_id))
        if primary_record is not None:
            async with self._cache() as repo:
                await repo.save_media(primary_record)
            return primary_record, RecordSource.PRIMARY
        return record, RecordSource.CACHE

    async def get_media(self, media_id: str) -> MediaOut:
        record, source = await self._find(media_id)
        if record is None:
            raise NotFoundError("Media not found")
        async with self._cache() as repo:
            return await self._enrich(repo, record, source)

    # --- Загрузка ---

    def _validate_batch(self, files: List[UploadedFile]) -> List[MediaKind]:
        if not files:
            raise ValidationError("No files uploaded")
        if len(files) > self.media_config.MAX_FILES:
            raise ValidationError(f"Too many files, at most {self.media_config.MAX_FILES} per upload")
        kinds = []
        for f in files:
            if len(f.data) > self.media_config.MAX_FILE_SIZE:
                raise PayloadTooLargeError(f"File {f.filename} exceeds {self.media_config.MAX_FILE_SIZE} bytes")
            kinds.append(classify(f.filename, f.content_type))
        return kinds

    async def upload(self, files: List[UploadedFile]) -> List[MediaRecord]:
        kinds = self._validate_batch(files)
        uploaded: List[MediaRecord] = []

        for f, kind in zip(files, kinds):
            name = decode_filename(f.filename)

            # Байты должны лечь в blob store раньше, чем где-либо появится ссылающаяся на них запись
            blob: Optional[BlobInfo] = None
            if self.blob_available:
                try:
                    blob = await self.blob_store.upload(
                        f.data, name, f.content_type, metadata={"type": kind.value}
                    )
                except BlobStoreError as e:
                    logger.error(f"Blob upload failed for {name}: {e}")
                    raise UpstreamError("Failed to upload media")

            record = MediaRecord(
                id=str(uuid.uuid4()),
                type=kind,
                name=name,
                size=len(f.data),
                url=f"{self.file_url_prefix}/{blob.file_id}" if blob else None,
                upload_time=utcnow(),
                file_id=blob.file_id if blob else None,
                metadata={"mimetype": f.content_type},
            )

            if self.primary_available:
                try:
                    async with self._primary() as repo:
                        await repo.create_media(record)
                except MIRROR_ERRORS as e:
                    logger.error(f"Primary insert failed for media {record.id}: {e}")
                    if blob:
                        await self.blob_store.delete(blob.file_id)
                    raise UpstreamError("Failed to upload media")

            async with self._cache() as repo:
                await repo.save_media(record)
                await repo.save_likes(record.id, Likes())

            logger.info(f"Uploaded {kind.value} {record.id} ({record.size} bytes)")
            uploaded.append(record)

        return uploaded

    # --- Файлы ---

    async def open_file(self, file_id: str) -> Tuple[BlobInfo, AsyncIterator[bytes]]:
        if not self.blob_available:
            raise BlobUnavailableError()
        try:
            info = await self.blob_store.stat(file_id)
        except BlobStoreError as e:
            logger.error(f"Error getting file {file_id}: {e}")
            raise UpstreamError("Failed to get file")
        if info is None:
            raise NotFoundError("File not found")
        return info, self.blob_store.iter_file(file_id)

    # --- Удаление ---

    async def delete_media(self, media_id: str) -> None:
        async with self.locks.hold(media_id):
            record, _ = await self._find(media_id)
            if record is None:
                raise NotFoundError("Media not found")

            if record.file_id and self.blob_available:
                deleted = await self.blob_store.delete(record.file_id)
                logger.info(f"Blob {record.file_id} delete result: {deleted}")

            await self._mirror(media_id, f"delete media {media_id}", lambda r: r.delete_media(media_id))

            async with self._cache() as repo:
                await repo.delete_media(media_id)
        logger.info(f"Deleted media {media_id}")

    # --- Лайки и избранное ---

    async def toggle_like(self, media_id: str, user: Optional[str]) -> Likes:
        if not user:
            raise ValidationError("User is required")
        async with self.locks.hold(media_id):
            async with self._cache() as repo:
                likes = await repo.get_likes(media_id)
                users = [u for u in likes.users if u != user]
                if len(users) == len(likes.users):
                    users.append(user)
                # count всегда равен числу пользователей
                likes = Likes(count=len(users), users=users)
                await repo.save_likes(media_id, likes)

            await self._mirror(
                media_id,
                f"likes {media_id}",
                lambda r: r.set_likes(media_id, likes),
                coalesce_key=f"likes:{media_id}",
            )
        return likes

    async def get_likes(self, media_id: str) -> Likes:
        async with self._cache() as repo:
            return await repo.get_likes(media_id)

    async def toggle_favorite(self, media_id: str, user: Optional[str]) -> Favorites:
        if not user:
            raise ValidationError("User is required")
        async with self.locks.hold(media_id):
            async with self._cache() as repo:
                favorites = await repo.get_favorites(media_id)
                users = [u for u in favorites.users if u != user]
                if len(users) == len(favorites.users):
                    users.append(user)
                favorites = Favorites(users=users)
                await repo.save_favorites(media_id, favorites)

            await self._mirror(
                media_id,
                f"favorites {media_id}",
                lambda r: r.set_favorites(media_id, favorites),
                coalesce_key=f"favorites:{media_id}",
            )
        return favorites

    async def get_favorites(self, media_id: str) -> Favorites:
        async with self._cache() as repo:
            return await repo.get_favorites(media_id)

    async def user_favorites(self, user: str) -> List[MediaOut]:
        async with self._cache() as repo:
            media_ids = await repo.get_user_favorites(user)

        result = []
        for media_id in media_ids:
            record, source = await self._find(media_id)
            if record is None:
                continue
            async with self._cache() as repo:
                result.append(await self._enrich(repo, record, source))
        return result

    # --- Комментарии ---

    async def add_comment(
        self, media_id: str, content: Optional[str], author: Optional[str], reply_to: Optional[str] = None
    ) -> Comment:
        if not content or not author:
            raise ValidationError("Content and author are required")

        comment = Comment(
            id=str(uuid.uuid4()),
            content=content,
            author=author,
            timestamp=utcnow(),
            reply_to=reply_to or None,
            replies=[],
        )

        async with self.locks.hold(media_id):
            if not reply_to:
                async with self._cache() as repo:
                    await repo.save_comment(media_id, comment)
                await self._mirror(
                    media_id,
                    f"comment {comment.id} on {media_id}",
                    lambda r: r.push_comment(media_id, comment),
                )
                return comment

            async with self._cache() as repo:
                parent = await repo.get_comment(media_id, reply_to)
                if parent is None:
                    if self.media_config.REJECT_ORPHAN_REPLIES:
                        raise NotFoundError("Parent comment not found")
                    logger.info(f"Reply to missing comment {reply_to} on {media_id} ignored")
                    return comment
                replies = [*parent.replies, comment]
                await repo.update_comment_replies(media_id, reply_to, replies)

            await self._mirror(
                media_id,
                f"reply {comment.id} to {reply_to} on {media_id}",
                lambda r: r.push_reply(media_id, reply_to, comment),
            )
        return comment

    async def get_comments(self, media_id: str) -> List[Comment]:
        async with self._cache() as repo:
            return await repo.get_comments(media_id)

    async def delete_comment(self, media_id: str, comment_id: str, parent_id: Optional[str] = None) -> None:
        async with self.locks.hold(media_id):
            if parent_id:
                async with self._cache() as repo:
                    parent = await repo.get_comment(media_id, parent_id)
                    if parent is None:
                        logger.info(f"Delete reply {comment_id}: parent {parent_id} not found on {media_id}")
                        return
                    replies = [r for r in parent.replies if r.id != comment_id]
                    await repo.update_comment_replies(media_id, parent_id, replies)
                await self._mirror(
                    media_id,
                    f"delete reply {comment_id} from {parent_id} on {media_id}",
                    lambda r: r.pull_reply(media_id, parent_id, comment_id),
                )
            else:
                async with self._cache() as repo:
                    await repo.delete_comment(media_id, comment_id)
                await self._mirror(
                    media_id,
                    f"delete comment {comment_id} on {media_id}",
                    lambda r: r.pull_comment(media_id, comment_id),
                )

    # --- Синхронизация ---

    async def sync(self) -> int:
        """Полная пересборка кэша из основного хранилища. Возвращает число медиа"""
        if not self.primary_available:
            raise PrimaryUnavailableError()

        # Сначала доливаем отложенные записи, иначе пересборка вернёт старое состояние
        if len(self.outbox):
            await self.outbox.drain()

        count = 0
        try:
            async with self._primary() as primary, self._cache() as cache:
                await cache.clear()
                async for doc in primary.iter_documents(self.cache_config.SYNC_PAGE_SIZE):
                    record = primary.to_record(doc)
                    likes = primary.likes_of(doc)
                    users = list(dict.fromkeys(likes.users))
                    await cache.save_media(record)
                    await cache.save_likes(record.id, Likes(count=len(users), users=users))
                    await cache.save_favorites(record.id, primary.favorites_of(doc))
                    for comment in primary.comments_of(doc):
                        await cache.save_comment(record.id, comment)
                    count += 1
        except MIRROR_ERRORS as e:
            logger.error(f"Cache sync failed after {count} media: {e}")
            raise UpstreamError("Failed to sync cache")

        logger.info(f"Cache synchronized: {count} media")
        return count
