# app/repositories/media_repository.py
from typing import AsyncIterator, List, Optional
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession
from app.models.media import Media
from app.core.schemas.media import MediaRecord, MediaKind, Likes, Favorites, Comment, as_utc


def _comment_doc(comment: Comment) -> dict:
    return comment.model_dump(mode="json", by_alias=True)


class PrimaryMediaRepository:
    """Основное хранилище медиа. Лайки, избранное и комментарии хранятся как JSON-документ в строке медиа"""

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def to_record(media: Media) -> MediaRecord:
        return MediaRecord(
            id=media.id,
            type=media.type,
            name=media.name,
            size=media.size,
            url=media.url,
            thumbnail_url=media.thumbnail_url,
            upload_time=as_utc(media.upload_time),
            file_id=media.file_id,
            metadata=media.meta,
        )

    async def _get(self, media_id: str) -> Optional[Media]:
        stmt = select(Media).where(Media.id == media_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_media(self, kind: Optional[MediaKind] = None) -> List[MediaRecord]:
        stmt = select(Media).order_by(Media.upload_time.desc())
        if kind is not None:
            stmt = stmt.where(Media.type == MediaKind(kind).value)
        result = await self.session.execute(stmt)
        return [self.to_record(m) for m in result.scalars().all()]

    async def get_media(self, media_id: str) -> Optional[MediaRecord]:
        media = await self._get(media_id)
        return self.to_record(media) if media else None

    async def create_media(self, record: MediaRecord) -> None:
        self.session.add(Media(
            id=record.id,
            type=MediaKind(record.type).value,
            name=record.name,
            size=record.size,
            url=record.url,
            thumbnail_url=record.thumbnail_url,
            upload_time=record.upload_time,
            file_id=record.file_id,
            meta=record.metadata,
            likes=Likes().model_dump(),
            favorites=Favorites().model_dump(),
            comments=[],
        ))
        await self.session.commit()

    async def delete_media(self, media_id: str) -> bool:
        result = await self.session.execute(delete(Media).where(Media.id == media_id))
        await self.session.commit()
        return result.rowcount > 0

    async def set_likes(self, media_id: str, likes: Likes) -> bool:
        media = await self._get(media_id)
        if not media:
            return False
        media.likes = likes.model_dump()
        await self.session.commit()
        return True

    async def set_favorites(self, media_id: str, favorites: Favorites) -> bool:
        media = await self._get(media_id)
        if not media:
            return False
        media.favorites = favorites.model_dump()
        await self.session.commit()
        return True

    # JSON-колонки не отслеживают изменения на месте, поэтому всегда присваиваем новый список

    async def push_comment(self, media_id: str, comment: Comment) -> bool:
        media = await self._get(media_id)
        if not media:
            return False
        media.comments = [*(media.comments or []), _comment_doc(comment)]
        await self.session.commit()
        return True

    async def push_reply(self, media_id: str, parent_id: str, reply: Comment) -> bool:
        media = await self._get(media_id)
        if not media:
            return False
        comments = []
        found = False
        for doc in media.comments or []:
            if doc.get("id") == parent_id:
                doc = {**doc, "replies": [*doc.get("replies", []), _comment_doc(reply)]}
                found = True
            comments.append(doc)
        if found:
            media.comments = comments
            await self.session.commit()
        return found

    async def pull_comment(self, media_id: str, comment_id: str) -> bool:
        media = await self._get(media_id)
        if not media:
            return False
        media.comments = [doc for doc in media.comments or [] if doc.get("id") != comment_id]
        await self.session.commit()
        return True

    async def pull_reply(self, media_id: str, parent_id: str, reply_id: str) -> bool:
        media = await self._get(media_id)
        if not media:
            return False
        media.comments = [
            {**doc, "replies": [r for r in doc.get("replies", []) if r.get("id") != reply_id]}
            if doc.get("id") == parent_id else doc
            for doc in media.comments or []
        ]
        await self.session.commit()
        return True

    async def iter_documents(self, page_size: int = 100) -> AsyncIterator[Media]:
        """Постраничный обход всех медиа по id (для полной синхронизации кэша)"""
        last_id: Optional[str] = None
        while True:
            stmt = select(Media).order_by(Media.id).limit(page_size)
            if last_id is not None:
                stmt = stmt.where(Media.id > last_id)
            result = await self.session.execute(stmt)
            page = result.scalars().all()
            if not page:
                break
            for media in page:
                yield media
            last_id = page[-1].id
            if len(page) < page_size:
                break

    @staticmethod
    def likes_of(media: Media) -> Likes:
        return Likes(**(media.likes or {}))

    @staticmethod
    def favorites_of(media: Media) -> Favorites:
        return Favorites(**(media.favorites or {}))

    @staticmethod
    def comments_of(media: Media) -> List[Comment]:
        return [Comment.model_validate(doc) for doc in media.comments or []]
