# app/repositories/cache_repository.py
import json
from typing import List, Optional
from sqlalchemy import select, delete, update
from sqlalchemy.ext.asyncio import AsyncSession
from app.models.cache import MediaCache, LikesCache, CommentCache, FavoritesCache
from app.core.schemas.media import MediaRecord, MediaKind, Likes, Favorites, Comment


def _dump(value) -> str:
    return json.dumps(value, ensure_ascii=False)


def _comment_from_row(row: CommentCache) -> Comment:
    return Comment(
        id=row.id,
        content=row.content,
        author=row.author,
        timestamp=row.timestamp,
        reply_to=row.reply_to,
        replies=json.loads(row.replies_json or "[]"),
    )


def _record_from_row(row: MediaCache) -> MediaRecord:
    return MediaRecord(
        id=row.id,
        type=row.type,
        name=row.name,
        size=row.size,
        url=row.url,
        thumbnail_url=row.thumbnail_url,
        upload_time=row.upload_time,
        file_id=row.file_id,
        metadata=json.loads(row.metadata_json) if row.metadata_json else None,
    )


class CacheMediaRepository:
    """Локальный кэш: денормализованные копии медиа, лайков, комментариев и избранного"""

    def __init__(self, session: AsyncSession):
        self.session = session

    # --- Медиа ---

    async def get_all_media(self, kind: Optional[MediaKind] = None) -> List[MediaRecord]:
        """Все медиа (или только одного типа), новые первыми"""
        stmt = select(MediaCache).order_by(MediaCache.upload_time.desc())
        if kind is not None:
            stmt = stmt.where(MediaCache.type == MediaKind(kind).value)
        result = await self.session.execute(stmt)
        return [_record_from_row(row) for row in result.scalars().all()]

    async def get_media(self, media_id: str) -> Optional[MediaRecord]:
        row = await self.session.get(MediaCache, media_id)
        return _record_from_row(row) if row else None

    async def save_media(self, media: MediaRecord) -> None:
        """Upsert по id"""
        await self.session.merge(MediaCache(
            id=media.id,
            type=MediaKind(media.type).value,
            name=media.name,
            size=media.size,
            url=media.url,
            thumbnail_url=media.thumbnail_url,
            upload_time=media.upload_time.isoformat(),
            file_id=media.file_id,
            metadata_json=_dump(media.metadata) if media.metadata else None,
        ))
        await self.session.commit()

    async def delete_media(self, media_id: str) -> None:
        """Удаляет медиа вместе с лайками, комментариями и избранным"""
        await self.session.execute(delete(MediaCache).where(MediaCache.id == media_id))
        await self.session.execute(delete(LikesCache).where(LikesCache.media_id == media_id))
        await self.session.execute(delete(CommentCache).where(CommentCache.media_id == media_id))
        await self.session.execute(delete(FavoritesCache).where(FavoritesCache.media_id == media_id))
        await self.session.commit()

    # --- Лайки ---

    async def get_likes(self, media_id: str) -> Likes:
        row = await self.session.get(LikesCache, media_id)
        if not row:
            return Likes()
        return Likes(count=row.count, users=json.loads(row.users_json or "[]"))

    async def save_likes(self, media_id: str, likes: Likes) -> None:
        await self.session.merge(LikesCache(
            media_id=media_id,
            count=likes.count,
            users_json=_dump(likes.users),
        ))
        await self.session.commit()

    # --- Комментарии ---

    async def get_comments(self, media_id: str) -> List[Comment]:
        """Комментарии верхнего уровня по возрастанию времени, ответы внутри"""
        stmt = (
            select(CommentCache)
            .where(CommentCache.media_id == media_id)
            .order_by(CommentCache.timestamp.asc())
        )
        result = await self.session.execute(stmt)
        return [_comment_from_row(row) for row in result.scalars().all()]

    async def get_comment(self, media_id: str, comment_id: str) -> Optional[Comment]:
        stmt = select(CommentCache).where(
            CommentCache.id == comment_id,
            CommentCache.media_id == media_id,
        )
        result = await self.session.execute(stmt)
        row = result.scalar_one_or_none()
        return _comment_from_row(row) if row else None

    async def save_comment(self, media_id: str, comment: Comment) -> None:
        await self.session.merge(CommentCache(
            id=comment.id,
            media_id=media_id,
            content=comment.content,
            author=comment.author,
            timestamp=comment.timestamp.isoformat(),
            reply_to=comment.reply_to,
            replies_json=_dump([r.model_dump(mode="json", by_alias=True) for r in comment.replies]),
        ))
        await self.session.commit()

    async def update_comment_replies(self, media_id: str, comment_id: str, replies: List[Comment]) -> None:
        stmt = (
            update(CommentCache)
            .where(CommentCache.id == comment_id, CommentCache.media_id == media_id)
            .values(replies_json=_dump([r.model_dump(mode="json", by_alias=True) for r in replies]))
        )
        await self.session.execute(stmt)
        await self.session.commit()

    async def delete_comment(self, media_id: str, comment_id: str) -> None:
        await self.session.execute(
            delete(CommentCache).where(CommentCache.id == comment_id, CommentCache.media_id == media_id)
        )
        await self.session.commit()

    # --- Избранное ---

    async def get_favorites(self, media_id: str) -> Favorites:
        row = await self.session.get(FavoritesCache, media_id)
        if not row:
            return Favorites()
        return Favorites(users=json.loads(row.users_json or "[]"))

    async def save_favorites(self, media_id: str, favorites: Favorites) -> None:
        await self.session.merge(FavoritesCache(media_id=media_id, users_json=_dump(favorites.users)))
        await self.session.commit()

    async def get_user_favorites(self, user: str) -> List[str]:
        """id медиа, которые пользователь добавил в избранное"""
        result = await self.session.execute(select(FavoritesCache))
        return [
            row.media_id for row in result.scalars().all()
            if user in json.loads(row.users_json or "[]")
        ]

    # --- Синхронизация ---

    async def clear(self) -> None:
        for model in (MediaCache, LikesCache, CommentCache, FavoritesCache):
            await self.session.execute(delete(model))
        await self.session.commit()
