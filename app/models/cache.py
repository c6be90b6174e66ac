# app/models/cache.py
from sqlalchemy import Column, Integer, String, Text, BigInteger
from .base import CacheBase


class MediaCache(CacheBase):
    __tablename__ = "media_cache"

    id = Column(String, primary_key=True)
    type = Column(String, index=True, nullable=False)
    name = Column(String, nullable=False)
    size = Column(BigInteger, nullable=False)
    url = Column(String, nullable=True)
    thumbnail_url = Column(String, nullable=True)
    upload_time = Column(String, nullable=False)  # ISO-8601
    file_id = Column(String, nullable=True)
    metadata_json = Column(Text, nullable=True)


class LikesCache(CacheBase):
    __tablename__ = "likes_cache"

    media_id = Column(String, primary_key=True)
    count = Column(Integer, default=0, nullable=False)
    users_json = Column(Text, default="[]", nullable=False)


class CommentCache(CacheBase):
    __tablename__ = "comments_cache"

    id = Column(String, primary_key=True)
    media_id = Column(String, index=True, nullable=False)
    content = Column(Text, nullable=False)
    author = Column(String, nullable=False)
    timestamp = Column(String, nullable=False)  # ISO-8601
    reply_to = Column(String, nullable=True)
    replies_json = Column(Text, default="[]", nullable=False)


class FavoritesCache(CacheBase):
    __tablename__ = "favorites_cache"

    media_id = Column(String, primary_key=True)
    users_json = Column(Text, default="[]", nullable=False)
