# app/core/schemas/media.py
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import List, Optional, Any, Dict
from datetime import datetime, timezone
import enum


class MediaKind(str, enum.Enum):
    PHOTO = "photo"
    VIDEO = "video"


class RecordSource(str, enum.Enum):
    """Откуда пришла запись медиа: из кэша или из основного хранилища"""
    CACHE = "cache"
    PRIMARY = "primary"


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite отдаёт naive datetime, приводим к UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# --- Агрегаты ---

class Likes(CamelModel):
    count: int = 0
    users: List[str] = []


class Favorites(CamelModel):
    users: List[str] = []


class Comment(CamelModel):
    id: str
    content: str
    author: str
    timestamp: datetime
    reply_to: Optional[str] = None
    replies: List["Comment"] = []


# --- Медиа ---

class MediaRecord(CamelModel):
    id: str
    type: MediaKind
    name: str
    size: int
    url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    upload_time: datetime
    file_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class MediaOut(MediaRecord):
    """Запись после обогащения лайками, избранным и комментариями"""
    likes: Likes = Field(default_factory=Likes)
    favorites: Favorites = Field(default_factory=Favorites)
    comments: List[Comment] = []
    source: RecordSource = RecordSource.CACHE


# --- Запросы ---

class ToggleRequest(CamelModel):
    user: Optional[str] = None


class CommentCreate(CamelModel):
    content: Optional[str] = None
    author: Optional[str] = None
    reply_to: Optional[str] = None


class MessageResponse(BaseModel):
    message: str


class SyncResponse(BaseModel):
    message: str
    count: int
