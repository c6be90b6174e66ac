# app/models/media.py
from sqlalchemy import Column, String, BigInteger, DateTime, JSON, func
from .base import Base


def _empty_likes() -> dict:
    return {"count": 0, "users": []}


def _empty_favorites() -> dict:
    return {"users": []}


class Media(Base):
    """Документ медиа в основном хранилище: лайки, избранное и дерево комментариев лежат внутри строки"""
    __tablename__ = "media"

    id = Column(String(36), primary_key=True)  # uuid4
    type = Column(String(10), index=True, nullable=False)  # photo / video
    name = Column(String, nullable=False)
    size = Column(BigInteger, nullable=False)
    url = Column(String, nullable=True)
    thumbnail_url = Column(String, nullable=True)
    upload_time = Column(DateTime(timezone=True), index=True, nullable=False)
    file_id = Column(String, nullable=True)  # ключ объекта в blob store
    # "metadata" занято в Declarative API
    meta = Column("metadata", JSON, nullable=True)

    likes = Column(JSON, default=_empty_likes, nullable=False)
    favorites = Column(JSON, default=_empty_favorites, nullable=False)
    comments = Column(JSON, default=list, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<Media(id={self.id}, type={self.type}, name={self.name})>"
