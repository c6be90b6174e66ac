# app/models/base.py
from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase
from app.core.config import settings


class Base(DeclarativeBase):
    """Модели основного хранилища"""
    metadata = MetaData(naming_convention=settings.db.naming_convention)


class CacheBase(DeclarativeBase):
    """Модели локального кэша (SQLite), отдельные метаданные"""
    metadata = MetaData(naming_convention=settings.db.naming_convention)
