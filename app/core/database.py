# app/core/database.py
import logging
from typing import AsyncGenerator
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, async_sessionmaker, AsyncSession
from app.core.config import settings

logger = logging.getLogger(__name__)


class DatabaseHelper:
    def __init__(
            self,
            url: str,
            echo: bool = True,
            pool_size: int = 5,
            max_overflow: int = 10,
    ):
        engine_kwargs = {"url": url, "echo": echo}
        # У SQLite свой пул, pool_size/max_overflow он не принимает
        if not url.startswith("sqlite"):
            engine_kwargs.update(pool_size=pool_size, max_overflow=max_overflow)
        self.url = url
        self.engine: AsyncEngine = create_async_engine(**engine_kwargs)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            bind=self.engine,
            autoflush=False,
            autocommit=False,
            expire_on_commit=False,
        )
        # Выставляется в probe() при старте; False = работаем только с кэшем
        self.available: bool = False

    async def probe(self) -> bool:
        """Проверка соединения (SELECT 1)"""
        try:
            async with self.session_factory() as session:
                await session.execute(text("SELECT 1"))
            self.available = True
        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"Database probe failed for {self.masked_url}: {e}")
            self.available = False
        return self.available

    async def create_tables(self, metadata) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(metadata.create_all)

    async def drop_tables(self, metadata) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(metadata.drop_all)

    @property
    def masked_url(self) -> str:
        """URL без пароля, для логов"""
        return self.engine.url.render_as_string(hide_password=True)

    async def dispose(self):
        """Закрывает все соединения с базой данных"""
        await self.engine.dispose()

    async def session_getter(self) -> AsyncGenerator[AsyncSession, None]:
        """Генератор для получения сессии БД в FastAPI зависимостях"""
        async with self.session_factory() as session:
            yield session


db_helper = DatabaseHelper(
    url=settings.db.DATABASE_URL,
    echo=settings.db.DB_ECHO,
    pool_size=settings.db.DB_POOL_SIZE,
    max_overflow=settings.db.DB_MAX_OVERFLOW,
)

cache_db_helper = DatabaseHelper(
    url=settings.cache.DATABASE_URL,
    echo=settings.db.DB_ECHO,
)
