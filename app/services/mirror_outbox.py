# app/services/mirror_outbox.py
import asyncio
import logging
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

MirrorOp = Callable[[], Awaitable[object]]

# Ошибки основного хранилища, после которых запись стоит повторить
MIRROR_ERRORS = (SQLAlchemyError, OSError, asyncio.TimeoutError)


@dataclass
class _PendingWrite:
    description: str
    op: MirrorOp
    scope: Optional[str] = None
    attempts: int = 0


class MirrorOutbox:
    """
    Очередь зеркальных записей в основное хранилище.
    Запись сначала выполняется сразу; при сбое она попадает в ограниченную очередь,
    которую фоновая задача повторяет до max_attempts раз.
    Записи с одним scope (id медиа) применяются строго по порядку: пока по scope
    что-то ждёт в очереди, новые записи встают за ним, а не выполняются сразу.
    """

    def __init__(self, max_size: int = 1000, max_attempts: int = 3, retry_delay: float = 2.0):
        self.max_size = max_size
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self._pending: "OrderedDict[str, _PendingWrite]" = OrderedDict()
        self._wakeup = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._pending)

    def has_pending(self, scope: str) -> bool:
        return any(entry.scope == scope for entry in self._pending.values())

    async def submit(
        self,
        description: str,
        op: MirrorOp,
        coalesce_key: Optional[str] = None,
        scope: Optional[str] = None,
    ) -> bool:
        """
        Выполнить зеркальную запись. True при успехе, False если запись ушла в очередь.
        coalesce_key: для записей, выставляющих состояние целиком (лайки, избранное),
        в очереди остаётся только последнее состояние по ключу.
        """
        key = coalesce_key or f"{description}#{uuid.uuid4().hex}"
        if key in self._pending or (scope is not None and self.has_pending(scope)):
            logger.info(f"Mirror write deferred behind queued writes: {description}")
            self._enqueue(key, _PendingWrite(description, op, scope=scope))
            return False

        try:
            await op()
            return True
        except MIRROR_ERRORS as e:
            logger.warning(f"Mirror write failed ({description}): {e}; queued for retry")
            self._enqueue(key, _PendingWrite(description, op, scope=scope, attempts=1))
            return False

    def _enqueue(self, key: str, entry: _PendingWrite) -> None:
        if key in self._pending:
            # Более новое состояние заменяет старое на его месте в очереди
            self._pending[key] = entry
        elif len(self._pending) >= self.max_size:
            logger.error(f"Mirror outbox full ({self.max_size}), dropping write: {entry.description}")
            return
        else:
            self._pending[key] = entry
        self._wakeup.set()

    async def drain(self) -> int:
        """Один проход по очереди. Возвращает число оставшихся записей"""
        blocked = set()
        for key in list(self._pending.keys()):
            entry = self._pending.get(key)
            if entry is None:
                continue
            if entry.scope is not None and entry.scope in blocked:
                continue
            try:
                await entry.op()
            except MIRROR_ERRORS as e:
                entry.attempts += 1
                if entry.attempts >= self.max_attempts:
                    logger.error(
                        f"Mirror write dropped after {entry.attempts} attempts ({entry.description}): {e}"
                    )
                    # Запись могли заменить более новой, пока мы ждали
                    if self._pending.get(key) is entry:
                        del self._pending[key]
                else:
                    logger.warning(f"Mirror retry {entry.attempts} failed ({entry.description}): {e}")
                    if entry.scope is not None:
                        blocked.add(entry.scope)
                continue
            if self._pending.get(key) is entry:
                del self._pending[key]
            logger.info(f"Mirror write replayed: {entry.description}")
        return len(self._pending)

    async def _worker(self) -> None:
        while True:
            await self._wakeup.wait()
            self._wakeup.clear()
            while self._pending:
                await asyncio.sleep(self.retry_delay)
                await self.drain()

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._worker(), name="mirror-outbox")

    async def stop(self) -> None:
        """Последняя попытка сбросить очередь и остановка фоновой задачи"""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._pending:
            remaining = await self.drain()
            if remaining:
                logger.error(f"Mirror outbox stopped with {remaining} unsent writes")
