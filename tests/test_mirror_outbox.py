import asyncio

from sqlalchemy.exc import OperationalError

from app.core.locks import KeyedLock
from app.services.mirror_outbox import MirrorOutbox


def _failing(calls: list, failures: int):
    """Операция, которая падает первые failures раз"""
    async def op():
        calls.append(1)
        if len(calls) <= failures:
            raise OperationalError("UPDATE", {}, Exception("primary down"))
    return op


async def test_successful_write_is_not_queued():
    box = MirrorOutbox()
    calls = []
    assert await box.submit("ok", _failing(calls, 0)) is True
    assert calls == [1]
    assert len(box) == 0


async def test_failed_write_is_replayed_by_drain():
    box = MirrorOutbox(max_attempts=3)
    calls = []
    assert await box.submit("flaky", _failing(calls, 1)) is False
    assert len(box) == 1

    assert await box.drain() == 0
    assert len(calls) == 2


async def test_write_dropped_after_max_attempts():
    box = MirrorOutbox(max_attempts=2)
    calls = []
    await box.submit("broken", _failing(calls, 100))
    assert await box.drain() == 0
    assert len(calls) == 2


async def test_coalesced_writes_keep_latest_state():
    box = MirrorOutbox()
    seen = []

    def writer(value):
        async def op():
            seen.append(value)
            if value != "replayed":
                raise OSError("connection refused")
        return op

    await box.submit("likes v1", writer("v1"), coalesce_key="likes:m1")
    # пока v1 в очереди, v2 не выполняется сразу, а заменяет её
    assert await box.submit("likes v2", writer("v2"), coalesce_key="likes:m1") is False
    assert len(box) == 1
    assert seen == ["v1"]

    box._pending["likes:m1"].op = writer("replayed")
    await box.drain()
    assert seen == ["v1", "replayed"]


async def test_full_queue_drops_new_writes():
    box = MirrorOutbox(max_size=2)
    for i in range(3):
        await box.submit(f"w{i}", _failing([], 100))
    assert len(box) == 2


async def test_worker_retries_in_background():
    box = MirrorOutbox(retry_delay=0.01)
    box.start()
    calls = []
    await box.submit("flaky", _failing(calls, 1))
    for _ in range(100):
        if len(box) == 0:
            break
        await asyncio.sleep(0.01)
    await box.stop()
    assert len(box) == 0
    assert len(calls) == 2


async def test_keyed_lock_serialises_same_key_and_cleans_up():
    locks = KeyedLock()
    order = []

    async def worker(name):
        async with locks.hold("m1"):
            order.append(f"{name}-in")
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))
    assert order in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])
    assert len(locks) == 0


class _Primary:
    """Основное хранилище, которое можно выключить"""

    def __init__(self):
        self.up = True
        self.likes = []
        self.comments = []

    def check(self):
        if not self.up:
            raise OperationalError("UPDATE", {}, Exception("primary down"))

    def set_likes(self, users):
        async def op():
            self.check()
            self.likes = list(users)
        return op

    def push_comment(self, comment_id):
        async def op():
            self.check()
            self.comments.append(comment_id)
        return op

    def pull_comment(self, comment_id):
        async def op():
            self.check()
            self.comments = [c for c in self.comments if c != comment_id]
        return op


async def test_newer_state_is_not_overwritten_by_queued_one():
    box = MirrorOutbox()
    primary = _Primary()

    primary.up = False
    await box.submit("like", primary.set_likes(["alice"]), coalesce_key="likes:m1", scope="m1")
    primary.up = True
    await box.submit("unlike", primary.set_likes([]), coalesce_key="likes:m1", scope="m1")

    assert await box.drain() == 0
    assert primary.likes == []


async def test_writes_for_one_media_keep_their_order():
    box = MirrorOutbox()
    primary = _Primary()

    primary.up = False
    await box.submit("push c1", primary.push_comment("c1"), scope="m1")
    primary.up = True
    assert await box.submit("pull c1", primary.pull_comment("c1"), scope="m1") is False
    # запись по другому медиа не ждёт очередь
    assert await box.submit("push c2", primary.push_comment("c2"), scope="m2") is True

    assert await box.drain() == 0
    assert primary.comments == ["c2"]


async def test_failed_write_blocks_later_writes_for_same_media():
    box = MirrorOutbox(max_attempts=5)
    primary = _Primary()

    primary.up = False
    await box.submit("push c1", primary.push_comment("c1"), scope="m1")
    await box.submit("pull c1", primary.pull_comment("c1"), scope="m1")
    assert await box.drain() == 2

    primary.up = True
    assert await box.drain() == 0
    assert primary.comments == []
