# app/services/challenge_store.py
import time
from collections import OrderedDict
from typing import Callable, Optional, Tuple


class ChallengeStore:
    """Ожидающие WebAuthn challenge с TTL и ограничением по количеству"""

    def __init__(self, ttl_seconds: int = 300, max_entries: int = 10_000, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[bytes, float]]" = OrderedDict()

    def __len__(self) -> int:
        self._sweep()
        return len(self._entries)

    def _sweep(self) -> None:
        """Удаление истёкших записей (они упорядочены по времени создания)"""
        now = self._clock()
        while self._entries:
            key, (_, expires_at) = next(iter(self._entries.items()))
            if expires_at > now:
                break
            del self._entries[key]

    def put(self, key: str, challenge: bytes) -> None:
        self._sweep()
        self._entries.pop(key, None)
        while len(self._entries) >= self.max_entries:
            self._entries.popitem(last=False)
        self._entries[key] = (challenge, self._clock() + self.ttl_seconds)

    def get(self, key: str) -> Optional[bytes]:
        self._sweep()
        entry = self._entries.get(key)
        return entry[0] if entry else None

    def pop(self, key: str) -> Optional[bytes]:
        self._sweep()
        entry = self._entries.pop(key, None)
        return entry[0] if entry else None
