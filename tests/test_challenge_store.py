from app.services.challenge_store import ChallengeStore


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_put_get_pop():
    store = ChallengeStore(ttl_seconds=60)
    store.put("1", b"challenge")
    assert store.get("1") == b"challenge"
    assert store.pop("1") == b"challenge"
    assert store.get("1") is None


def test_entries_expire():
    clock = FakeClock()
    store = ChallengeStore(ttl_seconds=60, clock=clock)
    store.put("1", b"a")
    clock.now = 59
    assert store.get("1") == b"a"
    clock.now = 60
    assert store.get("1") is None
    assert len(store) == 0


def test_oldest_entry_evicted_at_capacity():
    store = ChallengeStore(ttl_seconds=60, max_entries=2)
    store.put("a", b"1")
    store.put("b", b"2")
    store.put("c", b"3")
    assert store.get("a") is None
    assert store.get("b") == b"2"
    assert store.get("c") == b"3"


def test_put_replaces_and_refreshes_key():
    clock = FakeClock()
    store = ChallengeStore(ttl_seconds=60, clock=clock)
    store.put("user", b"old")
    clock.now = 30
    store.put("user", b"new")
    clock.now = 70
    assert store.get("user") == b"new"
    assert len(store) == 1
