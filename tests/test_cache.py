import pytest

from balancer_apr.cache import MISSING, TTLCache


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_entries_expire():
    clock = FakeClock()
    cache = TTLCache(max_entries=10, ttl_seconds=60, clock=clock)
    cache.set("k", 1)
    clock.now = 59
    assert cache.get("k") == 1
    clock.now = 60
    assert cache.get("k") is MISSING
    assert len(cache) == 0


def test_least_recently_used_entry_is_evicted():
    cache = TTLCache(max_entries=2, ttl_seconds=60, clock=FakeClock())
    cache.set("a", 1)
    cache.set("b", 2)
    cache.get("a")
    cache.set("c", 3)
    assert cache.get("b") is MISSING
    assert cache.get("a") == 1
    assert cache.get("c") == 3


def test_get_or_compute():
    cache = TTLCache(clock=FakeClock())
    calls = []

    def compute():
        calls.append(1)
        return {"value": 1}

    assert cache.get_or_compute("k", compute) == {"value": 1}
    assert cache.get_or_compute("k", compute) == {"value": 1}
    assert len(calls) == 1


def test_none_results_are_not_cached():
    cache = TTLCache(clock=FakeClock())
    assert cache.get_or_compute("k", lambda: None) is None
    assert cache.get("k") is MISSING


def test_invalid_size():
    with pytest.raises(ValueError):
        TTLCache(max_entries=0)
