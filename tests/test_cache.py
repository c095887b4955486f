"""Tests for the in-memory result cache."""

import threading

from code_threat_scoring.cache import MemoryScanCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestMemoryScanCache:
    def test_put_then_get(self):
        cache = MemoryScanCache()
        cache.put("abc", "result", 60)
        assert cache.get("abc") == "result"
        assert cache.get("missing") is None

    def test_expiry(self):
        clock = FakeClock()
        cache = MemoryScanCache(clock=clock)
        cache.put("abc", "result", 60)
        clock.now += 59
        assert cache.get("abc") == "result"
        assert cache.ttl_remaining("abc") == 1
        clock.now += 1
        assert cache.get("abc") is None
        assert len(cache) == 0

    def test_overwrite_resets_ttl(self):
        clock = FakeClock()
        cache = MemoryScanCache(clock=clock)
        cache.put("abc", "old", 10)
        clock.now += 5
        cache.put("abc", "new", 10)
        clock.now += 8
        assert cache.get("abc") == "new"

    def test_clear(self):
        cache = MemoryScanCache()
        cache.put("a", 1, 60)
        cache.put("b", 2, 60)
        cache.clear()
        assert len(cache) == 0

    def test_concurrent_writes_converge(self):
        cache = MemoryScanCache()
        threads = [
            threading.Thread(target=cache.put, args=("same", "value", 60))
            for _ in range(20)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert cache.get("same") == "value"
        assert len(cache) == 1
