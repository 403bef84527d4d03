import threading
import time

from orderscan.core.cache import FileCache
from orderscan.core.maintenance import CacheMaintenance


def sweeper_threads():
    return [t for t in threading.enumerate() if t.name == "file-cache-maintenance" and t.is_alive()]


def test_start_is_idempotent_across_threads(clock):
    maintenance = CacheMaintenance(FileCache(clock=clock), interval_seconds=3600)
    results = []
    barrier = threading.Barrier(16)

    def call_start():
        barrier.wait()
        results.append(maintenance.start())

    threads = [threading.Thread(target=call_start) for _ in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    try:
        assert results.count(True) == 1
        assert maintenance.is_running
        assert len(sweeper_threads()) == 1
    finally:
        maintenance.stop()
    assert not maintenance.is_running
    assert sweeper_threads() == []


def test_stop_then_start_registers_one_new_sweeper(clock):
    maintenance = CacheMaintenance(FileCache(clock=clock), interval_seconds=3600)
    assert maintenance.start() is True
    maintenance.stop()
    assert maintenance.start() is True
    assert maintenance.start() is False
    try:
        assert len(sweeper_threads()) == 1
    finally:
        maintenance.stop()


def test_stop_without_start_is_noop(clock):
    CacheMaintenance(FileCache(clock=clock)).stop()


def test_periodic_sweep_purges_expired_entries(clock):
    cache = FileCache(ttl_seconds=300, clock=clock)
    cache.insert("a", b"x" * 10, "image/png")
    clock.advance(301)
    maintenance = CacheMaintenance(cache, interval_seconds=0.01)
    maintenance.start()
    try:
        deadline = time.time() + 5
        while "a" in cache and time.time() < deadline:
            time.sleep(0.01)
    finally:
        maintenance.stop()
    assert "a" not in cache
    assert cache.total_bytes == 0


class BrokenCache:
    def __init__(self):
        self.calls = 0

    def sweep_expired(self):
        self.calls += 1
        raise RuntimeError("boom")


def test_sweep_errors_are_contained():
    cache = BrokenCache()
    maintenance = CacheMaintenance(cache, interval_seconds=0.01)
    assert maintenance.run_once() == 0
    maintenance.start()
    try:
        deadline = time.time() + 5
        while cache.calls < 3 and time.time() < deadline:
            time.sleep(0.01)
        assert cache.calls >= 3
        assert maintenance.is_running
    finally:
        maintenance.stop()
