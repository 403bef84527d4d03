import threading

import pytest

from orderscan.core.cache import FileCache, estimate_payload_size, generate_file_id
from orderscan.core.errors import FileTooLargeError


def make_cache(clock, **kwargs):
    params = dict(ttl_seconds=300, max_item_bytes=50, max_total_bytes=100, max_items=100, clock=clock)
    params.update(kwargs)
    return FileCache(**params)


def live_sum(cache):
    return sum(e.size_bytes for e in cache._entries.values())


def test_generate_file_id_unique():
    ids = {generate_file_id() for _ in range(1000)}
    assert len(ids) == 1000
    assert all(i.startswith("file_") and "." not in i for i in ids)


def test_estimate_payload_size_accounts_for_padding():
    assert estimate_payload_size(b"abcd") == 4
    assert estimate_payload_size("YWJj") == 3  # "abc"
    assert estimate_payload_size("YWI=") == 2  # "ab"
    assert estimate_payload_size("YQ==") == 1  # "a"
    assert estimate_payload_size("") == 0


def test_insert_and_lookup(clock):
    cache = make_cache(clock)
    cache.insert("a", b"x" * 10, "application/pdf")
    entry = cache.lookup("a")
    assert entry.payload == b"x" * 10
    assert entry.mime_type == "application/pdf"
    assert cache.total_bytes == 10
    assert cache.lookup("missing") is None


def test_oversize_insert_does_not_mutate(clock):
    cache = make_cache(clock)
    cache.insert("a", b"x" * 10, "image/png")
    with pytest.raises(FileTooLargeError):
        cache.insert("big", b"x" * 51, "image/png")
    assert "big" not in cache
    assert len(cache) == 1
    assert cache.total_bytes == 10


def test_quota_evicts_oldest_first_and_no_more_than_needed(clock):
    cache = make_cache(clock)
    for i, key in enumerate(["a", "b", "c", "d"]):
        cache.insert(key, b"x" * 25, "image/png")
        clock.advance(1)
    assert cache.total_bytes == 100

    cache.insert("e", b"x" * 40, "image/png")
    # 100 + 40 > 100: drop a and b (oldest), keep c and d
    assert "a" not in cache and "b" not in cache
    assert "c" in cache and "d" in cache and "e" in cache
    assert cache.total_bytes == 90
    assert cache.total_bytes == live_sum(cache)


def test_max_items_evicts_oldest(clock):
    cache = make_cache(clock, max_items=2)
    cache.insert("a", b"1", "image/png")
    clock.advance(1)
    cache.insert("b", b"2", "image/png")
    clock.advance(1)
    cache.insert("c", b"3", "image/png")
    assert "a" not in cache
    assert len(cache) == 2


def test_lookup_expires_lazily_and_frees_quota(clock):
    cache = make_cache(clock)
    cache.insert("a", b"x" * 50, "image/png")
    clock.advance(301)
    assert cache.lookup("a") is None
    assert "a" not in cache
    assert cache.total_bytes == 0

    cache.insert("b", b"x" * 50, "image/png")
    assert cache.total_bytes == 50


def test_entry_alive_at_exact_ttl(clock):
    cache = make_cache(clock)
    cache.insert("a", b"x", "image/png")
    clock.advance(300)
    assert cache.lookup("a") is not None


def test_sweep_expired(clock):
    cache = make_cache(clock)
    cache.insert("old", b"x" * 10, "image/png")
    clock.advance(200)
    cache.insert("new", b"x" * 10, "image/png")
    clock.advance(150)
    assert cache.sweep_expired() == 1
    assert "old" not in cache and "new" in cache
    assert cache.total_bytes == 10


def test_evict_oldest_and_double_removal_is_noop(clock):
    cache = make_cache(clock)
    cache.insert("a", b"x" * 10, "image/png")
    clock.advance(1)
    cache.insert("b", b"x" * 20, "image/png")

    evicted = cache.evict_oldest()
    assert evicted.key == "a"
    assert cache.discard("a") is None
    assert cache.total_bytes == 20

    clock.advance(1000)
    assert cache.lookup("b") is None
    assert cache.discard("b") is None
    assert cache.evict_oldest() is None
    assert cache.total_bytes == 0


def test_replacing_a_key_keeps_counter_consistent(clock):
    cache = make_cache(clock)
    cache.insert("a", b"x" * 10, "image/png")
    cache.insert("a", b"x" * 30, "image/png")
    assert len(cache) == 1
    assert cache.total_bytes == 30


def test_counter_matches_live_entries_under_concurrency(clock):
    cache = make_cache(clock, max_item_bytes=10, max_total_bytes=200, max_items=1000)

    def worker(n):
        for i in range(200):
            key = f"{n}-{i}"
            cache.insert(key, b"x" * (i % 10 + 1), "image/png")
            if i % 3 == 0:
                cache.discard(key)
            if i % 7 == 0:
                cache.evict_oldest()

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert cache.total_bytes == live_sum(cache)
    assert cache.total_bytes <= 200


def test_stats(clock):
    cache = make_cache(clock)
    cache.insert("a", "YWJj", "image/png")
    stats = cache.stats()
    assert stats["items"] == 1
    assert stats["total_bytes"] == 3
    assert stats["ttl_seconds"] == 300
