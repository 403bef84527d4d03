from prometheus_client import Counter, Gauge, Histogram

REQUEST_COUNT = Counter("http_requests_total", "Total HTTP requests", ["method", "path", "status"])
REQUEST_LATENCY = Histogram("http_request_duration_seconds", "Request latency", ["path"])

FILE_CACHE_EVICTIONS = Counter(
    "file_cache_evictions_total", "Entries removed from the file cache", ["reason"]
)
FILE_CACHE_ITEMS = Gauge("file_cache_items", "Live entries in the file cache")
FILE_CACHE_BYTES = Gauge("file_cache_bytes", "Approximate bytes held by the file cache")

FILE_TOKEN_REJECTIONS = Counter(
    "file_token_rejections_total", "fileId tokens rejected on redemption", ["reason"]
)


def track_file_cache(cache) -> None:
    """Point the cache gauges at ``cache``; read live on every scrape.

    The gauges are process-wide, so they follow the cache of the app created
    last. A deployment runs one app per process.
    """
    FILE_CACHE_ITEMS.set_function(lambda: len(cache))
    FILE_CACHE_BYTES.set_function(lambda: cache.total_bytes)
