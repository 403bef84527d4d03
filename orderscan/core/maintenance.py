import logging
import threading
from typing import Optional

from orderscan.core.cache import FileCache

logger = logging.getLogger(__name__)


class CacheMaintenance:
    """Background sweeper that purges expired file-cache entries.

    ``start`` may be called from every request; only the first call in the
    process (or the first after ``stop``) spawns the sweep thread.
    """

    def __init__(self, cache: FileCache, interval_seconds: float = 60):
        self.cache = cache
        self.interval = interval_seconds
        self._lock = threading.Lock()
        self._started = False
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._started

    def start(self) -> bool:
        with self._lock:
            if self._started:
                return False
            stop_event = threading.Event()
            thread = threading.Thread(
                target=self._loop,
                args=(stop_event,),
                name="file-cache-maintenance",
                daemon=True,
            )
            self._stop_event = stop_event
            self._thread = thread
            self._started = True
            thread.start()
        logger.info(f"File cache maintenance started (every {self.interval}s)")
        return True

    def stop(self, timeout: float = 5.0) -> None:
        with self._lock:
            if not self._started:
                return
            stop_event, thread = self._stop_event, self._thread
            self._started = False
            self._stop_event = None
            self._thread = None
        stop_event.set()
        if thread is not threading.current_thread():
            thread.join(timeout)
        logger.info("File cache maintenance stopped")

    def run_once(self) -> int:
        try:
            return self.cache.sweep_expired()
        except Exception:
            logger.exception("Error during file cache cleanup")
            return 0

    def _loop(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self.interval):
            self.run_once()
