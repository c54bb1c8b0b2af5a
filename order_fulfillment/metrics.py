import threading


class ProcessingCounters:
    """Processed / failed order tallies, owned by the process bootstrap and shared explicitly."""

    def __init__(self):
        self._lock = threading.Lock()
        self._processed = 0
        self._failed = 0

    def increment_processed(self) -> None:
        with self._lock:
            self._processed += 1

    def increment_failed(self) -> None:
        with self._lock:
            self._failed += 1

    @property
    def processed(self) -> int:
        with self._lock:
            return self._processed

    @property
    def failed(self) -> int:
        with self._lock:
            return self._failed

    def snapshot(self) -> dict:
        with self._lock:
            return {"processedOrders": self._processed, "failedOrders": self._failed}
