import time
import random
import threading


class SimpleRateLimiter:
    def __init__(self, requests_per_sec: float) -> None:
        if requests_per_sec <= 0:
            raise ValueError("requests_per_sec must be > 0")
        self._min_interval = 1.0 / requests_per_sec
        self._last_ts = 0.0
        self._lock = threading.Lock()

    def wait(self) -> None:
        # shared by scan workers; one slot handed out at a time
        with self._lock:
            now = time.time()
            elapsed = now - self._last_ts
            sleep_for = self._min_interval - elapsed
            if sleep_for > 0:
                time.sleep(sleep_for)
            self._last_ts = time.time()


def backoff_delay(attempt: int, base: float = 0.5, cap: float = 8.0) -> float:
    t = min(cap, base * (2 ** attempt))
    return t * (0.7 + random.random() * 0.6)


def backoff_sleep(attempt: int, base: float = 0.5, cap: float = 8.0) -> None:
    time.sleep(backoff_delay(attempt, base, cap))
