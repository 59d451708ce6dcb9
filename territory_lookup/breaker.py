"""Consecutive-failure circuit breaker shared by the HTTP clients."""

import logging
import threading
import time

logger = logging.getLogger(__name__)


class CircuitBreaker:
    """
    Disable a service after `threshold` consecutive failures, re-enable it
    `disable_duration` seconds after the last one.

    Counters are shared by bulk worker threads and only change under the lock.
    """

    def __init__(self, name: str, threshold: int = 3, disable_duration: float = 300):
        self.name = name
        self.threshold = threshold
        self.disable_duration = disable_duration
        self.consecutive_failures = 0
        self.disabled = False
        self.last_failure_time = 0.0
        self._lock = threading.Lock()

    @property
    def available(self) -> bool:
        with self._lock:
            if not self.disabled:
                return True
            if time.time() - self.last_failure_time > self.disable_duration:
                self.disabled = False
                self.consecutive_failures = 0
                logger.info(f"{self.name}: circuit breaker reset, re-enabling")
                return True
            return False

    def record_failure(self):
        with self._lock:
            self.consecutive_failures += 1
            self.last_failure_time = time.time()
            if self.consecutive_failures >= self.threshold and not self.disabled:
                self.disabled = True
                logger.warning(
                    f"{self.name}: circuit breaker tripped after "
                    f"{self.consecutive_failures} consecutive failures"
                )

    def record_success(self):
        with self._lock:
            self.consecutive_failures = 0
