"""Request spacing for the price provider."""
from __future__ import annotations

import logging
import time
from threading import Lock
from typing import Callable

logger = logging.getLogger(__name__)


class RequestThrottle:
    """Keep at least ``min_interval`` seconds between consecutive requests."""

    def __init__(
        self,
        *,
        min_interval: float,
        monotonic: Callable[[], float] = time.monotonic,
        sleeper: Callable[[float], None] = time.sleep,
    ) -> None:
        if min_interval < 0:
            raise ValueError("min_interval must be >= 0")
        self._interval = float(min_interval)
        self._monotonic = monotonic
        self._sleep = sleeper
        self._lock = Lock()
        self._last_request: float | None = None

    @property
    def min_interval(self) -> float:
        return self._interval

    def acquire(self) -> float:
        """Block until the caller may send; return the seconds slept."""

        with self._lock:
            now = self._monotonic()
            waited = 0.0
            if self._interval > 0 and self._last_request is not None:
                wait_for = self._last_request + self._interval - now
                if wait_for > 0:
                    logger.debug("Throttling provider request for %.3fs", wait_for)
                    self._sleep(wait_for)
                    waited = wait_for
                    now = self._monotonic()
            self._last_request = now
            return waited

    def reset(self) -> None:
        with self._lock:
            self._last_request = None


__all__ = ["RequestThrottle"]
