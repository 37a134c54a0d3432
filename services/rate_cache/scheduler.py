"""Background refresh of the rate cache with a faster retry cadence after failures."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Protocol

from shared.errors import (
    AcquisitionCancelledError,
    AcquisitionInProgressError,
    SchedulerNotRunningError,
)
from shared.time_provider import Clock, now_ms

from .events import EventHooks
from .pipeline import AcquisitionPipeline, CycleResult
from .store import CacheStatus

logger = logging.getLogger(__name__)

SCHEDULER_EVENTS = ("start", "success", "error", "retry_scheduled")

DEFAULT_REFRESH_INTERVAL_MS = 900_000
DEFAULT_RETRY_DELAY_MS = 300_000
DEFAULT_MAX_RETRIES = 3


class TimerHandle(Protocol):
    def start(self) -> None: ...
    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], TimerHandle]


def daemon_timer(interval_s: float, callback: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(interval_s, callback)
    timer.daemon = True
    return timer


class SchedulerState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"


@dataclass(frozen=True)
class SchedulerConfig:
    refresh_interval_ms: int = DEFAULT_REFRESH_INTERVAL_MS
    retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS
    max_retries: int = DEFAULT_MAX_RETRIES


@dataclass(frozen=True)
class SchedulerStatus:
    state: SchedulerState
    refresh_count: int
    last_refresh_time: Optional[int]
    last_refresh_success: Optional[bool]
    consecutive_failures: int
    next_refresh_in: Optional[int]
    retry_pending: bool
    config: SchedulerConfig
    cache_status: CacheStatus

    @property
    def is_running(self) -> bool:
        return self.state is SchedulerState.RUNNING

    def as_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["state"] = self.state.value
        payload["is_running"] = self.is_running
        return payload


class BackgroundScheduler:
    """Run :class:`AcquisitionPipeline` cycles on a refresh timer.

    After a failed cycle a single retry is armed after ``retry_delay_ms``
    while ``consecutive_failures < max_retries``; beyond that the scheduler
    waits for the regular refresh. Cycle errors are reported through the
    ``error`` hook and never raised to the caller.

    Timers come from ``timer_factory(interval_seconds, callback)`` and are
    tagged with a generation number, so a timer that was replaced or
    cancelled never runs a cycle even if it was already firing.
    """

    def __init__(
        self,
        pipeline: AcquisitionPipeline,
        *,
        refresh_interval_ms: int = DEFAULT_REFRESH_INTERVAL_MS,
        retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        timer_factory: Optional[TimerFactory] = None,
        clock: Clock = time.time,
    ) -> None:
        if pipeline is None:
            raise ValueError("BackgroundScheduler requires an AcquisitionPipeline")
        self._pipeline = pipeline
        self._config = SchedulerConfig(refresh_interval_ms, retry_delay_ms, max_retries)
        self._timer_factory: TimerFactory = timer_factory or daemon_timer
        self._clock = clock
        self._lock = threading.Lock()
        self._state = SchedulerState.STOPPED
        self._abort = threading.Event()
        self._refresh_timer: Optional[TimerHandle] = None
        self._retry_timer: Optional[TimerHandle] = None
        self._generations = {"refresh": 0, "retry": 0}
        self._next_refresh_at: Optional[int] = None
        self._refresh_count = 0
        self._last_refresh_time: Optional[int] = None
        self._last_refresh_success: Optional[bool] = None
        self._consecutive_failures = 0
        self.hooks = EventHooks(SCHEDULER_EVENTS)

    # Introspection ------------------------------------------------------
    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is SchedulerState.RUNNING

    @property
    def config(self) -> SchedulerConfig:
        return self._config

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def refresh_timer_armed(self) -> bool:
        return self._refresh_timer is not None

    @property
    def retry_timer_armed(self) -> bool:
        return self._retry_timer is not None

    # Lifecycle ------------------------------------------------------------
    def start(self, *, run_immediately: bool = False) -> bool:
        """Enter RUNNING; with ``run_immediately`` the first cycle runs in the caller's thread."""

        with self._lock:
            if self._state is SchedulerState.RUNNING:
                logger.info("Background scheduler is already running")
                return False
            self._state = SchedulerState.RUNNING
            self._consecutive_failures = 0
            self._abort = threading.Event()
        logger.info(
            "Background scheduler started with %dms interval", self._config.refresh_interval_ms
        )
        if run_immediately:
            self._run_cycle(forced=False)
        else:
            self._arm_refresh()
        return True

    def stop(self) -> bool:
        with self._lock:
            if self._state is SchedulerState.STOPPED:
                logger.info("Background scheduler is not running")
                return False
            self._state = SchedulerState.STOPPED
            self._abort.set()
            self._cancel_timers_locked()
        logger.info("Background scheduler stopped")
        return True

    def force_refresh(self) -> SchedulerStatus:
        """Cancel pending timers, run one cycle now and re-arm the refresh timer."""

        with self._lock:
            if self._state is not SchedulerState.RUNNING:
                raise SchedulerNotRunningError("Background scheduler is not running")
            self._cancel_timers_locked()
        logger.info("Forcing immediate cache refresh")
        self._run_cycle(forced=True)
        self._arm_refresh()
        return self.status()

    def reset(self) -> None:
        self.stop()
        with self._lock:
            self._refresh_count = 0
            self._last_refresh_time = None
            self._last_refresh_success = None
            self._consecutive_failures = 0

    def update_config(
        self,
        *,
        refresh_interval_ms: Optional[int] = None,
        retry_delay_ms: Optional[int] = None,
        max_retries: Optional[int] = None,
    ) -> bool:
        current = self._config
        refresh = current.refresh_interval_ms
        retry = current.retry_delay_ms
        retries = current.max_retries
        if _positive(refresh_interval_ms):
            refresh = int(refresh_interval_ms)
        if _positive(retry_delay_ms):
            retry = int(retry_delay_ms)
        if isinstance(max_retries, int) and not isinstance(max_retries, bool) and max_retries >= 0:
            retries = max_retries

        updated = SchedulerConfig(refresh, retry, retries)
        if updated == current:
            return False
        self._config = updated
        logger.info("Scheduler configuration updated: %s", updated)
        if self.is_running and refresh != current.refresh_interval_ms and self.refresh_timer_armed:
            self._arm_refresh()
        return True

    # Timers -----------------------------------------------------------------
    def _cancel_timers_locked(self) -> None:
        for kind in self._generations:
            self._generations[kind] += 1
        for handle in (self._refresh_timer, self._retry_timer):
            if handle is not None:
                handle.cancel()
        self._refresh_timer = None
        self._retry_timer = None
        self._next_refresh_at = None

    def _arm_locked(self, kind: str, delay_ms: int) -> TimerHandle:
        current = self._refresh_timer if kind == "refresh" else self._retry_timer
        if current is not None:
            current.cancel()
        self._generations[kind] += 1
        generation = self._generations[kind]
        handle = self._timer_factory(delay_ms / 1000.0, lambda: self._on_timer(kind, generation))
        if kind == "refresh":
            self._refresh_timer = handle
            self._next_refresh_at = now_ms(self._clock) + delay_ms
        else:
            self._retry_timer = handle
        handle.start()
        return handle

    def _arm_refresh(self) -> None:
        with self._lock:
            if self._state is not SchedulerState.RUNNING:
                return
            interval = self._config.refresh_interval_ms
            self._arm_locked("refresh", interval)
        logger.debug("Next refresh scheduled in %dms", interval)

    def _arm_retry(self) -> None:
        with self._lock:
            if self._state is not SchedulerState.RUNNING:
                return
            delay = self._config.retry_delay_ms
            self._arm_locked("retry", delay)
            failures = self._consecutive_failures
        logger.info(
            "Scheduling retry in %dms (failure %d/%d)", delay, failures, self._config.max_retries
        )
        self.hooks.emit(
            "retry_scheduled",
            {
                "retry_delay_ms": delay,
                "consecutive_failures": failures,
                "max_retries": self._config.max_retries,
                "timestamp": now_ms(self._clock),
            },
        )

    def _on_timer(self, kind: str, generation: int) -> None:
        with self._lock:
            if self._state is not SchedulerState.RUNNING or generation != self._generations[kind]:
                return
            if kind == "refresh":
                self._refresh_timer = None
                self._next_refresh_at = None
            else:
                self._retry_timer = None
        self._run_cycle(forced=False)

    # Cycles -----------------------------------------------------------------
    def _run_cycle(self, *, forced: bool) -> Optional[CycleResult]:
        started = now_ms(self._clock)
        with self._lock:
            self._refresh_count += 1
            count = self._refresh_count
            failures = self._consecutive_failures
            abort = self._abort

        logger.info("Starting background cache refresh (attempt %d)", count)
        self.hooks.emit(
            "start",
            {"refresh_count": count, "timestamp": started, "consecutive_failures": failures},
        )

        try:
            result = self._pipeline.run(abort=abort)
        except AcquisitionInProgressError:
            logger.info("Skipping refresh: a cycle is already loading")
            if not forced:
                self._arm_refresh()
            return None
        except AcquisitionCancelledError:
            logger.info("Refresh cancelled because the scheduler stopped")
            return None
        except Exception as exc:
            finished = now_ms(self._clock)
            with self._lock:
                self._last_refresh_time = finished
                self._last_refresh_success = False
                self._consecutive_failures += 1
                failures = self._consecutive_failures
            logger.warning(
                "Background cache refresh failed after %dms: %s", finished - started, exc
            )
            self.hooks.emit(
                "error",
                {
                    "refresh_count": count,
                    "error": str(exc),
                    "exception": exc,
                    "duration": finished - started,
                    "consecutive_failures": failures,
                    "timestamp": finished,
                },
            )
            if not forced:
                self._handle_failure(failures)
            return None

        finished = now_ms(self._clock)
        with self._lock:
            self._last_refresh_time = finished
            self._last_refresh_success = True
            self._consecutive_failures = 0
        logger.info("Background cache refresh completed in %dms", finished - started)
        self.hooks.emit(
            "success",
            {
                "refresh_count": count,
                "duration": finished - started,
                "result": result,
                "timestamp": finished,
            },
        )
        if not forced:
            self._arm_refresh()
        return result

    def _handle_failure(self, failures: int) -> None:
        if not self.is_running:
            return
        if failures < self._config.max_retries:
            self._arm_retry()
        else:
            logger.warning(
                "Maximum retries (%d) reached, waiting for next regular refresh",
                self._config.max_retries,
            )
            self._arm_refresh()

    # Reporting -----------------------------------------------------------
    def time_until_next_refresh_ms(self) -> Optional[int]:
        with self._lock:
            if self._state is not SchedulerState.RUNNING or self._next_refresh_at is None:
                return None
            next_at = self._next_refresh_at
        return max(0, next_at - now_ms(self._clock))

    def status(self) -> SchedulerStatus:
        return SchedulerStatus(
            state=self._state,
            refresh_count=self._refresh_count,
            last_refresh_time=self._last_refresh_time,
            last_refresh_success=self._last_refresh_success,
            consecutive_failures=self._consecutive_failures,
            next_refresh_in=self.time_until_next_refresh_ms(),
            retry_pending=self.retry_timer_armed,
            config=self._config,
            cache_status=self._pipeline.store.status(),
        )

    def stats(self) -> Dict[str, Any]:
        last = self._last_refresh_time
        return {
            "refresh_count": self._refresh_count,
            "consecutive_failures": self._consecutive_failures,
            "last_refresh_time": last,
            "last_refresh_success": self._last_refresh_success,
            "uptime": now_ms(self._clock) - last if last else 0,
            "is_running": self.is_running,
            "config": asdict(self._config),
        }


def _positive(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


__all__ = [
    "BackgroundScheduler",
    "SchedulerConfig",
    "SchedulerState",
    "SchedulerStatus",
    "TimerFactory",
    "TimerHandle",
    "daemon_timer",
]
