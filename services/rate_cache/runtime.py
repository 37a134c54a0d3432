"""Wire store, client, monitor, pipeline and scheduler into one rate cache runtime."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

import requests

from infrastructure.coingecko.client import CoinGeckoClient
from shared.errors import AcquisitionInProgressError, ConfigInvalidError
from shared.time_provider import Clock, now_ms

from .config import RateCacheConfig
from .error_journal import ErrorJournal, ErrorReport
from .freshness import DetailedStatus, FreshnessMonitor
from .pipeline import AcquisitionPipeline, RatesProvider
from .scheduler import BackgroundScheduler, SchedulerStatus, TimerFactory
from .storage import SettingsStore
from .store import CacheStatus, RateCacheStore

logger = logging.getLogger(__name__)


class RateCacheRuntime:
    """Own one independent rate cache and its background refresh.

    Every collaborator is built here (or injected) and passed by reference;
    several runtimes can coexist in the same process.
    """

    def __init__(
        self,
        config: Optional[RateCacheConfig] = None,
        *,
        client: Optional[RatesProvider] = None,
        session: Optional[requests.Session] = None,
        user_agent: Optional[str] = None,
        timer_factory: Optional[TimerFactory] = None,
        clock: Clock = time.time,
        monotonic: Callable[[], float] = time.monotonic,
        sleeper: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config or RateCacheConfig()
        self._clock = clock
        self._session = session
        self._user_agent = user_agent
        self._monotonic = monotonic
        self._sleeper = sleeper
        self._owns_client = client is None
        self._client: RatesProvider = client or self._build_client(self._config)

        self._store = RateCacheStore(clock=clock)
        self._monitor = FreshnessMonitor(
            self._store,
            thresholds=self._config.thresholds(),
            max_history=self._config.history_size,
            clock=clock,
        )
        self._journal = ErrorJournal(clock=clock)
        self._pipeline = AcquisitionPipeline(self._client, self._store, self._config, clock=clock)
        self._scheduler = BackgroundScheduler(
            self._pipeline,
            refresh_interval_ms=self._config.refresh_interval_ms,
            retry_delay_ms=self._config.retry_interval_ms,
            max_retries=self._config.max_retries,
            timer_factory=timer_factory,
            clock=clock,
        )

        self._lock = threading.Lock()
        self._initialized = False
        self._initializing = False
        self._initialization_error: Optional[str] = None
        self._last_report: Optional[ErrorReport] = None
        self._phase = "startup"

        self._scheduler.hooks.register("success", self._on_refresh_success)
        self._scheduler.hooks.register("error", self._on_refresh_error)

    @classmethod
    def from_settings(
        cls, settings_store: Optional[SettingsStore] = None, **kwargs: Any
    ) -> "RateCacheRuntime":
        from shared.config import settings

        kwargs.setdefault("user_agent", settings.USER_AGENT)
        config = RateCacheConfig.from_settings(settings)
        if settings_store is not None:
            config = RateCacheConfig.load(settings_store, config)
        return cls(config, **kwargs)

    def _build_client(self, config: RateCacheConfig) -> CoinGeckoClient:
        return CoinGeckoClient(
            config.api_key,
            base_url=config.base_url,
            session=self._session,
            user_agent=self._user_agent,
            timeout=config.timeout,
            monotonic=self._monotonic,
            sleeper=self._sleeper,
            clock=self._clock,
        )

    # Accessors ------------------------------------------------------------
    @property
    def config(self) -> RateCacheConfig:
        return self._config

    @property
    def pipeline(self) -> AcquisitionPipeline:
        return self._pipeline

    @property
    def scheduler(self) -> BackgroundScheduler:
        return self._scheduler

    @property
    def journal(self) -> ErrorJournal:
        return self._journal

    @property
    def last_error_report(self) -> Optional[ErrorReport]:
        return self._last_report

    def get_cache_manager(self) -> RateCacheStore:
        return self._store

    def get_status_monitor(self) -> FreshnessMonitor:
        return self._monitor

    # Lifecycle ------------------------------------------------------------
    def initialize(self) -> Dict[str, Any]:
        """Validate the config, start the scheduler and load the cache once.

        A failed first load is not raised: the scheduler arms its retry timer
        and the failure shows up in :meth:`initialization_status`.
        """

        with self._lock:
            if self._initializing:
                raise AcquisitionInProgressError("Initialization already in progress")
            if self._initialized:
                logger.info("Rate cache already initialized")
                return self.initialization_status()
            self._initializing = True
            self._initialization_error = None
            self._phase = "startup"

        try:
            try:
                self._config.ensure_valid()
            except ConfigInvalidError as exc:
                self._last_report = self._journal.configuration_error(exc.errors or [str(exc)])
                self._initialization_error = str(exc)
                logger.error("Rate cache initialization failed: %s", exc.errors or exc)
                raise

            if not self._config.api_key:
                logger.info("No API key configured, using the CoinGecko free tier")
            self._scheduler.start(run_immediately=True)
            with self._lock:
                self._initialized = True
                self._phase = "refresh"
        finally:
            with self._lock:
                self._initializing = False

        status = self.initialization_status()
        logger.info("Rate cache initialized: %s", status["cache_status"])
        return status

    def shutdown(self) -> None:
        self._scheduler.stop()
        if self._owns_client:
            close = getattr(self._client, "close", None)
            if callable(close):
                close()
        with self._lock:
            self._initialized = False
        logger.info("Rate cache runtime shut down")

    def force_refresh(self) -> SchedulerStatus:
        previous = self._phase
        self._phase = "manual"
        try:
            return self._scheduler.force_refresh()
        finally:
            self._phase = previous

    def save_api_key(self, settings_store: SettingsStore, api_key: Optional[str]) -> RateCacheConfig:
        """Persist ``api_key`` and rebuild the provider client with it."""

        updated = self._config.save(settings_store, {"api_key": api_key})
        self._apply_config(updated)
        return updated

    def _apply_config(self, config: RateCacheConfig) -> None:
        self._config = config
        self._pipeline.config = config
        self._monitor.update_thresholds(
            stale_ms=config.stale_threshold_ms,
            very_stale_ms=config.very_stale_threshold_ms,
            critical_ms=config.critical_stale_threshold_ms,
        )
        self._scheduler.update_config(
            refresh_interval_ms=config.refresh_interval_ms,
            retry_delay_ms=config.retry_interval_ms,
            max_retries=config.max_retries,
        )
        if self._owns_client:
            old = self._client
            self._client = self._build_client(config)
            self._pipeline.client = self._client
            close = getattr(old, "close", None)
            if callable(close):
                close()

    # Status ---------------------------------------------------------------
    def status(self) -> CacheStatus:
        return self._store.status(self._config.stale_threshold_ms)

    def get_detailed_status(self) -> DetailedStatus:
        return self._monitor.get_detailed_status()

    def initialization_status(self) -> Dict[str, Any]:
        cache_status = self.status()
        return {
            "initialized": self._initialized,
            "initializing": self._initializing,
            "cache_loaded": cache_status.ready,
            "error": self._initialization_error,
            "last_error": self._last_report.as_dict() if self._last_report else None,
            "cache_status": cache_status.as_dict(),
            "scheduler": self._scheduler.status().as_dict(),
            "offline": self._journal.is_offline,
            "timestamp": now_ms(self._clock),
        }

    # Scheduler observers -------------------------------------------------
    def _on_refresh_success(self, payload: Dict[str, Any]) -> None:
        self._journal.mark_online()
        self._last_report = None
        self._monitor.record_snapshot()

    def _on_refresh_error(self, payload: Dict[str, Any]) -> None:
        if self._phase == "startup":
            self._initialization_error = payload.get("error")
        exc = payload.get("exception")
        if isinstance(exc, BaseException):
            self._last_report = self._journal.describe(
                exc,
                phase=self._phase,
                has_cache=self._store.ready,
                api_key=self._config.api_key,
            )
        self._monitor.get_detailed_status()


__all__ = ["RateCacheRuntime"]
