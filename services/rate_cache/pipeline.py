"""One refill cycle of the rate cache from the two upstream feeds."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, Mapping, Optional, Protocol

from shared.errors import (
    AcquisitionCancelledError,
    AcquisitionFailedError,
    AcquisitionInProgressError,
    CacheWriteFailedError,
    ConfigInvalidError,
    UpstreamDataInvalidError,
)
from shared.time_provider import Clock, now_ms

from .config import RateCacheConfig
from .events import EventHooks
from .store import CacheStatus, RateCacheStore

logger = logging.getLogger(__name__)

PIPELINE_EVENTS = ("start", "progress", "complete", "error")


class RatesProvider(Protocol):
    def fetch_crypto_prices_bulk(self, coin_ids, vs_currencies) -> Any: ...
    def fetch_exchange_rates(self, currencies=None) -> Any: ...


class Stage(str, Enum):
    CRYPTO = "crypto"
    FIAT = "fiat"


class AcquisitionPhase(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class StageOutcome:
    """Result of one feed: ``data`` on success, ``error`` otherwise."""

    stage: Stage
    data: Optional[Mapping[str, Any]] = None
    error: Optional[str] = None
    exception: Optional[BaseException] = field(default=None, compare=False, repr=False)

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class CycleResult:
    phase: AcquisitionPhase
    crypto_count: int
    fiat_count: int
    errors: tuple[str, ...]
    attempt: int
    timestamp: int
    cache_status: CacheStatus

    @property
    def success(self) -> bool:
        return self.phase in (AcquisitionPhase.SUCCESS, AcquisitionPhase.PARTIAL_SUCCESS)


class AcquisitionPipeline:
    """Fill a :class:`RateCacheStore` from the crypto and fiat feeds.

    A failing feed does not stop the other one; the cycle only fails when
    both do. Only one cycle may be in flight: a concurrent call raises
    :class:`AcquisitionInProgressError` instead of waiting.
    """

    def __init__(
        self,
        client: RatesProvider,
        store: RateCacheStore,
        config: Optional[RateCacheConfig] = None,
        *,
        clock: Clock = time.time,
    ) -> None:
        self._client = client
        self._store = store
        self._config = config or RateCacheConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._loading = False
        self._attempts = 0
        self._phase = AcquisitionPhase.IDLE
        self._last_result: Optional[CycleResult] = None
        self.hooks = EventHooks(PIPELINE_EVENTS)

    @property
    def store(self) -> RateCacheStore:
        return self._store

    @property
    def client(self) -> RatesProvider:
        return self._client

    @client.setter
    def client(self, value: RatesProvider) -> None:
        self._client = value

    @property
    def config(self) -> RateCacheConfig:
        return self._config

    @config.setter
    def config(self, value: RateCacheConfig) -> None:
        self._config = value

    @property
    def max_retries(self) -> int:
        return self._config.max_retries

    @property
    def phase(self) -> AcquisitionPhase:
        return self._phase

    @property
    def is_loading(self) -> bool:
        return self._loading

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def last_result(self) -> Optional[CycleResult]:
        return self._last_result

    def run(self, abort: Optional[threading.Event] = None) -> CycleResult:
        """Run one cycle and return its result.

        Raises :class:`AcquisitionFailedError` when both feeds fail,
        :class:`CacheWriteFailedError` when the store rejects the data and
        :class:`AcquisitionCancelledError` when ``abort`` is set before the
        write.
        """

        with self._lock:
            if self._loading:
                raise AcquisitionInProgressError("Cache loading is already in progress")
            self._loading = True
            self._attempts += 1
            attempt = self._attempts
            self._phase = AcquisitionPhase.LOADING

        try:
            logger.info("Starting cache load (attempt %d/%d)", attempt, self.max_retries)
            self.hooks.emit("start", {"attempt": attempt})

            crypto_data: Optional[Mapping[str, Any]] = None
            fiat_data: Optional[Mapping[str, Any]] = None
            errors: list[str] = []
            last_exception: Optional[BaseException] = None
            for outcome in self.iter_stages(abort):
                if not outcome.ok:
                    errors.append(outcome.error or "")
                    last_exception = outcome.exception
                elif outcome.stage is Stage.CRYPTO:
                    crypto_data = outcome.data
                else:
                    fiat_data = outcome.data

            if abort is not None and abort.is_set():
                raise AcquisitionCancelledError("Cache loading cancelled before writing")

            if crypto_data is None and fiat_data is None:
                raise AcquisitionFailedError(
                    f"All rate loading failed: {'; '.join(errors)}",
                    errors=errors,
                    attempt=attempt,
                    max_retries=self.max_retries,
                ) from last_exception

            if errors:
                logger.warning("Partial loading success with errors: %s", errors)

            if not self._store.populate(crypto_data or {}, fiat_data or {}):
                status = self._store.status()
                raise CacheWriteFailedError(
                    f"Cache population failed: {status.error or 'Unknown error'}"
                )

            phase = AcquisitionPhase.PARTIAL_SUCCESS if errors else AcquisitionPhase.SUCCESS
            result = CycleResult(
                phase=phase,
                crypto_count=len(crypto_data or {}),
                fiat_count=len(fiat_data or {}),
                errors=tuple(errors),
                attempt=attempt,
                timestamp=now_ms(self._clock),
                cache_status=self._store.status(self._config.stale_threshold_ms),
            )
            with self._lock:
                self._attempts = 0
                self._phase = phase
                self._last_result = result
            logger.info(
                "Cache loading completed: %s (%d crypto, %d fiat)",
                phase.value,
                result.crypto_count,
                result.fiat_count,
            )
            self.hooks.emit("complete", result)
            return result
        except (AcquisitionFailedError, AcquisitionCancelledError, CacheWriteFailedError) as exc:
            cancelled = isinstance(exc, AcquisitionCancelledError)
            with self._lock:
                self._phase = AcquisitionPhase.CANCELLED if cancelled else AcquisitionPhase.FAILED
            payload = {
                "error": str(exc),
                "attempt": attempt,
                "max_retries": self.max_retries,
                "should_retry": attempt < self.max_retries,
                "timestamp": now_ms(self._clock),
            }
            if cancelled:
                logger.info("Cache loading cancelled (attempt %d)", attempt)
            else:
                logger.error("Cache loading failed: %s", payload)
            self.hooks.emit("error", payload)
            raise
        finally:
            with self._lock:
                self._loading = False

    def iter_stages(self, abort: Optional[threading.Event] = None) -> Iterator[StageOutcome]:
        """Yield the crypto then the fiat outcome, emitting progress events."""

        for stage, loader in ((Stage.CRYPTO, self._load_crypto), (Stage.FIAT, self._load_fiat)):
            if abort is not None and abort.is_set():
                return
            self.hooks.emit("progress", {"stage": stage.value, "status": "loading"})
            try:
                data = loader()
            except Exception as exc:
                message = f"Failed to load {stage.value} rates: {exc}"
                logger.warning(message)
                self.hooks.emit(
                    "progress", {"stage": stage.value, "status": "error", "error": message}
                )
                yield StageOutcome(stage, error=message, exception=exc)
                continue
            self.hooks.emit(
                "progress", {"stage": stage.value, "status": "complete", "count": len(data)}
            )
            yield StageOutcome(stage, data=data)

    def _load_crypto(self) -> Dict[str, Dict[str, float]]:
        coin_ids = self._config.coin_ids()
        vs_currencies = self._config.vs_currencies()
        if not coin_ids:
            raise ConfigInvalidError("No supported cryptocurrencies configured")
        if not vs_currencies:
            raise ConfigInvalidError("No supported fiat currencies configured")

        logger.debug(
            "Loading crypto rates for %d coins in %d currencies", len(coin_ids), len(vs_currencies)
        )
        response = self._client.fetch_crypto_prices_bulk(coin_ids, vs_currencies)
        data = {coin: dict(prices) for coin, prices in (response.data or {}).items() if prices}
        if not data:
            raise UpstreamDataInvalidError("No crypto rates received from API")
        return data

    def _load_fiat(self) -> Dict[str, float]:
        supported = self._config.supported_fiats
        response = self._client.fetch_exchange_rates([code.lower() for code in supported])
        values = response.values()
        filtered = {code: values[code] for code in supported if code in values}
        if not filtered:
            raise UpstreamDataInvalidError("No supported fiat rates found in API response")
        return filtered

    def loading_status(self) -> Dict[str, Any]:
        return {
            "is_loading": self._loading,
            "load_attempts": self._attempts,
            "max_retries": self.max_retries,
            "phase": self._phase.value,
            "cache_status": self._store.status(self._config.stale_threshold_ms).as_dict(),
        }

    def reset(self) -> None:
        with self._lock:
            self._loading = False
            self._attempts = 0
            self._phase = AcquisitionPhase.IDLE
            self._last_result = None
        self._store.clear()


__all__ = [
    "AcquisitionPhase",
    "AcquisitionPipeline",
    "CycleResult",
    "RatesProvider",
    "Stage",
    "StageOutcome",
]
