"""In-memory crypto/fiat rate store with population tracking."""

from __future__ import annotations

import logging
import math
import time
from dataclasses import asdict, dataclass
from threading import Lock
from typing import Any, Dict, Mapping, Optional

from shared.time_provider import Clock, now_ms

_logger = logging.getLogger(__name__)

DEFAULT_SOURCE = "coingecko"
DEFAULT_STALE_THRESHOLD_MS = 3_600_000


@dataclass(frozen=True)
class RateEntry:
    value: float
    captured_at: int
    source: str = DEFAULT_SOURCE


@dataclass(frozen=True)
class CacheStatus:
    """Point-in-time view of the store."""

    ready: bool
    populated_at: Optional[int]
    is_stale: bool
    crypto_count: int
    fiat_count: int
    error: Optional[str]
    age: Optional[int]

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _as_rate(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    number = float(value)
    if not math.isfinite(number):
        return None
    return number


def crypto_key(coin_id: str, vs_currency: str) -> str:
    return f"{str(coin_id).lower()}_{str(vs_currency).lower()}"


class RateCacheStore:
    """Thread-safe holder for the latest crypto prices and fiat rates.

    Each :meth:`populate` call replaces both mappings wholesale. Crypto keys
    are ``"{coin_id}_{currency}"`` in lowercase; fiat keys are uppercase codes
    and lookups on them are case-sensitive.
    """

    def __init__(self, *, clock: Clock = time.time, source: str = DEFAULT_SOURCE) -> None:
        self._clock = clock
        self._source = source
        self._lock = Lock()
        self._crypto: Dict[str, RateEntry] = {}
        self._fiat: Dict[str, RateEntry] = {}
        self._populated_at: Optional[int] = None
        self._ready = False
        self._last_error: Optional[str] = None

    # Writes ---------------------------------------------------------------
    def populate(
        self,
        crypto_data: Optional[Mapping[str, Mapping[str, Any]]],
        fiat_data: Optional[Mapping[str, Any]],
    ) -> bool:
        """Replace the cached rates; return ``True`` when the store is ready.

        Invalid cells are skipped one by one. A batch without a single valid
        rate is rejected and the previous rates stay in place. Failures never
        raise: an unexpected error leaves the store empty and not ready, with
        ``last_error`` set.
        """

        with self._lock:
            try:
                captured_at = now_ms(self._clock)
                crypto: Dict[str, RateEntry] = {}
                fiat: Dict[str, RateEntry] = {}

                if isinstance(crypto_data, Mapping):
                    for coin_id, prices in crypto_data.items():
                        if not isinstance(prices, Mapping):
                            continue
                        for currency, price in prices.items():
                            value = _as_rate(price)
                            if value is None:
                                continue
                            crypto[crypto_key(coin_id, currency)] = RateEntry(
                                value, captured_at, self._source
                            )

                if isinstance(fiat_data, Mapping):
                    for code, rate in fiat_data.items():
                        value = _as_rate(rate)
                        if value is None:
                            continue
                        fiat[str(code).upper()] = RateEntry(value, captured_at, self._source)

                if not crypto and not fiat:
                    self._last_error = "No valid rates to populate"
                    _logger.warning("Rate cache population produced no valid rates")
                    return False

                self._crypto = crypto
                self._fiat = fiat
                self._populated_at = captured_at
                self._ready = True
                self._last_error = None
            except Exception as exc:
                self._crypto = {}
                self._fiat = {}
                self._ready = False
                self._last_error = str(exc) or exc.__class__.__name__
                _logger.exception("Error populating rate cache")
                return False

            _logger.info(
                "Rate cache populated: %d crypto rates, %d fiat rates",
                len(self._crypto),
                len(self._fiat),
            )
            return True

    def clear(self) -> None:
        with self._lock:
            self._crypto.clear()
            self._fiat.clear()
            self._populated_at = None
            self._ready = False
            self._last_error = None

    # Reads ----------------------------------------------------------------
    def get_crypto_rate(self, coin_id: str, vs_currency: str) -> Optional[float]:
        entry = self.crypto_entry(coin_id, vs_currency)
        return entry.value if entry else None

    def get_fiat_rate(self, code: str) -> Optional[float]:
        entry = self.fiat_entry(code)
        return entry.value if entry else None

    def crypto_entry(self, coin_id: str, vs_currency: str) -> Optional[RateEntry]:
        with self._lock:
            return self._crypto.get(crypto_key(coin_id, vs_currency))

    def fiat_entry(self, code: str) -> Optional[RateEntry]:
        with self._lock:
            return self._fiat.get(code)

    def age(self) -> Optional[int]:
        populated_at = self._populated_at
        if populated_at is None:
            return None
        return max(now_ms(self._clock) - populated_at, 0)

    def is_stale(self, threshold_ms: int = DEFAULT_STALE_THRESHOLD_MS) -> bool:
        age = self.age()
        return age is None or age > threshold_ms

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def populated_at(self) -> Optional[int]:
        return self._populated_at

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    def status(self, stale_threshold_ms: int = DEFAULT_STALE_THRESHOLD_MS) -> CacheStatus:
        with self._lock:
            crypto_count = len(self._crypto)
            fiat_count = len(self._fiat)
            ready = self._ready
            populated_at = self._populated_at
            error = self._last_error
        age = self.age()
        return CacheStatus(
            ready=ready,
            populated_at=populated_at,
            is_stale=age is None or age > stale_threshold_ms,
            crypto_count=crypto_count,
            fiat_count=fiat_count,
            error=error,
            age=age,
        )

    def available_crypto_ids(self) -> list[str]:
        with self._lock:
            keys = list(self._crypto)
        seen: Dict[str, None] = {}
        for key in keys:
            seen.setdefault(key.rsplit("_", 1)[0], None)
        return list(seen)

    def available_fiat_currencies(self) -> list[str]:
        with self._lock:
            return list(self._fiat)


__all__ = ["CacheStatus", "RateCacheStore", "RateEntry", "crypto_key"]
