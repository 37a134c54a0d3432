"""HTTP client for the CoinGecko price API.

The client centralizes authentication, throttling and error classification so
the acquisition pipeline only deals with validated numbers. The provider has
no fiat cross-rate endpoint, so fiat rates are derived from a single pivot
asset priced in every supported currency.
"""

from __future__ import annotations

import json
import logging
import math
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Sequence

import requests

from infrastructure.http.session import build_session
from shared.errors import (
    ConfigInvalidError,
    UpstreamAuthError,
    UpstreamDataInvalidError,
    UpstreamError,
    UpstreamForbiddenError,
    UpstreamNetworkError,
    UpstreamRateLimitedError,
    UpstreamUnavailableError,
)

from .throttle import RequestThrottle

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.coingecko.com/api/v3"
SIMPLE_PRICE_ENDPOINT = "simple/price"
API_KEY_PARAM = "x_cg_demo_api_key"

PIVOT_COIN_ID = "bitcoin"
PIVOT_CURRENCY = "usd"

# Free tier is stricter than keyed access.
RATE_LIMIT_DELAY_WITH_KEY = 1.0
RATE_LIMIT_DELAY_WITHOUT_KEY = 3.0

DEFAULT_FIAT_CURRENCIES: tuple[str, ...] = (
    "usd", "eur", "gbp", "jpy", "aud", "cad", "chf", "cny", "sek", "nzd", "mxn",
    "sgd", "hkd", "nok", "krw", "try", "rub", "inr", "brl", "zar", "bgn",
)

_COIN_ID_PATTERN = re.compile(r"^[a-z0-9-]+$")
_CURRENCY_PATTERN = re.compile(r"^[a-z]{2,5}$")
_API_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def _as_price(value: Any) -> Optional[float]:
    """Return ``value`` as a finite non-negative float, or ``None``."""

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    number = float(value)
    if not math.isfinite(number) or number < 0:
        return None
    return number


@dataclass(frozen=True)
class RequestPlan:
    """Normalised ids/currencies for one bulk request."""

    coin_ids: tuple[str, ...]
    vs_currencies: tuple[str, ...]
    original_coin_count: int
    original_currency_count: int

    @property
    def optimized_coin_count(self) -> int:
        return len(self.coin_ids)

    @property
    def optimized_currency_count(self) -> int:
        return len(self.vs_currencies)


@dataclass(frozen=True)
class BulkPriceResult:
    """Parsed bulk price payload: ``data[coin_id][currency] -> price``."""

    data: Dict[str, Dict[str, float]]
    requested_coins: int
    requested_currencies: int
    missing_coins: tuple[str, ...] = ()
    missing_prices: tuple[str, ...] = ()
    timestamp: int = 0

    @property
    def received_coins(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class FiatRate:
    value: float
    name: str
    unit: str
    type: str = "fiat"


@dataclass(frozen=True)
class ExchangeRates:
    """Fiat rates expressed as units of currency per one unit of the pivot currency."""

    rates: Dict[str, FiatRate]
    pivot_coin: str = PIVOT_COIN_ID
    pivot_currency: str = PIVOT_CURRENCY
    invalid_rates: tuple[str, ...] = ()
    timestamp: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)

    def values(self) -> Dict[str, float]:
        return {code: rate.value for code, rate in self.rates.items()}


class CoinGeckoClient:
    """Dedicated HTTP client for the CoinGecko API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        base_url: str = DEFAULT_BASE_URL,
        session: Optional[requests.Session] = None,
        user_agent: Optional[str] = None,
        timeout: float = 15.0,
        rate_limit_delay: Optional[float] = None,
        monotonic: Callable[[], float] = time.monotonic,
        sleeper: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._api_key = (api_key or "").strip() or None
        self._base_url = base_url.rstrip("/")
        self._owns_session = session is None
        self._session = session or build_session(
            user_agent or "RateGlance/1.0", timeout=timeout
        )
        if rate_limit_delay is None:
            rate_limit_delay = (
                RATE_LIMIT_DELAY_WITH_KEY if self._api_key else RATE_LIMIT_DELAY_WITHOUT_KEY
            )
        self._throttle = RequestThrottle(
            min_interval=rate_limit_delay, monotonic=monotonic, sleeper=sleeper
        )
        self._clock = clock
        self._request_count = 0
        self._last_request_time: Optional[int] = None

    # Public API -----------------------------------------------------------
    @property
    def has_api_key(self) -> bool:
        return self._api_key is not None

    @property
    def rate_limit_delay(self) -> float:
        return self._throttle.min_interval

    def fetch_crypto_prices(
        self, coin_ids: Sequence[str] | str, vs_currencies: Sequence[str] | str
    ) -> Mapping[str, Any]:
        """Return the raw ``simple/price`` payload for the given ids and currencies."""

        ids = coin_ids if isinstance(coin_ids, str) else ",".join(coin_ids)
        currencies = vs_currencies if isinstance(vs_currencies, str) else ",".join(vs_currencies)
        payload = self.make_request(
            SIMPLE_PRICE_ENDPOINT,
            {
                "ids": ids,
                "vs_currencies": currencies,
                "include_24hr_change": "false",
                "include_market_cap": "false",
                "include_24hr_vol": "false",
            },
        )
        logger.debug("Fetched crypto prices for %d coins", len(ids.split(",")))
        return payload

    def fetch_crypto_prices_bulk(
        self, coin_ids: Iterable[str], vs_currencies: Iterable[str]
    ) -> BulkPriceResult:
        """Fetch the whole ``coins x currencies`` grid in a single request."""

        plan = self.optimize_request_parameters(coin_ids, vs_currencies)
        response = self.fetch_crypto_prices(plan.coin_ids, plan.vs_currencies)
        result = self.parse_bulk_crypto_response(response, plan.coin_ids, plan.vs_currencies)
        logger.info(
            "Bulk crypto request: %d coins, %d currencies, %d received",
            plan.optimized_coin_count,
            plan.optimized_currency_count,
            result.received_coins,
        )
        return result

    @staticmethod
    def optimize_request_parameters(
        coin_ids: Iterable[str], vs_currencies: Iterable[str]
    ) -> RequestPlan:
        """Deduplicate, lowercase, validate and sort ids and currencies."""

        raw_coins = [c for c in (coin_ids or []) if isinstance(c, str)]
        raw_currencies = [c for c in (vs_currencies or []) if isinstance(c, str)]

        unique_coins = sorted({c.strip().lower() for c in raw_coins})
        unique_currencies = sorted({c.strip().lower() for c in raw_currencies})

        valid_coins = tuple(c for c in unique_coins if _COIN_ID_PATTERN.match(c))
        valid_currencies = tuple(c for c in unique_currencies if _CURRENCY_PATTERN.match(c))

        if not valid_coins:
            raise ConfigInvalidError("No valid coin IDs provided")
        if not valid_currencies:
            raise ConfigInvalidError("No valid currencies provided")

        return RequestPlan(
            coin_ids=valid_coins,
            vs_currencies=valid_currencies,
            original_coin_count=len(raw_coins),
            original_currency_count=len(raw_currencies),
        )

    def parse_bulk_crypto_response(
        self,
        response: Any,
        coin_ids: Sequence[str],
        vs_currencies: Sequence[str],
    ) -> BulkPriceResult:
        """Keep every valid ``(coin, currency)`` cell; record the rest as missing."""

        if not isinstance(response, Mapping):
            raise UpstreamDataInvalidError("Invalid bulk crypto response format")

        data: Dict[str, Dict[str, float]] = {}
        missing_coins: list[str] = []
        missing_prices: list[str] = []

        for coin_id in coin_ids:
            coin = coin_id.lower()
            coin_prices = response.get(coin)
            if not isinstance(coin_prices, Mapping):
                missing_coins.append(coin)
                continue
            parsed: Dict[str, float] = {}
            for currency in vs_currencies:
                code = currency.lower()
                price = _as_price(coin_prices.get(code))
                if price is None:
                    missing_prices.append(f"{coin}/{code}")
                    continue
                parsed[code] = price
            data[coin] = parsed

        if missing_coins:
            logger.warning("Missing coins in provider response: %s", missing_coins)
        if missing_prices:
            logger.warning("Missing prices in provider response: %s", missing_prices)

        return BulkPriceResult(
            data=data,
            requested_coins=len(coin_ids),
            requested_currencies=len(vs_currencies),
            missing_coins=tuple(missing_coins),
            missing_prices=tuple(missing_prices),
            timestamp=self._now_ms(),
        )

    def fetch_exchange_rates(
        self,
        currencies: Optional[Iterable[str]] = None,
        *,
        pivot: str = PIVOT_COIN_ID,
    ) -> ExchangeRates:
        """Derive fiat cross-rates from the pivot asset priced in every currency."""

        source = DEFAULT_FIAT_CURRENCIES if currencies is None else currencies
        codes = {c.strip().lower() for c in source if isinstance(c, str)}
        codes.add(PIVOT_CURRENCY)
        valid = sorted(c for c in codes if _CURRENCY_PATTERN.match(c))

        response = self.make_request(
            SIMPLE_PRICE_ENDPOINT,
            {"ids": pivot, "vs_currencies": ",".join(valid)},
        )
        pivot_prices = response.get(pivot)
        if not isinstance(pivot_prices, Mapping):
            raise UpstreamDataInvalidError(
                f"Invalid response format: no {pivot} prices for fiat rate calculation"
            )
        return self.derive_cross_rates(pivot_prices, pivot=pivot)

    def derive_cross_rates(
        self, pivot_prices: Mapping[str, Any], *, pivot: str = PIVOT_COIN_ID
    ) -> ExchangeRates:
        """Turn ``{currency: pivot price}`` into ``{CODE: price_in_code / price_in_usd}``."""

        usd_price = _as_price(pivot_prices.get(PIVOT_CURRENCY))
        if usd_price is None or usd_price <= 0:
            raise UpstreamDataInvalidError(f"Invalid USD price for {pivot}")

        rates: Dict[str, FiatRate] = {}
        invalid: list[str] = []
        for currency, raw_price in pivot_prices.items():
            code = str(currency).upper()
            price = _as_price(raw_price)
            if price is None or price <= 0:
                invalid.append(code)
                continue
            rates[code] = FiatRate(value=price / usd_price, name=code, unit=code)

        if invalid:
            logger.warning("Invalid fiat rates in provider response: %s", invalid)

        return ExchangeRates(
            rates=rates,
            pivot_coin=pivot,
            invalid_rates=tuple(invalid),
            timestamp=self._now_ms(),
            metadata={"total_rates": len(pivot_prices), "valid_rates": len(rates)},
        )

    def make_request(
        self, endpoint: str, params: Optional[Mapping[str, Any]] = None
    ) -> Mapping[str, Any]:
        """Send a throttled GET and return the decoded JSON object."""

        url = f"{self._base_url}/{endpoint.lstrip('/')}"
        query: Dict[str, Any] = {}
        if params:
            for key, value in params.items():
                if value is None:
                    continue
                query[key] = value
        if self._api_key:
            query[API_KEY_PARAM] = self._api_key

        self._throttle.acquire()
        logger.debug("Provider request to %s", url)
        try:
            response = self._session.get(url, params=query, headers={"Accept": "application/json"})
        except requests.RequestException as exc:
            raise UpstreamNetworkError(
                f"Network error: unable to connect to CoinGecko API ({exc})"
            ) from exc
        finally:
            self._request_count += 1
            self._last_request_time = self._now_ms()

        status = response.status_code
        if status >= 400:
            self._raise_for_status(response)
        try:
            data = response.json()
        except (ValueError, json.JSONDecodeError) as exc:
            raise UpstreamDataInvalidError("Invalid JSON response from CoinGecko") from exc
        if not isinstance(data, Mapping) or not data:
            raise UpstreamDataInvalidError("Invalid response format from CoinGecko API")
        return data

    @staticmethod
    def validate_api_key(api_key: Any) -> bool:
        """Format check only; the provider is the authority on validity."""

        if not api_key or not isinstance(api_key, str):
            return False
        return bool(_API_KEY_PATTERN.match(api_key)) and 10 <= len(api_key) <= 100

    def stats(self) -> Dict[str, Any]:
        return {
            "request_count": self._request_count,
            "last_request_time": self._last_request_time,
            "has_api_key": self.has_api_key,
            "rate_limit_delay_ms": int(self.rate_limit_delay * 1000),
        }

    def reset_stats(self) -> None:
        self._request_count = 0
        self._last_request_time = None
        self._throttle.reset()

    def close(self) -> None:
        if self._owns_session:
            self._session.close()

    def __enter__(self) -> "CoinGeckoClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # Internal helpers ----------------------------------------------------
    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _raise_for_status(self, response: requests.Response) -> None:
        status = response.status_code
        if status == 401:
            raise UpstreamAuthError(
                "Authentication failed: invalid CoinGecko API key", status_code=status
            )
        if status == 403:
            raise UpstreamForbiddenError(
                "Access forbidden: API key lacks permissions or quota exceeded",
                status_code=status,
            )
        if status == 429:
            raise UpstreamRateLimitedError(
                "Rate limit exceeded: too many requests to CoinGecko",
                retry_after=self._parse_retry_after(response),
            )
        if status >= 500:
            raise UpstreamUnavailableError(
                f"CoinGecko API server error {status}", status_code=status
            )
        detail = self._extract_error_detail(response)
        raise UpstreamError(f"CoinGecko API error {status}: {detail}", status_code=status)

    @staticmethod
    def _parse_retry_after(response: requests.Response) -> Optional[float]:
        headers = getattr(response, "headers", None) or {}
        raw = headers.get("Retry-After")
        if raw is None:
            return None
        try:
            return max(float(raw), 0.0)
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _extract_error_detail(response: requests.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.text or "unknown error"
        if isinstance(data, Mapping):
            message = data.get("error") or data.get("message")
            if isinstance(message, Mapping):
                message = message.get("error_message") or message.get("status")
            if message:
                return str(message)
        return response.text or "unknown error"


__all__ = [
    "API_KEY_PARAM",
    "BulkPriceResult",
    "CoinGeckoClient",
    "DEFAULT_BASE_URL",
    "DEFAULT_FIAT_CURRENCIES",
    "ExchangeRates",
    "FiatRate",
    "PIVOT_COIN_ID",
    "PIVOT_CURRENCY",
    "RequestPlan",
]
