"""Client for the CoinGecko crypto/fiat price provider."""

from .client import (
    DEFAULT_BASE_URL,
    DEFAULT_FIAT_CURRENCIES,
    BulkPriceResult,
    CoinGeckoClient,
    ExchangeRates,
    FiatRate,
    RequestPlan,
)
from .throttle import RequestThrottle

__all__ = [
    "BulkPriceResult",
    "CoinGeckoClient",
    "DEFAULT_BASE_URL",
    "DEFAULT_FIAT_CURRENCIES",
    "ExchangeRates",
    "FiatRate",
    "RequestPlan",
    "RequestThrottle",
]
