"""Configuration model for the rate cache: currency universe, cadence and thresholds."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields, replace
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from infrastructure.coingecko.client import DEFAULT_BASE_URL, CoinGeckoClient
from shared.errors import ConfigInvalidError

from .error_journal import mask_api_key
from .freshness import StalenessThresholds
from .storage import SettingsStore

logger = logging.getLogger(__name__)

DEFAULT_SUPPORTED_CRYPTOS: Mapping[str, str] = MappingProxyType(
    {
        "BTC": "bitcoin",
        "ETH": "ethereum",
        "XRP": "ripple",
        "LTC": "litecoin",
        "BCH": "bitcoin-cash",
        "ADA": "cardano",
        "DOT": "polkadot",
        "LINK": "chainlink",
        "XLM": "stellar",
        "DOGE": "dogecoin",
        "USDT": "tether",
        "BNB": "binancecoin",
        "SOL": "solana",
        "TRX": "tron",
        "EOS": "eos",
        "XTZ": "tezos",
        "ATOM": "cosmos",
        "VET": "vechain",
        "ETC": "ethereum-classic",
        "FIL": "filecoin",
        "AAVE": "aave",
        "UNI": "uniswap",
        "SUSHI": "sushi",
        "YFI": "yearn-finance",
        "COMP": "compound-governance-token",
        "MKR": "maker",
        "SNX": "havven",
        "UMA": "uma",
        "ZEC": "zcash",
        "DASH": "dash",
        "XMR": "monero",
        "BSV": "bitcoin-cash-sv",
        "AVAX": "avalanche-2",
        "MATIC": "matic-network",
    }
)

DEFAULT_SUPPORTED_FIATS: tuple[str, ...] = (
    "USD", "EUR", "GBP", "JPY", "AUD", "CAD", "CHF", "CNY", "SEK", "NZD", "MXN",
    "SGD", "HKD", "NOK", "KRW", "TRY", "RUB", "INR", "BRL", "ZAR", "BGN",
)

# BGN is not quoted for crypto by the provider.
DEFAULT_CRYPTO_VS_CURRENCIES: tuple[str, ...] = (
    "USD", "EUR", "GBP", "JPY", "AUD", "CAD", "CHF", "CNY",
    "SEK", "NOK", "KRW", "TRY", "RUB", "INR", "BRL",
)

REFRESH_INTERVAL_BOUNDS = (60_000, 3_600_000)
STALE_THRESHOLD_BOUNDS = (300_000, 86_400_000)
RETRY_INTERVAL_BOUNDS = (30_000, 1_800_000)

# each tier a multiple of the one below (1h / 2h / 6h)
VERY_STALE_FACTOR = 2
CRITICAL_STALE_FACTOR = 3

# storage key -> field name; only these are user-configurable
STORAGE_KEYS: Mapping[str, str] = MappingProxyType(
    {
        "coingecko_api_key": "api_key",
        "refresh_interval_ms": "refresh_interval_ms",
        "stale_threshold_ms": "stale_threshold_ms",
        "preferred_currency": "preferred_currency",
        "preferred_crypto_currency": "preferred_crypto_currency",
    }
)

_INT_FIELDS = frozenset(
    {
        "refresh_interval_ms",
        "stale_threshold_ms",
        "very_stale_threshold_ms",
        "critical_stale_threshold_ms",
        "retry_interval_ms",
        "max_retries",
        "history_size",
    }
)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _in_range(value: Any, bounds: tuple[int, int]) -> bool:
    low, high = bounds
    return _is_int(value) and low <= value <= high


def _lifted_tiers(stale: int, very_stale: Any, critical: Any) -> Dict[str, int]:
    """Push the upper tiers above ``stale`` keeping the default tier spacing."""

    lifted: Dict[str, int] = {}
    if not _is_int(very_stale) or very_stale <= stale:
        very_stale = stale * VERY_STALE_FACTOR
        lifted["very_stale_threshold_ms"] = very_stale
    if not _is_int(critical) or critical <= very_stale:
        lifted["critical_stale_threshold_ms"] = very_stale * CRITICAL_STALE_FACTOR
    return lifted


@dataclass(frozen=True)
class RateCacheConfig:
    """Immutable snapshot of the rate cache settings.

    Use :meth:`merged` to derive a modified copy and :meth:`validate` to list
    every problem at once.
    """

    api_key: Optional[str] = None
    supported_cryptos: Mapping[str, str] = field(
        default_factory=lambda: dict(DEFAULT_SUPPORTED_CRYPTOS)
    )
    supported_fiats: tuple[str, ...] = DEFAULT_SUPPORTED_FIATS
    crypto_vs_currencies: tuple[str, ...] = DEFAULT_CRYPTO_VS_CURRENCIES
    refresh_interval_ms: int = 900_000
    stale_threshold_ms: int = 3_600_000
    very_stale_threshold_ms: int = 7_200_000
    critical_stale_threshold_ms: int = 21_600_000
    retry_interval_ms: int = 300_000
    max_retries: int = 3
    history_size: int = 100
    preferred_currency: str = "BGN"
    preferred_crypto_currency: str = "USD"
    base_url: str = DEFAULT_BASE_URL
    timeout: float = 15.0

    def __post_init__(self) -> None:
        key = (self.api_key or "").strip() or None
        object.__setattr__(self, "api_key", key)
        object.__setattr__(
            self,
            "supported_cryptos",
            {
                str(symbol).strip().upper(): str(coin_id).strip().lower()
                for symbol, coin_id in dict(self.supported_cryptos or {}).items()
                if str(symbol).strip() and str(coin_id).strip()
            },
        )
        object.__setattr__(self, "supported_fiats", _codes(self.supported_fiats))
        object.__setattr__(self, "crypto_vs_currencies", _codes(self.crypto_vs_currencies))
        object.__setattr__(self, "preferred_currency", str(self.preferred_currency or "").upper())
        object.__setattr__(
            self, "preferred_crypto_currency", str(self.preferred_crypto_currency or "").upper()
        )

    # Construction -------------------------------------------------------
    @classmethod
    def from_settings(cls, source: Any = None) -> "RateCacheConfig":
        """Build a config from ``shared.config.settings`` (or a compatible object)."""

        if source is None:
            from shared.config import settings as source

        cryptos = getattr(source, "SUPPORTED_CRYPTOS", None) or DEFAULT_SUPPORTED_CRYPTOS
        fiats = getattr(source, "SUPPORTED_FIATS", None) or DEFAULT_SUPPORTED_FIATS
        vs = getattr(source, "CRYPTO_VS_CURRENCIES", None) or DEFAULT_CRYPTO_VS_CURRENCIES
        defaults = cls()
        return cls(
            api_key=getattr(source, "COINGECKO_API_KEY", None),
            supported_cryptos=dict(cryptos),
            supported_fiats=tuple(fiats),
            crypto_vs_currencies=tuple(vs),
            refresh_interval_ms=getattr(
                source, "RATE_CACHE_REFRESH_INTERVAL_MS", defaults.refresh_interval_ms
            ),
            stale_threshold_ms=getattr(
                source, "RATE_CACHE_STALE_THRESHOLD_MS", defaults.stale_threshold_ms
            ),
            very_stale_threshold_ms=getattr(
                source, "RATE_CACHE_VERY_STALE_THRESHOLD_MS", defaults.very_stale_threshold_ms
            ),
            critical_stale_threshold_ms=getattr(
                source,
                "RATE_CACHE_CRITICAL_STALE_THRESHOLD_MS",
                defaults.critical_stale_threshold_ms,
            ),
            retry_interval_ms=getattr(
                source, "RATE_CACHE_RETRY_INTERVAL_MS", defaults.retry_interval_ms
            ),
            max_retries=getattr(source, "RATE_CACHE_MAX_RETRIES", defaults.max_retries),
            history_size=getattr(source, "RATE_CACHE_HISTORY_SIZE", defaults.history_size),
            base_url=getattr(source, "COINGECKO_BASE_URL", defaults.base_url) or defaults.base_url,
            timeout=float(getattr(source, "COINGECKO_TIMEOUT", defaults.timeout)),
        )

    @classmethod
    def load(cls, store: SettingsStore, base: Optional["RateCacheConfig"] = None) -> "RateCacheConfig":
        """Overlay the user-configurable keys found in ``store`` on ``base``."""

        base = base or cls.from_settings()
        stored = store.get(list(STORAGE_KEYS))
        updates: Dict[str, Any] = {}
        for storage_key, value in stored.items():
            name = STORAGE_KEYS.get(storage_key)
            if name is None or value is None:
                continue
            if name in _INT_FIELDS:
                try:
                    value = int(value)
                except (TypeError, ValueError):
                    logger.warning("Ignoring stored %s=%r: not an integer", storage_key, value)
                    continue
            updates[name] = value
        return base.merged(updates)

    def merged(self, updates: Mapping[str, Any]) -> "RateCacheConfig":
        known = {f.name for f in fields(self)}
        unknown = sorted(set(updates) - known)
        if unknown:
            raise ConfigInvalidError(
                f"Unknown configuration keys: {', '.join(unknown)}", errors=unknown
            )
        changes = dict(updates)
        stale = changes.get("stale_threshold_ms")
        if _is_int(stale) and not {"very_stale_threshold_ms", "critical_stale_threshold_ms"} & set(changes):
            changes.update(
                _lifted_tiers(stale, self.very_stale_threshold_ms, self.critical_stale_threshold_ms)
            )
        return replace(self, **changes)

    def save(self, store: SettingsStore, updates: Mapping[str, Any]) -> "RateCacheConfig":
        """Validate ``updates`` on a copy and persist the user-configurable part.

        The stored record only contains saveable keys present in ``updates``;
        nothing is written when validation fails.
        """

        candidate = self.merged(updates)
        candidate.ensure_valid()
        reverse = {name: key for key, name in STORAGE_KEYS.items()}
        record = {
            reverse[name]: getattr(candidate, name) for name in updates if name in reverse
        }
        if record:
            store.set(record)
            logger.info("Saved rate cache settings: %s", sorted(record))
        return candidate

    # Validation ---------------------------------------------------------
    def validate(self) -> list[str]:
        errors: list[str] = []

        if self.api_key and not CoinGeckoClient.validate_api_key(self.api_key):
            errors.append("Invalid CoinGecko API key format")
        if not _in_range(self.refresh_interval_ms, REFRESH_INTERVAL_BOUNDS):
            errors.append("Refresh interval must be between 1 minute and 1 hour")
        if not _in_range(self.stale_threshold_ms, STALE_THRESHOLD_BOUNDS):
            errors.append("Stale threshold must be between 5 minutes and 24 hours")
        if not _in_range(self.retry_interval_ms, RETRY_INTERVAL_BOUNDS):
            errors.append("Retry interval must be between 30 seconds and 30 minutes")
        if not (
            _is_int(self.very_stale_threshold_ms)
            and _is_int(self.critical_stale_threshold_ms)
            and _is_int(self.stale_threshold_ms)
            and self.stale_threshold_ms < self.very_stale_threshold_ms < self.critical_stale_threshold_ms
        ):
            errors.append("Staleness thresholds must be strictly increasing")
        if not _is_int(self.max_retries) or self.max_retries < 0:
            errors.append("Max retries must be a non-negative integer")
        if not _is_int(self.history_size) or self.history_size < 1:
            errors.append("History size must be a positive integer")
        if not self.supported_cryptos:
            errors.append("No supported cryptocurrencies configured")
        if not self.supported_fiats:
            errors.append("No supported fiat currencies configured")
        if not self.crypto_vs_currencies:
            errors.append("No crypto vs currencies configured")
        if not self.is_supported_fiat(self.preferred_currency):
            errors.append(f"Unsupported preferred currency: {self.preferred_currency}")
        if not self.is_supported_fiat(self.preferred_crypto_currency):
            errors.append(f"Unsupported crypto vs currency: {self.preferred_crypto_currency}")
        return errors

    def ensure_valid(self) -> "RateCacheConfig":
        errors = self.validate()
        if errors:
            raise ConfigInvalidError("Invalid rate cache configuration", errors=errors)
        return self

    @property
    def is_valid(self) -> bool:
        return not self.validate()

    @property
    def has_valid_api_key(self) -> bool:
        return bool(self.api_key) and CoinGeckoClient.validate_api_key(self.api_key)

    # Derived views --------------------------------------------------------
    def thresholds(self) -> StalenessThresholds:
        return StalenessThresholds(
            stale_ms=self.stale_threshold_ms,
            very_stale_ms=self.very_stale_threshold_ms,
            critical_ms=self.critical_stale_threshold_ms,
        )

    def coin_ids(self) -> list[str]:
        return list(dict.fromkeys(self.supported_cryptos.values()))

    def vs_currencies(self) -> list[str]:
        return [code.lower() for code in self.crypto_vs_currencies]

    def coin_id_for_symbol(self, symbol: str) -> Optional[str]:
        return self.supported_cryptos.get(str(symbol or "").upper())

    def symbol_for_coin_id(self, coin_id: str) -> Optional[str]:
        for symbol, candidate in self.supported_cryptos.items():
            if candidate == coin_id:
                return symbol
        return None

    def is_supported_fiat(self, code: str) -> bool:
        return str(code or "").upper() in self.supported_fiats

    def export(self) -> Dict[str, Any]:
        """Plain-dict view with the API key masked."""

        payload = {f.name: getattr(self, f.name) for f in fields(self)}
        payload["supported_cryptos"] = dict(self.supported_cryptos)
        payload["supported_fiats"] = list(self.supported_fiats)
        payload["crypto_vs_currencies"] = list(self.crypto_vs_currencies)
        if self.api_key:
            payload["api_key"] = mask_api_key(self.api_key)
        return {
            "config": payload,
            "is_valid": self.is_valid,
            "validation_errors": self.validate(),
            "has_api_key": self.has_valid_api_key,
        }


def _codes(values: Any) -> tuple[str, ...]:
    if isinstance(values, str):
        values = values.split(",")
    normalized: list[str] = []
    for item in values or ():
        code = str(item or "").strip().upper()
        if code and code not in normalized:
            normalized.append(code)
    return tuple(normalized)


__all__ = [
    "DEFAULT_CRYPTO_VS_CURRENCIES",
    "DEFAULT_SUPPORTED_CRYPTOS",
    "DEFAULT_SUPPORTED_FIATS",
    "RateCacheConfig",
    "STORAGE_KEYS",
]
