from __future__ import annotations

from types import SimpleNamespace

import pytest

from services.rate_cache.config import (
    DEFAULT_SUPPORTED_CRYPTOS,
    DEFAULT_SUPPORTED_FIATS,
    RateCacheConfig,
)
from services.rate_cache.freshness import StalenessThresholds
from services.rate_cache.storage import InMemorySettingsStore
from shared.errors import ConfigInvalidError

VALID_KEY = "CG-demoKey1234567890"


def test_defaults_are_valid() -> None:
    config = RateCacheConfig()

    assert config.validate() == []
    assert config.is_valid is True
    assert config.refresh_interval_ms == 900_000
    assert config.stale_threshold_ms == 3_600_000
    assert config.retry_interval_ms == 300_000
    assert config.max_retries == 3
    assert config.preferred_currency == "BGN"
    assert len(config.supported_cryptos) == len(DEFAULT_SUPPORTED_CRYPTOS)
    assert config.supported_fiats == DEFAULT_SUPPORTED_FIATS
    assert "BGN" not in config.crypto_vs_currencies


def test_values_are_normalised() -> None:
    config = RateCacheConfig(
        api_key="   ",
        supported_cryptos={" btc ": " Bitcoin ", "": "nothing"},
        supported_fiats="usd, eur,USD",  # type: ignore[arg-type]
        crypto_vs_currencies=["usd"],  # type: ignore[arg-type]
        preferred_currency="eur",
    )

    assert config.api_key is None
    assert config.supported_cryptos == {"BTC": "bitcoin"}
    assert config.supported_fiats == ("USD", "EUR")
    assert config.crypto_vs_currencies == ("USD",)
    assert config.preferred_currency == "EUR"


def test_validate_lists_every_problem() -> None:
    config = RateCacheConfig(
        api_key="bad key!",
        refresh_interval_ms=1_000,
        stale_threshold_ms=100,
        retry_interval_ms=10,
        preferred_currency="XXX",
        preferred_crypto_currency="YYY",
    )

    assert config.validate() == [
        "Invalid CoinGecko API key format",
        "Refresh interval must be between 1 minute and 1 hour",
        "Stale threshold must be between 5 minutes and 24 hours",
        "Retry interval must be between 30 seconds and 30 minutes",
        "Unsupported preferred currency: XXX",
        "Unsupported crypto vs currency: YYY",
    ]


def test_thresholds_must_increase() -> None:
    config = RateCacheConfig(stale_threshold_ms=7_200_000, very_stale_threshold_ms=7_200_000)
    assert "Staleness thresholds must be strictly increasing" in config.validate()


def test_empty_currency_universe_is_invalid() -> None:
    config = RateCacheConfig(supported_cryptos={}, crypto_vs_currencies=())
    errors = config.validate()
    assert "No supported cryptocurrencies configured" in errors
    assert "No crypto vs currencies configured" in errors


def test_ensure_valid_raises_with_errors() -> None:
    with pytest.raises(ConfigInvalidError) as excinfo:
        RateCacheConfig(max_retries=-1, history_size=0).ensure_valid()
    assert excinfo.value.errors == [
        "Max retries must be a non-negative integer",
        "History size must be a positive integer",
    ]


def test_merged_rejects_unknown_keys() -> None:
    with pytest.raises(ConfigInvalidError) as excinfo:
        RateCacheConfig().merged({"bogus": 1, "refresh_interval_ms": 60_000})
    assert excinfo.value.errors == ["bogus"]


def test_load_overlays_stored_values() -> None:
    store = InMemorySettingsStore(
        {
            "coingecko_api_key": VALID_KEY,
            "refresh_interval_ms": "120000",
            "stale_threshold_ms": "soon",
            "preferred_currency": "eur",
            "unrelated": "ignored",
        }
    )

    config = RateCacheConfig.load(store, RateCacheConfig())

    assert config.api_key == VALID_KEY
    assert config.refresh_interval_ms == 120_000
    assert config.stale_threshold_ms == 3_600_000
    assert config.preferred_currency == "EUR"


def test_save_persists_only_user_settings() -> None:
    store = InMemorySettingsStore()

    updated = RateCacheConfig().save(
        store, {"api_key": VALID_KEY, "refresh_interval_ms": 600_000, "max_retries": 5}
    )

    assert updated.api_key == VALID_KEY
    assert updated.max_retries == 5
    assert store.snapshot() == {"coingecko_api_key": VALID_KEY, "refresh_interval_ms": 600_000}


def test_invalid_save_writes_nothing() -> None:
    store = InMemorySettingsStore()

    with pytest.raises(ConfigInvalidError):
        RateCacheConfig().save(store, {"refresh_interval_ms": 10})

    assert store.snapshot() == {}


def test_from_settings_uses_overrides_and_defaults() -> None:
    source = SimpleNamespace(
        COINGECKO_API_KEY=VALID_KEY,
        SUPPORTED_CRYPTOS={},
        SUPPORTED_FIATS=["usd", "eur"],
        CRYPTO_VS_CURRENCIES=[],
        RATE_CACHE_REFRESH_INTERVAL_MS=300_000,
        COINGECKO_TIMEOUT="5",
    )

    config = RateCacheConfig.from_settings(source)

    assert config.api_key == VALID_KEY
    assert config.supported_fiats == ("USD", "EUR")
    assert config.supported_cryptos == dict(DEFAULT_SUPPORTED_CRYPTOS)
    assert config.refresh_interval_ms == 300_000
    assert config.stale_threshold_ms == 3_600_000
    assert config.timeout == 5.0


def test_derived_views() -> None:
    config = RateCacheConfig(
        supported_cryptos={"BTC": "bitcoin", "XBT": "bitcoin", "ETH": "ethereum"},
        crypto_vs_currencies=("USD", "EUR"),
    )

    assert config.coin_ids() == ["bitcoin", "ethereum"]
    assert config.vs_currencies() == ["usd", "eur"]
    assert config.coin_id_for_symbol("eth") == "ethereum"
    assert config.coin_id_for_symbol("DOGE") is None
    assert config.symbol_for_coin_id("bitcoin") == "BTC"
    assert config.is_supported_fiat("bgn") is True
    assert config.thresholds() == StalenessThresholds()


def test_export_masks_api_key() -> None:
    exported = RateCacheConfig(api_key=VALID_KEY).export()

    assert exported["config"]["api_key"] == "CG-d" + "*" * 12 + "7890"
    assert exported["is_valid"] is True
    assert exported["has_api_key"] is True
    assert exported["validation_errors"] == []


def test_saving_long_stale_threshold_lifts_upper_tiers() -> None:
    store = InMemorySettingsStore()

    updated = RateCacheConfig().save(store, {"stale_threshold_ms": 10_800_000})

    assert updated.stale_threshold_ms == 10_800_000
    assert updated.very_stale_threshold_ms == 21_600_000
    assert updated.critical_stale_threshold_ms == 64_800_000
    assert updated.validate() == []
    assert store.snapshot() == {"stale_threshold_ms": 10_800_000}


def test_loaded_stale_threshold_at_upper_bound_is_valid() -> None:
    store = InMemorySettingsStore({"stale_threshold_ms": 86_400_000})

    config = RateCacheConfig.load(store, RateCacheConfig())

    assert config.thresholds() == StalenessThresholds(86_400_000, 172_800_000, 518_400_000)
    assert config.ensure_valid() is config


def test_short_stale_threshold_keeps_default_upper_tiers() -> None:
    config = RateCacheConfig().merged({"stale_threshold_ms": 600_000})

    assert config.very_stale_threshold_ms == 7_200_000
    assert config.critical_stale_threshold_ms == 21_600_000


def test_explicit_upper_tiers_are_not_lifted() -> None:
    config = RateCacheConfig().merged(
        {"stale_threshold_ms": 10_800_000, "very_stale_threshold_ms": 7_200_000}
    )

    assert config.very_stale_threshold_ms == 7_200_000
    assert "Staleness thresholds must be strictly increasing" in config.validate()
