from __future__ import annotations

import math

import pytest

from services.rate_cache.conversion import convert_crypto, convert_fiat
from services.rate_cache.store import RateCacheStore
from tests.fixtures.time import FakeTime


@pytest.fixture
def loaded(fake_time: FakeTime) -> RateCacheStore:
    store = RateCacheStore(clock=fake_time)
    store.populate({"bitcoin": {"usd": 50000, "eur": 46000}}, {"USD": 1.0, "EUR": 0.92, "BGN": 1.8})
    return store


def test_convert_crypto(loaded: RateCacheStore, fake_time: FakeTime) -> None:
    result = convert_crypto(loaded, 0.5, "Bitcoin", "eur")

    assert result is not None
    assert result.converted == 23000.0
    assert result.rate == 46000.0
    assert (result.source, result.target) == ("bitcoin", "EUR")
    assert result.captured_at == fake_time.now_ms


def test_convert_fiat_goes_through_usd(loaded: RateCacheStore) -> None:
    result = convert_fiat(loaded, 100, "eur", "BGN")

    assert result is not None
    assert result.converted == pytest.approx(100 / 0.92 * 1.8)
    assert result.rate == pytest.approx(1.8 / 0.92)


@pytest.mark.parametrize("amount", [math.nan, math.inf, "10", True, None])
def test_invalid_amounts_are_rejected(loaded: RateCacheStore, amount) -> None:
    assert convert_crypto(loaded, amount, "bitcoin", "usd") is None
    assert convert_fiat(loaded, amount, "USD", "EUR") is None


def test_missing_rates_return_none(loaded: RateCacheStore) -> None:
    assert convert_crypto(loaded, 1, "dogecoin", "usd") is None
    assert convert_fiat(loaded, 1, "USD", "JPY") is None
    assert convert_fiat(loaded, 1, None, "USD") is None  # type: ignore[arg-type]


def test_zero_source_rate_is_not_divided(fake_time: FakeTime) -> None:
    store = RateCacheStore(clock=fake_time)
    store.populate({}, {"USD": 1.0, "XXX": 0.0})

    assert convert_fiat(store, 1, "XXX", "USD") is None
