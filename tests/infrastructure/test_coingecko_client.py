from __future__ import annotations

from typing import List

import pytest
import requests

from infrastructure.coingecko.client import (
    API_KEY_PARAM,
    CoinGeckoClient,
    RATE_LIMIT_DELAY_WITH_KEY,
    RATE_LIMIT_DELAY_WITHOUT_KEY,
)
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
from tests.fixtures.http import DummyResponse, DummySession

VALID_KEY = "CG-demoKey1234567890"


def _client(session: DummySession, api_key: str | None = None, **kwargs) -> CoinGeckoClient:
    kwargs.setdefault("rate_limit_delay", 0)
    return CoinGeckoClient(
        api_key,
        session=session,  # type: ignore[arg-type]
        clock=lambda: 1_700_000_000.0,
        **kwargs,
    )


def test_bulk_prices_send_single_normalised_request() -> None:
    session = DummySession(
        [
            DummyResponse(
                200,
                {
                    "bitcoin": {"usd": 50000, "eur": 46000.5},
                    "ethereum": {"usd": 3000, "eur": "n/a"},
                },
            )
        ]
    )
    client = _client(session, VALID_KEY)

    result = client.fetch_crypto_prices_bulk(
        ["Ethereum", "bitcoin", "bitcoin", "dogecoin"], ["USD", "eur", "usd"]
    )

    assert len(session.calls) == 1
    call = session.calls[0]
    assert call["url"] == "https://api.coingecko.com/api/v3/simple/price"
    assert call["params"]["ids"] == "bitcoin,dogecoin,ethereum"
    assert call["params"]["vs_currencies"] == "eur,usd"
    assert call["params"][API_KEY_PARAM] == VALID_KEY
    assert call["params"]["include_market_cap"] == "false"
    assert call["headers"]["Accept"] == "application/json"

    assert result.data == {
        "bitcoin": {"usd": 50000.0, "eur": 46000.5},
        "ethereum": {"usd": 3000.0},
    }
    assert result.missing_coins == ("dogecoin",)
    assert result.missing_prices == ("ethereum/eur",)
    assert result.received_coins == 2
    assert result.requested_coins == 3
    assert result.timestamp == 1_700_000_000_000


def test_free_tier_request_has_no_key_param() -> None:
    session = DummySession([DummyResponse(200, {"bitcoin": {"usd": 1}})])
    client = _client(session)

    client.fetch_crypto_prices(["bitcoin"], ["usd"])

    assert API_KEY_PARAM not in session.calls[0]["params"]
    assert client.has_api_key is False


def test_rate_limit_delay_depends_on_api_key() -> None:
    session = DummySession([DummyResponse(200, {"bitcoin": {"usd": 1}})])
    assert CoinGeckoClient(session=session).rate_limit_delay == RATE_LIMIT_DELAY_WITHOUT_KEY  # type: ignore[arg-type]
    assert (
        CoinGeckoClient(VALID_KEY, session=session).rate_limit_delay  # type: ignore[arg-type]
        == RATE_LIMIT_DELAY_WITH_KEY
    )


def test_optimize_request_parameters_filters_invalid_values() -> None:
    plan = CoinGeckoClient.optimize_request_parameters(
        ["bitcoin", "BITCOIN", "bad id!", 42], ["usd", "u", "toolong", "EUR"]  # type: ignore[list-item]
    )

    assert plan.coin_ids == ("bitcoin",)
    assert plan.vs_currencies == ("eur", "usd")
    assert plan.original_coin_count == 3
    assert plan.original_currency_count == 4
    assert plan.optimized_coin_count == 1


@pytest.mark.parametrize(
    "coins, currencies, message",
    [
        ([], ["usd"], "No valid coin IDs provided"),
        (["bitcoin"], ["1"], "No valid currencies provided"),
    ],
)
def test_optimize_request_parameters_rejects_empty(coins, currencies, message) -> None:
    with pytest.raises(ConfigInvalidError, match=message):
        CoinGeckoClient.optimize_request_parameters(coins, currencies)


def test_parse_bulk_response_requires_object() -> None:
    client = _client(DummySession([DummyResponse(200, {})]))
    with pytest.raises(UpstreamDataInvalidError):
        client.parse_bulk_crypto_response(["bitcoin"], ["bitcoin"], ["usd"])


def test_exchange_rates_are_derived_from_pivot_prices() -> None:
    session = DummySession(
        [
            DummyResponse(
                200,
                {"bitcoin": {"usd": 50000, "eur": 46000, "bgn": 90000, "zar": 0, "gbp": None}},
            )
        ]
    )
    client = _client(session)

    rates = client.fetch_exchange_rates(["EUR", "bgn"])

    assert session.calls[0]["params"]["ids"] == "bitcoin"
    assert session.calls[0]["params"]["vs_currencies"] == "bgn,eur,usd"
    values = rates.values()
    assert values["USD"] == pytest.approx(1.0)
    assert values["EUR"] == pytest.approx(0.92)
    assert values["BGN"] == pytest.approx(1.8)
    assert set(rates.invalid_rates) == {"ZAR", "GBP"}
    assert rates.metadata == {"total_rates": 5, "valid_rates": 3}
    assert rates.rates["EUR"].type == "fiat"


def test_exchange_rates_without_pivot_prices_fail() -> None:
    client = _client(DummySession([DummyResponse(200, {"ethereum": {"usd": 1}})]))
    with pytest.raises(UpstreamDataInvalidError, match="no bitcoin prices"):
        client.fetch_exchange_rates(["eur"])


@pytest.mark.parametrize("usd_price", [0, -1, None, "50000"])
def test_cross_rates_require_positive_usd_price(usd_price) -> None:
    client = _client(DummySession([DummyResponse(200, {})]))
    with pytest.raises(UpstreamDataInvalidError, match="Invalid USD price for bitcoin"):
        client.derive_cross_rates({"usd": usd_price, "eur": 1.0})


@pytest.mark.parametrize(
    "response, expected",
    [
        (DummyResponse(401, {"error": "bad key"}), UpstreamAuthError),
        (DummyResponse(403, {"error": "forbidden"}), UpstreamForbiddenError),
        (DummyResponse(429, None, headers={"Retry-After": "30"}), UpstreamRateLimitedError),
        (DummyResponse(503, None, text="down"), UpstreamUnavailableError),
    ],
)
def test_http_status_is_classified(response: DummyResponse, expected: type) -> None:
    client = _client(DummySession([response]))
    with pytest.raises(expected) as excinfo:
        client.make_request("simple/price", {"ids": "bitcoin"})
    assert excinfo.value.status_code == response.status_code


def test_rate_limit_exposes_retry_after() -> None:
    client = _client(DummySession([DummyResponse(429, None, headers={"Retry-After": "30"})]))
    with pytest.raises(UpstreamRateLimitedError) as excinfo:
        client.make_request("simple/price")
    assert excinfo.value.retry_after == 30.0


def test_other_client_errors_carry_provider_detail() -> None:
    client = _client(DummySession([DummyResponse(404, {"error": "coin not found"})]))
    with pytest.raises(UpstreamError, match="CoinGecko API error 404: coin not found") as excinfo:
        client.make_request("simple/price")
    assert type(excinfo.value) is UpstreamError


def test_network_failure_is_wrapped_and_counted() -> None:
    client = _client(DummySession([requests.ConnectionError("dns failure")]))

    with pytest.raises(UpstreamNetworkError) as excinfo:
        client.make_request("simple/price")

    assert isinstance(excinfo.value.__cause__, requests.ConnectionError)
    stats = client.stats()
    assert stats["request_count"] == 1
    assert stats["last_request_time"] == 1_700_000_000_000


@pytest.mark.parametrize(
    "response",
    [DummyResponse(200, None, text="<html>"), DummyResponse(200, {}), DummyResponse(200, [1, 2])],
)
def test_unusable_bodies_are_rejected(response: DummyResponse) -> None:
    client = _client(DummySession([response]))
    with pytest.raises(UpstreamDataInvalidError):
        client.make_request("simple/price")


def test_requests_are_spaced_by_rate_limit_delay() -> None:
    now = 0.0
    sleeps: List[float] = []

    def monotonic() -> float:
        return now

    def sleeper(duration: float) -> None:
        nonlocal now
        sleeps.append(duration)
        now += duration

    session = DummySession([DummyResponse(200, {"bitcoin": {"usd": 1}})])
    client = _client(session, rate_limit_delay=1.5, monotonic=monotonic, sleeper=sleeper)

    client.make_request("simple/price")
    client.make_request("simple/price")

    assert sleeps == [1.5]
    assert client.stats()["rate_limit_delay_ms"] == 1500


@pytest.mark.parametrize(
    "key, expected",
    [
        (VALID_KEY, True),
        ("short", False),
        ("has spaces in it!", False),
        ("x" * 101, False),
        (None, False),
        (1234567890, False),
    ],
)
def test_validate_api_key(key, expected) -> None:
    assert CoinGeckoClient.validate_api_key(key) is expected


def test_close_only_closes_owned_session() -> None:
    session = DummySession([DummyResponse(200, {"bitcoin": {"usd": 1}})])
    with _client(session):
        pass
    assert session.closed is False


def test_reset_stats_clears_counters() -> None:
    client = _client(DummySession([DummyResponse(200, {"bitcoin": {"usd": 1}})]))
    client.make_request("simple/price")
    client.reset_stats()
    assert client.stats()["request_count"] == 0
    assert client.stats()["last_request_time"] is None
