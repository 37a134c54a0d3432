from __future__ import annotations

from typing import Any, Dict, List

import requests
from requests.adapters import HTTPAdapter

from infrastructure.http.session import DEFAULT_RETRY_STATUSES, build_session, provider_retry


class _RecordingAdapter(HTTPAdapter):
    def __init__(self) -> None:
        super().__init__()
        self.sent: List[Dict[str, Any]] = []

    def send(self, request, **kwargs):  # type: ignore[override]
        self.sent.append({"url": request.url, "headers": dict(request.headers), **kwargs})
        response = requests.Response()
        response.status_code = 200
        response._content = b"{}"
        response.request = request
        response.url = request.url
        return response


def test_session_sets_headers_and_retry_policy() -> None:
    session = build_session("RateGlance/test", retries=4, backoff=0.5)

    assert session.headers["User-Agent"] == "RateGlance/test"
    assert session.headers["Accept"] == "application/json"

    adapter = session.get_adapter("https://api.coingecko.com/api/v3")
    retry = adapter.max_retries
    assert retry.total == 4
    assert retry.backoff_factor == 0.5
    assert sorted(retry.status_forcelist) == sorted(DEFAULT_RETRY_STATUSES)
    assert 429 not in retry.status_forcelist


def test_session_applies_default_timeout() -> None:
    session = build_session("RateGlance/test", timeout=7.5)
    adapter = _RecordingAdapter()
    session.mount("https://", adapter)

    session.get("https://example.test/price")
    session.get("https://example.test/price", timeout=2)

    assert adapter.sent[0]["timeout"] == 7.5
    assert adapter.sent[1]["timeout"] == 2
    assert adapter.sent[0]["headers"]["User-Agent"] == "RateGlance/test"


def test_provider_retry_only_covers_idempotent_methods() -> None:
    retry = provider_retry(3, 0.1, [504, 502, 502])

    assert retry.status_forcelist == [502, 504]
    assert set(retry.allowed_methods) == {"HEAD", "GET"}
    assert retry.raise_on_status is False
    assert retry.respect_retry_after_header is False
