"""Pre-configured ``requests`` sessions for the price provider."""
from __future__ import annotations

from typing import Any, Callable, Iterable

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

# 429 stays out: the provider client turns it into UpstreamRateLimitedError.
DEFAULT_RETRY_STATUSES: tuple[int, ...] = (502, 503, 504)
IDEMPOTENT_METHODS: tuple[str, ...] = ("HEAD", "GET")


def _default_timeout(send: Callable[..., requests.Response], timeout: float):
    def request(method: str, url: str, **kwargs: Any) -> requests.Response:
        kwargs.setdefault("timeout", timeout)
        return send(method, url, **kwargs)

    return request


def provider_retry(
    retries: int, backoff: float, status_forcelist: Iterable[int] = DEFAULT_RETRY_STATUSES
) -> Retry:
    """Transport-level retries for idempotent calls only; final status is returned, not raised."""

    return Retry(
        total=retries,
        connect=retries,
        read=retries,
        backoff_factor=backoff,
        status_forcelist=sorted(set(status_forcelist)),
        allowed_methods=list(IDEMPOTENT_METHODS),
        raise_on_status=False,
        respect_retry_after_header=False,
    )


def build_session(
    user_agent: str,
    *,
    retries: int = 2,
    backoff: float = 0.3,
    timeout: float = 15.0,
    status_forcelist: Iterable[int] = DEFAULT_RETRY_STATUSES,
    pool_maxsize: int = 4,
) -> requests.Session:
    session = requests.Session()
    session.headers.update({"User-Agent": user_agent, "Accept": "application/json"})

    adapter = HTTPAdapter(
        max_retries=provider_retry(retries, backoff, status_forcelist),
        pool_connections=1,
        pool_maxsize=pool_maxsize,
    )
    for prefix in ("https://", "http://"):
        session.mount(prefix, adapter)

    # a hung provider must never stall a refresh cycle
    session.request = _default_timeout(session.request, timeout)  # type: ignore[method-assign]
    return session


__all__ = ["DEFAULT_RETRY_STATUSES", "build_session", "provider_retry"]
