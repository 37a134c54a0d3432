"""Minimal ``requests`` doubles for provider client tests."""

from __future__ import annotations

import itertools
from typing import Any, Dict, List, Optional, Sequence, Union


class DummyResponse:
    def __init__(
        self,
        status_code: int,
        payload: Any = None,
        text: str = "",
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text
        self.headers = headers or {}

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("no payload")
        return self._payload


class DummySession:
    """Replay ``responses`` in order (cycling); exceptions are raised instead."""

    def __init__(self, responses: Sequence[Union[DummyResponse, BaseException]]) -> None:
        self._responses = itertools.cycle(responses)
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    def get(self, url: str, params: Optional[Dict[str, Any]] = None, headers: Optional[Dict[str, str]] = None):
        self.calls.append({"url": url, "params": dict(params or {}), "headers": dict(headers or {})})
        response = next(self._responses)
        if isinstance(response, BaseException):
            raise response
        return response

    def close(self) -> None:
        self.closed = True
