"""Time-related test fixtures and utilities."""

from __future__ import annotations


class FakeTime:
    """Deterministic fake epoch clock (seconds) for cache and scheduler tests."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = float(start)

    def __call__(self) -> float:
        """Allow using the instance as a callable time source."""

        return self.now

    def set(self, value: float) -> None:
        self.now = float(value)

    def sleep(self, seconds: float) -> None:
        self.now += float(seconds)

    def advance_ms(self, milliseconds: int) -> None:
        self.now += milliseconds / 1000.0

    @property
    def now_ms(self) -> int:
        return int(round(self.now * 1000))
