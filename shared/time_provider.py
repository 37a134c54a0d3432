from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

Clock = Callable[[], float]


@dataclass(frozen=True)
class TimeSnapshot:
    """Container for a formatted timestamp and its datetime representation."""

    text: str
    moment: datetime

    def __str__(self) -> str:
        return self.text


def now_ms(clock: Clock = time.time) -> int:
    """Return ``clock()`` (epoch seconds) as integer epoch milliseconds."""

    return int(round(float(clock()) * 1000.0))


class TimeProvider:
    """Centralised time provider to generate formatted UTC timestamps."""

    _zone = timezone.utc

    @classmethod
    def now_datetime(cls) -> datetime:
        """Return the current datetime in UTC."""
        return datetime.now(cls._zone)

    @classmethod
    def now(cls) -> str:
        """Return the current timestamp as a formatted string."""

        return cls.now_datetime().strftime(TIME_FORMAT)

    @classmethod
    def from_epoch_ms(cls, ts_ms: Optional[float | int | str]) -> Optional[TimeSnapshot]:
        """Convert an epoch-milliseconds value into a formatted snapshot.

        Invalid or missing values yield ``None``.
        """

        if ts_ms is None or ts_ms == 0:
            return None
        try:
            raw = float(ts_ms) / 1000.0
        except (TypeError, ValueError):
            return None
        try:
            moment = datetime.fromtimestamp(raw, tz=cls._zone)
        except (OverflowError, OSError, ValueError):
            return None
        return TimeSnapshot(moment.strftime(TIME_FORMAT), moment)


__all__ = ["Clock", "TIME_FORMAT", "TimeProvider", "TimeSnapshot", "now_ms"]
