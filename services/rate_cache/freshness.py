"""Staleness classification and status reporting for the rate cache.

``classify`` is a pure function from cache age to a tier. The
:class:`FreshnessMonitor` composes the store status with that tier, user
facing messages and UI hints, and detects tier transitions lazily: only when
someone asks for the status. It owns no timer.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from threading import Lock
from typing import Any, Deque, Dict, List, Optional

from shared.time_provider import Clock, now_ms

from .events import EventHooks
from .store import CacheStatus, RateCacheStore

logger = logging.getLogger(__name__)

DEFAULT_STALE_THRESHOLD_MS = 3_600_000
DEFAULT_VERY_STALE_THRESHOLD_MS = 7_200_000
DEFAULT_CRITICAL_STALE_THRESHOLD_MS = 21_600_000
DEFAULT_HISTORY_SIZE = 100

MONITOR_EVENTS = ("tier_change", "critical", "status_change")


class StalenessLevel(str, Enum):
    FRESH = "fresh"
    STALE = "stale"
    VERY_STALE = "very_stale"
    CRITICAL_STALE = "critical_stale"
    NO_DATA = "no_data"


@dataclass(frozen=True)
class StalenessThresholds:
    stale_ms: int = DEFAULT_STALE_THRESHOLD_MS
    very_stale_ms: int = DEFAULT_VERY_STALE_THRESHOLD_MS
    critical_ms: int = DEFAULT_CRITICAL_STALE_THRESHOLD_MS


@dataclass(frozen=True)
class StalenessAssessment:
    level: StalenessLevel
    is_stale: bool
    is_critical: bool
    severity: str
    description: str

    def as_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["level"] = self.level.value
        return payload


@dataclass(frozen=True)
class AgeInfo:
    age_ms: Optional[int]
    age_seconds: Optional[int]
    age_minutes: Optional[int]
    age_hours: Optional[int]
    human_readable: str
    short_format: str
    relative_time: str


@dataclass(frozen=True)
class StatusMessage:
    type: str
    title: str
    message: str
    action: Optional[str]


@dataclass(frozen=True)
class StalenessIndicators:
    show_warning: bool
    show_error: bool
    show_critical: bool
    color: str
    icon: str
    badge: str
    css_class: str
    priority: int


@dataclass(frozen=True)
class Recommendation:
    type: str
    priority: str
    message: str
    action: str


@dataclass(frozen=True)
class DetailedStatus:
    """Everything a UI needs to render the cache state at ``timestamp``."""

    status: CacheStatus
    assessment: StalenessAssessment
    age_info: AgeInfo
    message: StatusMessage
    indicators: StalenessIndicators
    recommendations: tuple[Recommendation, ...]
    timestamp: int
    recorded_at: Optional[int] = None

    @property
    def level(self) -> StalenessLevel:
        return self.assessment.level

    def as_dict(self) -> Dict[str, Any]:
        return {
            **self.status.as_dict(),
            "staleness": self.assessment.as_dict(),
            "age_info": asdict(self.age_info),
            "status_message": asdict(self.message),
            "indicators": asdict(self.indicators),
            "recommendations": [asdict(item) for item in self.recommendations],
            "timestamp": self.timestamp,
            "recorded_at": self.recorded_at,
        }


@dataclass(frozen=True)
class StalenessStats:
    total_entries: int
    level_counts: Dict[str, int] = field(default_factory=dict)
    average_age: Optional[float] = None
    longest_stale_age: Optional[int] = None
    stale_percentage: float = 0.0


# --- Pure helpers ---------------------------------------------------------

_ASSESSMENTS: Dict[StalenessLevel, StalenessAssessment] = {
    StalenessLevel.NO_DATA: StalenessAssessment(
        StalenessLevel.NO_DATA, True, True, "critical", "No cache data available"
    ),
    StalenessLevel.FRESH: StalenessAssessment(
        StalenessLevel.FRESH, False, False, "none", "Cache data is fresh"
    ),
    StalenessLevel.STALE: StalenessAssessment(
        StalenessLevel.STALE, True, False, "warning", "Cache data is stale but usable"
    ),
    StalenessLevel.VERY_STALE: StalenessAssessment(
        StalenessLevel.VERY_STALE, True, False, "error", "Cache data is very stale"
    ),
    StalenessLevel.CRITICAL_STALE: StalenessAssessment(
        StalenessLevel.CRITICAL_STALE, True, True, "critical", "Cache data is critically stale"
    ),
}


def classify(
    age_ms: Optional[int], thresholds: StalenessThresholds = StalenessThresholds()
) -> StalenessAssessment:
    """Map a cache age to its staleness tier; boundaries belong to the fresher tier."""

    if age_ms is None:
        return _ASSESSMENTS[StalenessLevel.NO_DATA]
    if age_ms <= thresholds.stale_ms:
        return _ASSESSMENTS[StalenessLevel.FRESH]
    if age_ms <= thresholds.very_stale_ms:
        return _ASSESSMENTS[StalenessLevel.STALE]
    if age_ms <= thresholds.critical_ms:
        return _ASSESSMENTS[StalenessLevel.VERY_STALE]
    return _ASSESSMENTS[StalenessLevel.CRITICAL_STALE]


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}{'s' if count != 1 else ''}"


def age_info(age_ms: Optional[int]) -> AgeInfo:
    if age_ms is None:
        return AgeInfo(None, None, None, None, "Never updated", "Never", "No data")

    seconds = int(age_ms // 1000)
    minutes = seconds // 60
    hours = minutes // 60

    if hours > 0:
        rest = minutes % 60
        human = _plural(hours, "hour") + (f" {_plural(rest, 'minute')}" if rest else "") + " ago"
        short = f"{hours}h" + (f" {rest}m" if rest else "")
        relative = f"{hours}h ago"
    elif minutes > 0:
        rest = seconds % 60
        human = _plural(minutes, "minute") + (f" {_plural(rest, 'second')}" if rest else "") + " ago"
        short = f"{minutes}m" + (f" {rest}s" if rest else "")
        relative = f"{minutes}m ago"
    else:
        human = f"{_plural(seconds, 'second')} ago"
        short = f"{seconds}s"
        relative = "Just now"

    return AgeInfo(age_ms, seconds, minutes, hours, human, short, relative)


def status_message(status: CacheStatus, assessment: StalenessAssessment) -> StatusMessage:
    if not status.ready:
        if status.error:
            return StatusMessage(
                "error",
                "Cache Error",
                f"Cache failed to load: {status.error}",
                "Check configuration and retry",
            )
        return StatusMessage("loading", "Loading Cache", "Loading exchange rates...", "Please wait")

    relative = age_info(status.age).relative_time
    level = assessment.level
    if level is StalenessLevel.FRESH:
        return StatusMessage("success", "Rates Current", f"Exchange rates updated {relative}", None)
    if level is StalenessLevel.STALE:
        return StatusMessage(
            "warning",
            "Rates Slightly Outdated",
            f"Exchange rates from {relative}",
            "Refreshing in background",
        )
    if level is StalenessLevel.VERY_STALE:
        return StatusMessage(
            "error", "Rates Outdated", f"Exchange rates from {relative}", "Manual refresh recommended"
        )
    if level is StalenessLevel.CRITICAL_STALE:
        return StatusMessage(
            "critical",
            "Rates Very Outdated",
            f"Exchange rates from {relative}",
            "Immediate refresh required",
        )
    return StatusMessage(
        "error", "No Rate Data", "No exchange rate data available", "Check connection and API key"
    )


_COLORS = {
    StalenessLevel.FRESH: "#28a745",
    StalenessLevel.STALE: "#ffc107",
    StalenessLevel.VERY_STALE: "#fd7e14",
    StalenessLevel.CRITICAL_STALE: "#dc3545",
    StalenessLevel.NO_DATA: "#6c757d",
}
_ICONS = {
    StalenessLevel.FRESH: "check-circle",
    StalenessLevel.STALE: "exclamation-triangle",
    StalenessLevel.VERY_STALE: "exclamation-circle",
    StalenessLevel.CRITICAL_STALE: "times-circle",
    StalenessLevel.NO_DATA: "question-circle",
}
_BADGES = {
    StalenessLevel.FRESH: "Current",
    StalenessLevel.STALE: "Stale",
    StalenessLevel.VERY_STALE: "Outdated",
    StalenessLevel.CRITICAL_STALE: "Critical",
    StalenessLevel.NO_DATA: "No Data",
}
_PRIORITIES = {
    StalenessLevel.FRESH: 1,
    StalenessLevel.STALE: 2,
    StalenessLevel.VERY_STALE: 3,
    StalenessLevel.CRITICAL_STALE: 4,
    StalenessLevel.NO_DATA: 5,
}


def indicators(assessment: StalenessAssessment) -> StalenessIndicators:
    level = assessment.level
    return StalenessIndicators(
        show_warning=assessment.is_stale,
        show_error=assessment.severity == "error",
        show_critical=assessment.is_critical,
        color=_COLORS[level],
        icon=_ICONS[level],
        badge=_BADGES[level],
        css_class=f"cache-status-{level.value}",
        priority=_PRIORITIES[level],
    )


def recommendations(status: CacheStatus, assessment: StalenessAssessment) -> List[Recommendation]:
    if not status.ready:
        if status.error:
            return [
                Recommendation("error", "high", "Check API key configuration", "verify_api_key"),
                Recommendation("error", "medium", "Verify internet connection", "check_connection"),
            ]
        return []

    level = assessment.level
    if level is StalenessLevel.STALE:
        return [Recommendation("info", "low", "Cache will refresh automatically", "wait_for_refresh")]
    if level is StalenessLevel.VERY_STALE:
        return [
            Recommendation(
                "warning", "medium", "Consider manual refresh for latest rates", "manual_refresh"
            )
        ]
    if level is StalenessLevel.CRITICAL_STALE:
        return [
            Recommendation("error", "high", "Immediate refresh strongly recommended", "force_refresh"),
            Recommendation("warning", "medium", "Check background refresh system", "check_refresh_system"),
        ]
    if level is StalenessLevel.NO_DATA:
        return [Recommendation("error", "critical", "Initialize cache system", "initialize_cache")]
    return []


# --- Monitor ---------------------------------------------------------------


class FreshnessMonitor:
    """Derive detailed status from a :class:`RateCacheStore` and track tier changes.

    Events (see :attr:`hooks`):

    * ``tier_change``: ``{previous_level, current_level, assessment, timestamp}``
    * ``critical``: ``{level, assessment, timestamp}`` when the new tier is critical
    * ``status_change``: the :class:`DetailedStatus` recorded by :meth:`record_snapshot`
    """

    def __init__(
        self,
        store: RateCacheStore,
        *,
        thresholds: Optional[StalenessThresholds] = None,
        max_history: int = DEFAULT_HISTORY_SIZE,
        clock: Clock = time.time,
    ) -> None:
        if store is None:
            raise ValueError("FreshnessMonitor requires a RateCacheStore")
        self._store = store
        self._thresholds = thresholds or StalenessThresholds()
        self._clock = clock
        self._lock = Lock()
        self._history: Deque[DetailedStatus] = deque(maxlen=max(int(max_history), 1))
        self._last_level: Optional[StalenessLevel] = None
        self._current: Optional[DetailedStatus] = None
        self._last_update: Optional[int] = None
        self.hooks = EventHooks(MONITOR_EVENTS)

    @property
    def thresholds(self) -> StalenessThresholds:
        return self._thresholds

    @property
    def last_level(self) -> Optional[StalenessLevel]:
        return self._last_level

    @property
    def last_update(self) -> Optional[int]:
        return self._last_update

    def assess(self) -> StalenessAssessment:
        return classify(self._store.age(), self._thresholds)

    def get_detailed_status(self) -> DetailedStatus:
        status = self._store.status(self._thresholds.stale_ms)
        assessment = classify(status.age, self._thresholds)
        detailed = DetailedStatus(
            status=status,
            assessment=assessment,
            age_info=age_info(status.age),
            message=status_message(status, assessment),
            indicators=indicators(assessment),
            recommendations=tuple(recommendations(status, assessment)),
            timestamp=now_ms(self._clock),
        )
        with self._lock:
            self._current = detailed
            self._last_update = detailed.timestamp
        self.check_transition(assessment)
        return detailed

    def check_transition(self, assessment: StalenessAssessment) -> bool:
        """Compare ``assessment`` against the last tier seen and emit on change."""

        with self._lock:
            previous = self._last_level
            if previous is assessment.level:
                return False
            self._last_level = assessment.level

        logger.info(
            "Staleness level changed: %s -> %s",
            previous.value if previous else None,
            assessment.level.value,
        )
        timestamp = now_ms(self._clock)
        self.hooks.emit(
            "tier_change",
            {
                "previous_level": previous,
                "current_level": assessment.level,
                "assessment": assessment,
                "timestamp": timestamp,
            },
        )
        if assessment.is_critical:
            self.hooks.emit(
                "critical",
                {"level": assessment.level, "assessment": assessment, "timestamp": timestamp},
            )
        return True

    def record_snapshot(self) -> DetailedStatus:
        """Refresh the status, append it to the history and emit ``status_change``."""

        detailed = replace(self.get_detailed_status(), recorded_at=now_ms(self._clock))
        with self._lock:
            self._history.append(detailed)
        self.hooks.emit("status_change", detailed)
        return detailed

    def history(self, limit: int = 10) -> List[DetailedStatus]:
        with self._lock:
            items = list(self._history)
        if limit <= 0:
            return []
        return items[-limit:]

    def staleness_stats(self) -> StalenessStats:
        with self._lock:
            items = list(self._history)
        if not items:
            return StalenessStats(total_entries=0)

        level_counts: Dict[str, int] = {}
        ages: List[int] = []
        stale_count = 0
        longest_stale = 0
        for entry in items:
            level = entry.assessment.level.value
            level_counts[level] = level_counts.get(level, 0) + 1
            age = entry.status.age
            if entry.assessment.is_stale:
                stale_count += 1
                if age is not None:
                    longest_stale = max(longest_stale, age)
            if age is not None:
                ages.append(age)

        return StalenessStats(
            total_entries=len(items),
            level_counts=level_counts,
            average_age=(sum(ages) / len(ages)) if ages else None,
            longest_stale_age=longest_stale if stale_count else None,
            stale_percentage=stale_count / len(items) * 100,
        )

    def update_thresholds(
        self,
        *,
        stale_ms: Optional[int] = None,
        very_stale_ms: Optional[int] = None,
        critical_ms: Optional[int] = None,
    ) -> bool:
        """Apply the positive values given; return ``True`` when anything changed."""

        changes: Dict[str, int] = {}
        for name, value in (
            ("stale_ms", stale_ms),
            ("very_stale_ms", very_stale_ms),
            ("critical_ms", critical_ms),
        ):
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                continue
            changes[name] = value
        if not changes:
            return False
        self._thresholds = replace(self._thresholds, **changes)
        logger.info("Staleness thresholds updated: %s", self._thresholds)
        return True

    def cached_status(self) -> Optional[DetailedStatus]:
        return self._current

    def reset(self) -> None:
        with self._lock:
            self._history.clear()
            self._current = None
            self._last_level = None
            self._last_update = None


__all__ = [
    "AgeInfo",
    "DetailedStatus",
    "FreshnessMonitor",
    "Recommendation",
    "StalenessAssessment",
    "StalenessIndicators",
    "StalenessLevel",
    "StalenessStats",
    "StalenessThresholds",
    "StatusMessage",
    "age_info",
    "classify",
    "indicators",
    "recommendations",
    "status_message",
]
