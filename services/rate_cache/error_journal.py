"""Translate rate cache failures into user-facing reports and keep a bounded log."""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from enum import Enum
from threading import Lock
from typing import Any, Deque, Dict, List, Optional

from shared.errors import (
    ConfigInvalidError,
    UpstreamAuthError,
    UpstreamError,
    UpstreamForbiddenError,
    UpstreamNetworkError,
    UpstreamRateLimitedError,
    UpstreamUnavailableError,
)
from shared.time_provider import Clock, now_ms

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 100
DEFAULT_RATE_LIMIT_RETRY_SECONDS = 60
_RECENT_WINDOW_MS = 3_600_000


class ErrorKind(str, Enum):
    AUTHENTICATION = "authentication_error"
    NETWORK = "network_error"
    RATE_LIMIT = "rate_limit_error"
    CACHE_LOAD = "cache_load_error"
    CONFIGURATION = "configuration_error"
    API = "api_error"


@dataclass(frozen=True)
class ErrorReport:
    kind: ErrorKind
    user_message: str
    technical_message: str
    suggestions: tuple[str, ...]
    action: str
    severity: str
    can_retry: bool
    retry_delay_ms: Optional[int] = None
    status_code: Optional[int] = None
    validation_errors: tuple[str, ...] = ()

    def as_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["kind"] = self.kind.value
        return payload


@dataclass(frozen=True)
class JournalEntry:
    kind: ErrorKind
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: int = 0


def mask_api_key(api_key: Optional[str]) -> str:
    """Keep the first and last four characters of ``api_key``; mask the rest."""

    if not api_key or len(api_key) < 8:
        return "***"
    return api_key[:4] + "*" * (len(api_key) - 8) + api_key[-4:]


_PHASE_MESSAGES = {
    "startup": "Failed to load exchange rates at startup.",
    "refresh": "Failed to refresh exchange rates in background.",
    "manual": "Manual cache refresh failed.",
    "unknown": "Cache operation failed.",
}

_PHASE_SUGGESTIONS = {
    "startup": (
        "Check your internet connection",
        "Verify your API key configuration",
        "Restart the service once the problem is fixed",
        "Check the logs for detailed errors",
    ),
    "refresh": (
        "Background refresh will retry automatically",
        "Current cached rates will continue to be used",
        "Check your internet connection if issues persist",
    ),
    "manual": (
        "Try again in a few moments",
        "Check your internet connection",
        "Verify your API key is still valid",
    ),
    "unknown": (
        "Restart the service",
        "Check your internet connection",
        "Verify the configuration",
    ),
}


def _caused_by(exc: BaseException, kind: type[BaseException]) -> bool:
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        if isinstance(current, kind):
            return True
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return False


class ErrorJournal:
    """Build :class:`ErrorReport` objects and remember recent failures.

    Network failures flip the journal into offline mode until
    :meth:`mark_online` is called (the runtime does it after a successful
    cycle).
    """

    def __init__(self, *, max_entries: int = DEFAULT_MAX_ENTRIES, clock: Clock = time.time) -> None:
        self._clock = clock
        self._lock = Lock()
        self._entries: Deque[JournalEntry] = deque(maxlen=max(int(max_entries), 1))
        self._offline = False
        self._last_network_check: Optional[int] = None

    # Reports --------------------------------------------------------------
    def describe(
        self,
        exc: BaseException,
        *,
        phase: str = "unknown",
        has_cache: bool = False,
        api_key: Optional[str] = None,
    ) -> ErrorReport:
        if isinstance(exc, UpstreamAuthError):
            return self.authentication_error(exc, api_key=api_key)
        if isinstance(exc, UpstreamRateLimitedError):
            retry_after = exc.retry_after
            if retry_after is None:
                retry_after = DEFAULT_RATE_LIMIT_RETRY_SECONDS
            return self.rate_limit_error(exc, retry_after=int(retry_after))
        if isinstance(exc, UpstreamNetworkError):
            return self.network_error(exc, has_cache=has_cache)
        if isinstance(exc, UpstreamError):
            return self.api_error(exc)
        if isinstance(exc, ConfigInvalidError):
            return self.configuration_error(exc.errors or [str(exc)])
        if _caused_by(exc, UpstreamNetworkError):
            self.set_offline(True)
        return self.cache_load_error(exc, phase=phase)

    def authentication_error(self, exc: BaseException, *, api_key: Optional[str] = None) -> ErrorReport:
        self._record(ErrorKind.AUTHENTICATION, message=str(exc), api_key=mask_api_key(api_key))
        return ErrorReport(
            kind=ErrorKind.AUTHENTICATION,
            user_message="API authentication failed. Please check your CoinGecko API key.",
            technical_message=str(exc),
            suggestions=(
                "Verify your CoinGecko API key is correct",
                "Check if your API key has expired",
                "Ensure you have sufficient API quota remaining",
                "Generate a new API key on CoinGecko if needed",
            ),
            action="UPDATE_API_KEY",
            severity="HIGH",
            can_retry=False,
            status_code=getattr(exc, "status_code", None),
        )

    def network_error(self, exc: BaseException, *, has_cache: bool = False) -> ErrorReport:
        self.set_offline(True)
        self._record(ErrorKind.NETWORK, message=str(exc), has_cache=has_cache)
        if has_cache:
            return ErrorReport(
                kind=ErrorKind.NETWORK,
                user_message="Network connection lost. Using cached exchange rates.",
                technical_message=str(exc),
                suggestions=(
                    "Check your internet connection",
                    "Cached rates will be used until connection is restored",
                    "Rate information may become outdated over time",
                ),
                action="MONITOR_CONNECTION",
                severity="MEDIUM",
                can_retry=True,
                retry_delay_ms=30_000,
            )
        return ErrorReport(
            kind=ErrorKind.NETWORK,
            user_message="Network connection lost. Unable to fetch current exchange rates.",
            technical_message=str(exc),
            suggestions=(
                "Check your internet connection",
                "Retry once the connection is back",
                "Ensure no firewall is blocking the requests",
            ),
            action="RESTORE_CONNECTION",
            severity="HIGH",
            can_retry=True,
            retry_delay_ms=30_000,
        )

    def rate_limit_error(
        self, exc: BaseException, *, retry_after: int = DEFAULT_RATE_LIMIT_RETRY_SECONDS
    ) -> ErrorReport:
        self._record(ErrorKind.RATE_LIMIT, message=str(exc), retry_after=retry_after)
        return ErrorReport(
            kind=ErrorKind.RATE_LIMIT,
            user_message=f"API rate limit exceeded. Retrying in {retry_after} seconds.",
            technical_message=str(exc),
            suggestions=(
                "Wait for the rate limit to reset",
                "Consider a paid CoinGecko API plan for higher limits",
                "Reduce the frequency of cache refreshes if possible",
            ),
            action="WAIT_AND_RETRY",
            severity="MEDIUM",
            can_retry=True,
            retry_delay_ms=retry_after * 1000,
            status_code=429,
        )

    def cache_load_error(self, exc: BaseException, *, phase: str = "unknown") -> ErrorReport:
        key = phase if phase in _PHASE_MESSAGES else "unknown"
        self._record(ErrorKind.CACHE_LOAD, message=str(exc), phase=key)
        startup = key == "startup"
        return ErrorReport(
            kind=ErrorKind.CACHE_LOAD,
            user_message=_PHASE_MESSAGES[key],
            technical_message=str(exc),
            suggestions=_PHASE_SUGGESTIONS[key],
            action="RELOAD_REQUIRED" if startup else "AUTO_RETRY",
            severity="HIGH" if startup else "MEDIUM",
            can_retry=True,
            retry_delay_ms=5_000 if startup else 300_000,
        )

    def configuration_error(self, validation_errors: List[str]) -> ErrorReport:
        errors = tuple(str(item) for item in validation_errors)
        self._record(ErrorKind.CONFIGURATION, validation_errors=list(errors))
        return ErrorReport(
            kind=ErrorKind.CONFIGURATION,
            user_message="Configuration has errors that need to be fixed.",
            technical_message="; ".join(errors),
            suggestions=(
                "Review the rate cache settings",
                "Check API key format and validity",
                "Verify all settings are within acceptable ranges",
                "Reset to default settings if needed",
            ),
            action="FIX_CONFIGURATION",
            severity="HIGH",
            can_retry=False,
            validation_errors=errors,
        )

    def api_error(self, exc: BaseException) -> ErrorReport:
        status_code = getattr(exc, "status_code", None)
        self._record(ErrorKind.API, message=str(exc), status_code=status_code)

        user_message = "API request failed."
        severity = "MEDIUM"
        suggestions: tuple[str, ...] = ("Try again in a few moments", "Check your internet connection")
        if status_code == 400:
            user_message = "Invalid API request format."
            severity = "HIGH"
            suggestions = (
                "This appears to be a configuration issue",
                "Please report this error if it persists",
            )
        elif isinstance(exc, UpstreamForbiddenError):
            user_message = "API access forbidden. Check your API key permissions."
            severity = "HIGH"
        elif isinstance(exc, UpstreamUnavailableError):
            user_message = "CoinGecko API is temporarily unavailable."
            suggestions = (
                "The issue is on CoinGecko's side",
                "Try again in a few minutes",
                "Cached rates will be used if available",
            )

        return ErrorReport(
            kind=ErrorKind.API,
            user_message=user_message,
            technical_message=str(exc),
            suggestions=suggestions,
            action="RETRY_LATER",
            severity=severity,
            can_retry=True,
            retry_delay_ms=60_000,
            status_code=status_code,
        )

    @staticmethod
    def format_user_message(report: ErrorReport, include_recovery: bool = True) -> str:
        message = report.user_message
        if include_recovery and report.suggestions:
            lines = "\n".join(f"• {item}" for item in report.suggestions)
            message = f"{message}\n\nSuggestions:\n{lines}"
        return message

    # Log ------------------------------------------------------------------
    def _record(self, kind: ErrorKind, **details: Any) -> None:
        entry = JournalEntry(kind=kind, details=details, timestamp=now_ms(self._clock))
        with self._lock:
            self._entries.append(entry)
        logger.error("[rate-cache] %s: %s", kind.value, details)

    def entries(self, limit: int = 20) -> List[JournalEntry]:
        with self._lock:
            items = list(self._entries)
        if limit <= 0:
            return []
        return items[-limit:]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    @property
    def is_offline(self) -> bool:
        return self._offline

    @property
    def last_network_check(self) -> Optional[int]:
        return self._last_network_check

    def set_offline(self, offline: bool) -> None:
        self._offline = bool(offline)
        self._last_network_check = now_ms(self._clock)

    def mark_online(self) -> None:
        self.set_offline(False)

    def statistics(self) -> Dict[str, Any]:
        cutoff = now_ms(self._clock) - _RECENT_WINDOW_MS
        with self._lock:
            items = list(self._entries)
        by_kind: Dict[str, int] = {}
        recent = 0
        for entry in items:
            by_kind[entry.kind.value] = by_kind.get(entry.kind.value, 0) + 1
            if entry.timestamp > cutoff:
                recent += 1
        return {
            "total_errors": len(items),
            "errors_by_type": by_kind,
            "recent_errors": recent,
            "is_offline": self._offline,
        }

    def export(self) -> Dict[str, Any]:
        return {
            "entries": [
                {"kind": e.kind.value, "details": dict(e.details), "timestamp": e.timestamp}
                for e in self.entries(limit=len(self._entries) or 1)
            ],
            "statistics": self.statistics(),
            "timestamp": now_ms(self._clock),
        }


__all__ = [
    "ErrorJournal",
    "ErrorKind",
    "ErrorReport",
    "JournalEntry",
    "mask_api_key",
]
