"""In-process crypto/fiat rate cache with staleness monitoring and background refresh."""

from .config import RateCacheConfig
from .conversion import ConversionResult, convert_crypto, convert_fiat
from .error_journal import ErrorJournal, ErrorKind, ErrorReport, mask_api_key
from .events import EventHooks
from .freshness import (
    DetailedStatus,
    FreshnessMonitor,
    StalenessAssessment,
    StalenessLevel,
    StalenessThresholds,
    classify,
)
from .pipeline import AcquisitionPhase, AcquisitionPipeline, CycleResult, Stage, StageOutcome
from .runtime import RateCacheRuntime
from .scheduler import BackgroundScheduler, SchedulerState, SchedulerStatus
from .storage import InMemorySettingsStore, JsonFileSettingsStore, SettingsStore
from .store import CacheStatus, RateCacheStore, RateEntry

__all__ = [
    "AcquisitionPhase",
    "AcquisitionPipeline",
    "BackgroundScheduler",
    "CacheStatus",
    "ConversionResult",
    "CycleResult",
    "DetailedStatus",
    "ErrorJournal",
    "ErrorKind",
    "ErrorReport",
    "EventHooks",
    "FreshnessMonitor",
    "InMemorySettingsStore",
    "JsonFileSettingsStore",
    "RateCacheConfig",
    "RateCacheRuntime",
    "RateCacheStore",
    "RateEntry",
    "SchedulerState",
    "SchedulerStatus",
    "SettingsStore",
    "Stage",
    "StageOutcome",
    "StalenessAssessment",
    "StalenessLevel",
    "StalenessThresholds",
    "classify",
    "convert_crypto",
    "convert_fiat",
    "mask_api_key",
]
