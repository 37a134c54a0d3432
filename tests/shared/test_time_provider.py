from __future__ import annotations

from shared.time_provider import TimeProvider, now_ms


def test_now_ms_converts_seconds_clock() -> None:
    assert now_ms(lambda: 1_700_000_000.1234) == 1_700_000_000_123


def test_from_epoch_ms_formats_utc() -> None:
    snapshot = TimeProvider.from_epoch_ms(1_700_000_000_000)

    assert snapshot is not None
    assert str(snapshot) == "2023-11-14 22:13:20"


def test_from_epoch_ms_rejects_missing_values() -> None:
    assert TimeProvider.from_epoch_ms(None) is None
    assert TimeProvider.from_epoch_ms(0) is None
    assert TimeProvider.from_epoch_ms("soon") is None
