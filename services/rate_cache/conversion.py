"""Amount conversions backed by the rate cache."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from .store import RateCacheStore


@dataclass(frozen=True)
class ConversionResult:
    amount: float
    source: str
    target: str
    rate: float
    converted: float
    captured_at: Optional[int] = None


def _valid_amount(amount: float) -> bool:
    return (
        isinstance(amount, (int, float))
        and not isinstance(amount, bool)
        and math.isfinite(float(amount))
    )


def convert_crypto(
    store: RateCacheStore, amount: float, coin_id: str, vs_currency: str
) -> Optional[ConversionResult]:
    """Price ``amount`` units of ``coin_id`` in ``vs_currency``; ``None`` without a rate."""

    if not _valid_amount(amount):
        return None
    entry = store.crypto_entry(coin_id, vs_currency)
    if entry is None:
        return None
    return ConversionResult(
        amount=float(amount),
        source=str(coin_id).lower(),
        target=str(vs_currency).upper(),
        rate=entry.value,
        converted=float(amount) * entry.value,
        captured_at=entry.captured_at,
    )


def convert_fiat(
    store: RateCacheStore, amount: float, from_code: str, to_code: str
) -> Optional[ConversionResult]:
    """Convert between fiat currencies through their USD-relative rates.

    Fiat rates are stored as units per USD, so ``amount / rate(from) * rate(to)``.
    """

    if not _valid_amount(amount):
        return None
    source = str(from_code or "").upper()
    target = str(to_code or "").upper()
    from_entry = store.fiat_entry(source)
    to_entry = store.fiat_entry(target)
    if from_entry is None or to_entry is None or from_entry.value == 0:
        return None
    rate = to_entry.value / from_entry.value
    return ConversionResult(
        amount=float(amount),
        source=source,
        target=target,
        rate=rate,
        converted=float(amount) / from_entry.value * to_entry.value,
        captured_at=min(from_entry.captured_at, to_entry.captured_at),
    )


__all__ = ["ConversionResult", "convert_crypto", "convert_fiat"]
