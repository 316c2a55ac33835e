from __future__ import annotations
from typing import Optional, Sequence, Tuple

from .models import Candle
from .timeframes import get_timeframe


def candle_contains(c: Candle, ts_ms: int, duration_ms: int) -> bool:
    return c.timestamp <= ts_ms < c.timestamp + duration_ms


def find_enclosing_candle(
    candles: Sequence[Candle], target_ts: int, timeframe: str
) -> Optional[Tuple[int, Candle]]:
    """Locate the candle on ``timeframe`` whose open interval holds ``target_ts``.

    Returns ``(index, candle)`` for the first match scanning oldest-first, or
    None when the target lies outside the fetched window. Unknown timeframe
    codes raise before any scanning happens.
    """
    duration_ms = get_timeframe(timeframe).duration_ms
    for i, c in enumerate(candles):
        if candle_contains(c, target_ts, duration_ms):
            return i, c
    return None
