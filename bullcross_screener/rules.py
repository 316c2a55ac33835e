from __future__ import annotations
from typing import Optional, Sequence

from .indicators import sma
from .models import MACDCross, StochRSICross

BULLISH_CROSS = "bullish_cross"

STOCH_OVERBOUGHT = 80.0
STOCH_OVERSOLD = 20.0


def detect_macd_bullish_cross(histogram: Optional[Sequence[float]]) -> Optional[MACDCross]:
    """First positive histogram bar after one or more non-positive bars."""
    if histogram is None or len(histogram) < 3:
        return None

    current = histogram[-1]
    previous = histogram[-2]
    if not (current > 0 and previous <= 0):
        return None

    red = 0
    i = len(histogram) - 2
    while i >= 0 and histogram[i] <= 0:
        red += 1
        i -= 1

    return MACDCross(type=BULLISH_CROSS, strength=red, current=float(current), previous=float(previous))


def detect_stoch_rsi_bullish_cross(
    k: Optional[Sequence[float]],
    d: Optional[Sequence[float]],
    *,
    overbought: float = STOCH_OVERBOUGHT,
    oversold: float = STOCH_OVERSOLD,
) -> Optional[StochRSICross]:
    if k is None or d is None or len(k) < 2 or len(d) < 2:
        return None

    cur_k, prev_k = k[-1], k[-2]
    cur_d, prev_d = d[-1], d[-2]

    if prev_k <= prev_d and cur_k > cur_d and cur_k < overbought:
        return StochRSICross(type=BULLISH_CROSS, k=float(cur_k), d=float(cur_d), oversold=cur_k < oversold)
    return None


def price_above_sma(prices: Sequence[float], period: int = 10) -> bool:
    ma = sma(prices, period)
    if ma is None or not ma:
        return False
    return float(prices[-1]) > ma.last
