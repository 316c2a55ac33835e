from __future__ import annotations
from collections.abc import Sequence as SequenceABC
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Tuple, Union


@dataclass(frozen=True)
class Series(SequenceABC):
    """Indicator output aligned to a trailing suffix of the input prices.

    ``values[i]`` belongs to input index ``i + offset``. Series computed from
    another Series carry the combined offset, so every index can be mapped
    straight back to the original candle list.
    """

    values: Tuple[float, ...]
    offset: int = 0

    def __len__(self) -> int:
        return len(self.values)

    def __getitem__(self, i):
        if isinstance(i, slice):
            return list(self.values[i])
        return self.values[i]

    def __iter__(self) -> Iterator[float]:
        return iter(self.values)

    @property
    def last(self) -> Optional[float]:
        return self.values[-1] if self.values else None

    def price_index(self, i: int) -> int:
        return i + self.offset

    def index_for(self, price_index: int) -> Optional[int]:
        """Series index for an input index, or None when it falls outside."""
        i = price_index - self.offset
        if i < 0 or i >= len(self.values):
            return None
        return i


@dataclass(frozen=True)
class MACDResult:
    macd: Series
    signal: Series
    histogram: Series


@dataclass(frozen=True)
class StochRSIResult:
    stoch_rsi: Series
    k: Optional[Series]
    d: Optional[Series]


Prices = Union[Sequence[float], Series]


def _base_offset(prices: Prices) -> int:
    return prices.offset if isinstance(prices, Series) else 0


def ema(prices: Prices, period: int) -> Optional[Series]:
    # Seeded with the first price rather than an SMA; early values are biased
    # toward prices[0] and the output is not trimmed.
    if period <= 0 or len(prices) < period:
        return None
    k = 2.0 / (period + 1.0)
    out: List[float] = [float(prices[0])]
    for i in range(1, len(prices)):
        out.append(float(prices[i]) * k + out[i - 1] * (1.0 - k))
    return Series(tuple(out), _base_offset(prices))


def sma(prices: Prices, period: int) -> Optional[Series]:
    if period <= 0 or len(prices) < period:
        return None
    vals = [float(p) for p in prices]
    out: List[float] = []
    for i in range(period - 1, len(vals)):
        out.append(sum(vals[i - period + 1:i + 1]) / period)
    return Series(tuple(out), _base_offset(prices) + period - 1)


def rsi(prices: Prices, period: int = 14) -> Optional[Series]:
    """Wilder RSI.

    Each value is emitted from the averages before the current step is folded
    in, so the series has ``len(prices) - period - 1`` values and the newest
    price difference never reaches the output.
    """
    if period <= 0 or len(prices) < period + 1:
        return None

    gains: List[float] = []
    losses: List[float] = []
    for i in range(1, len(prices)):
        ch = float(prices[i]) - float(prices[i - 1])
        gains.append(ch if ch > 0 else 0.0)
        losses.append(-ch if ch < 0 else 0.0)

    avg_gain = sum(gains[:period]) / period
    avg_loss = sum(losses[:period]) / period

    out: List[float] = []
    for i in range(period, len(gains)):
        if avg_loss == 0:
            out.append(100.0)
        else:
            rs = avg_gain / avg_loss
            out.append(100.0 - (100.0 / (1.0 + rs)))
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period

    return Series(tuple(out), _base_offset(prices) + period)


def macd(prices: Prices, fast: int = 12, slow: int = 26, signal: int = 9) -> Optional[MACDResult]:
    if len(prices) < slow:
        return None
    fast_ema = ema(prices, fast)
    slow_ema = ema(prices, slow)
    if fast_ema is None or slow_ema is None:
        return None

    line = Series(tuple(f - s for f, s in zip(fast_ema, slow_ema)), fast_ema.offset)
    signal_line = ema(line, signal)
    if signal_line is None:
        return None

    hist = Series(tuple(m - s for m, s in zip(line, signal_line)), line.offset)
    return MACDResult(macd=line, signal=signal_line, histogram=hist)


def stoch_rsi(
    prices: Prices,
    rsi_period: int = 14,
    stoch_period: int = 14,
    k_period: int = 3,
    d_period: int = 3,
) -> Optional[StochRSIResult]:
    r = rsi(prices, rsi_period)
    if r is None or stoch_period <= 0 or len(r) < stoch_period:
        return None

    stoch: List[float] = []
    for i in range(stoch_period - 1, len(r)):
        window = r.values[i - stoch_period + 1:i + 1]
        lo = min(window)
        hi = max(window)
        # flat window
        value = 0.0 if hi == lo else (r.values[i] - lo) / (hi - lo)
        stoch.append(value * 100.0)

    stoch_series = Series(tuple(stoch), r.offset + stoch_period - 1)
    k = sma(stoch_series, k_period)
    d = sma(k, d_period) if k is not None else None
    return StochRSIResult(stoch_rsi=stoch_series, k=k, d=d)
