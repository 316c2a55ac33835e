from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple


@dataclass(frozen=True)
class Candle:
    timestamp: int  # open time, ms
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True)
class Ticker:
    symbol: str
    price: float
    price_change_24h: float  # percent
    volume_24h: float


class Strength(str, Enum):
    STRONG = "strong"
    WEAK = "weak"


@dataclass(frozen=True)
class MACDCross:
    type: str
    strength: int  # non-positive bars before the flip
    current: float
    previous: float

    def to_dict(self) -> Dict[str, object]:
        return {
            "type": self.type,
            "strength": self.strength,
            "current": self.current,
            "previous": self.previous,
        }


@dataclass(frozen=True)
class StochRSICross:
    type: str
    k: float
    d: float
    oversold: bool

    def to_dict(self) -> Dict[str, object]:
        return {"type": self.type, "k": self.k, "d": self.d, "oversold": self.oversold}


@dataclass(frozen=True)
class Signal:
    symbol: str
    timestamp: int  # scan wall-clock, ms
    price: float
    price_change_24h: float
    volume_24h: float
    strength: Strength
    confirmed_timeframes: Tuple[str, ...]
    macd_signal: MACDCross
    stoch_rsi_signal: StochRSICross
    price_above_ma: bool
    candle_4h_time: int

    @property
    def identity(self) -> Tuple[str, int, str]:
        return (self.symbol, self.timestamp, self.strength.value)

    @property
    def is_strong(self) -> bool:
        return self.strength is Strength.STRONG

    def to_dict(self) -> Dict[str, object]:
        """JSON payload shape served to web clients."""
        return {
            "symbol": self.symbol,
            "timestamp": self.timestamp,
            "price": self.price,
            "priceChange24h": self.price_change_24h,
            "volume24h": self.volume_24h,
            "strength": self.strength.value,
            "confirmedTimeframes": list(self.confirmed_timeframes),
            "macdSignal": self.macd_signal.to_dict(),
            "stochRSISignal": self.stoch_rsi_signal.to_dict(),
            "priceAboveMA": self.price_above_ma,
            "candle4hTime": self.candle_4h_time,
        }
