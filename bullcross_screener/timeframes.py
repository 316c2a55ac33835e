from __future__ import annotations
from dataclasses import dataclass
from typing import Dict

from .errors import UnknownTimeframe

MINUTE_MS = 60_000


@dataclass(frozen=True)
class Timeframe:
    code: str  # Bybit kline interval
    minutes: int
    label: str

    @property
    def duration_ms(self) -> int:
        return self.minutes * MINUTE_MS


# Every interval the screener fetches or aligns against.
TIMEFRAMES: Dict[str, Timeframe] = {
    "5": Timeframe("5", 5, "5m"),
    "15": Timeframe("15", 15, "15m"),
    "60": Timeframe("60", 60, "60m"),
    "240": Timeframe("240", 240, "4h"),
    "D": Timeframe("D", 1440, "1D"),
}

PRIMARY_TF = "240"
CONFIRMATION_TF = "D"
CROSS_CHECK_TFS = ("5", "15", "60", "D")


def get_timeframe(code: str) -> Timeframe:
    tf = TIMEFRAMES.get(str(code).strip())
    if tf is None:
        raise UnknownTimeframe(code)
    return tf


def tf_minutes(code: str) -> int:
    return get_timeframe(code).minutes


def tf_label(code: str) -> str:
    return get_timeframe(code).label
