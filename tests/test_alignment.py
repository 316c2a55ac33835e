import pytest

from bullcross_screener.alignment import find_enclosing_candle
from bullcross_screener.errors import UnknownTimeframe
from bullcross_screener.models import Candle
from bullcross_screener.timeframes import MINUTE_MS, get_timeframe, tf_label, tf_minutes


def _c(ts: int, close: float = 1.0) -> Candle:
    return Candle(timestamp=ts, open=close, high=close, low=close, close=close, volume=1.0)


def _candles(tf_min: int, start: int, n: int):
    return [_c(start + i * tf_min * MINUTE_MS) for i in range(n)]


def test_timeframe_table():
    assert tf_minutes("5") == 5
    assert tf_minutes("15") == 15
    assert tf_minutes("60") == 60
    assert tf_minutes("240") == 240
    assert tf_minutes("D") == 1440
    assert [tf_label(x) for x in ("5", "15", "60", "D")] == ["5m", "15m", "60m", "1D"]
    assert get_timeframe("D").duration_ms == 86_400_000


def test_unknown_timeframe_fails_immediately():
    with pytest.raises(UnknownTimeframe):
        tf_minutes("7")
    with pytest.raises(ValueError):
        find_enclosing_candle([], 0, "W")


def test_find_enclosing_candle_inside_interval():
    candles = _candles(15, 0, 10)
    target = 3 * 15 * MINUTE_MS + 7 * MINUTE_MS
    hit = find_enclosing_candle(candles, target, "15")
    assert hit is not None
    idx, candle = hit
    assert idx == 3
    assert candle is candles[3]


def test_interval_is_half_open():
    candles = _candles(5, 0, 4)
    assert find_enclosing_candle(candles, 5 * MINUTE_MS, "5")[0] == 1
    assert find_enclosing_candle(candles, 5 * MINUTE_MS - 1, "5")[0] == 0


def test_target_outside_window():
    candles = _candles(60, 10 * 60 * MINUTE_MS, 5)
    assert find_enclosing_candle(candles, 0, "60") is None
    assert find_enclosing_candle(candles, 15 * 60 * MINUTE_MS, "60") is None
    assert find_enclosing_candle([], 0, "60") is None


def test_daily_candle_encloses_4h_open():
    day = 1440 * MINUTE_MS
    candles = _candles(1440, 0, 5)
    target = 2 * day + 16 * 60 * MINUTE_MS  # 16:00 on day 2
    assert find_enclosing_candle(candles, target, "D")[0] == 2
