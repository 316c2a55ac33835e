import asyncio

import pytest

import bullcross_screener.analyzer as analyzer_mod
from bullcross_screener.analyzer import SymbolAnalyzer
from bullcross_screener.config import StrategyConfig, default_config
from bullcross_screener.engine import ScreeningEngine
from bullcross_screener.errors import FetchFailure, UnknownTimeframe
from bullcross_screener.indicators import MACDResult, Series, StochRSIResult
from bullcross_screener.models import Candle, Strength, Ticker
from bullcross_screener.timeframes import MINUTE_MS

H4 = 240 * MINUTE_MS
DAY = 1440 * MINUTE_MS
T = 7000 * H4  # open time of the newest 4H candle
T_DAY = (T // DAY) * DAY

# Each timeframe's closes start at a distinct level so the patched MACD can
# tell which series it was handed.
BASE = {"240": 240.0, "5": 5.0, "15": 15.0, "60": 60.0, "D": 1440.0}
MINUTES = {"240": 240, "5": 5, "15": 15, "60": 60, "D": 1440}

CROSS = [-2.0, -1.0, -0.3, 0.4]
NO_CROSS = [0.5, 0.5, 0.5]


def _c(ts: int, close: float) -> Candle:
    return Candle(timestamp=ts, open=close, high=close, low=close, close=close, volume=1.0)


def _series(tf: str, last_open: int, n: int, step: float = 0.0):
    dur = MINUTES[tf] * MINUTE_MS
    return [_c(last_open - (n - 1 - i) * dur, BASE[tf] + i * step) for i in range(n)]


def _default_klines():
    return {
        "240": _series("240", T, 100),
        "D": _series("D", T_DAY, 50, step=0.5),  # rising, so close > SMA10
        "5": _series("5", T, 100),
        "15": _series("15", T, 100),
        "60": _series("60", T, 100),
    }


class FakeProvider:
    def __init__(self, klines=None, ticker="default"):
        self.klines = klines if klines is not None else _default_klines()
        self.ticker = Ticker("BTCUSDT", 65000.0, 2.5, 1.2e9) if ticker == "default" else ticker
        self.calls = []

    async def list_tradable_symbols(self):
        return ["BTCUSDT"]

    async def fetch_klines(self, symbol, timeframe, limit):
        self.calls.append((symbol, timeframe, limit))
        data = self.klines.get(timeframe, [])
        if isinstance(data, Exception):
            raise data
        return list(data[-limit:])

    async def fetch_ticker(self, symbol):
        self.calls.append((symbol, "ticker", None))
        if isinstance(self.ticker, Exception):
            raise self.ticker
        return self.ticker


def _patch_macd(monkeypatch, hists):
    """Replace MACD with fixed histograms keyed by the series' first close."""

    def fake_macd(prices, fast=12, slow=26, signal=9):
        h = hists.get(round(prices[0]))
        if h is None:
            return None
        if len(h) < len(prices):
            h = [0.2] * (len(prices) - len(h)) + list(h)
        s = Series(tuple(h), 0)
        return MACDResult(macd=s, signal=s, histogram=s)

    monkeypatch.setattr(analyzer_mod, "macd", fake_macd)


def _patch_stoch(monkeypatch, k=(10.0, 15.0), d=(12.0, 13.0)):
    def fake_stoch(prices, rsi_period=14, stoch_period=14, k_period=3, d_period=3):
        return StochRSIResult(stoch_rsi=Series((0.0,), 0), k=Series(tuple(k), 0), d=Series(tuple(d), 0))

    monkeypatch.setattr(analyzer_mod, "stoch_rsi", fake_stoch)


def _analyze(provider, cfg=None):
    an = SymbolAnalyzer(provider, cfg or StrategyConfig(), clock=lambda: 1_700_000_000_000)
    return asyncio.run(an.analyze("BTCUSDT"))


def test_strong_signal_with_two_confirmations(monkeypatch):
    _patch_macd(monkeypatch, {240: CROSS, 5: CROSS, 15: CROSS, 60: NO_CROSS, 1440: NO_CROSS})
    _patch_stoch(monkeypatch)

    sig = _analyze(FakeProvider())
    assert sig is not None
    assert sig.strength is Strength.STRONG
    assert sig.confirmed_timeframes == ("5m", "15m")
    assert sig.macd_signal.strength == 3
    assert sig.stoch_rsi_signal.k == 15.0
    assert sig.stoch_rsi_signal.oversold is True
    assert sig.price_above_ma is True
    assert sig.candle_4h_time == T
    assert sig.timestamp == 1_700_000_000_000
    assert sig.price == 65000.0
    assert sig.price_change_24h == 2.5
    assert sig.volume_24h == 1.2e9


def test_all_four_timeframes_confirm(monkeypatch):
    _patch_macd(monkeypatch, {240: CROSS, 5: CROSS, 15: CROSS, 60: CROSS, 1440: CROSS})
    _patch_stoch(monkeypatch)

    sig = _analyze(FakeProvider())
    assert sig.confirmed_timeframes == ("5m", "15m", "60m", "1D")
    assert sig.is_strong


def test_single_confirmation_is_weak(monkeypatch):
    _patch_macd(monkeypatch, {240: CROSS, 5: NO_CROSS, 15: NO_CROSS, 60: CROSS, 1440: NO_CROSS})
    _patch_stoch(monkeypatch)

    sig = _analyze(FakeProvider())
    assert sig.strength is Strength.WEAK
    assert sig.confirmed_timeframes == ("60m",)


def test_no_primary_flip_stops_before_daily_fetch(monkeypatch):
    _patch_macd(monkeypatch, {240: NO_CROSS})
    _patch_stoch(monkeypatch)

    provider = FakeProvider()
    assert _analyze(provider) is None
    assert [c[1] for c in provider.calls] == ["240"]


def test_short_primary_series_is_not_an_error(monkeypatch):
    _patch_macd(monkeypatch, {240: CROSS})
    klines = _default_klines()
    klines["240"] = _series("240", T, 49)
    provider = FakeProvider(klines)
    assert _analyze(provider) is None
    assert len(provider.calls) == 1


def test_short_daily_series(monkeypatch):
    _patch_macd(monkeypatch, {240: CROSS})
    _patch_stoch(monkeypatch)
    klines = _default_klines()
    klines["D"] = _series("D", T_DAY, 29, step=0.5)
    assert _analyze(FakeProvider(klines)) is None


def test_stoch_without_cross(monkeypatch):
    _patch_macd(monkeypatch, {240: CROSS})
    _patch_stoch(monkeypatch, k=(30.0, 35.0), d=(20.0, 22.0))
    assert _analyze(FakeProvider()) is None


def test_stoch_cross_overbought(monkeypatch):
    _patch_macd(monkeypatch, {240: CROSS})
    _patch_stoch(monkeypatch, k=(70.0, 85.0), d=(75.0, 80.0))
    assert _analyze(FakeProvider()) is None


def test_price_below_daily_ma(monkeypatch):
    _patch_macd(monkeypatch, {240: CROSS})
    _patch_stoch(monkeypatch)
    klines = _default_klines()
    klines["D"] = _series("D", T_DAY, 50, step=-0.5)
    provider = FakeProvider(klines)
    assert _analyze(provider) is None
    assert ("BTCUSDT", "ticker", None) not in provider.calls


def test_missing_ticker(monkeypatch):
    _patch_macd(monkeypatch, {240: CROSS, 5: CROSS, 15: CROSS})
    _patch_stoch(monkeypatch)
    assert _analyze(FakeProvider(ticker=None)) is None


def test_fetch_failure_is_contained(monkeypatch):
    _patch_macd(monkeypatch, {240: CROSS})
    klines = _default_klines()
    klines["240"] = FetchFailure("boom", symbol="BTCUSDT")
    assert _analyze(FakeProvider(klines)) is None


def test_confirmation_uses_enclosing_candle_not_latest(monkeypatch):
    # 5m series runs 10 bars past the 4H open; the cross sits on the bar that
    # encloses T and is followed by red bars, so only the truncated view fires.
    hist_5m = [0.2] * 87 + [-1.0, -1.0, 0.5] + [-1.0] * 10
    _patch_macd(monkeypatch, {240: CROSS, 5: hist_5m, 15: CROSS, 60: NO_CROSS, 1440: NO_CROSS})
    _patch_stoch(monkeypatch)
    klines = _default_klines()
    klines["5"] = _series("5", T + 10 * 5 * MINUTE_MS, 100)

    sig = _analyze(FakeProvider(klines))
    assert sig.confirmed_timeframes == ("5m", "15m")
    assert sig.is_strong


def test_confirmation_skips_target_outside_window(monkeypatch):
    _patch_macd(monkeypatch, {240: CROSS, 5: CROSS, 15: CROSS, 60: NO_CROSS, 1440: NO_CROSS})
    _patch_stoch(monkeypatch)
    klines = _default_klines()
    # 5m window ends before the 4H candle opened
    klines["5"] = _series("5", T - 60 * MINUTE_MS, 100)

    sig = _analyze(FakeProvider(klines))
    assert sig.confirmed_timeframes == ("15m",)
    assert sig.strength is Strength.WEAK


def test_confirmation_fetch_failure_skips_only_that_timeframe(monkeypatch):
    _patch_macd(monkeypatch, {240: CROSS, 5: CROSS, 15: CROSS, 60: CROSS, 1440: NO_CROSS})
    _patch_stoch(monkeypatch)
    klines = _default_klines()
    klines["15"] = FetchFailure("timeout", symbol="BTCUSDT")

    sig = _analyze(FakeProvider(klines))
    assert sig.confirmed_timeframes == ("5m", "60m")
    assert sig.is_strong


def test_confirmation_skips_short_series(monkeypatch):
    _patch_macd(monkeypatch, {240: CROSS, 5: CROSS, 15: CROSS, 60: NO_CROSS, 1440: NO_CROSS})
    _patch_stoch(monkeypatch)
    klines = _default_klines()
    klines["5"] = _series("5", T, 49)

    sig = _analyze(FakeProvider(klines))
    assert sig.confirmed_timeframes == ("15m",)


def test_unknown_timeframe_fails_at_construction():
    with pytest.raises(UnknownTimeframe):
        SymbolAnalyzer(FakeProvider(), StrategyConfig(cross_check_tfs=["5", "7"]))


def test_flat_market_yields_no_signal_with_real_indicators():
    klines = {tf: _series(tf, T if tf != "D" else T_DAY, 100) for tf in MINUTES}
    assert _analyze(FakeProvider(klines)) is None


class RecordingNotifier:
    def __init__(self):
        self.batches = []
        self.errors = []

    async def notify_batch(self, signals):
        self.batches.append(list(signals))

    async def notify_error(self, err):
        self.errors.append(err)


def _scan_with_engine(provider):
    cfg = default_config()
    cfg.scanner.batch_delay_s = 0.0
    notifier = RecordingNotifier()
    engine = ScreeningEngine(cfg, provider=provider, notifier=notifier)
    assert isinstance(engine.analyzer, SymbolAnalyzer)
    fresh = asyncio.run(engine.run_scan_cycle())
    return engine, notifier, fresh


def test_engine_scan_reports_strong_signal(monkeypatch):
    _patch_macd(monkeypatch, {240: CROSS, 5: CROSS, 15: CROSS, 60: NO_CROSS, 1440: NO_CROSS})
    _patch_stoch(monkeypatch)

    engine, notifier, fresh = _scan_with_engine(FakeProvider())
    assert [s.symbol for s in fresh] == ["BTCUSDT"]
    assert len(notifier.batches) == 1
    sig = notifier.batches[0][0]
    assert sig.strength is Strength.STRONG
    assert sig.confirmed_timeframes == ("5m", "15m")
    assert sig.macd_signal.strength == 3
    assert engine.get_visible_signals() == [sig]
    assert notifier.errors == []


def test_engine_scan_reports_weak_signal(monkeypatch):
    _patch_macd(monkeypatch, {240: CROSS, 5: NO_CROSS, 15: NO_CROSS, 60: CROSS, 1440: NO_CROSS})
    _patch_stoch(monkeypatch)

    _, notifier, _ = _scan_with_engine(FakeProvider())
    assert [[s.strength for s in b] for b in notifier.batches] == [[Strength.WEAK]]
    assert notifier.batches[0][0].confirmed_timeframes == ("60m",)


def test_engine_scan_without_flip_sends_nothing(monkeypatch):
    _patch_macd(monkeypatch, {240: NO_CROSS})
    _patch_stoch(monkeypatch)

    engine, notifier, fresh = _scan_with_engine(FakeProvider())
    assert fresh == []
    assert notifier.batches == []
    assert notifier.errors == []
    assert engine.get_visible_signals() == []
    assert engine.state.scan_count == 1
