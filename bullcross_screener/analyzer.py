from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional, Tuple

from .alignment import find_enclosing_candle
from .config import StrategyConfig
from .indicators import macd, stoch_rsi
from .models import Signal, Strength
from .rules import BULLISH_CROSS, detect_macd_bullish_cross, detect_stoch_rsi_bullish_cross, price_above_sma
from .timeframes import get_timeframe, tf_label

log = logging.getLogger("analyzer")


def _now_ms() -> int:
    return int(time.time() * 1000)


class SymbolAnalyzer:
    """Runs the 4H MACD / 1D StochRSI pipeline for one symbol at a time.

    Holds no per-symbol state between calls. ``provider`` must expose
    ``fetch_klines(symbol, timeframe, limit)`` and ``fetch_ticker(symbol)``.
    """

    def __init__(self, provider, cfg: Optional[StrategyConfig] = None, *, clock: Callable[[], int] = _now_ms):
        self.provider = provider
        self.cfg = cfg or StrategyConfig()
        self.clock = clock
        # Misconfigured timeframes fail here, not per symbol.
        for tf in [self.cfg.primary_tf, self.cfg.confirmation_tf, *self.cfg.cross_check_tfs]:
            get_timeframe(tf)

    def _macd(self, closes: List[float]):
        return macd(closes, self.cfg.macd_fast, self.cfg.macd_slow, self.cfg.macd_signal)

    async def analyze(self, symbol: str) -> Optional[Signal]:
        try:
            return await self._analyze(symbol)
        except Exception as e:
            log.warning("analyze_failed symbol=%s err=%r", symbol, e)
            return None

    async def _analyze(self, symbol: str) -> Optional[Signal]:
        c = self.cfg

        primary = await self.provider.fetch_klines(symbol, c.primary_tf, c.primary_limit)
        if len(primary) < c.primary_min_candles:
            log.debug("skip symbol=%s reason=primary_short bars=%d", symbol, len(primary))
            return None

        primary_macd = self._macd([k.close for k in primary])
        if primary_macd is None:
            return None
        macd_signal = detect_macd_bullish_cross(primary_macd.histogram)
        if macd_signal is None:
            return None

        daily = await self.provider.fetch_klines(symbol, c.confirmation_tf, c.confirmation_limit)
        if len(daily) < c.confirmation_min_candles:
            log.debug("skip symbol=%s reason=daily_short bars=%d", symbol, len(daily))
            return None

        daily_closes = [k.close for k in daily]
        stoch = stoch_rsi(daily_closes, c.rsi_period, c.stoch_period, c.k_period, c.d_period)
        if stoch is None:
            return None
        stoch_signal = detect_stoch_rsi_bullish_cross(
            stoch.k, stoch.d, overbought=c.stoch_overbought, oversold=c.stoch_oversold
        )
        if stoch_signal is None:
            return None

        if not price_above_sma(daily_closes, c.ma_period):
            return None

        ticker = await self.provider.fetch_ticker(symbol)
        if ticker is None:
            return None

        candle_4h_time = primary[-1].timestamp
        is_strong, confirmed = await self.confirm_timeframes(symbol, candle_4h_time)

        sig = Signal(
            symbol=symbol,
            timestamp=self.clock(),
            price=ticker.price,
            price_change_24h=ticker.price_change_24h,
            volume_24h=ticker.volume_24h,
            strength=Strength.STRONG if is_strong else Strength.WEAK,
            confirmed_timeframes=tuple(confirmed),
            macd_signal=macd_signal,
            stoch_rsi_signal=stoch_signal,
            price_above_ma=True,
            candle_4h_time=candle_4h_time,
        )
        log.info(
            "signal_found symbol=%s strength=%s confirmed=%s macd_red=%d stoch_k=%.2f oversold=%s",
            symbol,
            sig.strength.value,
            ",".join(confirmed) or "-",
            macd_signal.strength,
            stoch_signal.k,
            stoch_signal.oversold,
        )
        return sig

    async def confirm_timeframes(self, symbol: str, target_ts: int) -> Tuple[bool, List[str]]:
        """Count the cross-check timeframes that show their own MACD flip at ``target_ts``."""
        confirmed: List[str] = []
        for tf in self.cfg.cross_check_tfs:
            try:
                if await self._confirms_on(symbol, tf, target_ts):
                    confirmed.append(tf_label(tf))
            except Exception as e:
                log.warning("confirm_tf_failed symbol=%s tf=%s err=%r", symbol, tf, e)
        return len(confirmed) >= self.cfg.strong_min_confirmations, confirmed

    async def _confirms_on(self, symbol: str, tf: str, target_ts: int) -> bool:
        c = self.cfg
        candles = await self.provider.fetch_klines(symbol, tf, c.cross_check_limit)
        if len(candles) < c.cross_check_min_candles:
            return False

        result = self._macd([k.close for k in candles])
        if result is None:
            return False

        hit = find_enclosing_candle(candles, target_ts, tf)
        if hit is None:
            return False

        idx = result.histogram.index_for(hit[0])
        if idx is None or idx < 2:
            return False

        cross = detect_macd_bullish_cross(result.histogram[:idx + 1])
        return cross is not None and cross.type == BULLISH_CROSS
