from __future__ import annotations

from bullcross_screener.indicators import macd, rsi, stoch_rsi
from bullcross_screener.rules import detect_macd_bullish_cross, detect_stoch_rsi_bullish_cross, price_above_sma


def v_shape(n_down: int = 40, n_up: int = 12):
    """Slow decline then a sharp rally, enough to flip the MACD histogram."""
    down = [100.0 - 0.5 * i for i in range(n_down)]
    up = [down[-1] + 1.5 * (i + 1) for i in range(n_up)]
    return down + up


def main():
    prices = v_shape()
    res = macd(prices)
    print("MACD histogram tail:", [round(h, 4) for h in res.histogram[-6:]])

    # walk forward bar by bar and report where the flip lands
    for end in range(3, len(prices) + 1):
        cross = detect_macd_bullish_cross(res.histogram[:end])
        if cross is not None:
            print(f"bullish cross at bar {end - 1}: red_bars={cross.strength} current={cross.current:.4f}")

    r = rsi(prices)
    print("RSI len/offset:", len(r), r.offset, "last:", round(r.last, 2))

    st = stoch_rsi(prices)
    print("StochRSI %K offset:", st.k.offset, "%D offset:", st.d.offset)
    print("StochRSI cross:", detect_stoch_rsi_bullish_cross(st.k, st.d))
    print("Price above SMA10:", price_above_sma(prices, 10))


if __name__ == "__main__":
    main()
