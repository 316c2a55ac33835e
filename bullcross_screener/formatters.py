from __future__ import annotations

import html
import re
from datetime import datetime, timezone, timedelta
from typing import Optional, Sequence

from .models import Signal, Strength


_TZ_RE = re.compile(r"^UTC([+-])(\d{1,2})$")


def parse_tz(tz_str: str) -> timezone:
    tz_str = (tz_str or "UTC").strip().upper()
    if tz_str == "UTC":
        return timezone.utc
    m = _TZ_RE.match(tz_str)
    if not m:
        raise ValueError(f"Unsupported timezone format: {tz_str} (use 'UTC' or 'UTC+3' etc.)")
    sign = 1 if m.group(1) == "+" else -1
    hours = int(m.group(2))
    return timezone(timedelta(hours=sign * hours))


def _fmt_ms(ts_ms: int, tz_str: str = "UTC") -> str:
    tz = parse_tz(tz_str)
    dt = datetime.fromtimestamp(ts_ms / 1000.0, tz=timezone.utc).astimezone(tz)
    return dt.strftime("%Y-%m-%d %H:%M")


def _escape_markdown_v2(text: str) -> str:
    specials = r"\_*[]()~`>#+-=|{}.!"
    return "".join("\\" + ch if ch in specials else ch for ch in str(text))


def _escape_text(text: str, parse_mode: str) -> str:
    if parse_mode == "MARKDOWNV2":
        return _escape_markdown_v2(text)
    return html.escape(str(text), quote=False)


def _bold(text: str, parse_mode: str) -> str:
    escaped = _escape_text(text, parse_mode)
    if parse_mode == "MARKDOWNV2":
        return f"*{escaped}*"
    return f"<b>{escaped}</b>"


def _fmt_price(val: Optional[float]) -> str:
    if val is None:
        return "-"
    # fixed-point, up to 10 decimals, never exponent notation
    text = f"{val:.10f}".rstrip("0").rstrip(".")
    return text or "0"


def _fmt_change(pct: float) -> str:
    return f"{pct:+.2f}%"


def _parse_mode(cfg) -> str:
    return (getattr(cfg, "parse_mode", "HTML") or "HTML").upper()


def _tz(cfg) -> str:
    return getattr(cfg, "timezone", "UTC") or "UTC"


def chart_url(signal: Signal, cfg) -> str:
    base = getattr(cfg, "chart_url_base", "") or "https://www.bybit.com/trade/usdt/"
    return f"{base}{signal.symbol}"


def format_signal(signal: Signal, cfg) -> str:
    """Single-signal alert."""
    pm = _parse_mode(cfg)
    emoji = "🔥" if signal.is_strong else "⚡"
    tz = _tz(cfg)

    lines = [
        f"{emoji} {_bold(f'{signal.strength.value.upper()} SIGNAL', pm)}",
        "",
        f"{_bold('Pair:', pm)} {_escape_text(signal.symbol, pm)}",
        f"{_bold('Price:', pm)} {_escape_text(_fmt_price(signal.price), pm)}",
        f"{_bold('24h Change:', pm)} {_escape_text(_fmt_change(signal.price_change_24h), pm)}",
        "",
        _bold("Signals:", pm),
        _escape_text(f"• 4H MACD: {signal.macd_signal.type} ({signal.macd_signal.strength} red bars)", pm),
    ]

    stoch_line = f"• 1D StochRSI: {signal.stoch_rsi_signal.type} K={signal.stoch_rsi_signal.k:.1f}"
    if signal.stoch_rsi_signal.oversold:
        stoch_line += " (oversold)"
    lines.append(_escape_text(stoch_line, pm))
    lines.append(_escape_text(f"• Price above 10 MA: {'yes' if signal.price_above_ma else 'no'}", pm))

    if signal.is_strong:
        lines.append("")
        tfs = ", ".join(signal.confirmed_timeframes) or "N/A"
        lines.append(f"{_bold('Confirmed Timeframes:', pm)} {_escape_text(tfs, pm)}")

    lines.append("")
    lines.append(f"{_bold('Time:', pm)} {_escape_text(_fmt_ms(signal.timestamp, tz) + ' ' + tz, pm)}")
    lines.append(f"{_bold('Chart:', pm)} {_escape_text(chart_url(signal, cfg), pm)}")

    footer = (getattr(cfg, "footer", "") or "").strip()
    if footer:
        lines.append("")
        lines.append(_escape_text(footer, pm))
    return "\n".join(lines)


def _batch_line(signal: Signal, pm: str) -> str:
    return _escape_text(
        f"• {signal.symbol} - {_fmt_price(signal.price)} ({_fmt_change(signal.price_change_24h)})", pm
    )


def format_batch(signals: Sequence[Signal], cfg, now_ms: int) -> str:
    """Digest of one scan cycle's new signals; each list is capped with an "... and N more" line."""
    pm = _parse_mode(cfg)
    max_strong = int(getattr(cfg, "max_strong_listed", 25))
    max_weak = int(getattr(cfg, "max_weak_listed", 10))
    tz = _tz(cfg)

    strong = [s for s in signals if s.strength is Strength.STRONG]
    weak = [s for s in signals if s.strength is Strength.WEAK]

    lines = [
        f"📊 {_bold('CRYPTO SIGNALS UPDATE', pm)}",
        _escape_text(f"{_fmt_ms(now_ms, tz)} {tz}", pm),
        "",
    ]

    if strong:
        lines.append(f"🔥 {_bold(f'STRONG SIGNALS ({len(strong)}):', pm)}")
        lines.extend(_batch_line(s, pm) for s in strong[:max_strong])
        if len(strong) > max_strong:
            lines.append(_escape_text(f"... and {len(strong) - max_strong} more", pm))
        lines.append("")

    if weak:
        lines.append(f"⚡ {_bold(f'WEAK SIGNALS ({len(weak)}):', pm)}")
        lines.extend(_batch_line(s, pm) for s in weak[:max_weak])
        if len(weak) > max_weak:
            lines.append(_escape_text(f"... and {len(weak) - max_weak} more", pm))

    footer = (getattr(cfg, "footer", "") or "").strip()
    if footer:
        lines.append("")
        lines.append(_escape_text(footer, pm))
    return "\n".join(lines).rstrip("\n")


def format_error(err: BaseException, cfg, now_ms: int) -> str:
    pm = _parse_mode(cfg)
    tz = _tz(cfg)
    msg = str(err) or err.__class__.__name__
    return "\n".join([
        f"🚨 {_bold('SCREENER ERROR', pm)}",
        "",
        f"{_bold('Error:', pm)} {_escape_text(msg, pm)}",
        f"{_bold('Time:', pm)} {_escape_text(_fmt_ms(now_ms, tz) + ' ' + tz, pm)}",
    ])
