from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional

import aiohttp

from ..errors import FetchFailure
from ..models import Candle, Ticker
from ..timeframes import get_timeframe

log = logging.getLogger("bybit")

# Bybit signals IP rate limiting with 403, plus the usual 418/429.
_RATE_LIMIT_STATUSES = (403, 418, 429)
_RATE_LIMIT_RET_CODES = (10006, 10018)


def _rest_base(testnet: bool) -> str:
    return "https://api-testnet.bybit.com" if testnet else "https://api.bybit.com"


def parse_kline_rows(rows: Iterable[List[Any]]) -> List[Candle]:
    """Bybit returns klines newest-first; the screener works oldest-first."""
    out: List[Candle] = []
    for row in rows:
        # [0]=start time, [1..4]=OHLC, [5]=volume
        out.append(Candle(
            timestamp=int(row[0]),
            open=float(row[1]),
            high=float(row[2]),
            low=float(row[3]),
            close=float(row[4]),
            volume=float(row[5]),
        ))
    out.reverse()
    return out


def parse_ticker(item: Dict[str, Any]) -> Ticker:
    return Ticker(
        symbol=str(item.get("symbol", "")),
        price=float(item.get("lastPrice") or 0.0),
        # price24hPcnt is a fraction (0.0123 == +1.23%)
        price_change_24h=float(item.get("price24hPcnt") or 0.0) * 100.0,
        volume_24h=float(item.get("volume24h") or 0.0),
    )


def tradable_symbols(items: Iterable[Dict[str, Any]], quote_coin: str = "USDT") -> List[str]:
    return [
        str(it["symbol"])
        for it in items
        if it.get("quoteCoin") == quote_coin and it.get("status") == "Trading" and it.get("symbol")
    ]


class BybitProvider:
    def __init__(
        self,
        *,
        testnet: bool = False,
        category: str = "linear",
        quote_coin: str = "USDT",
        rest_timeout_s: int = 20,
        rest_max_retries: int = 4,
        rest_backoff_s: float = 0.8,
        rest_conn_limit: int = 40,
        rest_conn_limit_per_host: int = 10,
    ):
        self.base_url = _rest_base(testnet)
        self.category = category
        self.quote_coin = quote_coin
        self.rest_timeout_s = rest_timeout_s

        # REST robustness
        self.rest_max_retries = rest_max_retries
        self.rest_backoff_s = rest_backoff_s
        self.rest_conn_limit = rest_conn_limit
        self.rest_conn_limit_per_host = rest_conn_limit_per_host

        self._session: Optional[aiohttp.ClientSession] = None

    async def close(self) -> None:
        """Close the shared aiohttp session (best-effort)."""
        if self._session is not None and not self._session.closed:
            await self._session.close()

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(
            total=self.rest_timeout_s,
            connect=min(10, self.rest_timeout_s),
            sock_connect=min(10, self.rest_timeout_s),
            sock_read=max(10, int(self.rest_timeout_s * 0.75)),
        )

    def _connector(self) -> aiohttp.TCPConnector:
        return aiohttp.TCPConnector(
            limit=self.rest_conn_limit,
            limit_per_host=self.rest_conn_limit_per_host,
            ttl_dns_cache=300,
            enable_cleanup_closed=True,
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout(), connector=self._connector())
        return self._session

    async def _get_result(self, path: str, params: Dict[str, Any], *, symbol: str = "") -> Dict[str, Any]:
        """GET a v5 endpoint and return its ``result`` object.

        Retries timeouts, client errors and rate limits with exponential
        backoff; raises FetchFailure once retries run out or the exchange
        reports a non-zero retCode.
        """
        url = self.base_url + path
        sess = await self._get_session()

        backoff = float(self.rest_backoff_s)
        last_err: Optional[BaseException] = None
        for attempt in range(1, int(self.rest_max_retries) + 1):
            try:
                async with sess.get(url, params=params) as resp:
                    if resp.status in _RATE_LIMIT_STATUSES:
                        txt = await resp.text()
                        retry_after = resp.headers.get("Retry-After")
                        sleep_s = float(retry_after) if (retry_after and retry_after.isdigit()) else backoff
                        log.warning(
                            "rest_rate_limited status=%s path=%s symbol=%s sleep=%.1fs body=%s",
                            resp.status,
                            path,
                            symbol,
                            sleep_s,
                            txt[:200],
                        )
                        last_err = FetchFailure(f"rate limited: {resp.status}", symbol=symbol, endpoint=path)
                        await asyncio.sleep(sleep_s)
                        backoff = min(backoff * 2.0, 20.0)
                        continue

                    if resp.status != 200:
                        txt = await resp.text()
                        raise FetchFailure(f"Bybit {path} failed: {resp.status} {txt[:500]}", symbol=symbol, endpoint=path)

                    # Some proxies return a wrong content-type; be tolerant.
                    data = await resp.json(content_type=None)

                ret_code = data.get("retCode")
                if ret_code in _RATE_LIMIT_RET_CODES:
                    log.warning("rest_rate_limited ret_code=%s path=%s symbol=%s sleep=%.1fs", ret_code, path, symbol, backoff)
                    last_err = FetchFailure(f"Bybit API error: {data.get('retMsg')}", symbol=symbol, endpoint=path)
                    await asyncio.sleep(backoff)
                    backoff = min(backoff * 2.0, 20.0)
                    continue
                if ret_code != 0:
                    raise FetchFailure(f"Bybit API error: {data.get('retMsg')}", symbol=symbol, endpoint=path)
                return data.get("result") or {}

            except (asyncio.TimeoutError, aiohttp.ClientError) as e:
                last_err = e
                if attempt >= int(self.rest_max_retries):
                    break
                log.warning(
                    "rest_timeout_or_client_err attempt=%d/%d path=%s symbol=%s backoff=%.1fs err=%s",
                    attempt,
                    self.rest_max_retries,
                    path,
                    symbol,
                    backoff,
                    e,
                )
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2.0, 20.0)

        if isinstance(last_err, FetchFailure):
            raise last_err
        raise FetchFailure(f"Bybit {path} failed after {self.rest_max_retries} attempts: {last_err!r}", symbol=symbol, endpoint=path) from last_err

    async def list_tradable_symbols(self) -> List[str]:
        symbols: List[str] = []
        cursor = ""
        while True:
            params = {"category": self.category, "limit": 1000}
            if cursor:
                params["cursor"] = cursor
            result = await self._get_result("/v5/market/instruments-info", params)
            symbols.extend(tradable_symbols(result.get("list") or [], self.quote_coin))
            cursor = result.get("nextPageCursor") or ""
            if not cursor:
                break
        return symbols

    async def fetch_klines(self, symbol: str, timeframe: str, limit: int) -> List[Candle]:
        tf = get_timeframe(timeframe)
        params = {
            "category": self.category,
            "symbol": symbol.upper(),
            "interval": tf.code,
            "limit": int(limit),
        }
        result = await self._get_result("/v5/market/kline", params, symbol=symbol)
        return parse_kline_rows(result.get("list") or [])

    async def fetch_ticker(self, symbol: str) -> Optional[Ticker]:
        params = {"category": self.category, "symbol": symbol.upper()}
        result = await self._get_result("/v5/market/tickers", params, symbol=symbol)
        items = result.get("list") or []
        if not items:
            return None
        return parse_ticker(items[0])
