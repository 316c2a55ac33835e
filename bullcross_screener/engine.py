from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from .analyzer import SymbolAnalyzer
from .config import Config
from .models import Signal
from .notifier.telegram import TelegramNotifier
from .providers.bybit import BybitProvider
from .store import SignalStore

log = logging.getLogger("engine")

UpdateCallback = Callable[[List[Signal]], Union[None, Awaitable[None]]]


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class ScanState:
    """Everything the scan loop mutates. Owned by one engine, one event loop."""

    store: SignalStore
    instruments: List[str] = field(default_factory=list)
    scanning: bool = False
    scan_count: int = 0
    last_scan_ms: Optional[int] = None
    last_scan_new: int = 0


def build_provider(cfg: Config) -> BybitProvider:
    p = cfg.provider
    if p.type != "bybit":
        raise ValueError(f"Unsupported provider type: {p.type}")
    return BybitProvider(
        testnet=p.testnet,
        category=p.category,
        quote_coin=p.quote_coin,
        rest_timeout_s=p.rest_timeout_s,
        rest_max_retries=p.rest_max_retries,
        rest_backoff_s=p.rest_backoff_s,
        rest_conn_limit=p.rest_conn_limit,
        rest_conn_limit_per_host=p.rest_conn_limit_per_host,
    )


def build_notifier(cfg: Config) -> TelegramNotifier:
    return TelegramNotifier(
        token=cfg.telegram.token,
        chat_ids=cfg.telegram.chat_ids or [],
        alerts_cfg=cfg.alerts,
        disable_web_page_preview=cfg.telegram.disable_web_page_preview,
        enabled=cfg.telegram.enabled,
    )


class ScreeningEngine:
    def __init__(self, cfg: Config, *, provider=None, analyzer=None, notifier=None):
        self.cfg = cfg
        self.provider = provider if provider is not None else build_provider(cfg)
        self.analyzer = analyzer if analyzer is not None else SymbolAnalyzer(self.provider, cfg.strategy)
        self.notifier = notifier if notifier is not None else build_notifier(cfg)
        sc = cfg.scanner
        self.state = ScanState(
            store=SignalStore(
                seen_capacity=sc.seen_capacity,
                seen_trim_to=sc.seen_trim_to,
                visible_capacity=sc.visible_capacity,
            )
        )
        self._observers: List[UpdateCallback] = []
        self._task: Optional[asyncio.Task] = None

    # ---- instruments -------------------------------------------------

    async def initialize(self) -> None:
        log.info("initialize_start")
        try:
            symbols = await self.provider.list_tradable_symbols()
        except Exception as e:
            log.error("initialize_failed err=%r", e)
            await self._notify_error(e)
            return

        whitelist = [s.upper() for s in (self.cfg.provider.symbols or [])]
        if whitelist:
            tradable = set(symbols)
            missing = [s for s in whitelist if s not in tradable]
            if missing:
                log.warning("whitelist_not_tradable symbols=%s", ",".join(missing))
            symbols = [s for s in whitelist if s in tradable]

        self.state.instruments = list(symbols)
        log.info("instruments_loaded count=%d quote=%s", len(symbols), self.cfg.provider.quote_coin)

    # ---- scanning ----------------------------------------------------

    async def run_scan_cycle(self) -> Optional[List[Signal]]:
        """One pass over every instrument.

        Returns the new unique signals, or None when another scan already
        holds the guard (the trigger is dropped, not queued).
        """
        st = self.state
        if st.scanning:
            log.info("scan_skipped reason=in_progress")
            return None
        st.scanning = True
        t0 = time.monotonic()
        try:
            if not st.instruments:
                await self.initialize()

            found = await self._scan_batches(st.instruments)
            fresh = st.store.admit(found)

            st.scan_count += 1
            st.last_scan_ms = _now_ms()
            st.last_scan_new = len(fresh)
            log.info(
                "scan_done symbols=%d found=%d new=%d visible=%d seen=%d elapsed=%.1fs",
                len(st.instruments),
                len(found),
                len(fresh),
                len(st.store),
                st.store.seen_count,
                time.monotonic() - t0,
            )

            if fresh:
                await self._notify_batch(fresh)
            return fresh
        except Exception as e:
            log.exception("scan_failed err=%s", e)
            await self._notify_error(e)
            return []
        finally:
            st.scanning = False

    async def _scan_batches(self, symbols: Sequence[str]) -> List[Signal]:
        batch_size = max(1, int(self.cfg.scanner.batch_size))
        delay = float(self.cfg.scanner.batch_delay_s)
        found: List[Signal] = []

        for i in range(0, len(symbols), batch_size):
            batch = list(symbols[i:i + batch_size])
            results = await asyncio.gather(*[self.analyzer.analyze(sym) for sym in batch], return_exceptions=True)
            for sym, res in zip(batch, results):
                if isinstance(res, BaseException):
                    log.warning("analyze_failed symbol=%s err=%r", sym, res)
                elif res is not None:
                    found.append(res)

            # rate-limit courtesy between batches
            if delay > 0 and i + batch_size < len(symbols):
                await asyncio.sleep(delay)
        return found

    async def refresh(self) -> Optional[List[Signal]]:
        """Scan once, then hand the visible list to every observer."""
        fresh = await self.run_scan_cycle()
        await self._publish()
        return fresh

    # ---- read side ---------------------------------------------------

    def get_visible_signals(self) -> List[Signal]:
        return self.state.store.visible()

    get_signals = get_visible_signals

    def status(self) -> Dict[str, Any]:
        st = self.state
        return {
            "instruments": len(st.instruments),
            "scanning": st.scanning,
            "scanCount": st.scan_count,
            "lastScanTime": st.last_scan_ms,
            "lastScanNew": st.last_scan_new,
            "visible": len(st.store),
            "running": self.running,
        }

    # ---- observers / periodic driver ----------------------------------

    def subscribe(self, callback: UpdateCallback) -> None:
        if callback not in self._observers:
            self._observers.append(callback)

    def unsubscribe(self, callback: UpdateCallback) -> None:
        if callback in self._observers:
            self._observers.remove(callback)

    async def _publish(self) -> None:
        signals = self.get_visible_signals()
        for cb in list(self._observers):
            try:
                res = cb(signals)
                if inspect.isawaitable(res):
                    await res
            except Exception as e:
                log.warning("observer_failed callback=%r err=%r", cb, e)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_forever(self) -> None:
        interval = float(self.cfg.scanner.scan_interval_s)
        log.info("screener_start interval=%.0fs batch_size=%d", interval, self.cfg.scanner.batch_size)
        await self.initialize()
        while True:
            await self.refresh()
            await asyncio.sleep(interval)

    def start(self, on_update: Optional[UpdateCallback] = None) -> asyncio.Task:
        """Schedule the periodic scanner on the running loop."""
        if on_update is not None:
            self.subscribe(on_update)
        if self.running:
            return self._task
        self._task = asyncio.get_running_loop().create_task(self.run_forever())
        return self._task

    async def stop(self) -> None:
        """Cancel the periodic scanner and wait for it to unwind."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            log.warning("scanner_task_failed err=%r", e)
        log.info("screener_stopped")

    # ---- notifications (best effort) ----------------------------------

    async def _notify_batch(self, signals: List[Signal]) -> None:
        try:
            await self.notifier.notify_batch(signals)
        except Exception as e:
            log.warning("notify_batch_failed count=%d err=%r", len(signals), e)

    async def _notify_error(self, err: BaseException) -> None:
        try:
            await self.notifier.notify_error(err)
        except Exception as e:
            log.warning("notify_error_failed err=%r", e)
