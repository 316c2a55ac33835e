from __future__ import annotations

import logging
import time
from typing import List, Optional, Sequence

import aiohttp

from ..formatters import format_batch, format_error, format_signal
from ..models import Signal

log = logging.getLogger("telegram")


class TelegramNotifier:
    def __init__(
        self,
        token: str,
        chat_ids: List[str],
        *,
        alerts_cfg=None,
        disable_web_page_preview: bool = True,
        enabled: bool = True,
    ):
        self.token = (token or "").strip()
        self.chat_ids = [str(x).strip() for x in (chat_ids or []) if str(x).strip()]
        self.alerts_cfg = alerts_cfg
        self.disable_web_page_preview = disable_web_page_preview
        self._enabled = bool(enabled)
        self.api_base = "https://api.telegram.org"

    def enabled(self) -> bool:
        return self._enabled and bool(self.token) and bool(self.chat_ids)

    async def send(self, text: str, *, chat_ids: Optional[List[str]] = None, parse_mode: Optional[str] = None) -> bool:
        if not self.enabled():
            log.debug("telegram_disabled skip_len=%d", len(text))
            return False
        targets = chat_ids or self.chat_ids
        mode = parse_mode or getattr(self.alerts_cfg, "parse_mode", "HTML") or "HTML"
        url = f"{self.api_base}/bot{self.token}/sendMessage"
        ok = True
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=15)) as sess:
            for chat_id in targets:
                payload = {
                    "chat_id": chat_id,
                    "text": text,
                    "parse_mode": mode,
                    "disable_web_page_preview": self.disable_web_page_preview,
                }
                try:
                    async with sess.post(url, json=payload) as resp:
                        if resp.status != 200:
                            body = await resp.text()
                            log.warning("telegram_send_failed chat_id=%s status=%s body=%s", chat_id, resp.status, body[:2000])
                            ok = False
                except Exception as e:
                    log.exception("telegram_send_exception chat_id=%s err=%s", chat_id, e)
                    ok = False
        return ok

    async def notify_signal(self, signal: Signal) -> bool:
        return await self.send(format_signal(signal, self.alerts_cfg))

    async def notify_batch(self, signals: Sequence[Signal]) -> bool:
        if not signals:
            return False
        return await self.send(format_batch(signals, self.alerts_cfg, int(time.time() * 1000)))

    async def notify_error(self, err: BaseException) -> bool:
        return await self.send(format_error(err, self.alerts_cfg, int(time.time() * 1000)))
