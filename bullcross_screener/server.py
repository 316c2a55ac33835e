from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, List, Optional, Sequence, Set

import websockets
from aiohttp import web
from websockets.exceptions import ConnectionClosed

from .models import Signal

log = logging.getLogger("server")


def signals_payload(signals: Sequence[Signal]) -> List[dict]:
    return [s.to_dict() for s in signals]


def signals_message(signals: Sequence[Signal]) -> str:
    return json.dumps({"type": "signals", "data": signals_payload(signals)}, separators=(",", ":"))


class SignalsHub:
    """WebSocket fan-out of the visible signal list.

    Registered as an engine observer: ``engine.subscribe(hub.broadcast)``.
    """

    def __init__(self, engine, host: str = "0.0.0.0", port: int = 3001):
        self.engine = engine
        self.host = host
        self.port = port
        self.clients: Set[Any] = set()
        self._server = None

    async def start(self) -> None:
        self._server = await websockets.serve(self._handler, self.host, self.port)
        log.info("ws_listening host=%s port=%d", self.host, self.port)

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

    async def _handler(self, ws) -> None:
        self.clients.add(ws)
        log.info("ws_client_connected clients=%d", len(self.clients))
        try:
            await ws.send(signals_message(self.engine.get_visible_signals()))
            async for msg in ws:
                await self.on_message(ws, msg)
        except ConnectionClosed:
            pass
        finally:
            self.clients.discard(ws)
            log.info("ws_client_disconnected clients=%d", len(self.clients))

    async def on_message(self, ws, msg) -> None:
        try:
            data = json.loads(msg)
        except (TypeError, ValueError) as e:
            log.warning("ws_bad_message err=%s", e)
            return
        if isinstance(data, dict) and data.get("type") == "refresh":
            await ws.send(signals_message(self.engine.get_visible_signals()))

    async def broadcast(self, signals: Sequence[Signal]) -> int:
        """Send ``signals`` to every open client; returns how many got it."""
        if not self.clients:
            return 0
        msg = signals_message(signals)
        clients = list(self.clients)
        results = await asyncio.gather(*[ws.send(msg) for ws in clients], return_exceptions=True)
        sent = 0
        for ws, res in zip(clients, results):
            if isinstance(res, ConnectionClosed):
                self.clients.discard(ws)
            elif isinstance(res, BaseException):
                log.warning("ws_send_failed err=%r", res)
            else:
                sent += 1
        return sent


class SignalsApi:
    def __init__(self, engine):
        self.engine = engine

    async def get_signals(self, request: web.Request) -> web.Response:
        return web.json_response(signals_payload(self.engine.get_visible_signals()))

    async def refresh(self, request: web.Request) -> web.Response:
        try:
            fresh = await self.engine.refresh()
        except Exception as e:
            log.exception("refresh_failed err=%s", e)
            return web.json_response({"error": "Failed to refresh signals"}, status=500)
        return web.json_response({
            "success": True,
            "skipped": fresh is None,
            "newSignals": len(fresh or []),
            "signals": signals_payload(self.engine.get_visible_signals()),
        })

    async def status(self, request: web.Request) -> web.Response:
        return web.json_response(self.engine.status())

    async def health(self, request: web.Request) -> web.Response:
        return web.json_response({"ok": True})


def build_app(engine) -> web.Application:
    api = SignalsApi(engine)
    app = web.Application()
    app.router.add_get("/api/signals", api.get_signals)
    app.router.add_post("/api/refresh", api.refresh)
    app.router.add_get("/api/status", api.status)
    app.router.add_get("/health", api.health)
    return app


async def start_http(app: web.Application, host: str, port: int) -> web.AppRunner:
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    log.info("http_listening host=%s port=%d", host, port)
    return runner


async def serve(engine, host: str, http_port: int, ws_port: int, *, stop_event: Optional[asyncio.Event] = None) -> None:
    """Run HTTP + WebSocket endpoints and the periodic scanner until cancelled."""
    hub = SignalsHub(engine, host, ws_port)
    runner = await start_http(build_app(engine), host, http_port)
    await hub.start()
    engine.start(hub.broadcast)
    try:
        if stop_event is None:
            stop_event = asyncio.Event()
        await stop_event.wait()
    finally:
        await engine.stop()
        engine.unsubscribe(hub.broadcast)
        await hub.stop()
        await runner.cleanup()
