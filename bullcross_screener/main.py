from __future__ import annotations

import argparse
import asyncio
import json
import logging

from .config import load_config
from .engine import ScreeningEngine
from .server import serve, signals_payload


def _setup_logging(level: str) -> None:
    lvl = getattr(logging, (level or "INFO").upper(), logging.INFO)
    logging.basicConfig(
        level=lvl,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


async def _scan_once(engine: ScreeningEngine) -> None:
    await engine.initialize()
    await engine.run_scan_cycle()
    print(json.dumps(signals_payload(engine.get_visible_signals()), indent=2))


def main(argv=None) -> int:
    p = argparse.ArgumentParser(description="Bullcross Screener - 4H MACD / 1D StochRSI multi-TF screener")
    p.add_argument("--config", default=None, help="Path to YAML config (defaults + env when omitted)")
    p.add_argument("--once", action="store_true", help="Run a single scan cycle, print signals as JSON and exit")
    args = p.parse_args(argv)

    cfg = load_config(args.config)
    _setup_logging(cfg.app.log_level)

    engine = ScreeningEngine(cfg)

    async def _run() -> None:
        try:
            if args.once:
                await _scan_once(engine)
            elif cfg.server.enabled:
                await serve(engine, cfg.server.host, cfg.server.http_port, cfg.server.ws_port)
            else:
                await engine.run_forever()
        finally:
            # Close shared REST session cleanly.
            try:
                await engine.provider.close()
            except Exception as e:
                logging.getLogger("main").warning("provider_close_failed err=%r", e)

    try:
        asyncio.run(_run())
        return 0
    except KeyboardInterrupt:
        return 0
    except Exception as e:
        logging.getLogger("main").exception("fatal err=%s", e)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
