from __future__ import annotations

import argparse
import asyncio
import json
import logging

from bullcross_screener.analyzer import SymbolAnalyzer
from bullcross_screener.config import load_config
from bullcross_screener.engine import build_provider


async def _run(symbols, cfg) -> None:
    provider = build_provider(cfg)
    try:
        analyzer = SymbolAnalyzer(provider, cfg.strategy)
        for sym in symbols:
            sig = await analyzer.analyze(sym.upper())
            print(sym.upper(), json.dumps(sig.to_dict(), indent=2) if sig else "no signal")
    finally:
        await provider.close()


def main():
    p = argparse.ArgumentParser(description="Run the signal pipeline for a few symbols against live Bybit data")
    p.add_argument("symbols", nargs="+", help="e.g. BTCUSDT ETHUSDT")
    p.add_argument("--config", default=None, help="Path to YAML config")
    args = p.parse_args()

    cfg = load_config(args.config)
    logging.basicConfig(level=logging.DEBUG, format="%(asctime)s | %(levelname)s | %(name)s | %(message)s")
    asyncio.run(_run(args.symbols, cfg))


if __name__ == "__main__":
    main()
