from __future__ import annotations

import argparse
import pprint
from dataclasses import asdict

from bullcross_screener.config import load_config


def main():
    p = argparse.ArgumentParser(description="Print the effective screener config (file + env overrides)")
    p.add_argument("--config", default=None, help="Path to YAML config")
    args = p.parse_args()

    cfg = load_config(args.config)
    data = asdict(cfg)
    if data["telegram"]["token"]:
        data["telegram"]["token"] = "***"

    print("EFFECTIVE CONFIG:")
    pprint.pprint(data, sort_dicts=False)


if __name__ == "__main__":
    main()
