#!/usr/bin/env python3
"""
Probe how far behind wall clock the publisher releases maps.

For each lag (seconds) the script resolves the identifier for "now - lag" and
asks the upstream whether it exists. The smallest lag that is reliably
published is a good `clock_offset_ms` for that raster class.

Examples:
  python scripts/probe_publish_lag.py --class intensity
  python scripts/probe_publish_lag.py --class acceleration --lags 0 1 2 3 4 --rounds 5
"""

import argparse
import dataclasses
import os
import sys
import time
from typing import Dict, List

# Add the project root to the path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from common.errors import NotYetPublished, TransportFailure
from common.utils import utc_now
from kmoni.config import load_config
from kmoni.fetcher import SourceFetcher
from kmoni.timestamps import TimestampResolver


def probe_round(fetcher: SourceFetcher, resolvers: Dict[int, TimestampResolver]) -> Dict[int, str]:
    now = utc_now()
    out: Dict[int, str] = {}
    for lag, resolver in resolvers.items():
        ident = resolver.candidates(now)[0]
        try:
            fetcher.fetch_one(ident)
            out[lag] = "ok"
        except NotYetPublished:
            out[lag] = "missing"
        except TransportFailure as e:
            out[lag] = f"error ({e.reason})"
    return out


def main() -> None:
    ap = argparse.ArgumentParser(description="Probe upstream publish lag per raster class")
    ap.add_argument("--config", default=None, help="Path to params.yaml (default: KMONI_CONFIG or config/params.yaml)")
    ap.add_argument("--class", dest="raster_class", default=None, help="Raster class (default: server.default_class)")
    ap.add_argument("--lags", type=int, nargs="+", default=[0, 1, 2, 3], help="Lags to test (seconds)")
    ap.add_argument("--rounds", type=int, default=3)
    ap.add_argument("--interval", type=float, default=1.0, help="Seconds between rounds")
    args = ap.parse_args()

    cfg = load_config(args.config)
    name = args.raster_class or cfg.default_class
    if name not in cfg.raster_classes:
        raise SystemExit(f"Unknown raster class: {name} (known: {', '.join(cfg.raster_classes)})")
    base = cfg.raster_classes[name]

    resolvers = {
        lag: TimestampResolver(dataclasses.replace(base, clock_offset_ms=-1000 * lag, fallback_count=0))
        for lag in args.lags
    }
    fetcher = SourceFetcher(cfg.upstream.base_url, timeout=cfg.upstream.timeout_s, user_agent=cfg.upstream.user_agent)

    hits: Dict[int, int] = {lag: 0 for lag in args.lags}
    for i in range(args.rounds):
        res = probe_round(fetcher, resolvers)
        line: List[str] = []
        for lag in args.lags:
            if res[lag] == "ok":
                hits[lag] += 1
            line.append(f"-{lag}s:{res[lag]}")
        print(f"  round {i + 1}: " + "  ".join(line))
        if i + 1 < args.rounds:
            time.sleep(args.interval)

    print(f"\n  Summary for {name}:")
    for lag in args.lags:
        print(f"    lag {lag}s: {hits[lag]}/{args.rounds} published")
    fetcher.close()


if __name__ == "__main__":
    main()
