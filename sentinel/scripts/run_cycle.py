"""
Run evaluation cycles locally against live RPC endpoints.

Usage:
    python -m sentinel.scripts.run_cycle [--cycles N] [--profile single|multi]

Prints the dispatch result of each cycle and the final dashboard snapshot.
"""

import argparse
import json
import logging

from sentinel.config.settings import PROTOCOLS_DIR, RISK_PROFILE
from sentinel.core.dispatcher import build_sentinel, run_cycle
from sentinel.core.registry import load_all_configs_from_directory
from sentinel.fetchers.onchain import ChainReader


def main():
    parser = argparse.ArgumentParser(description="Run reserve sentinel cycles")
    parser.add_argument("--cycles", type=int, default=1)
    parser.add_argument("--profile", default=RISK_PROFILE, choices=["single", "multi"])
    parser.add_argument("--protocols-dir", default=PROTOCOLS_DIR)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    registry = load_all_configs_from_directory(args.protocols_dir)
    ledger, guard = build_sentinel()
    reader = ChainReader()

    for _ in range(args.cycles):
        result = run_cycle(registry, ledger, reader, profile=args.profile, persist=False)
        print(json.dumps(result, indent=2, default=str))

    print("\n" + "=" * 60)
    print("DASHBOARD")
    print("=" * 60)
    print(json.dumps(ledger.get_dashboard_data(), indent=2, default=str))
    print(json.dumps(guard.get_guard_status(), indent=2))


if __name__ == "__main__":
    main()
