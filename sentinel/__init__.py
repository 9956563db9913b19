"""
Reserve Sentinel.

Evaluates whether lending and staking protocols hold the collateral they
claim, scores the result, records every cycle in a ledger and drives a
circuit breaker that integrators consult before moving funds.

Quick Start:
    from sentinel import build_sentinel, run_cycle, load_all_configs_from_directory, ChainReader

    registry = load_all_configs_from_directory("protocols")
    ledger, guard = build_sentinel()
    result = run_cycle(registry, ledger, ChainReader())
    print(result["report"])
"""

__version__ = "1.0.0"

from .core import (
    # Ledger / guard
    ReserveLedger,
    CircuitBreaker,
    # Registry
    ProtocolRegistry,
    load_all_configs_from_directory,
    # Dispatcher
    build_sentinel,
    run_cycle,
)

from .fetchers import ChainReader, fetch_reference_tvl

__all__ = [
    "__version__",
    "ReserveLedger",
    "CircuitBreaker",
    "ProtocolRegistry",
    "load_all_configs_from_directory",
    "build_sentinel",
    "run_cycle",
    "ChainReader",
    "fetch_reference_tvl",
]
