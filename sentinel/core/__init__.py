"""Core sentinel components."""

from .registry import OrderedRegistry, ProtocolRegistry, load_all_configs_from_directory

from .guard import CircuitBreaker, ProtocolStatus, Registration, PauseEvent

from .ledger import (
    ReserveLedger,
    LedgerStatistics,
    VelocityStats,
    ProtocolSnapshot,
    CycleRecord,
    GuardPush,
)

from .dispatcher import build_sentinel, run_cycle

__all__ = [
    # Registry
    "OrderedRegistry",
    "ProtocolRegistry",
    "load_all_configs_from_directory",
    # Guard
    "CircuitBreaker",
    "ProtocolStatus",
    "Registration",
    "PauseEvent",
    # Ledger
    "ReserveLedger",
    "LedgerStatistics",
    "VelocityStats",
    "ProtocolSnapshot",
    "CycleRecord",
    "GuardPush",
    # Dispatcher
    "build_sentinel",
    "run_cycle",
]
