"""
Velocity Tracker - utilization change between consecutive cycles.

Compares each protocol's current utilization with the value the ledger
recorded for it in the previous cycle. A move of 500 bps (5 percentage
points) or more in either direction is an alert.

First-run policy: when the ledger has never recorded a cycle and every
previous value is the sentinel 0, the batch is a first run. Velocity is
still computed but alerts are forced off; the cycle only seeds the baseline.
A protocol the ledger has never seen is treated the same way on its own,
so a newly added protocol never reads as a 100% spike.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Tuple

from thresholds import VELOCITY_ALERT_BPS


class VelocityDirection(Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"


@dataclass(frozen=True)
class VelocityResult:
    """Utilization movement for one protocol."""
    name: str
    current_util_bps: int
    previous_util_bps: int
    delta_bps: int
    direction: VelocityDirection
    is_alert: bool
    has_baseline: bool = True

    @property
    def is_negative(self) -> bool:
        return self.direction == VelocityDirection.DECREASING


def compute_velocity(name: str, current_util_bps: int, previous_util_bps: int,
                     suppress_alert: bool = False, has_baseline: bool = True) -> VelocityResult:
    """
    Compute utilization velocity for one protocol.

    Args:
        name: Protocol name
        current_util_bps: This cycle's utilization
        previous_util_bps: Last recorded utilization (0 if none)
        suppress_alert: Force is_alert off (first run / no baseline)
        has_baseline: Whether the ledger held a prior record

    Returns:
        VelocityResult with the absolute delta and its direction
    """
    signed = current_util_bps - previous_util_bps
    delta = abs(signed)
    direction = VelocityDirection.DECREASING if signed < 0 else VelocityDirection.INCREASING

    return VelocityResult(
        name=name,
        current_util_bps=current_util_bps,
        previous_util_bps=previous_util_bps,
        delta_bps=delta,
        direction=direction,
        is_alert=(not suppress_alert) and delta >= VELOCITY_ALERT_BPS,
        has_baseline=has_baseline,
    )


class VelocityTracker:
    """
    Reads previous-cycle utilization from a ledger and scores movement.

    The ledger must provide get_previous(name), has_record(name) and
    has_history().
    """

    def __init__(self, ledger):
        self.ledger = ledger

    def is_first_run(self, names: List[str]) -> bool:
        """True when nothing was ever recorded and every previous value is 0."""
        if self.ledger.has_history():
            return False
        return all(self.ledger.get_previous(name) == 0 for name in names)

    def track(self, utilizations: Dict[str, int]) -> Tuple[Dict[str, VelocityResult], bool]:
        """
        Compute velocity for a batch of protocols.

        Args:
            utilizations: {protocol name: current utilization bps}

        Returns:
            ({name: VelocityResult}, is_first_run)
        """
        first_run = self.is_first_run(list(utilizations))
        results = {}

        for name, current in utilizations.items():
            has_baseline = self.ledger.has_record(name)
            results[name] = compute_velocity(
                name,
                current,
                self.ledger.get_previous(name),
                suppress_alert=first_run or not has_baseline,
                has_baseline=has_baseline,
            )

        return results, first_run
