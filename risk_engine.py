"""
Risk Engine - aggregate risk score and severity for one evaluation cycle.

Scoring is additive, order independent and clamped to [0, 100]:
- Solvency tiers per protocol (< 95%, < 90%, < 80%)
- Utilization tiers per protocol (> 90%, > 95%), the bank run indicator
- Velocity per protocol (skipped entirely on a first run)
- Cross-reference of on-chain claimed amounts against off-chain TVL

Severity is judged against the WORST per-protocol solvency in the batch,
not the aggregate ratio, so one undercollateralized market cannot hide
behind healthy ones.
"""

import logging
from dataclasses import dataclass, field, replace
from enum import IntEnum
from typing import Dict, Any, List, Optional

from protocol_adapters import ProtocolResult, LST_TYPES
from reserve_math import solvency_bps, share_bps
from thresholds import (
    RiskWeights,
    get_risk_weights,
    SOLVENCY_WARNING_BPS,
    PAUSE_THRESHOLD_BPS,
    SOLVENCY_CRITICAL_BPS,
    UTILIZATION_HIGH_BPS,
    UTILIZATION_EXTREME_BPS,
    VELOCITY_ALERT_BPS,
    VELOCITY_SPIKE_MULTIPLIER,
    LST_CROSS_REF_MIN_SOLVENCY_BPS,
    SEVERITY_RULES,
)
from velocity import VelocityResult, VelocityDirection

logger = logging.getLogger(__name__)

MAX_RISK_SCORE = 100


class Severity(IntEnum):
    HEALTHY = 0
    WARNING = 1
    CRITICAL = 2


@dataclass(frozen=True)
class HealthReport:
    """Aggregate result of one cycle. check_number is assigned by the ledger."""
    total_actual: int
    total_claimed: int
    global_ratio_bps: int
    worst_solvency_bps: int
    worst_protocol: str
    risk_score: int
    severity: Severity
    anomaly_detected: bool
    timestamp: int
    check_number: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "check_number": self.check_number,
            "total_actual": self.total_actual,
            "total_claimed": self.total_claimed,
            "global_ratio_bps": self.global_ratio_bps,
            "worst_solvency_bps": self.worst_solvency_bps,
            "worst_protocol": self.worst_protocol,
            "risk_score": self.risk_score,
            "severity": self.severity.name,
            "anomaly_detected": self.anomaly_detected,
            "timestamp": self.timestamp,
        }


@dataclass
class CycleEvaluation:
    """Everything the engine produced for one cycle."""
    report: HealthReport
    results: List[ProtocolResult]
    velocity: Dict[str, VelocityResult]
    is_first_run: bool
    cross_ref_risk: int
    breakdown: Dict[str, Dict[str, int]] = field(default_factory=dict)

    @property
    def velocity_alerts(self) -> List[VelocityResult]:
        return [v for v in self.velocity.values() if v.is_alert]


# =============================================================================
# SCORING FUNCTIONS
# =============================================================================

def solvency_risk(solvency: int, weights: RiskWeights) -> int:
    """Stacked solvency tiers for one protocol."""
    score = 0
    if solvency < SOLVENCY_WARNING_BPS:
        score += weights.solvency_warning
    if solvency < PAUSE_THRESHOLD_BPS:
        score += weights.solvency_pause
    if solvency < SOLVENCY_CRITICAL_BPS:
        score += weights.solvency_critical
    return score


def utilization_risk(utilization: int, weights: RiskWeights) -> int:
    """Bank run indicator for one protocol."""
    score = 0
    if utilization > UTILIZATION_HIGH_BPS:
        score += weights.utilization_high
    if utilization > UTILIZATION_EXTREME_BPS:
        score += weights.utilization_extreme
    return score


def velocity_risk(velocity: Optional[VelocityResult], weights: RiskWeights) -> int:
    """
    Score a utilization move.

    Rising utilization is a borrow-run signal and scores higher; a 3x
    threshold move adds a spike bonus. Falling utilization scores lower.
    Suppressed (non-alert) results contribute nothing.
    """
    if velocity is None or not velocity.is_alert:
        return 0

    if velocity.direction == VelocityDirection.INCREASING:
        score = weights.velocity_increase
        if velocity.delta_bps >= VELOCITY_ALERT_BPS * VELOCITY_SPIKE_MULTIPLIER:
            score += weights.velocity_spike
        return score

    return weights.velocity_decrease


def cross_reference_risk(result: ProtocolResult, reference_tvl: int, weights: RiskWeights) -> int:
    """
    Compare a protocol's claimed amount with an independent reference total.

    Liquid staking tokens re-use their solvency ratio instead, since their
    supply is denominated in ETH. Missing reference data is a mild risk
    signal rather than being ignored.

    Args:
        result: Normalized protocol result
        reference_tvl: Off-chain TVL for the protocol family (0 if missing)
        weights: Active risk weights

    Returns:
        Risk points for this protocol
    """
    if result.protocol_type in LST_TYPES:
        if result.solvency_bps < LST_CROSS_REF_MIN_SOLVENCY_BPS:
            return weights.lst_cross_ref
        return 0

    if reference_tvl <= 0 or result.claimed <= 0:
        return weights.missing_reference

    share = share_bps(result.claimed, reference_tvl)
    if share < weights.cross_ref_min_share_bps or share > weights.cross_ref_max_share_bps:
        return weights.cross_ref_out_of_range
    return 0


def clamp_score(score: int) -> int:
    return max(0, min(MAX_RISK_SCORE, score))


def classify_severity(risk_score: int, worst_solvency: int) -> Severity:
    """
    Classify a cycle.

    HEALTHY needs score < 30 AND worst >= 9500; WARNING needs score < 60
    AND worst >= 9000; anything else is CRITICAL. Both bounds on the score
    are exclusive: a score of exactly 30 is not HEALTHY.
    """
    healthy = SEVERITY_RULES["HEALTHY"]
    warning = SEVERITY_RULES["WARNING"]

    if risk_score < healthy["max_risk_score_exclusive"] and worst_solvency >= healthy["min_worst_solvency_bps"]:
        return Severity.HEALTHY
    if risk_score < warning["max_risk_score_exclusive"] and worst_solvency >= warning["min_worst_solvency_bps"]:
        return Severity.WARNING
    return Severity.CRITICAL


# =============================================================================
# CYCLE EVALUATION
# =============================================================================

def aggregate_totals(results: List[ProtocolResult]) -> Dict[str, int]:
    """Sum claimed/actual over protocols whose unit is USD."""
    total_claimed = sum(r.claimed for r in results if r.counts_toward_aggregate)
    total_actual = sum(r.actual for r in results if r.counts_toward_aggregate)
    return {
        "total_claimed": total_claimed,
        "total_actual": total_actual,
        "global_ratio_bps": solvency_bps(total_actual, total_claimed),
    }


def evaluate_cycle(
    results: List[ProtocolResult],
    velocity: Dict[str, VelocityResult],
    is_first_run: bool,
    references: Dict[str, int],
    timestamp: int,
    weights: RiskWeights = None,
) -> CycleEvaluation:
    """
    Score a full batch of protocol results.

    Args:
        results: One ProtocolResult per protocol (all of them, or the cycle is invalid)
        velocity: {name: VelocityResult} from the VelocityTracker
        is_first_run: Skip all velocity scoring when True
        references: {name: reference TVL}; missing names count as missing data
        timestamp: Cycle time in unix seconds
        weights: Risk weights (defaults to the multi profile)

    Returns:
        CycleEvaluation with a HealthReport draft (check_number 0)
    """
    if not results:
        raise ValueError("Cannot evaluate a cycle with no protocol results")

    weights = weights or get_risk_weights("multi")

    risk_score = 0
    total_cross_ref = 0
    utilization_flag = False
    enriched: List[ProtocolResult] = []
    breakdown: Dict[str, Dict[str, int]] = {}

    for result in results:
        vel = velocity.get(result.name)
        reference = int(references.get(result.name, 0) or 0)

        parts = {
            "solvency": solvency_risk(result.solvency_bps, weights),
            "utilization": utilization_risk(result.utilization_bps, weights),
            "velocity": 0 if is_first_run else velocity_risk(vel, weights),
            "cross_reference": cross_reference_risk(result, reference, weights),
        }
        breakdown[result.name] = parts
        risk_score += sum(parts.values())
        total_cross_ref += parts["cross_reference"]

        if result.utilization_bps > UTILIZATION_EXTREME_BPS:
            utilization_flag = True

        enriched.append(replace(
            result,
            velocity_bps=vel.delta_bps if vel else 0,
            velocity_negative=vel.is_negative if vel else False,
            reference_tvl=reference,
            cross_ref_risk=parts["cross_reference"],
        ))

    risk_score = clamp_score(risk_score)
    worst = min(enriched, key=lambda r: r.solvency_bps)
    severity = classify_severity(risk_score, worst.solvency_bps)

    any_velocity_alert = any(v.is_alert for v in velocity.values())
    anomaly = (
        total_cross_ref > 0
        or worst.solvency_bps < SOLVENCY_WARNING_BPS
        or (not is_first_run and any_velocity_alert)
        or (weights.utilization_anomaly and utilization_flag)
    )

    totals = aggregate_totals(enriched)
    report = HealthReport(
        total_actual=totals["total_actual"],
        total_claimed=totals["total_claimed"],
        global_ratio_bps=totals["global_ratio_bps"],
        worst_solvency_bps=worst.solvency_bps,
        worst_protocol=worst.name,
        risk_score=risk_score,
        severity=severity,
        anomaly_detected=anomaly,
        timestamp=timestamp,
    )

    logger.info(
        "Cycle evaluated: %d protocols, risk %d/100, %s, worst %s at %d bps%s",
        len(enriched), risk_score, severity.name, worst.name, worst.solvency_bps,
        " (first run)" if is_first_run else "",
    )

    return CycleEvaluation(
        report=report,
        results=enriched,
        velocity=velocity,
        is_first_run=is_first_run,
        cross_ref_risk=total_cross_ref,
        breakdown=breakdown,
    )


def summarize_breakdown(evaluation: CycleEvaluation) -> Dict[str, int]:
    """Total contribution of each signal family across the batch."""
    totals = {"solvency": 0, "utilization": 0, "velocity": 0, "cross_reference": 0}
    for parts in evaluation.breakdown.values():
        for key, value in parts.items():
            totals[key] += value
    return totals
