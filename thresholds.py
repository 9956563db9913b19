"""
Reserve Risk Thresholds and Justifications.

Thresholds drive three things:
- Risk score accumulation (per-protocol solvency, utilization, velocity,
  cross-reference checks)
- Severity classification (HEALTHY / WARNING / CRITICAL)
- Circuit breaker flags (per-protocol pause and warning)

Two weighting profiles exist for the same checks:
- "single": one aggregate protocol is scored, so each signal carries more weight
- "multi": many protocols are summed, so per-protocol weights are lower and
  a single outlier cannot saturate the aggregate score

Each profile entry carries its value, the score it contributes and a
justification, in the same shape as the rest of the scoring tables.
"""

from dataclasses import dataclass
from typing import Dict, Any

# =============================================================================
# CORE BOUNDARIES (basis points, 10000 = 100%)
# =============================================================================

SOLVENCY_WARNING_BPS = 9500
PAUSE_THRESHOLD_BPS = 9000
SOLVENCY_CRITICAL_BPS = 8000

UTILIZATION_HIGH_BPS = 9000
UTILIZATION_EXTREME_BPS = 9500

VELOCITY_ALERT_BPS = 500
VELOCITY_SPIKE_MULTIPLIER = 3

LST_CROSS_REF_MIN_SOLVENCY_BPS = 9900

MAX_WATCHED_PROTOCOLS = 10

# =============================================================================
# SEVERITY CLASSIFICATION
# =============================================================================

SEVERITY_RULES = {
    "HEALTHY": {
        "max_risk_score_exclusive": 30,
        "min_worst_solvency_bps": SOLVENCY_WARNING_BPS,
        "justification": "Score below 30 with every protocol at or above 95% backing. "
                        "A single solvency tier hit (+30 in the single profile) already "
                        "moves the system out of HEALTHY.",
    },
    "WARNING": {
        "max_risk_score_exclusive": 60,
        "min_worst_solvency_bps": PAUSE_THRESHOLD_BPS,
        "justification": "Elevated score but no protocol below the 90% pause line. "
                        "Consumers are notified but not blocked.",
    },
    "CRITICAL": {
        "justification": "Anything else. Triggers the global circuit breaker.",
    },
}

# =============================================================================
# RISK PROFILES
# =============================================================================

RISK_PROFILES = {
    "single": {
        "description": "One aggregate protocol, aggregate-style cross-reference",
        "solvency": [
            {"below_bps": SOLVENCY_WARNING_BPS, "score": 30,
             "justification": "First shortfall tier. Less than 95% backing is outside normal "
                             "accounting noise for money markets."},
            {"below_bps": PAUSE_THRESHOLD_BPS, "score": 20,
             "justification": "Below 90% the protocol is paused by the guard."},
            {"below_bps": SOLVENCY_CRITICAL_BPS, "score": 20,
             "justification": "Below 80% depositors face a material haircut."},
        ],
        "utilization": [
            {"above_bps": UTILIZATION_HIGH_BPS, "score": 15,
             "justification": "Above 90% utilization withdrawals start to queue (bank run indicator)."},
            {"above_bps": UTILIZATION_EXTREME_BPS, "score": 10,
             "justification": "Above 95% idle liquidity is nearly exhausted."},
        ],
        "cross_reference": {
            "min_share_bps": 300,
            "max_share_bps": 5000,
            "score": 25,
            "justification": "A single-chain market is typically 3-50% of the protocol family TVL. "
                            "Outside that range the feed or the on-chain read is suspect.",
        },
        "utilization_anomaly": True,
    },
    "multi": {
        "description": "Many protocols summed into one aggregate score",
        "solvency": [
            {"below_bps": SOLVENCY_WARNING_BPS, "score": 15,
             "justification": "Halved from the single profile so one outlier cannot saturate the sum."},
            {"below_bps": PAUSE_THRESHOLD_BPS, "score": 10,
             "justification": "Pause tier, still bounded per protocol."},
            {"below_bps": SOLVENCY_CRITICAL_BPS, "score": 10,
             "justification": "Severe shortfall tier."},
        ],
        "utilization": [
            {"above_bps": UTILIZATION_HIGH_BPS, "score": 15,
             "justification": "Bank run indicator, unchanged between profiles."},
            {"above_bps": UTILIZATION_EXTREME_BPS, "score": 10,
             "justification": "Idle liquidity nearly exhausted."},
        ],
        "cross_reference": {
            "min_share_bps": 50,
            "max_share_bps": 20000,
            "score": 15,
            "justification": "Per-market shares of a multi-chain TVL range widely; only a share "
                            "below 0.5% or above 200% is implausible.",
        },
        "utilization_anomaly": False,
    },
}

# Shared across profiles
VELOCITY_WEIGHTS = {
    "increase": {"score": 15,
                 "justification": "Utilization rising 5pp in one cycle is a borrow-run signal."},
    "spike": {"score": 20,
              "justification": "A 3x threshold move (15pp) compounds the borrow-run signal."},
    "decrease": {"score": 10,
                 "justification": "Falling utilization may be panic withdrawals, but withdrawals "
                                 "reduce insolvency risk, so it is weighted lower."},
}

LST_CROSS_REF_SCORE = 20
MISSING_REFERENCE_SCORE = 10


@dataclass(frozen=True)
class RiskWeights:
    """Flattened weights for one risk profile."""
    profile: str
    solvency_warning: int
    solvency_pause: int
    solvency_critical: int
    utilization_high: int
    utilization_extreme: int
    velocity_increase: int
    velocity_spike: int
    velocity_decrease: int
    cross_ref_min_share_bps: int
    cross_ref_max_share_bps: int
    cross_ref_out_of_range: int
    lst_cross_ref: int
    missing_reference: int
    utilization_anomaly: bool


def get_risk_weights(profile: str = "multi") -> RiskWeights:
    """
    Build the weights for a named profile.

    Args:
        profile: "single" or "multi"

    Returns:
        RiskWeights for that profile
    """
    if profile not in RISK_PROFILES:
        raise ValueError(f"Unknown risk profile: {profile}. Must be one of {list(RISK_PROFILES)}")

    cfg = RISK_PROFILES[profile]
    solvency = [tier["score"] for tier in cfg["solvency"]]
    utilization = [tier["score"] for tier in cfg["utilization"]]
    cross_ref = cfg["cross_reference"]

    return RiskWeights(
        profile=profile,
        solvency_warning=solvency[0],
        solvency_pause=solvency[1],
        solvency_critical=solvency[2],
        utilization_high=utilization[0],
        utilization_extreme=utilization[1],
        velocity_increase=VELOCITY_WEIGHTS["increase"]["score"],
        velocity_spike=VELOCITY_WEIGHTS["spike"]["score"],
        velocity_decrease=VELOCITY_WEIGHTS["decrease"]["score"],
        cross_ref_min_share_bps=cross_ref["min_share_bps"],
        cross_ref_max_share_bps=cross_ref["max_share_bps"],
        cross_ref_out_of_range=cross_ref["score"],
        lst_cross_ref=LST_CROSS_REF_SCORE,
        missing_reference=MISSING_REFERENCE_SCORE,
        utilization_anomaly=cfg["utilization_anomaly"],
    )


def get_profile_summary(profile: str) -> Dict[str, Any]:
    """Summary of a profile, printed by the config validator."""
    cfg = RISK_PROFILES[profile]
    return {
        "profile": profile,
        "description": cfg["description"],
        "max_solvency_contribution": sum(t["score"] for t in cfg["solvency"]),
        "max_utilization_contribution": sum(t["score"] for t in cfg["utilization"]),
        "cross_reference_range_bps": (
            cfg["cross_reference"]["min_share_bps"],
            cfg["cross_reference"]["max_share_bps"],
        ),
        "cross_reference_score": cfg["cross_reference"]["score"],
        "utilization_anomaly": cfg["utilization_anomaly"],
    }
