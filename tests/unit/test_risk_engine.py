"""
Unit tests for risk_engine module.

Covers each scoring signal, the severity boundaries and full-cycle
evaluation for both risk profiles.
"""

import pytest
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from risk_engine import (
    Severity,
    solvency_risk,
    utilization_risk,
    velocity_risk,
    cross_reference_risk,
    clamp_score,
    classify_severity,
    aggregate_totals,
    evaluate_cycle,
    summarize_breakdown,
)
from thresholds import get_risk_weights
from velocity import compute_velocity

SINGLE = get_risk_weights("single")
MULTI = get_risk_weights("multi")
TS = 1_700_000_000


def _evaluate(results, references=None, velocity=None, first_run=True, weights=SINGLE):
    if references is None:
        # 10% share of the family TVL: inside both cross-reference ranges
        references = {r.name: r.claimed * 10 for r in results}
    return evaluate_cycle(results, velocity or {}, first_run, references, TS, weights)


class TestSolvencyRisk:

    @pytest.mark.unit
    @pytest.mark.scoring
    @pytest.mark.parametrize("solvency,single,multi", [
        (10_000, 0, 0),
        (9_500, 0, 0),
        (9_499, 30, 15),
        (9_000, 30, 15),
        (8_999, 50, 25),
        (7_999, 70, 35),
    ])
    def test_tiers_stack(self, solvency, single, multi):
        assert solvency_risk(solvency, SINGLE) == single
        assert solvency_risk(solvency, MULTI) == multi


class TestUtilizationRisk:

    @pytest.mark.unit
    @pytest.mark.scoring
    @pytest.mark.parametrize("utilization,expected", [
        (9_000, 0),
        (9_001, 15),
        (9_500, 15),
        (9_501, 25),
    ])
    def test_tiers(self, utilization, expected):
        assert utilization_risk(utilization, SINGLE) == expected
        assert utilization_risk(utilization, MULTI) == expected


class TestVelocityRisk:

    @pytest.mark.unit
    @pytest.mark.scoring
    def test_increase(self):
        assert velocity_risk(compute_velocity("A", 2600, 2000), MULTI) == 15

    @pytest.mark.unit
    @pytest.mark.scoring
    def test_spike(self):
        assert velocity_risk(compute_velocity("A", 3500, 2000), MULTI) == 35

    @pytest.mark.unit
    @pytest.mark.scoring
    def test_decrease_weighted_lower(self):
        assert velocity_risk(compute_velocity("A", 1000, 3000), MULTI) == 10

    @pytest.mark.unit
    @pytest.mark.scoring
    def test_no_alert_no_score(self):
        assert velocity_risk(compute_velocity("A", 2400, 2000), MULTI) == 0
        assert velocity_risk(compute_velocity("A", 9000, 0, suppress_alert=True), MULTI) == 0
        assert velocity_risk(None, MULTI) == 0


class TestCrossReference:

    @pytest.mark.unit
    @pytest.mark.scoring
    def test_missing_reference(self, result_factory):
        assert cross_reference_risk(result_factory(), 0, SINGLE) == 10
        assert cross_reference_risk(result_factory(), 0, MULTI) == 10

    @pytest.mark.unit
    @pytest.mark.scoring
    def test_single_range(self, result_factory):
        result = result_factory(claimed=100)
        assert cross_reference_risk(result, 1000, SINGLE) == 0      # 10%
        assert cross_reference_risk(result, 10_000, SINGLE) == 25   # 1%
        assert cross_reference_risk(result, 150, SINGLE) == 25      # 66%

    @pytest.mark.unit
    @pytest.mark.scoring
    def test_multi_range(self, result_factory):
        result = result_factory(claimed=100)
        assert cross_reference_risk(result, 10_000, MULTI) == 0     # 1%
        assert cross_reference_risk(result, 60, MULTI) == 0         # 166%
        assert cross_reference_risk(result, 100_000, MULTI) == 15   # 0.1%
        assert cross_reference_risk(result, 40, MULTI) == 15        # 250%

    @pytest.mark.unit
    @pytest.mark.scoring
    def test_liquid_staking_uses_solvency(self, result_factory):
        healthy = result_factory(protocol_type="lido", solvency_bps=9_900)
        short = result_factory(protocol_type="lido", solvency_bps=9_899)
        # Reference TVL is ignored for liquid staking
        assert cross_reference_risk(healthy, 0, MULTI) == 0
        assert cross_reference_risk(short, 0, MULTI) == 20


class TestSeverity:

    @pytest.mark.unit
    @pytest.mark.scoring
    @pytest.mark.parametrize("score,worst,expected", [
        (0, 10_000, Severity.HEALTHY),
        (29, 9_500, Severity.HEALTHY),
        (30, 9_500, Severity.WARNING),
        (0, 9_499, Severity.WARNING),
        (59, 9_000, Severity.WARNING),
        (60, 10_000, Severity.CRITICAL),
        (0, 8_999, Severity.CRITICAL),
    ])
    def test_boundaries(self, score, worst, expected):
        assert classify_severity(score, worst) == expected

    @pytest.mark.unit
    def test_clamp(self):
        assert clamp_score(-5) == 0
        assert clamp_score(250) == 100


class TestScenarios:

    @pytest.mark.unit
    @pytest.mark.scoring
    @pytest.mark.smoke
    def test_exactly_95_percent_is_healthy(self, result_factory):
        """9500 is not below the 9500 line: no solvency points."""
        result = result_factory(claimed=100_000_000, actual=95_000_000, solvency_bps=9_500)
        report = _evaluate([result]).report

        assert report.risk_score == 0
        assert report.severity == Severity.HEALTHY
        assert not report.anomaly_detected

    @pytest.mark.unit
    @pytest.mark.scoring
    def test_first_solvency_tier_is_warning(self, result_factory):
        result = result_factory(claimed=100_000_000, actual=94_990_000, solvency_bps=9_499)
        report = _evaluate([result]).report

        assert report.risk_score == 30
        assert report.severity == Severity.WARNING
        assert report.anomaly_detected

    @pytest.mark.unit
    @pytest.mark.scoring
    def test_75_percent_is_critical(self, result_factory):
        result = result_factory(claimed=100_000_000, actual=75_000_000, solvency_bps=7_500)
        report = _evaluate([result]).report

        assert report.risk_score == 70
        assert report.severity == Severity.CRITICAL
        assert report.worst_solvency_bps == 7_500

    @pytest.mark.unit
    @pytest.mark.scoring
    def test_velocity_after_first_run(self, result_factory):
        result = result_factory(utilization_bps=2_600)
        velocity = {"Aave USDC": compute_velocity("Aave USDC", 2_600, 2_000)}

        evaluation = _evaluate([result], velocity=velocity, first_run=False)

        assert evaluation.report.risk_score == 15
        assert evaluation.report.anomaly_detected
        assert evaluation.results[0].velocity_bps == 600
        assert [v.name for v in evaluation.velocity_alerts] == ["Aave USDC"]

    @pytest.mark.unit
    @pytest.mark.scoring
    def test_first_run_skips_velocity(self, result_factory):
        result = result_factory(utilization_bps=8_000)
        # Even an unsuppressed alert contributes nothing on a first run
        velocity = {"Aave USDC": compute_velocity("Aave USDC", 8_000, 0)}

        report = _evaluate([result], velocity=velocity, first_run=True).report

        assert report.risk_score == 0
        assert not report.anomaly_detected


class TestEvaluateCycle:

    @pytest.mark.unit
    def test_empty_batch_rejected(self):
        with pytest.raises(ValueError):
            evaluate_cycle([], {}, True, {}, TS)

    @pytest.mark.unit
    def test_worst_protocol_drives_severity(self, result_factory):
        results = [
            result_factory(name="Big", claimed=1_000_000_000, actual=1_000_000_000),
            result_factory(name="Small", claimed=1_000_000, actual=850_000, solvency_bps=8_500),
        ]
        report = _evaluate(results, weights=MULTI).report

        # Aggregate ratio is ~99.98% but one market is below the pause line
        assert report.global_ratio_bps == 9_998
        assert report.worst_protocol == "Small"
        assert report.severity == Severity.CRITICAL

    @pytest.mark.unit
    def test_liquid_staking_excluded_from_totals(self, result_factory):
        results = [
            result_factory(name="Aave", claimed=100, actual=100),
            result_factory(name="Lido", protocol_type="lido", claimed=9_000_000, actual=9_000_000),
        ]
        totals = aggregate_totals(results)
        assert totals["total_claimed"] == 100
        assert totals["total_actual"] == 100

    @pytest.mark.unit
    @pytest.mark.scoring
    def test_score_clamped_to_100(self, result_factory):
        results = [
            result_factory(name=f"P{i}", actual=0, solvency_bps=0, utilization_bps=9_900)
            for i in range(5)
        ]
        report = _evaluate(results, references={}).report
        assert report.risk_score == 100
        assert report.severity == Severity.CRITICAL

    @pytest.mark.unit
    @pytest.mark.scoring
    def test_missing_reference_is_anomaly(self, result_factory):
        evaluation = _evaluate([result_factory()], references={})
        assert evaluation.report.risk_score == 10
        assert evaluation.cross_ref_risk == 10
        assert evaluation.report.anomaly_detected
        assert evaluation.results[0].cross_ref_risk == 10

    @pytest.mark.unit
    @pytest.mark.scoring
    def test_utilization_anomaly_only_in_single_profile(self, result_factory):
        result = result_factory(utilization_bps=9_600)

        single = _evaluate([result], weights=SINGLE).report
        multi = _evaluate([result], weights=MULTI).report

        assert single.risk_score == multi.risk_score == 25
        assert single.anomaly_detected
        assert not multi.anomaly_detected

    @pytest.mark.unit
    def test_order_independent(self, result_factory):
        results = [
            result_factory(name="A", solvency_bps=9_200),
            result_factory(name="B", utilization_bps=9_700),
        ]
        forward = _evaluate(results).report
        backward = _evaluate(list(reversed(results))).report
        assert forward.risk_score == backward.risk_score
        assert forward.severity == backward.severity

    @pytest.mark.unit
    def test_breakdown_summary(self, result_factory):
        result = result_factory(solvency_bps=9_400, utilization_bps=9_200)
        evaluation = _evaluate([result], references={})

        assert summarize_breakdown(evaluation) == {
            "solvency": 30, "utilization": 15, "velocity": 0, "cross_reference": 10,
        }
        assert evaluation.report.check_number == 0
        assert evaluation.report.timestamp == TS
