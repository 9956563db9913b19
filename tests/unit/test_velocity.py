"""
Unit tests for velocity module.

Alert test is symmetric, direction is preserved, and first runs or
protocols without a baseline never alert.
"""

import pytest
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from velocity import compute_velocity, VelocityDirection, VelocityTracker

from conftest import REPORTER


class TestComputeVelocity:

    @pytest.mark.unit
    def test_increase_at_threshold_alerts(self):
        result = compute_velocity("A", 2600, 2100)
        assert result.delta_bps == 500
        assert result.direction == VelocityDirection.INCREASING
        assert result.is_alert

    @pytest.mark.unit
    def test_decrease_alerts_symmetrically(self):
        result = compute_velocity("A", 2000, 2600)
        assert result.delta_bps == 600
        assert result.direction == VelocityDirection.DECREASING
        assert result.is_negative
        assert result.is_alert

    @pytest.mark.unit
    def test_below_threshold(self):
        assert not compute_velocity("A", 2499, 2000).is_alert

    @pytest.mark.unit
    def test_no_change_is_not_negative(self):
        result = compute_velocity("A", 3000, 3000)
        assert result.delta_bps == 0
        assert not result.is_negative

    @pytest.mark.unit
    def test_suppressed_alert(self):
        result = compute_velocity("A", 9000, 0, suppress_alert=True)
        assert result.delta_bps == 9000
        assert not result.is_alert


class TestVelocityTracker:

    @pytest.mark.unit
    @pytest.mark.smoke
    def test_first_run_suppresses_everything(self, bare_ledger):
        tracker = VelocityTracker(bare_ledger)
        results, first_run = tracker.track({"A": 8000, "B": 100})

        assert first_run
        assert not any(v.is_alert for v in results.values())
        assert results["A"].previous_util_bps == 0
        assert results["A"].delta_bps == 8000

    @pytest.mark.unit
    def test_uses_ledger_baseline(self, bare_ledger, report_factory, result_factory):
        bare_ledger.record_cycle(report_factory(), [result_factory(name="A", utilization_bps=2000)],
                                 caller=REPORTER)

        results, first_run = VelocityTracker(bare_ledger).track({"A": 2600})

        assert not first_run
        assert results["A"].previous_util_bps == 2000
        assert results["A"].is_alert

    @pytest.mark.unit
    def test_new_protocol_has_no_baseline(self, bare_ledger, report_factory, result_factory):
        bare_ledger.record_cycle(report_factory(), [result_factory(name="A", utilization_bps=2000)],
                                 caller=REPORTER)

        results, first_run = VelocityTracker(bare_ledger).track({"A": 2000, "New": 9000})

        assert not first_run
        assert not results["New"].has_baseline
        assert not results["New"].is_alert

    @pytest.mark.unit
    def test_history_without_rows_is_not_first_run(self, bare_ledger, report_factory):
        bare_ledger.record_cycle(report_factory(), [], caller=REPORTER)
        tracker = VelocityTracker(bare_ledger)
        assert not tracker.is_first_run(["A"])
