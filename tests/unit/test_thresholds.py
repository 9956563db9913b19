"""
Unit tests for thresholds module.

Validates the boundary constants, severity rules and both risk profiles.
"""

import pytest
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from thresholds import (
    SOLVENCY_WARNING_BPS,
    PAUSE_THRESHOLD_BPS,
    SOLVENCY_CRITICAL_BPS,
    UTILIZATION_HIGH_BPS,
    UTILIZATION_EXTREME_BPS,
    SEVERITY_RULES,
    RISK_PROFILES,
    VELOCITY_WEIGHTS,
    RiskWeights,
    get_risk_weights,
    get_profile_summary,
)
from sentinel.scripts.validate_configs import print_profile_summary


class TestBoundaries:

    @pytest.mark.unit
    @pytest.mark.scoring
    def test_solvency_tiers_descend(self):
        assert SOLVENCY_WARNING_BPS > PAUSE_THRESHOLD_BPS > SOLVENCY_CRITICAL_BPS

    @pytest.mark.unit
    @pytest.mark.scoring
    def test_utilization_tiers_ascend(self):
        assert UTILIZATION_HIGH_BPS < UTILIZATION_EXTREME_BPS

    @pytest.mark.unit
    @pytest.mark.scoring
    def test_severity_rules_have_justifications(self):
        for level in ("HEALTHY", "WARNING", "CRITICAL"):
            assert SEVERITY_RULES[level]["justification"]


class TestRiskProfiles:

    @pytest.mark.unit
    @pytest.mark.scoring
    @pytest.mark.smoke
    def test_single_profile_weights(self):
        weights = get_risk_weights("single")

        assert isinstance(weights, RiskWeights)
        assert (weights.solvency_warning, weights.solvency_pause, weights.solvency_critical) == (30, 20, 20)
        assert (weights.utilization_high, weights.utilization_extreme) == (15, 10)
        assert (weights.cross_ref_min_share_bps, weights.cross_ref_max_share_bps) == (300, 5000)
        assert weights.cross_ref_out_of_range == 25
        assert weights.utilization_anomaly

    @pytest.mark.unit
    @pytest.mark.scoring
    def test_multi_profile_weights(self):
        weights = get_risk_weights("multi")

        assert (weights.solvency_warning, weights.solvency_pause, weights.solvency_critical) == (15, 10, 10)
        assert (weights.cross_ref_min_share_bps, weights.cross_ref_max_share_bps) == (50, 20000)
        assert weights.cross_ref_out_of_range == 15
        assert not weights.utilization_anomaly

    @pytest.mark.unit
    @pytest.mark.scoring
    def test_shared_weights(self):
        for profile in RISK_PROFILES:
            weights = get_risk_weights(profile)
            assert weights.velocity_increase == VELOCITY_WEIGHTS["increase"]["score"] == 15
            assert weights.velocity_spike == 20
            assert weights.velocity_decrease == 10
            assert weights.lst_cross_ref == 20
            assert weights.missing_reference == 10

    @pytest.mark.unit
    def test_default_profile_is_multi(self):
        assert get_risk_weights().profile == "multi"

    @pytest.mark.unit
    def test_unknown_profile_rejected(self):
        with pytest.raises(ValueError):
            get_risk_weights("aggressive")

    @pytest.mark.unit
    def test_every_tier_has_justification(self):
        for profile, cfg in RISK_PROFILES.items():
            for tier in cfg["solvency"] + cfg["utilization"]:
                assert tier["justification"], f"{profile} tier missing justification"

    @pytest.mark.unit
    def test_profile_summary(self):
        summary = get_profile_summary("single")
        assert summary["max_solvency_contribution"] == 70
        assert summary["cross_reference_range_bps"] == (300, 5_000)
        assert summary["utilization_anomaly"] is True


class TestProfileReport:

    @pytest.mark.unit
    def test_multi_profile_printed(self, capsys):
        assert print_profile_summary("multi") is True

        out = capsys.readouterr().out
        assert "0.50% - 200.00% of reference TVL (+15 outside)" in out
        assert "Utilization anomaly flag: off" in out

    @pytest.mark.unit
    def test_single_profile_printed(self, capsys):
        assert print_profile_summary("single") is True
        assert "3.00% - 50.00%" in capsys.readouterr().out

    @pytest.mark.unit
    def test_unknown_profile_fails(self, capsys):
        assert print_profile_summary("exotic") is False
        assert "unknown risk profile 'exotic'" in capsys.readouterr().out
