"""
Unit Tests - Analytics Settings
"""
import pytest
from pydantic import ValidationError

from game_analytics.config import AnalyticsSettings


class TestAnalyticsSettings:
    """Tests for cross-field validation"""

    def test_defaults_are_consistent(self):
        settings = AnalyticsSettings()

        assert settings.rollup_window_days + 1 <= settings.max_scan_days
        assert settings.watermark_gap_abandon_seconds >= settings.watermark_gap_grace_seconds

    def test_window_must_fit_scan_limit(self):
        with pytest.raises(ValidationError) as exc_info:
            AnalyticsSettings(rollup_window_days=400, max_scan_days=400)

        assert "max_scan_days" in str(exc_info.value)

    def test_window_one_day_under_scan_limit(self):
        settings = AnalyticsSettings(rollup_window_days=399, max_scan_days=400)
        assert settings.rollup_window_days == 399

    def test_abandon_horizon_not_shorter_than_grace(self):
        with pytest.raises(ValidationError):
            AnalyticsSettings(watermark_gap_grace_seconds=60, watermark_gap_abandon_seconds=30)

    @pytest.mark.parametrize("field", ["rollup_lease_seconds", "max_scan_days", "aggregator_workers"])
    def test_rejects_non_positive(self, field):
        with pytest.raises(ValidationError):
            AnalyticsSettings(**{field: 0})
