"""
Tests for configuration dataclasses and the create_config factory.
"""

import logging

import pytest

from reportcache.config import (
    PlanAnalysisConfig,
    QueryCacheConfig,
    ReportCacheConfig,
    ReportCacheSettings,
    create_config,
)
from reportcache.error_handling import CacheConfigurationError, ReportCacheError


class TestQueryCacheConfig:
    def test_defaults(self):
        config = QueryCacheConfig()
        assert config.default_ttl_seconds == 3600
        assert config.enable_sweeper is True
        assert config.single_flight is True
        assert config.max_entries is None

    def test_sweep_interval_derived_from_ttl(self):
        assert QueryCacheConfig(default_ttl_seconds=100).effective_sweep_interval == 20
        assert (
            QueryCacheConfig(default_ttl_seconds=100, sweep_interval_seconds=3).effective_sweep_interval
            == 3
        )

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"default_ttl_seconds": 0},
            {"default_ttl_seconds": -1},
            {"sweep_interval_seconds": 0},
            {"max_entries": 0},
        ],
    )
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            QueryCacheConfig(**kwargs)

    def test_invalid_value_is_a_configuration_error(self):
        with pytest.raises(CacheConfigurationError) as exc_info:
            QueryCacheConfig(max_entries=-5)

        assert isinstance(exc_info.value, ValueError)
        assert isinstance(exc_info.value, ReportCacheError)
        assert exc_info.value.context == {"max_entries": -5}


class TestPlanAnalysisConfig:
    def test_defaults(self):
        config = PlanAnalysisConfig()
        assert config.seq_scan_row_threshold == 1000
        assert config.high_cost_threshold == 1000.0
        assert config.join_cost_threshold == 500.0

    def test_negative_threshold_rejected(self):
        with pytest.raises(CacheConfigurationError, match="join_cost_threshold"):
            PlanAnalysisConfig(join_cost_threshold=-1)


class TestReportCacheConfig:
    def test_defaults(self):
        config = ReportCacheConfig()
        assert config.contribution_ttl_seconds == 3600
        assert config.summary_ttl_seconds == 86400

    def test_non_positive_ttl_rejected(self):
        with pytest.raises(CacheConfigurationError):
            ReportCacheConfig(summary_ttl_seconds=0)


class TestSettings:
    def test_from_dict(self):
        settings = ReportCacheSettings.from_dict(
            {"cache": {"default_ttl_seconds": 30}, "analysis": {"slow_query_ms": 50}}
        )
        assert settings.cache.default_ttl_seconds == 30
        assert settings.analysis.slow_query_ms == 50
        assert settings.reports.summary_ttl_seconds == 86400

    def test_from_dict_warns_on_unknown_section(self, caplog):
        with caplog.at_level(logging.WARNING):
            ReportCacheSettings.from_dict({"storage": {}})
        assert "Unknown configuration sections ignored" in caplog.text

    def test_to_dict_round_trips(self):
        settings = create_config(default_ttl_seconds=10)
        assert ReportCacheSettings.from_dict(settings.to_dict()) == settings


class TestCreateConfig:
    def test_routes_overrides_to_sections(self):
        settings = create_config(
            default_ttl_seconds=120, high_cost_threshold=5000, analyze_queries=False
        )
        assert settings.cache.default_ttl_seconds == 120
        assert settings.analysis.high_cost_threshold == 5000
        assert settings.reports.analyze_queries is False

    def test_unknown_parameter_ignored(self, caplog):
        with caplog.at_level(logging.WARNING):
            settings = create_config(compression_level=9)
        assert "Unknown configuration parameter ignored: compression_level" in caplog.text
        assert settings == ReportCacheSettings()

    def test_overrides_are_validated(self):
        with pytest.raises(ValueError):
            create_config(default_ttl_seconds=-5)
