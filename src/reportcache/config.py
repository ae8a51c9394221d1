"""
Configuration Management for reportcache
========================================

Configuration is split into focused sub-configurations: the query cache
itself, the execution plan analyzer, and the report service that uses both.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional

from .error_handling import CacheConfigurationError

logger = logging.getLogger(__name__)

# Fraction of the default TTL between two background expiry sweeps
SWEEP_INTERVAL_RATIO = 0.2


@dataclass
class QueryCacheConfig:
    """Configuration for the in-memory query result cache."""

    default_ttl_seconds: float = 3600
    sweep_interval_seconds: Optional[float] = None  # None derives it from the TTL
    enable_sweeper: bool = True
    single_flight: bool = True
    max_entries: Optional[int] = None  # None means unbounded

    def __post_init__(self):
        """Validate cache configuration."""
        if self.default_ttl_seconds is None or self.default_ttl_seconds <= 0:
            raise CacheConfigurationError(
                "default_ttl_seconds must be positive",
                {"default_ttl_seconds": self.default_ttl_seconds},
            )

        if self.sweep_interval_seconds is not None and self.sweep_interval_seconds <= 0:
            raise CacheConfigurationError(
                "sweep_interval_seconds must be positive",
                {"sweep_interval_seconds": self.sweep_interval_seconds},
            )

        if self.max_entries is not None and self.max_entries <= 0:
            raise CacheConfigurationError(
                "max_entries must be positive", {"max_entries": self.max_entries}
            )

        logger.debug(
            f"Query cache configured: ttl={self.default_ttl_seconds}s, "
            f"sweep={self.effective_sweep_interval}s, single_flight={self.single_flight}"
        )

    @property
    def effective_sweep_interval(self) -> float:
        if self.sweep_interval_seconds is not None:
            return self.sweep_interval_seconds
        return self.default_ttl_seconds * SWEEP_INTERVAL_RATIO


@dataclass
class PlanAnalysisConfig:
    """Thresholds used when walking an execution plan."""

    seq_scan_row_threshold: int = 1000
    high_cost_threshold: float = 1000.0
    join_cost_threshold: float = 500.0
    slow_query_ms: float = 1000.0

    def __post_init__(self):
        """Validate analysis thresholds."""
        for name in (
            "seq_scan_row_threshold",
            "high_cost_threshold",
            "join_cost_threshold",
            "slow_query_ms",
        ):
            if getattr(self, name) < 0:
                raise CacheConfigurationError(
                    f"{name} must be non-negative", {name: getattr(self, name)}
                )

        logger.debug(
            f"Plan analysis configured: rows>{self.seq_scan_row_threshold}, "
            f"cost>{self.high_cost_threshold}, join>{self.join_cost_threshold}"
        )


@dataclass
class ReportCacheConfig:
    """Caching policy of the pension report service."""

    contribution_ttl_seconds: float = 3600  # 1 hour
    summary_ttl_seconds: float = 86400  # 24 hours
    analyze_queries: bool = True

    def __post_init__(self):
        if self.contribution_ttl_seconds <= 0 or self.summary_ttl_seconds <= 0:
            raise CacheConfigurationError(
                "report TTLs must be positive",
                {
                    "contribution_ttl_seconds": self.contribution_ttl_seconds,
                    "summary_ttl_seconds": self.summary_ttl_seconds,
                },
            )


@dataclass
class ReportCacheSettings:
    """Main configuration class that combines all sub-configurations."""

    cache: QueryCacheConfig = field(default_factory=QueryCacheConfig)
    analysis: PlanAnalysisConfig = field(default_factory=PlanAnalysisConfig)
    reports: ReportCacheConfig = field(default_factory=ReportCacheConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReportCacheSettings":
        """Build settings from a nested mapping such as a parsed config file."""
        unknown = set(data) - {"cache", "analysis", "reports"}
        if unknown:
            logger.warning(f"Unknown configuration sections ignored: {sorted(unknown)}")

        return cls(
            cache=QueryCacheConfig(**data.get("cache", {})),
            analysis=PlanAnalysisConfig(**data.get("analysis", {})),
            reports=ReportCacheConfig(**data.get("reports", {})),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def create_config(**overrides) -> ReportCacheSettings:
    """
    Factory function for creating settings from flat keyword overrides.

    Each override is routed to the first sub-configuration that defines it;
    unknown names are logged and ignored. Sub-configurations are rebuilt so
    their validation runs on the overridden values.

    Returns:
        Configured ReportCacheSettings instance
    """
    sections = {"cache": {}, "analysis": {}, "reports": {}}
    defaults = ReportCacheSettings()

    for key, value in overrides.items():
        for section_name in sections:
            if hasattr(getattr(defaults, section_name), key):
                sections[section_name][key] = value
                break
        else:
            logger.warning(f"Unknown configuration parameter ignored: {key}")

    return ReportCacheSettings.from_dict(sections)
