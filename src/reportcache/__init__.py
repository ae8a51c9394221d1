"""
reportcache - In-process query result caching and plan analysis for report queries.

This library accelerates expensive, read-only report queries: results are
memoised in a TTL cache keyed by a digest of (query, parameters), and every
cache miss can be checked against the database's execution plan for missing
indexes and costly joins.

Key Features:
- Read-through caching for synchronous and asynchronous fetchers
- Per-call TTL overrides with lazy and background expiry
- Single-flight collapsing of concurrent misses on the same key
- Substring-pattern invalidation over the un-hashed query source
- Hit/miss statistics
- Database-agnostic execution plan analysis (PostgreSQL and SQLite adapters)

Quick Start:
    >>> from reportcache import QueryCache
    >>>
    >>> cache = QueryCache(3600)
    >>> rows = cache.wrap("SELECT 1", {}, lambda: [{"value": 1}])
    >>> cache.get_stats()["misses"]
    1
"""

from .backends import CacheBackend, CacheEntry, MemoryBackend, create_backend
from .config import (
    PlanAnalysisConfig,
    QueryCacheConfig,
    ReportCacheConfig,
    ReportCacheSettings,
    create_config,
)
from .core import QueryCache
from .error_handling import (
    AnalysisError,
    CacheCapacityError,
    CacheConfigurationError,
    CacheKeyError,
    CacheReadError,
    CacheWriteError,
    PlanFormatError,
    ReportCacheError,
)
from .executor import QueryExecutor, SqlAlchemyExecutor
from .keys import canonical_source, derive_key
from .optimizer import (
    AnalysisResult,
    Finding,
    MonitoredQuery,
    PlanNode,
    QueryMetrics,
    QueryOptimizer,
    analyze_execution_plan,
)
from .plan_adapters import from_postgres_plan, from_sqlite_plan
from .reports import PensionReportService, create_schema

__version__ = "0.1.0"

__all__ = [
    # Cache
    "QueryCache",
    "CacheBackend",
    "CacheEntry",
    "MemoryBackend",
    "create_backend",
    "canonical_source",
    "derive_key",
    # Configuration
    "QueryCacheConfig",
    "PlanAnalysisConfig",
    "ReportCacheConfig",
    "ReportCacheSettings",
    "create_config",
    # Plan analysis
    "PlanNode",
    "Finding",
    "AnalysisResult",
    "QueryMetrics",
    "MonitoredQuery",
    "QueryOptimizer",
    "analyze_execution_plan",
    "from_postgres_plan",
    "from_sqlite_plan",
    # Data layer and reports
    "QueryExecutor",
    "SqlAlchemyExecutor",
    "PensionReportService",
    "create_schema",
    # Errors
    "ReportCacheError",
    "CacheConfigurationError",
    "CacheKeyError",
    "CacheReadError",
    "CacheWriteError",
    "CacheCapacityError",
    "AnalysisError",
    "PlanFormatError",
    # Version info
    "__version__",
]
