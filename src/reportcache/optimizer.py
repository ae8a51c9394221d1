"""
Query Plan Analysis and Performance Monitoring
==============================================

Advisory tooling for the report read path. The analyzer walks a database
execution plan and reports index and join opportunities; the monitor times a
query and reports its row count. Neither rewrites queries nor creates indexes.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, NamedTuple, Optional

from .config import PlanAnalysisConfig
from .error_handling import AnalysisError, ReportCacheError

if TYPE_CHECKING:
    from .executor import QueryExecutor

logger = logging.getLogger(__name__)

INDEX_RECOMMENDATION = "INDEX_RECOMMENDATION"
HIGH_COST_OPERATION = "HIGH_COST_OPERATION"
JOIN_OPTIMIZATION = "JOIN_OPTIMIZATION"

SEQUENTIAL_SCAN = "Seq Scan"
NESTED_LOOP = "Nested Loop"


@dataclass
class PlanNode:
    """One operation of an execution plan, independent of the database."""

    node_type: str
    relation_name: Optional[str] = None
    actual_rows: float = 0
    total_cost: float = 0.0
    children: List["PlanNode"] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def is_sequential_scan(self) -> bool:
        return self.node_type == SEQUENTIAL_SCAN

    @property
    def is_join(self) -> bool:
        return "Join" in self.node_type or self.node_type == NESTED_LOOP

    def walk(self) -> Iterator["PlanNode"]:
        """Depth-first, pre-order traversal starting at this node."""
        yield self
        for child in self.children:
            yield from child.walk()

    def summary(self) -> Dict[str, Any]:
        return {
            "node_type": self.node_type,
            "relation_name": self.relation_name,
            "actual_rows": self.actual_rows,
            "total_cost": self.total_cost,
        }


@dataclass
class Finding:
    """A single suggestion or warning produced by plan analysis."""

    type: str
    message: str
    node: PlanNode

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "message": self.message, "details": self.node.summary()}


@dataclass
class AnalysisResult:
    suggestions: List[Finding] = field(default_factory=list)
    warnings: List[Finding] = field(default_factory=list)

    @property
    def has_findings(self) -> bool:
        return bool(self.suggestions or self.warnings)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "suggestions": [finding.to_dict() for finding in self.suggestions],
            "warnings": [finding.to_dict() for finding in self.warnings],
        }


def analyze_execution_plan(
    root: PlanNode, config: Optional[PlanAnalysisConfig] = None
) -> AnalysisResult:
    """
    Walk a plan tree depth-first and collect findings.

    - A sequential scan returning more than ``seq_scan_row_threshold`` rows
      yields an index recommendation.
    - Any node costing more than ``high_cost_threshold`` yields a warning.
    - A join costing more than ``join_cost_threshold`` yields a join
      suggestion.

    Children are always visited, so a node and its ancestors can all be
    flagged.

    Args:
        root: Top-level plan node
        config: Thresholds (defaults if None)

    Returns:
        AnalysisResult with suggestions and warnings in visit order
    """
    config = config or PlanAnalysisConfig()
    analysis = AnalysisResult()

    for node in root.walk():
        if node.is_sequential_scan and node.actual_rows > config.seq_scan_row_threshold:
            analysis.suggestions.append(
                Finding(
                    INDEX_RECOMMENDATION,
                    f"Consider adding an index for table {node.relation_name} "
                    f"to avoid sequential scan on large table",
                    node,
                )
            )

        if node.total_cost > config.high_cost_threshold:
            analysis.warnings.append(
                Finding(
                    HIGH_COST_OPERATION,
                    f"High-cost operation detected: {node.node_type}",
                    node,
                )
            )

        if node.is_join and node.total_cost > config.join_cost_threshold:
            analysis.suggestions.append(
                Finding(
                    JOIN_OPTIMIZATION,
                    f"Consider optimizing join operation: {node.node_type}",
                    node,
                )
            )

    return analysis


class QueryMetrics(NamedTuple):
    execution_time_ms: float
    row_count: int


class MonitoredQuery(NamedTuple):
    results: List[Dict[str, Any]]
    metrics: QueryMetrics


class QueryOptimizer:
    """
    Execution plan analysis and query timing over a QueryExecutor.

    Explain failures are re-raised as AnalysisError; the caller decides
    whether an advisory failure matters.
    """

    def __init__(
        self, executor: "QueryExecutor", config: Optional[PlanAnalysisConfig] = None
    ):
        self.executor = executor
        self.config = config or PlanAnalysisConfig()

    def explain_query(self, query: str, params: Optional[Dict[str, Any]] = None) -> PlanNode:
        """Get the execution plan tree for a query."""
        try:
            return self.executor.explain(query, params or {})
        except ReportCacheError:
            raise
        except Exception as e:
            raise AnalysisError(
                f"Error explaining query: {e}", {"query": _shorten(query)}
            ) from e

    def analyze_execution_plan(self, plan: PlanNode) -> AnalysisResult:
        return analyze_execution_plan(plan, self.config)

    def optimize_query(
        self, query: str, params: Optional[Dict[str, Any]] = None
    ) -> AnalysisResult:
        """Explain a query, analyze its plan and log the outcome."""
        plan = self.explain_query(query, params)
        analysis = self.analyze_execution_plan(plan)

        logger.info(
            f"Query optimization analysis: {len(analysis.suggestions)} suggestion(s), "
            f"{len(analysis.warnings)} warning(s)"
        )
        for warning in analysis.warnings:
            logger.warning(warning.message)

        return analysis

    def generate_optimized_query(self, query: str, analysis: AnalysisResult) -> str:
        """
        Log every suggestion of an analysis and return the query unchanged.

        Index creation and join strategy are operator decisions, so nothing
        is applied automatically.
        """
        for suggestion in analysis.suggestions:
            if suggestion.type == INDEX_RECOMMENDATION:
                logger.info(f"Index recommendation: {suggestion.message}")
            elif suggestion.type == JOIN_OPTIMIZATION:
                logger.info(f"Join optimization suggestion: {suggestion.message}")
        return query

    def monitor_query_performance(
        self, query: str, params: Optional[Dict[str, Any]] = None
    ) -> MonitoredQuery:
        """
        Execute a query and measure its wall-clock time.

        Errors from the query itself propagate unchanged.

        Returns:
            MonitoredQuery of the raw result rows and their QueryMetrics
        """
        start_time = time.perf_counter()
        try:
            results = self.executor.execute(query, params or {})
        except Exception as e:
            logger.error(f"Error executing query {_shorten(query)}: {e}")
            raise

        execution_time_ms = (time.perf_counter() - start_time) * 1000
        metrics = QueryMetrics(execution_time_ms=execution_time_ms, row_count=len(results))

        if execution_time_ms > self.config.slow_query_ms:
            logger.warning(
                f"Slow query ({execution_time_ms:.1f}ms, {metrics.row_count} rows): "
                f"{_shorten(query)}"
            )
        else:
            logger.info(
                f"Query performance metrics: {execution_time_ms:.1f}ms, "
                f"{metrics.row_count} rows"
            )

        return MonitoredQuery(results=results, metrics=metrics)


def _shorten(query: str, limit: int = 120) -> str:
    flat = " ".join(query.split())
    return flat if len(flat) <= limit else flat[: limit - 3] + "..."
