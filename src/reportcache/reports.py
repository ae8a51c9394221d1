"""
Pension Report Service
======================

Aggregate report queries over employees and their pension contributions,
memoised in a QueryCache and checked by the QueryOptimizer on every cache
miss.

Example:
    >>> executor = SqlAlchemyExecutor("postgresql+psycopg://app@localhost/pension")
    >>> with QueryCache(3600) as cache:
    ...     service = PensionReportService(executor, cache)
    ...     rows = service.get_employee_contributions(42, "2024-01-01", "2024-12-31")
    ...     service.invalidate_employee_cache(42)
"""

import calendar
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import (
    Column,
    Date,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
)
from sqlalchemy.engine import Engine

from .config import ReportCacheConfig
from .core import QueryCache
from .error_handling import AnalysisError
from .executor import QueryExecutor
from .keys import param_fragment
from .optimizer import QueryOptimizer

logger = logging.getLogger(__name__)

DateLike = Union[date, datetime, str]

CONTRIBUTION_TYPES = ("EMPLOYEE", "EMPLOYER")

metadata = MetaData()

employees = Table(
    "employees",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("nib_number", String(32), unique=True, nullable=False),
    Column("first_name", String(100), nullable=False),
    Column("last_name", String(100), nullable=False),
    Column("email", String(255)),
    Column("position", String(100)),
    Column("department", String(100)),
    Column("employment_type", String(32)),
    Column("status", String(32), default="active"),
)

pension_contributions = Table(
    "pension_contributions",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("employee_id", Integer, ForeignKey("employees.id"), nullable=False),
    Column("contribution_date", Date, nullable=False),
    Column("amount", Float, nullable=False),
    Column("type", String(16), nullable=False),
    Index("ix_pension_contributions_employee_date", "employee_id", "contribution_date"),
)


def create_schema(engine: Engine):
    """Create the report tables if they do not exist."""
    metadata.create_all(engine, checkfirst=True)


CONTRIBUTIONS_QUERY = """
    SELECT
        e.first_name,
        e.last_name,
        e.nib_number,
        pc.contribution_date,
        pc.amount,
        pc.type
    FROM employees e
    JOIN pension_contributions pc ON e.id = pc.employee_id
    WHERE e.id = :employee_id
        AND pc.contribution_date BETWEEN :start_date AND :end_date
    ORDER BY pc.contribution_date DESC
"""

MONTHLY_SUMMARY_QUERY = """
    WITH monthly_totals AS (
        SELECT
            e.department,
            SUM(CASE WHEN pc.type = 'EMPLOYEE' THEN pc.amount ELSE 0 END) AS employee_contributions,
            SUM(CASE WHEN pc.type = 'EMPLOYER' THEN pc.amount ELSE 0 END) AS employer_contributions,
            COUNT(DISTINCT e.id) AS total_employees
        FROM employees e
        JOIN pension_contributions pc ON e.id = pc.employee_id
        WHERE pc.contribution_date BETWEEN :start_date AND :end_date
        GROUP BY e.department
    )
    SELECT
        department,
        employee_contributions,
        employer_contributions,
        (employee_contributions + employer_contributions) AS total_contributions,
        total_employees,
        (employee_contributions + employer_contributions) / total_employees AS average_per_employee
    FROM monthly_totals
    ORDER BY total_contributions DESC
"""


def _iso_date(value: DateLike) -> str:
    """Normalise a date argument to ISO text so cache keys stay stable."""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return date.fromisoformat(str(value)).isoformat()


def _employee_id(value: Any) -> Any:
    """Digit strings become ints so "42" and 42 share cache entries."""
    if isinstance(value, str) and value.strip().isdecimal():
        return int(value.strip())
    return value


def month_bounds(year: int, month: int):
    """First and last day of a calendar month as ISO strings."""
    if not 1 <= month <= 12:
        raise ValueError(f"month must be between 1 and 12, got {month}")
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1).isoformat(), date(year, month, last_day).isoformat()


class PensionReportService:
    """Cached pension report queries."""

    def __init__(
        self,
        executor: QueryExecutor,
        cache: QueryCache,
        optimizer: Optional[QueryOptimizer] = None,
        config: Optional[ReportCacheConfig] = None,
    ):
        self.executor = executor
        self.cache = cache
        self.optimizer = optimizer or QueryOptimizer(executor)
        self.config = config or ReportCacheConfig()

    def _run_report(self, label: str, query: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Analyze (advisory) and execute a report query on a cache miss."""
        if self.config.analyze_queries:
            try:
                analysis = self.optimizer.optimize_query(query, params)
            except AnalysisError as e:
                logger.warning(f"Plan analysis skipped for {label}: {e}")
            else:
                if analysis.suggestions:
                    logger.info(
                        f"Query optimization suggestions available for {label}: "
                        f"{analysis.to_dict()['suggestions']}"
                    )
                    self.optimizer.generate_optimized_query(query, analysis)

        results, metrics = self.optimizer.monitor_query_performance(query, params)
        logger.debug(
            f"{label}: {metrics.row_count} rows in {metrics.execution_time_ms:.1f}ms"
        )
        return results

    def get_employee_contributions(
        self, employee_id: Any, start_date: DateLike, end_date: DateLike
    ) -> List[Dict[str, Any]]:
        """
        Contribution history of one employee between two dates, newest first.

        Cached for ``contribution_ttl_seconds``.
        """
        params = {
            "employee_id": _employee_id(employee_id),
            "start_date": _iso_date(start_date),
            "end_date": _iso_date(end_date),
        }

        try:
            return self.cache.wrap(
                CONTRIBUTIONS_QUERY,
                params,
                lambda: self._run_report("employee contributions", CONTRIBUTIONS_QUERY, params),
                ttl=self.config.contribution_ttl_seconds,
            )
        except Exception as e:
            logger.error(f"Error fetching employee contributions for {employee_id}: {e}")
            raise

    def get_contributions_summary(self, year: int, month: int) -> List[Dict[str, Any]]:
        """
        Per-department employee/employer totals for one month.

        Rows carry the grand total, the head count and the average per
        employee, largest total first. Cached for ``summary_ttl_seconds``.
        """
        start_date, end_date = month_bounds(year, month)
        params = {"start_date": start_date, "end_date": end_date}

        try:
            return self.cache.wrap(
                MONTHLY_SUMMARY_QUERY,
                params,
                lambda: self._run_report("monthly summary", MONTHLY_SUMMARY_QUERY, params),
                ttl=self.config.summary_ttl_seconds,
            )
        except Exception as e:
            logger.error(f"Error generating contributions summary for {year}-{month:02d}: {e}")
            raise

    def invalidate_employee_cache(self, employee_id: Any) -> int:
        """
        Drop every cached report parameterised by this employee.

        Monthly summaries carry no employee parameter and are left to expire.

        Returns:
            Number of entries removed
        """
        fragment = param_fragment("employee_id", _employee_id(employee_id))
        # A parameter value is always followed by "," or "}" in the canonical text
        invalidated_count = sum(
            self.cache.invalidate_pattern(fragment + delimiter) for delimiter in (",", "}")
        )
        logger.info(f"Employee cache invalidated: {employee_id} ({invalidated_count} entries)")
        return invalidated_count

    def get_cache_stats(self) -> Dict[str, Any]:
        return self.cache.get_stats()
