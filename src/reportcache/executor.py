"""
Query execution over SQLAlchemy.

The cache core reaches the database only through a QueryExecutor: running a
read query and asking for its execution plan. Both are read-only.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from .error_handling import AnalysisError
from .optimizer import PlanNode
from .plan_adapters import from_postgres_plan, from_sqlite_plan

logger = logging.getLogger(__name__)


class QueryExecutor(ABC):
    """Interface to the relational store used by reports and the optimizer."""

    @abstractmethod
    def execute(self, query: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        Run a read query with named ``:param`` binds.

        Returns:
            List of rows as column-name mappings
        """
        pass

    @abstractmethod
    def explain(self, query: str, params: Optional[Dict[str, Any]] = None) -> PlanNode:
        """
        Return the execution plan of a query as a PlanNode tree.
        """
        pass


class SqlAlchemyExecutor(QueryExecutor):
    """
    QueryExecutor backed by a SQLAlchemy engine.

    Plans are supported on PostgreSQL (``EXPLAIN (ANALYZE, BUFFERS, FORMAT
    JSON)``, which runs the query) and SQLite (``EXPLAIN QUERY PLAN``).

    Example:
        >>> executor = SqlAlchemyExecutor("postgresql+psycopg://app@localhost/pension")
        >>> rows = executor.execute("SELECT * FROM employees WHERE id = :id", {"id": 7})
    """

    def __init__(
        self,
        engine_or_url: Union[Engine, str],
        echo: bool = False,
        engine_kwargs: Optional[Dict[str, Any]] = None,
    ):
        """
        Args:
            engine_or_url: Existing Engine, or a database URL to create one
            echo: Whether to echo SQL statements for debugging (new engines only)
            engine_kwargs: Additional arguments for create_engine (new engines only)
        """
        if isinstance(engine_or_url, Engine):
            self.engine = engine_or_url
            self._owns_engine = False
        elif isinstance(engine_or_url, str):
            engine_kwargs = engine_kwargs or {}
            self.engine = create_engine(engine_or_url, echo=echo, **engine_kwargs)
            self._owns_engine = True
        else:
            raise TypeError(f"Expected Engine or URL string, got {type(engine_or_url)}")

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def execute(self, query: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        with self.engine.connect() as connection:
            result = connection.execute(text(query), params or {})
            return [dict(row) for row in result.mappings()]

    def explain(self, query: str, params: Optional[Dict[str, Any]] = None) -> PlanNode:
        params = params or {}

        if self.dialect == "postgresql":
            with self.engine.connect() as connection:
                payload = connection.execute(
                    text(f"EXPLAIN (ANALYZE, BUFFERS, FORMAT JSON) {query}"), params
                ).scalar()
            return from_postgres_plan(payload)

        if self.dialect == "sqlite":
            with self.engine.connect() as connection:
                rows = connection.execute(
                    text(f"EXPLAIN QUERY PLAN {query}"), params
                ).fetchall()
            return from_sqlite_plan(rows)

        raise AnalysisError(
            f"Execution plans are not supported for dialect {self.dialect!r}",
            {"dialect": self.dialect},
        )

    def close(self):
        """Dispose the engine if this executor created it."""
        if self._owns_engine:
            self.engine.dispose()
