"""
Tests for the SQLAlchemy-backed query executor.
"""

from unittest.mock import PropertyMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from reportcache.error_handling import AnalysisError
from reportcache.executor import SqlAlchemyExecutor
from reportcache.plan_adapters import QUERY_ROOT


class TestSqlAlchemyExecutor:
    def test_execute_returns_dict_rows(self, executor):
        rows = executor.execute(
            "SELECT id, first_name FROM employees WHERE department = :department ORDER BY id",
            {"department": "Engineering"},
        )
        assert rows == [{"id": 2, "first_name": "Alan"}, {"id": 3, "first_name": "Grace"}]

    def test_execute_without_params(self, executor):
        assert executor.execute("SELECT COUNT(*) AS n FROM employees") == [{"n": 3}]

    def test_execute_errors_propagate(self, executor):
        with pytest.raises(OperationalError):
            executor.execute("SELECT * FROM missing_table")

    def test_sqlite_explain(self, executor):
        plan = executor.explain(
            "SELECT * FROM pension_contributions WHERE amount > :amount", {"amount": 10}
        )

        assert plan.node_type == QUERY_ROOT
        scans = [node for node in plan.walk() if node.is_sequential_scan]
        assert [node.relation_name for node in scans] == ["pension_contributions"]

    def test_unsupported_dialect(self, executor):
        with patch.object(
            SqlAlchemyExecutor, "dialect", new_callable=PropertyMock, return_value="mysql"
        ):
            with pytest.raises(AnalysisError, match="not supported"):
                executor.explain("SELECT 1")

    def test_dialect(self, executor):
        assert executor.dialect == "sqlite"

    def test_rejects_other_types(self):
        with pytest.raises(TypeError):
            SqlAlchemyExecutor(42)

    def test_owned_engine_from_url(self):
        executor = SqlAlchemyExecutor("sqlite://")
        try:
            assert executor.execute("SELECT 1 AS one") == [{"one": 1}]
        finally:
            executor.close()

    def test_close_leaves_shared_engine_alone(self, engine):
        executor = SqlAlchemyExecutor(engine)
        with patch.object(engine, "dispose") as dispose:
            executor.close()
        dispose.assert_not_called()
