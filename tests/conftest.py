"""
Shared fixtures: a controllable clock, a cache without background threads,
and an in-memory SQLite database seeded with pension data.
"""

from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from reportcache import QueryCache, QueryCacheConfig, SqlAlchemyExecutor, create_schema
from reportcache.reports import employees, pension_contributions


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


EMPLOYEES = [
    {"id": 1, "nib_number": "NIB-0001", "first_name": "Ada", "last_name": "Lovelace",
     "email": "ada@example.com", "position": "Analyst", "department": "Finance",
     "employment_type": "FULL_TIME", "status": "active"},
    {"id": 2, "nib_number": "NIB-0002", "first_name": "Alan", "last_name": "Turing",
     "email": "alan@example.com", "position": "Engineer", "department": "Engineering",
     "employment_type": "FULL_TIME", "status": "active"},
    {"id": 3, "nib_number": "NIB-0003", "first_name": "Grace", "last_name": "Hopper",
     "email": "grace@example.com", "position": "Engineer", "department": "Engineering",
     "employment_type": "PART_TIME", "status": "active"},
]

CONTRIBUTIONS = [
    {"employee_id": 1, "contribution_date": date(2024, 1, 15), "amount": 100.0, "type": "EMPLOYEE"},
    {"employee_id": 1, "contribution_date": date(2024, 1, 15), "amount": 150.0, "type": "EMPLOYER"},
    {"employee_id": 1, "contribution_date": date(2024, 2, 15), "amount": 100.0, "type": "EMPLOYEE"},
    {"employee_id": 1, "contribution_date": date(2024, 2, 15), "amount": 150.0, "type": "EMPLOYER"},
    {"employee_id": 2, "contribution_date": date(2024, 1, 20), "amount": 200.0, "type": "EMPLOYEE"},
    {"employee_id": 2, "contribution_date": date(2024, 1, 20), "amount": 300.0, "type": "EMPLOYER"},
    {"employee_id": 3, "contribution_date": date(2024, 1, 25), "amount": 50.0, "type": "EMPLOYEE"},
    {"employee_id": 3, "contribution_date": date(2024, 1, 25), "amount": 75.0, "type": "EMPLOYER"},
]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    """Cache with a 60s default TTL, a fake clock and no sweeper thread."""
    config = QueryCacheConfig(default_ttl_seconds=60, enable_sweeper=False)
    cache = QueryCache(config, clock=clock)
    yield cache
    cache.close()


@pytest.fixture
def engine():
    """In-memory SQLite database with the report schema and seed data."""
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    create_schema(engine)
    with engine.begin() as connection:
        connection.execute(employees.insert(), EMPLOYEES)
        connection.execute(pension_contributions.insert(), CONTRIBUTIONS)
    yield engine
    engine.dispose()


@pytest.fixture
def executor(engine):
    return SqlAlchemyExecutor(engine)
