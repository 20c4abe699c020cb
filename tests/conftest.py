"""
Shared fixtures: a file-backed SQLite database per test plus the managers
wired to it.
"""

from decimal import Decimal

import pytest

from categories import CategoryRegistry
from dashboard import DashboardAggregator
from database_ops import DatabaseManager
from finalization import FinalizationEngine
from ledger import MonthLedger
from snapshots import SnapshotArchive


@pytest.fixture
def db_manager(tmp_path):
    """Provide a DatabaseManager on a temporary SQLite file."""
    manager = DatabaseManager(f"sqlite:///{(tmp_path / 'budget.db').as_posix()}")
    manager.create_tables()
    try:
        yield manager
    finally:
        manager.close()


@pytest.fixture
def registry(db_manager):
    return CategoryRegistry(db_manager)


@pytest.fixture
def ledger(db_manager):
    return MonthLedger(db_manager)


@pytest.fixture
def aggregator(db_manager):
    return DashboardAggregator(db_manager)


@pytest.fixture
def engine(db_manager):
    return FinalizationEngine(db_manager)


@pytest.fixture
def archive(db_manager):
    return SnapshotArchive(db_manager)


@pytest.fixture
def month(ledger):
    """An open month: January 2024."""
    return ledger.create_month(2024, 1)


@pytest.fixture
def scenario(registry, ledger, month):
    """
    January 2024 with two lines:
    Groceries (expected 200.00, actual 185.50) and Utilities (expected 75.00, actual 72.10).
    """
    groceries = registry.create("Groceries", "bg-green-500")
    utilities = registry.create("Utilities", "bg-blue-500")
    grocery_line = ledger.create_budget_line(month.id, groceries.id, "Weekly shop", Decimal("200.00"))
    utility_line = ledger.create_budget_line(month.id, utilities.id, "Electricity", "75.00")
    ledger.set_actual(grocery_line.id, "185.50")
    ledger.set_actual(utility_line.id, 72.10)
    return {
        "month_id": month.id,
        "groceries": groceries,
        "utilities": utilities,
        "grocery_line": grocery_line,
        "utility_line": utility_line,
    }
