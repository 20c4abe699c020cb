from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select, text
from sqlalchemy.exc import IntegrityError

from database_ops import ActualLine, BudgetLine, Category, Month, MonthState
from exceptions import StorageError


def test_money_round_trips_as_decimal_cents(db_manager, month):
    with db_manager.session_scope("test") as session:
        category = Category(name="Rent", color="bg-red-500")
        session.add(category)
        session.flush()
        session.add(BudgetLine(month_id=month.id, category_id=category.id, label="Flat", expected_amount=1234.565))

    with db_manager.session_scope("test") as session:
        line = session.scalar(select(BudgetLine))
        stored = session.execute(text("SELECT expected_amount FROM budget_lines")).scalar()

    assert line.expected_amount == Decimal("1234.57")
    assert isinstance(line.expected_amount, Decimal)
    assert stored == 123457


def test_month_name_and_state(month):
    assert month.name == "January"
    assert month.state is MonthState.OPEN
    assert month.to_dict() == {"id": month.id, "name": "January", "year": 2024, "month": 1, "is_finalized": False}


def test_seed_initial_month_only_when_empty(db_manager):
    seeded = db_manager.seed_initial_month(today=date(2025, 3, 14))

    assert seeded is not None
    assert (seeded.year, seeded.month, seeded.is_finalized) == (2025, 3, False)
    assert db_manager.seed_initial_month(today=date(2025, 4, 1)) is None

    with db_manager.session_scope("test") as session:
        assert session.scalar(select(func.count(Month.id))) == 1


def test_session_scope_wraps_storage_errors_and_rolls_back(db_manager, month):
    with pytest.raises(StorageError) as exc_info:
        with db_manager.session_scope("duplicate_month") as session:
            session.add(Category(name="Kept?", color="bg-gray-500"))
            session.flush()
            session.add(Month(year=2024, month=1, is_finalized=False))
            session.flush()

    assert isinstance(exc_info.value.original_error, IntegrityError)
    assert exc_info.value.details["operation"] == "duplicate_month"
    with db_manager.session_scope("test") as session:
        assert session.scalar(select(func.count(Category.id))) == 0


def test_session_scope_propagates_domain_errors(db_manager):
    with pytest.raises(ValueError):
        with db_manager.session_scope("test") as session:
            session.add(Category(name="Gone", color="bg-gray-500"))
            session.flush()
            raise ValueError("boom")

    with db_manager.session_scope("test") as session:
        assert session.scalar(select(func.count(Category.id))) == 0


def test_actual_line_is_unique_per_budget_line(db_manager, month):
    with pytest.raises(StorageError):
        with db_manager.session_scope("test") as session:
            category = Category(name="Fuel", color="bg-yellow-500")
            session.add(category)
            session.flush()
            line = BudgetLine(month_id=month.id, category_id=category.id, label="Car", expected_amount=50)
            session.add(line)
            session.flush()
            session.add(ActualLine(budget_line_id=line.id, actual_amount=10))
            session.add(ActualLine(budget_line_id=line.id, actual_amount=20))
            session.flush()
