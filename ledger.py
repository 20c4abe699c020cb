"""
Month ledger module for budget and actual lines.

This module owns months, budget lines and actual lines. Every write is scoped
by an explicit month (directly or through the budget line's month) and is
rejected once that month has been finalized. Reads join budget lines to their
category and their optional actual line at query time.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from categories import lock_category
from database_ops import ActualLine, BudgetLine, Category, DatabaseManager, Month
from exceptions import MonthExistsError, NotFoundError, ValidationError
from month_lifecycle import lock_open_month, lock_open_month_for_line
from utils import ZERO, month_name, parse_id, require_text, to_amount, to_wire_number

# Configure logging
logger = logging.getLogger(__name__)


@dataclass
class BudgetLineView:
    """
    A budget line joined with its category and its optional actual line.

    ``actual_amount`` is None while no actual has been recorded; arithmetic
    uses ``effective_actual`` which treats that as zero.
    """
    id: int
    month_id: int
    category_id: Optional[int]
    category_name: Optional[str]
    category_color: Optional[str]
    label: str
    expected: Decimal
    actual_id: Optional[int] = None
    actual_amount: Optional[Decimal] = None

    @property
    def has_actual(self) -> bool:
        return self.actual_amount is not None

    @property
    def effective_actual(self) -> Decimal:
        return self.actual_amount if self.actual_amount is not None else ZERO

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "month_id": self.month_id,
            "category_id": self.category_id,
            "category_name": self.category_name,
            "category_color": self.category_color,
            "label": self.label,
            "expected": to_wire_number(self.expected),
            "actual_id": self.actual_id,
            "actual_amount": to_wire_number(self.effective_actual),
        }

    def to_board_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "month_id": self.month_id,
            "category_id": self.category_id,
            "category_name": self.category_name,
            "category_color": self.category_color,
            "label": self.label,
            "expected_amount": to_wire_number(self.expected),
            "actual_amount": to_wire_number(self.effective_actual),
        }


@dataclass
class BoardData:
    """Month header plus its budget lines, as shown on the board page."""
    month_id: int
    year: int
    month_name: str
    is_finalized: bool
    budget_lines: List[BudgetLineView] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "month_id": self.month_id,
            "year": self.year,
            "month_name": self.month_name,
            "is_finalized": self.is_finalized,
            "budget_lines": [line.to_board_dict() for line in self.budget_lines],
        }


def fetch_budget_line_views(session: Session, month_id: int) -> List[BudgetLineView]:
    """
    Load a month's budget lines joined to category and actual, ordered by id.

    Category and actual are outer-joined: a line without an actual has
    ``actual_amount`` None, a line whose category was deleted has no name.
    """
    rows = session.execute(
        select(
            BudgetLine.id,
            BudgetLine.month_id,
            BudgetLine.category_id,
            Category.name,
            Category.color,
            BudgetLine.label,
            BudgetLine.expected_amount,
            ActualLine.id,
            ActualLine.actual_amount,
        )
        .outerjoin(Category, BudgetLine.category_id == Category.id)
        .outerjoin(ActualLine, ActualLine.budget_line_id == BudgetLine.id)
        .where(BudgetLine.month_id == month_id)
        .order_by(BudgetLine.id)
    ).all()
    return [BudgetLineView(*row) for row in rows]


def get_month_or_raise(session: Session, month_id: int) -> Month:
    month = session.get(Month, month_id)
    if month is None:
        raise NotFoundError("Month not found", details={"month_id": month_id})
    return month


class MonthLedger:
    """
    Manages months, budget lines and actual lines.

    All operations take the month (or budget line) id explicitly; there is no
    notion of a "current" month here.
    """

    def __init__(self, db_manager: DatabaseManager):
        """
        Initialize the month ledger.

        Args:
            db_manager: DatabaseManager instance
        """
        self.db_manager = db_manager
        logger.info("Month ledger initialized")

    # ------------------------------------------------------------------
    # Months
    # ------------------------------------------------------------------

    def list_months(self) -> List[Month]:
        """Return all months in calendar order."""
        with self.db_manager.session_scope("list_months") as session:
            return list(session.scalars(select(Month).order_by(Month.year, Month.month)))

    def get_month(self, month_id: int) -> Month:
        """
        Get a month by ID.

        Raises:
            NotFoundError: If the month does not exist
        """
        month_id = parse_id(month_id, "month_id")
        with self.db_manager.session_scope("get_month") as session:
            return get_month_or_raise(session, month_id)

    def create_month(self, year: int, month: int) -> Month:
        """
        Open a new accounting month for an arbitrary period.

        Args:
            year: Calendar year
            month: Calendar month number (1-12)

        Returns:
            Created Month (open)

        Raises:
            ValidationError: If the period is malformed
            MonthExistsError: If the period already exists
        """
        year = parse_id(year, "year")
        month = parse_id(month, "month")
        if month > 12:
            raise ValidationError("month must be between 1 and 12", details={"month": month})

        with self.db_manager.session_scope("create_month") as session:
            existing = session.scalar(select(Month).where(Month.year == year, Month.month == month))
            if existing is not None:
                raise MonthExistsError(
                    "Month already exists",
                    details={"period": f"{year}-{month:02d}", "month_id": existing.id}
                )
            record = Month(year=year, month=month, is_finalized=False)
            session.add(record)
            session.flush()
            logger.info(f"Opened month {year}-{month:02d} with ID {record.id}")
            return record

    # ------------------------------------------------------------------
    # Budget lines
    # ------------------------------------------------------------------

    def create_budget_line(
        self,
        month_id: int,
        category_id: int,
        label: str,
        expected_amount: Any
    ) -> BudgetLine:
        """
        Add a budget line to an open month.

        Args:
            month_id: Owning month
            category_id: Referenced category
            label: Line label
            expected_amount: Planned amount (non-negative)

        Returns:
            Created BudgetLine

        Raises:
            ValidationError: If the amount is negative, the label empty or the category unknown
            NotFoundError: If the month does not exist
            FinalizedMonthError: If the month is finalized
        """
        month_id = parse_id(month_id, "month_id")
        category_id = parse_id(category_id, "category_id")
        label = require_text(label, "label")
        expected = to_amount(expected_amount, "expected_amount")

        with self.db_manager.session_scope("create_budget_line") as session:
            lock_open_month(session, month_id)
            if not lock_category(session, category_id):
                raise ValidationError("Unknown category_id", details={"category_id": category_id})

            line = BudgetLine(
                month_id=month_id,
                category_id=category_id,
                label=label,
                expected_amount=expected,
            )
            session.add(line)
            session.flush()
            logger.info(f"Created budget line {line.id} '{label}' ({expected}) in month {month_id}")
            return line

    def update_budget_line(
        self,
        budget_line_id: int,
        label: Optional[str] = None,
        expected_amount: Any = None
    ) -> BudgetLine:
        """
        Update the label and/or expected amount of a budget line.

        Raises:
            ValidationError: If nothing is given or a value is invalid
            NotFoundError: If the budget line does not exist
            FinalizedMonthError: If the owning month is finalized
        """
        budget_line_id = parse_id(budget_line_id, "budget_line_id")
        if label is None and expected_amount is None:
            raise ValidationError(
                "Nothing to update: provide label and/or expected",
                details={"budget_line_id": budget_line_id}
            )
        if label is not None:
            label = require_text(label, "label")
        expected = to_amount(expected_amount, "expected_amount") if expected_amount is not None else None

        with self.db_manager.session_scope("update_budget_line") as session:
            line = lock_open_month_for_line(session, budget_line_id)
            if label is not None:
                line.label = label
            if expected is not None:
                line.expected_amount = expected
            session.flush()
            logger.info(f"Updated budget line {budget_line_id}")
            return line

    def delete_budget_line(self, budget_line_id: int) -> None:
        """
        Delete a budget line and its actual line.

        Raises:
            NotFoundError: If the budget line does not exist
            FinalizedMonthError: If the owning month is finalized
        """
        budget_line_id = parse_id(budget_line_id, "budget_line_id")
        with self.db_manager.session_scope("delete_budget_line") as session:
            line = lock_open_month_for_line(session, budget_line_id)
            session.delete(line)
            logger.info(f"Deleted budget line {budget_line_id}")

    def get_budget_line(self, budget_line_id: int) -> BudgetLine:
        """
        Get a budget line by ID.

        Raises:
            NotFoundError: If the budget line does not exist
        """
        budget_line_id = parse_id(budget_line_id, "budget_line_id")
        with self.db_manager.session_scope("get_budget_line") as session:
            line = session.get(BudgetLine, budget_line_id)
            if line is None:
                raise NotFoundError("Budget line not found", details={"budget_line_id": budget_line_id})
            return line

    # ------------------------------------------------------------------
    # Actual lines
    # ------------------------------------------------------------------

    def set_actual(self, budget_line_id: int, actual_amount: Any) -> ActualLine:
        """
        Record the actual spend of a budget line.

        Creates the actual line on first call and updates it in place after
        that, so a budget line never has more than one actual line.

        Raises:
            ValidationError: If the amount is negative or not a number
            NotFoundError: If the budget line does not exist
            FinalizedMonthError: If the owning month is finalized
        """
        budget_line_id = parse_id(budget_line_id, "budget_line_id")
        amount = to_amount(actual_amount, "actual_amount")

        with self.db_manager.session_scope("set_actual") as session:
            lock_open_month_for_line(session, budget_line_id)
            actual = session.scalar(select(ActualLine).where(ActualLine.budget_line_id == budget_line_id))
            if actual is None:
                actual = ActualLine(budget_line_id=budget_line_id, actual_amount=amount)
                session.add(actual)
                action = "Recorded"
            else:
                actual.actual_amount = amount
                action = "Updated"
            session.flush()
            logger.info(f"{action} actual {amount} for budget line {budget_line_id}")
            return actual

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------

    def list_budget_lines(self, month_id: int) -> List[BudgetLineView]:
        """
        List a month's budget lines joined with category and actual.

        Returns:
            Lines ordered by creation id; unset actuals have actual_amount None

        Raises:
            NotFoundError: If the month does not exist
        """
        month_id = parse_id(month_id, "month_id")
        with self.db_manager.session_scope("list_budget_lines") as session:
            get_month_or_raise(session, month_id)
            return fetch_budget_line_views(session, month_id)

    def get_board_data(self, month_id: int) -> BoardData:
        """
        Build the board view of a month.

        Lines are ordered by category name, then label, then id.

        Raises:
            NotFoundError: If the month does not exist
        """
        month_id = parse_id(month_id, "month_id")
        with self.db_manager.session_scope("get_board_data") as session:
            month = get_month_or_raise(session, month_id)
            lines = fetch_budget_line_views(session, month_id)

        lines.sort(key=lambda line: (line.category_name or "", line.label, line.id))
        return BoardData(
            month_id=month.id,
            year=month.year,
            month_name=month_name(month.month),
            is_finalized=bool(month.is_finalized),
            budget_lines=lines,
        )
