"""
Dashboard aggregation module.

Computes per-category and grand totals of expected versus actual spending for
one month from live ledger data. The computation is read-only and can be
re-run at any time; the finalization engine calls the same function once to
produce the frozen snapshot payload.

Every aggregation level obeys ``difference = expected - actual``; a positive
difference means under budget.
"""

import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from database_ops import DatabaseManager, MonthState
from ledger import BudgetLineView, fetch_budget_line_views, get_month_or_raise
from snapshots import SnapshotArchive
from utils import ZERO, month_name, parse_id, to_wire_number

# Configure logging
logger = logging.getLogger(__name__)

# summary shown for lines whose category was deleted
UNCATEGORIZED_NAME = "Uncategorized"
UNCATEGORIZED_COLOR = "bg-gray-400"


@dataclass
class BudgetLineDetail:
    """One budget line inside a category summary."""
    budget_line_id: int
    label: str
    expected_amount: Decimal
    actual_amount: Decimal
    difference: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "budget_line_id": self.budget_line_id,
            "label": self.label,
            "expected_amount": to_wire_number(self.expected_amount),
            "actual_amount": to_wire_number(self.actual_amount),
            "difference": to_wire_number(self.difference),
        }


@dataclass
class CategorySummary:
    """
    Totals of one category with its line details.

    Name and color are a denormalized copy taken at aggregation time.
    """
    category_id: Optional[int]
    category_name: str
    category_color: str
    total_expected: Decimal = ZERO
    total_actual: Decimal = ZERO
    difference: Decimal = ZERO
    budget_lines: List[BudgetLineDetail] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category_id": self.category_id,
            "category_name": self.category_name,
            "category_color": self.category_color,
            "total_expected": to_wire_number(self.total_expected),
            "total_actual": to_wire_number(self.total_actual),
            "difference": to_wire_number(self.difference),
            "budget_lines": [line.to_dict() for line in self.budget_lines],
        }


@dataclass
class DashboardPayload:
    """Grand totals of a month plus its category summaries."""
    month_id: int
    year: int
    month: str
    total_expected: Decimal = ZERO
    total_actual: Decimal = ZERO
    total_difference: Decimal = ZERO
    category_summaries: List[CategorySummary] = field(default_factory=list)

    @property
    def status(self) -> str:
        """Return "Under Budget", "Over Budget" or "On Budget"."""
        if self.total_difference > 0:
            return "Under Budget"
        if self.total_difference < 0:
            return "Over Budget"
        return "On Budget"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "month_id": self.month_id,
            "year": self.year,
            "month": self.month,
            "total_expected": to_wire_number(self.total_expected),
            "total_actual": to_wire_number(self.total_actual),
            "total_difference": to_wire_number(self.total_difference),
            "category_summaries": [summary.to_dict() for summary in self.category_summaries],
        }

    def to_json(self) -> str:
        """Serialize the wire form; this text is what snapshots store."""
        return json.dumps(self.to_dict())


def _category_sort_key(summary: CategorySummary):
    # orphaned lines (no category) sort last
    return (summary.category_id is None, summary.category_id or 0)


def aggregate_lines(month_id: int, year: int, month: int, lines: List[BudgetLineView]) -> DashboardPayload:
    """
    Group budget lines by category and compute all totals.

    Categories are ordered by id and lines within a category by line id.
    Unset actuals count as zero.

    Args:
        month_id: Month the lines belong to
        year: Calendar year of the month
        month: Calendar month number
        lines: Budget lines joined to category and actual

    Returns:
        DashboardPayload with Decimal amounts
    """
    summaries: Dict[Optional[int], CategorySummary] = {}

    for line in sorted(lines, key=lambda item: item.id):
        summary = summaries.get(line.category_id)
        if summary is None:
            summary = CategorySummary(
                category_id=line.category_id,
                category_name=line.category_name if line.category_id is not None else UNCATEGORIZED_NAME,
                category_color=line.category_color if line.category_id is not None else UNCATEGORIZED_COLOR,
            )
            summaries[line.category_id] = summary

        actual = line.effective_actual
        summary.budget_lines.append(
            BudgetLineDetail(
                budget_line_id=line.id,
                label=line.label,
                expected_amount=line.expected,
                actual_amount=actual,
                difference=line.expected - actual,
            )
        )
        summary.total_expected += line.expected
        summary.total_actual += actual

    payload = DashboardPayload(month_id=month_id, year=year, month=month_name(month))
    for summary in sorted(summaries.values(), key=_category_sort_key):
        summary.difference = summary.total_expected - summary.total_actual
        payload.total_expected += summary.total_expected
        payload.total_actual += summary.total_actual
        payload.category_summaries.append(summary)

    payload.total_difference = payload.total_expected - payload.total_actual
    return payload


class DashboardAggregator:
    """
    Computes dashboard payloads from live ledger data.

    Has no side effects; safe to call repeatedly.
    """

    def __init__(self, db_manager: DatabaseManager):
        """
        Initialize the dashboard aggregator.

        Args:
            db_manager: DatabaseManager instance
        """
        self.db_manager = db_manager

    def compute_dashboard(self, month_id: int, session: Optional[Session] = None) -> DashboardPayload:
        """
        Compute the dashboard of a month from its current budget and actual lines.

        Args:
            month_id: Month to aggregate
            session: Optional existing session (the finalization engine passes
                its own so the payload reflects its transaction)

        Returns:
            DashboardPayload

        Raises:
            NotFoundError: If the month does not exist
        """
        month_id = parse_id(month_id, "month_id")
        if session is not None:
            return self._compute(session, month_id)

        with self.db_manager.session_scope("compute_dashboard") as own_session:
            return self._compute(own_session, month_id)

    def _compute(self, session: Session, month_id: int) -> DashboardPayload:
        month = get_month_or_raise(session, month_id)
        lines = fetch_budget_line_views(session, month_id)
        payload = aggregate_lines(month.id, month.year, month.month, lines)
        logger.debug(
            f"Computed dashboard for month {month_id}: {len(lines)} lines, "
            f"{len(payload.category_summaries)} categories"
        )
        return payload


def load_dashboard(db_manager: DatabaseManager, month_id: int) -> Dict[str, Any]:
    """
    Return the dashboard body for a month as shown to users.

    Open months are aggregated live. Finalized months are served from their
    snapshot so later category or budget edits never change them.

    Raises:
        NotFoundError: If the month (or a finalized month's snapshot) does not exist
    """
    month_id = parse_id(month_id, "month_id")
    with db_manager.session_scope("load_dashboard") as session:
        month = get_month_or_raise(session, month_id)
        state = month.state

    if state is MonthState.FINALIZED:
        return SnapshotArchive(db_manager).get_detail_for_month(month_id)
    return DashboardAggregator(db_manager).compute_dashboard(month_id).to_dict()
