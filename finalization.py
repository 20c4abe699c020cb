"""
Finalization engine: closes a month and rolls the budget forward.

Finalizing a month is one database transaction that
    1. flips the month's latch from open to finalized (compare-and-set),
    2. computes the month's dashboard payload,
    3. stores that payload as the month's immutable snapshot,
    4. opens the successor month, and
    5. copies every budget line into it without actuals.

If any step fails the transaction is rolled back and the month stays open, so
finalize can simply be called again. Concurrent calls for the same month
serialize on the compare-and-set: one succeeds, the others get
AlreadyFinalizedError.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from dashboard import DashboardAggregator
from database_ops import ActualLine, BudgetLine, DatabaseManager, Month, MonthState
from exceptions import MonthExistsError, ValidationError
from ledger import get_month_or_raise
from month_lifecycle import transition_to_finalized
from snapshots import SnapshotArchive
from utils import next_period, parse_id

# Configure logging
logger = logging.getLogger(__name__)

FINALIZE_MESSAGE = "Month finalized successfully"


@dataclass
class FinalizeResult:
    """
    Outcome of a successful finalize.

    Attributes:
        month_id: The month that was closed
        new_month_id: The successor month that was opened
        snapshot_id: The snapshot written for the closed month
        carried_forward: Number of budget lines copied to the successor
        message: Human-readable confirmation
    """
    month_id: int
    new_month_id: int
    snapshot_id: int
    carried_forward: int
    message: str = FINALIZE_MESSAGE

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "new_month_id": self.new_month_id}


def _count_unsettled_lines(session: Session, month_id: int) -> int:
    """Count budget lines whose actual is unset or zero."""
    return session.scalar(
        select(func.count(BudgetLine.id))
        .outerjoin(ActualLine, ActualLine.budget_line_id == BudgetLine.id)
        .where(
            BudgetLine.month_id == month_id,
            or_(ActualLine.id.is_(None), ActualLine.actual_amount == 0),
        )
    ) or 0


class FinalizationEngine:
    """
    Closes months into snapshots and opens their successors.

    The only component that moves a month out of the open state.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        aggregator: Optional[DashboardAggregator] = None,
        require_actuals: bool = False
    ):
        """
        Initialize the finalization engine.

        Args:
            db_manager: DatabaseManager instance
            aggregator: Dashboard aggregator used to build the snapshot payload
            require_actuals: Refuse to finalize while lines have zero or unset actuals
        """
        self.db_manager = db_manager
        self.aggregator = aggregator or DashboardAggregator(db_manager)
        self.require_actuals = require_actuals
        logger.info("Finalization engine initialized")

    def can_finalize(self, month_id: int) -> Tuple[bool, str]:
        """
        Check whether a month is ready to be finalized.

        A month is ready when it is open and every budget line has a non-zero
        actual. Only enforced by ``finalize`` when ``require_actuals`` is set.

        Returns:
            Tuple of (ready, reason); reason is empty when ready

        Raises:
            NotFoundError: If the month does not exist
        """
        month_id = parse_id(month_id, "month_id")
        with self.db_manager.session_scope("can_finalize") as session:
            month = get_month_or_raise(session, month_id)
            if month.state is MonthState.FINALIZED:
                return False, "Month is already finalized."
            unsettled = _count_unsettled_lines(session, month_id)

        if unsettled:
            return False, f"{unsettled} budget lines still have zero actuals."
        return True, ""

    def finalize(self, month_id: int) -> FinalizeResult:
        """
        Finalize a month atomically.

        Args:
            month_id: Month to close

        Returns:
            FinalizeResult with the successor month id

        Raises:
            NotFoundError: If the month does not exist
            AlreadyFinalizedError: If the month is already finalized
            ValidationError: If actuals are required and some are missing
            MonthExistsError: If the successor period already exists
            StorageError: If the transaction fails; nothing is written
        """
        month_id = parse_id(month_id, "month_id")
        logger.info(f"Finalizing month {month_id}")

        with self.db_manager.session_scope("finalize_month") as session:
            month = transition_to_finalized(session, month_id)

            if self.require_actuals:
                unsettled = _count_unsettled_lines(session, month_id)
                if unsettled:
                    raise ValidationError(
                        f"{unsettled} budget lines still have zero actuals.",
                        details={"month_id": month_id, "unsettled_lines": unsettled}
                    )

            payload = self.aggregator.compute_dashboard(month_id, session=session)
            snapshot = SnapshotArchive.record(session, month, payload.to_json())
            successor = self._open_successor(session, month)
            carried = self._carry_forward(session, month_id, successor.id)

            result = FinalizeResult(
                month_id=month_id,
                new_month_id=successor.id,
                snapshot_id=snapshot.id,
                carried_forward=carried,
            )

        logger.info(
            f"Finalized month {month_id} (snapshot {result.snapshot_id}); opened month "
            f"{result.new_month_id} with {result.carried_forward} carried-forward lines"
        )
        return result

    @staticmethod
    def _open_successor(session: Session, month: Month) -> Month:
        year, number = next_period(month.year, month.month)
        existing = session.scalar(select(Month.id).where(Month.year == year, Month.month == number))
        if existing is not None:
            raise MonthExistsError(
                "Successor month already exists",
                details={"month_id": month.id, "period": f"{year}-{number:02d}", "existing_month_id": existing}
            )
        successor = Month(year=year, month=number, is_finalized=False)
        session.add(successor)
        session.flush()
        return successor

    @staticmethod
    def _carry_forward(session: Session, from_month_id: int, to_month_id: int) -> int:
        lines = session.scalars(
            select(BudgetLine).where(BudgetLine.month_id == from_month_id).order_by(BudgetLine.id)
        ).all()
        for line in lines:
            session.add(
                BudgetLine(
                    month_id=to_month_id,
                    category_id=line.category_id,
                    label=line.label,
                    expected_amount=line.expected_amount,
                )
            )
        session.flush()
        return len(lines)
