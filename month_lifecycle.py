"""
Month lifecycle guard: the Open -> Finalized latch.

Every write that depends on a month being open goes through one of the
functions below. Each one starts with a conditional UPDATE on the month row,
which both checks the state and takes the write lock for the remainder of the
transaction. A ledger write and a finalize on the same month are therefore
serialized: the write either commits before the flip or sees the month closed
and is rejected.
"""

import logging

from sqlalchemy import update
from sqlalchemy.orm import Session

from database_ops import BudgetLine, Month
from exceptions import AlreadyFinalizedError, FinalizedMonthError, NotFoundError

logger = logging.getLogger(__name__)


def _guarded_update(session: Session, month_id: int, finalize: bool) -> int:
    statement = (
        update(Month)
        .where(Month.id == month_id, Month.is_finalized.is_(False))
        .values(is_finalized=True if finalize else Month.is_finalized)
        .execution_options(synchronize_session=False)
    )
    return session.execute(statement).rowcount


def _load_month(session: Session, month_id: int) -> Month:
    month = session.get(Month, month_id, populate_existing=True)
    if month is None:
        raise NotFoundError("Month not found", details={"month_id": month_id})
    return month


def lock_open_month(session: Session, month_id: int) -> Month:
    """
    Lock a month for writing, requiring it to be open.

    Args:
        session: Session whose transaction the lock belongs to
        month_id: Month to lock

    Returns:
        The locked Month

    Raises:
        NotFoundError: If the month does not exist
        FinalizedMonthError: If the month is already finalized
    """
    if _guarded_update(session, month_id, finalize=False) == 0:
        month = _load_month(session, month_id)
        logger.warning(f"Rejected write to finalized month {month_id}")
        raise FinalizedMonthError(
            "Month is finalized and can no longer be modified",
            details={"month_id": month_id, "state": month.state.value}
        )
    return _load_month(session, month_id)


def lock_open_month_for_line(session: Session, budget_line_id: int) -> BudgetLine:
    """
    Lock the owning month of a budget line, requiring it to be open.

    Returns:
        The budget line, loaded after the lock was taken

    Raises:
        NotFoundError: If the budget line does not exist
        FinalizedMonthError: If the owning month is finalized
    """
    line = session.get(BudgetLine, budget_line_id)
    if line is None:
        raise NotFoundError("Budget line not found", details={"budget_line_id": budget_line_id})
    lock_open_month(session, line.month_id)
    line = session.get(BudgetLine, budget_line_id, populate_existing=True)
    if line is None:
        raise NotFoundError("Budget line not found", details={"budget_line_id": budget_line_id})
    return line


def transition_to_finalized(session: Session, month_id: int) -> Month:
    """
    Flip a month from OPEN to FINALIZED with a compare-and-set.

    Exactly one of any number of concurrent callers succeeds; the flip only
    becomes visible when the caller's transaction commits.

    Raises:
        NotFoundError: If the month does not exist
        AlreadyFinalizedError: If the month was already finalized
    """
    if _guarded_update(session, month_id, finalize=True) == 0:
        month = _load_month(session, month_id)
        raise AlreadyFinalizedError(
            "Month is already finalized",
            details={"month_id": month_id, "period": f"{month.year}-{month.month:02d}"}
        )
    return _load_month(session, month_id)
