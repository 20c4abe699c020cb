"""
Snapshot archive for finalized months.

Stores the dashboard payload of each finalized month exactly as it was
serialized at finalize time and serves it back verbatim. Nothing here reads
live categories or budget lines, so historical reports stay stable after
later edits or category deletions.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from database_ops import DatabaseManager, Month, Snapshot, as_utc, utc_now
from exceptions import NotFoundError, ValidationError
from utils import month_name, parse_id

# Configure logging
logger = logging.getLogger(__name__)

DEFAULT_MIN_YEAR = 2000
DEFAULT_MAX_YEARS_AHEAD = 5


@dataclass
class AnnualSnapMeta:
    """Metadata row of the annual report list."""
    id: int
    month_id: int
    year: int
    month: str
    snap_created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "month_id": self.month_id,
            "year": self.year,
            "month": self.month,
            "snap_created_at": self.snap_created_at.isoformat(),
        }


class SnapshotArchive:
    """
    Stores and serves frozen dashboard payloads, indexed by year.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        min_year: int = DEFAULT_MIN_YEAR,
        max_years_ahead: int = DEFAULT_MAX_YEARS_AHEAD
    ):
        """
        Initialize the snapshot archive.

        Args:
            db_manager: DatabaseManager instance
            min_year: Oldest year accepted by the annual report
            max_years_ahead: How far past the current year the annual report accepts
        """
        self.db_manager = db_manager
        self.min_year = min_year
        self.max_years_ahead = max_years_ahead

    @staticmethod
    def record(session: Session, month: Month, payload_json: str, created_at: Optional[datetime] = None) -> Snapshot:
        """
        Insert the snapshot of a month inside the caller's transaction.

        The unique constraint on ``month_id`` rejects a second snapshot for
        the same month.

        Args:
            session: Session of the finalize transaction
            month: Month being finalized
            payload_json: Serialized dashboard payload, stored as-is
            created_at: Creation timestamp (defaults to now, UTC)

        Returns:
            The flushed Snapshot
        """
        snapshot = Snapshot(
            month_id=month.id,
            year=month.year,
            month=month.month,
            month_name=month_name(month.month),
            created_at=created_at or utc_now(),
            payload_json=payload_json,
        )
        session.add(snapshot)
        session.flush()
        return snapshot

    def _validate_year(self, year: Any) -> int:
        try:
            year = int(str(year).strip())
        except (TypeError, ValueError) as exc:
            raise ValidationError(
                "Invalid year format: must be an integer",
                details={"year": year},
                original_error=exc
            ) from exc

        max_year = utc_now().year + self.max_years_ahead
        if year < self.min_year or year > max_year:
            raise ValidationError(
                "Year out of reasonable range",
                details={"year": year, "min_year": self.min_year, "max_year": max_year}
            )
        return year

    def list_by_year(self, year: Any) -> List[AnnualSnapMeta]:
        """
        List the snapshots of a year, ordered by calendar month.

        Ordering ignores creation time because months may be finalized out of
        chronological order.

        Raises:
            ValidationError: If the year is malformed or out of range
        """
        year = self._validate_year(year)
        with self.db_manager.session_scope("list_snapshots_by_year") as session:
            rows = session.scalars(
                select(Snapshot)
                .where(Snapshot.year == year)
                .order_by(Snapshot.month, Snapshot.id)
            ).all()
            metas = [
                AnnualSnapMeta(
                    id=row.id,
                    month_id=row.month_id,
                    year=row.year,
                    month=row.month_name,
                    snap_created_at=as_utc(row.created_at),
                )
                for row in rows
            ]
        logger.debug(f"Found {len(metas)} snapshots for {year}")
        return metas

    def get_detail_json(self, snapshot_id: int) -> str:
        """
        Return the stored payload text of a snapshot, byte for byte.

        Raises:
            NotFoundError: If the snapshot does not exist
        """
        snapshot_id = parse_id(snapshot_id, "snapshot_id")
        with self.db_manager.session_scope("get_snapshot") as session:
            payload_json = session.scalar(select(Snapshot.payload_json).where(Snapshot.id == snapshot_id))
        if payload_json is None:
            raise NotFoundError("Snapshot not found", details={"snapshot_id": snapshot_id})
        return payload_json

    def get_detail(self, snapshot_id: int) -> Dict[str, Any]:
        """
        Return the frozen dashboard payload of a snapshot.

        Raises:
            NotFoundError: If the snapshot does not exist
        """
        return json.loads(self.get_detail_json(snapshot_id))

    def get_detail_for_month(self, month_id: int) -> Dict[str, Any]:
        """
        Return the frozen dashboard payload of a finalized month.

        Raises:
            NotFoundError: If the month has no snapshot
        """
        month_id = parse_id(month_id, "month_id")
        with self.db_manager.session_scope("get_snapshot_for_month") as session:
            payload_json = session.scalar(select(Snapshot.payload_json).where(Snapshot.month_id == month_id))
        if payload_json is None:
            raise NotFoundError("Snapshot not found for month", details={"month_id": month_id})
        return json.loads(payload_json)

    def count_for_month(self, month_id: int) -> int:
        """Return how many snapshots exist for a month (0 or 1)."""
        month_id = parse_id(month_id, "month_id")
        with self.db_manager.session_scope("count_snapshots") as session:
            return len(session.scalars(select(Snapshot.id).where(Snapshot.month_id == month_id)).all())
