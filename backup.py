"""
JSON export of the budget board database.

Dumps categories, months, budget lines, actual lines and snapshots into one
JSON document. Snapshot payloads are embedded exactly as stored.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from sqlalchemy import select

from database_ops import (
    ActualLine,
    BudgetLine,
    Category,
    DatabaseManager,
    Month,
    Snapshot,
    as_utc,
    utc_now,
)
from exceptions import BackupError
from utils import get_data_dir, project_path

logger = logging.getLogger(__name__)

EXPORT_FILENAME_TEMPLATE = "budget_board_backup_{stamp}.json"


def get_backup_dir(config: Optional[dict] = None) -> Path:
    """
    Get the backup directory path.

    Defaults to <data_dir>/backups. Can be overridden via
    config['backup']['backup_dir'].

    Args:
        config: Optional configuration dictionary

    Returns:
        Absolute Path to the backup directory
    """
    if config:
        backup_dir_raw = (config.get("backup") or {}).get("backup_dir")
        if backup_dir_raw:
            return project_path(backup_dir_raw).resolve()

    return (get_data_dir(config) / "backups").resolve()


def export_data(db_manager: DatabaseManager, exported_at: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Collect the whole database into a JSON-serializable dictionary.

    Args:
        db_manager: DatabaseManager instance
        exported_at: Timestamp recorded in the export (defaults to now, UTC)

    Returns:
        Export dictionary
    """
    exported_at = exported_at or utc_now()
    with db_manager.session_scope("export_data") as session:
        categories = [c.to_dict() for c in session.scalars(select(Category).order_by(Category.id))]
        months = [m.to_dict() for m in session.scalars(select(Month).order_by(Month.id))]
        budget_lines = [b.to_dict() for b in session.scalars(select(BudgetLine).order_by(BudgetLine.id))]
        actual_lines = [a.to_dict() for a in session.scalars(select(ActualLine).order_by(ActualLine.id))]
        snapshots = [
            {
                "id": s.id,
                "month_id": s.month_id,
                "year": s.year,
                "month_name": s.month_name,
                "created_at": as_utc(s.created_at).isoformat(),
                "payload": json.loads(s.payload_json),
            }
            for s in session.scalars(select(Snapshot).order_by(Snapshot.id))
        ]

    logger.info(
        "Exported %d categories, %d months, %d budget lines, %d snapshots",
        len(categories), len(months), len(budget_lines), len(snapshots)
    )
    return {
        "exported_at": exported_at.isoformat(),
        "categories": categories,
        "months": months,
        "budget_lines": budget_lines,
        "actual_lines": actual_lines,
        "snapshots": snapshots,
    }


def write_export(
    db_manager: DatabaseManager,
    config: Optional[dict] = None,
    output_path: Optional[Path] = None
) -> Path:
    """
    Write the JSON export to disk.

    Args:
        db_manager: DatabaseManager instance
        config: Optional configuration dictionary (for the backup directory)
        output_path: Explicit file path; defaults to a dated file in the backup directory

    Returns:
        Path of the written file

    Raises:
        BackupError: If the file cannot be written
    """
    data = export_data(db_manager)
    if output_path is None:
        stamp = utc_now().strftime("%Y%m%d")
        output_path = get_backup_dir(config) / EXPORT_FILENAME_TEMPLATE.format(stamp=stamp)

    output_path = Path(output_path)
    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "w") as f:
            json.dump(data, f, indent=2)
    except OSError as exc:
        logger.error("Failed to write export to %s: %s", output_path, exc)
        raise BackupError(
            "Failed to write export file",
            details={"path": str(output_path), "error": str(exc)},
            original_error=exc
        ) from exc

    logger.info("Export written to %s", output_path)
    return output_path
