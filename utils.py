"""
Utility helpers for amounts, calendar periods, filesystem paths and
configuration-driven resources.

Centralizes money parsing and period arithmetic so the ledger, the dashboard
aggregator and the finalization engine agree on rounding and month naming, and
resolves the data directory and database connection string for the CLI.
"""

from __future__ import annotations

import calendar
import logging
import os
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from exceptions import ValidationError

logger = logging.getLogger(__name__)

_PROJECT_ROOT = Path(__file__).resolve().parent
_DEFAULT_DATA_DIR_NAME = "data"
_DEFAULT_DB_FILENAME = "budget_board.db"

CENT = Decimal("0.01")
# cents of MAX_AMOUNT fit a signed 64-bit integer column
MAX_AMOUNT = Decimal("10000000000000.00")
ZERO = Decimal("0.00")
UNKNOWN_MONTH_NAME = "Unknown"


def to_amount(value: Any, field: str = "amount") -> Decimal:
    """
    Parse a non-negative money amount and round it to cents.

    Args:
        value: int, float, str or Decimal supplied by the caller.
        field: Field name used in the error details.

    Returns:
        Decimal quantized to two decimal places (half-up).

    Raises:
        ValidationError: If the value is missing, not numeric, not finite, negative
            or larger than MAX_AMOUNT.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required and must be a number", details={"field": field})
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(
            f"{field} must be a number",
            details={"field": field, "value": value},
            original_error=exc
        ) from exc
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number", details={"field": field, "value": value})
    if amount < 0:
        raise ValidationError(f"{field} must be non-negative", details={"field": field, "value": value})
    if amount > MAX_AMOUNT:
        raise ValidationError(
            f"{field} must not exceed {MAX_AMOUNT}",
            details={"field": field, "value": value, "max": str(MAX_AMOUNT)}
        )
    try:
        return amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise ValidationError(
            f"{field} must be a number",
            details={"field": field, "value": value},
            original_error=exc
        ) from exc


def to_wire_number(amount: Optional[Decimal]) -> float:
    """Convert a Decimal amount into the JSON number used on the wire."""
    if amount is None:
        return 0.0
    return float(amount)


def parse_id(value: Any, field: str = "id") -> int:
    """
    Coerce an identifier to a positive int.

    Raises:
        ValidationError: If the id is missing or malformed.
    """
    if isinstance(value, bool):
        raise ValidationError(f"Invalid {field}: must be an integer", details={"field": field, "value": value})
    try:
        parsed = int(str(value).strip()) if not isinstance(value, int) else value
    except (TypeError, ValueError) as exc:
        raise ValidationError(
            f"Invalid {field}: must be an integer",
            details={"field": field, "value": value},
            original_error=exc
        ) from exc
    if parsed <= 0:
        raise ValidationError(f"Invalid {field}: must be positive", details={"field": field, "value": value})
    return parsed


def require_text(value: Optional[str], field: str) -> str:
    """Return a stripped non-empty string or raise ValidationError."""
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} cannot be empty", details={"field": field})
    return str(value).strip()


def month_name(month: int) -> str:
    """Return the English calendar name for a month number (1-12)."""
    if 1 <= month <= 12:
        return calendar.month_name[month]
    return UNKNOWN_MONTH_NAME


def next_period(year: int, month: int) -> Tuple[int, int]:
    """Advance a (year, month) period by one calendar month."""
    if month >= 12:
        return year + 1, 1
    return year, month + 1


def project_path(value: str | Path) -> Path:
    """Resolve a configured path; relative paths are taken from the repository root."""
    path = Path(value)
    return path if path.is_absolute() else _PROJECT_ROOT / path


def get_data_dir(config: Optional[Dict[str, Any]] = None) -> Path:
    """Return the configured data directory without creating it."""
    db_config = (config or {}).get("database") or {}
    return project_path(db_config.get("data_dir") or _DEFAULT_DATA_DIR_NAME)


def ensure_data_dir(config: Optional[Dict[str, Any]] = None) -> Path:
    """
    Create the data directory if needed.

    Raises:
        OSError: If the directory cannot be created
    """
    data_dir = get_data_dir(config)
    try:
        data_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.error("Failed to create data directory '%s': %s", data_dir, exc)
        raise
    return data_dir


def resolve_connection_string(config: Optional[Dict[str, Any]] = None) -> str:
    """
    Pick the database URL for the CLI.

    DB_CONNECTION_STRING wins, then database.connection_string, then a SQLite
    file named database.path inside the data directory.
    """
    env_conn = os.environ.get("DB_CONNECTION_STRING", "").strip()
    if env_conn:
        return env_conn

    db_config = (config or {}).get("database") or {}
    if db_config.get("connection_string"):
        return db_config["connection_string"]

    db_path = Path(db_config.get("path") or _DEFAULT_DB_FILENAME)
    if not db_path.is_absolute():
        db_path = ensure_data_dir(config) / db_path
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{db_path.as_posix()}"


def resolve_log_path(log_path: str | Path) -> Path:
    """Return the absolute log file path, creating its directory."""
    resolved = project_path(log_path)
    resolved.parent.mkdir(parents=True, exist_ok=True)
    return resolved
