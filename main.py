"""
Command-line entry point for the budget board.

Exposes every ledger, dashboard, finalization and report operation as a
sub-command and prints the same JSON bodies the web contract uses:

    category list|create|update|delete
    month list|create|seed|finalize|can-finalize
    line list|create|update|delete
    actual set
    board, dashboard
    report annual|snapshot
    export
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from backup import write_export
from categories import CategoryRegistry
from config_manager import get_setting, load_config
from dashboard import load_dashboard
from database_ops import DatabaseManager
from exceptions import BudgetBoardError
from finalization import FinalizationEngine
from ledger import MonthLedger
from snapshots import SnapshotArchive
from utils import ensure_data_dir, resolve_connection_string, resolve_log_path

# Configure module-level logger
logger = logging.getLogger(__name__)


def setup_logging(config: dict) -> None:
    """
    Configure logging based on config settings.

    Logs go to stderr (stdout carries JSON output) and optionally to a file.

    Args:
        config: Configuration dictionary with logging settings
    """
    log_config = config.get("logging") or {}
    level_name = str(log_config.get("level") or "INFO").upper()
    log_level = getattr(logging, level_name, None)
    invalid_level = not isinstance(log_level, int)
    if invalid_level:
        log_level = logging.INFO
    log_format = log_config.get("format") or "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_file = log_config.get("file")

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        try:
            log_path = resolve_log_path(log_file)
        except OSError as exc:
            raise RuntimeError(f"Unable to prepare log file path '{log_file}': {exc}") from exc
        handlers.append(logging.FileHandler(log_path))

    logging.basicConfig(
        level=log_level,
        format=log_format,
        handlers=handlers,
        force=True
    )
    if invalid_level:
        logger.warning(f"Invalid log level '{level_name}', defaulting to INFO")


def create_db_manager(config: dict) -> DatabaseManager:
    """
    Create the database manager from config and make sure the schema exists.

    Args:
        config: Configuration dictionary with database settings

    Returns:
        Ready DatabaseManager
    """
    connection_string = resolve_connection_string(config)
    db_manager = DatabaseManager(
        connection_string,
        busy_timeout=get_setting(config, "database", "busy_timeout")
    )
    db_manager.create_tables()
    if get_setting(config, "months", "seed_initial", True):
        db_manager.seed_initial_month()
    return db_manager


def emit(body: Any) -> None:
    """Print a JSON body to stdout."""
    print(json.dumps(body, indent=2))


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with all sub-commands."""
    parser = argparse.ArgumentParser(
        description="Monthly budget board: plan, record actuals, finalize and report",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Categories
    category_parser = subparsers.add_parser("category", aliases=["cat"], help="Manage categories")
    category_sub = category_parser.add_subparsers(dest="category_action", required=True)
    category_sub.add_parser("list", help="List categories")
    cat_create = category_sub.add_parser("create", help="Create a category")
    cat_create.add_argument("--name", type=str, required=True, help="Category name")
    cat_create.add_argument("--color", type=str, required=True, help="Display color")
    cat_update = category_sub.add_parser("update", help="Update a category")
    cat_update.add_argument("--id", type=int, required=True, help="Category ID")
    cat_update.add_argument("--name", type=str, help="New name")
    cat_update.add_argument("--color", type=str, help="New color")
    cat_delete = category_sub.add_parser("delete", help="Delete a category")
    cat_delete.add_argument("--id", type=int, required=True, help="Category ID")

    # Months
    month_parser = subparsers.add_parser("month", help="Manage months")
    month_sub = month_parser.add_subparsers(dest="month_action", required=True)
    month_sub.add_parser("list", help="List months")
    month_sub.add_parser("seed", help="Seed the current month if no month exists")
    month_create = month_sub.add_parser("create", help="Open a month for a given period")
    month_create.add_argument("--year", type=int, required=True, help="Calendar year")
    month_create.add_argument("--month", type=int, required=True, help="Calendar month (1-12)")
    month_finalize = month_sub.add_parser("finalize", help="Finalize a month and open the next one")
    month_finalize.add_argument("--id", type=int, required=True, help="Month ID")
    month_check = month_sub.add_parser("can-finalize", help="Check whether a month is ready to finalize")
    month_check.add_argument("--id", type=int, required=True, help="Month ID")

    # Budget lines
    line_parser = subparsers.add_parser("line", aliases=["budget-line"], help="Manage budget lines")
    line_sub = line_parser.add_subparsers(dest="line_action", required=True)
    line_list = line_sub.add_parser("list", help="List budget lines of a month")
    line_list.add_argument("--month-id", type=int, required=True, help="Month ID")
    line_create = line_sub.add_parser("create", help="Create a budget line")
    line_create.add_argument("--month-id", type=int, required=True, help="Month ID")
    line_create.add_argument("--category-id", type=int, required=True, help="Category ID")
    line_create.add_argument("--label", type=str, required=True, help="Line label")
    line_create.add_argument("--expected", type=str, required=True, help="Expected amount")
    line_update = line_sub.add_parser("update", help="Update a budget line")
    line_update.add_argument("--id", type=int, required=True, help="Budget line ID")
    line_update.add_argument("--label", type=str, help="New label")
    line_update.add_argument("--expected", type=str, help="New expected amount")
    line_delete = line_sub.add_parser("delete", help="Delete a budget line")
    line_delete.add_argument("--id", type=int, required=True, help="Budget line ID")

    # Actuals
    actual_parser = subparsers.add_parser("actual", help="Record actual spending")
    actual_sub = actual_parser.add_subparsers(dest="actual_action", required=True)
    actual_set = actual_sub.add_parser("set", help="Set the actual amount of a budget line")
    actual_set.add_argument("--budget-line-id", type=int, required=True, help="Budget line ID")
    actual_set.add_argument("--actual", type=str, required=True, help="Actual amount")

    # Views
    board_parser = subparsers.add_parser("board", help="Show the board view of a month")
    board_parser.add_argument("--month-id", type=int, required=True, help="Month ID")
    dashboard_parser = subparsers.add_parser("dashboard", help="Show the dashboard of a month")
    dashboard_parser.add_argument("--month-id", type=int, required=True, help="Month ID")

    # Reports
    report_parser = subparsers.add_parser("report", help="Annual reports from snapshots")
    report_sub = report_parser.add_subparsers(dest="report_action", required=True)
    report_annual = report_sub.add_parser("annual", help="List snapshots of a year")
    report_annual.add_argument("--year", type=int, required=True, help="Calendar year")
    report_snapshot = report_sub.add_parser("snapshot", help="Show a frozen snapshot")
    report_snapshot.add_argument("--id", type=int, required=True, help="Snapshot ID")

    # Export
    export_parser = subparsers.add_parser("export", help="Export the database to JSON")
    export_parser.add_argument("--output", "-o", type=str, help="Output file path")

    return parser


def handle_category_command(args: argparse.Namespace, config: dict, db_manager: DatabaseManager) -> None:
    """
    Handle category management commands.

    Args:
        args: Parsed command-line arguments
        config: Configuration dictionary
        db_manager: DatabaseManager instance
    """
    registry = CategoryRegistry(db_manager)
    if args.category_action == "list":
        emit([category.to_dict() for category in registry.list_categories()])
    elif args.category_action == "create":
        emit(registry.create(args.name, args.color).to_dict())
    elif args.category_action == "update":
        emit(registry.update(args.id, name=args.name, color=args.color).to_dict())
    elif args.category_action == "delete":
        registry.delete(args.id)


def handle_month_command(args: argparse.Namespace, config: dict, db_manager: DatabaseManager) -> None:
    """
    Handle month commands, including finalization.

    Args:
        args: Parsed command-line arguments
        config: Configuration dictionary
        db_manager: DatabaseManager instance
    """
    ledger = MonthLedger(db_manager)
    if args.month_action == "list":
        emit([month.to_dict() for month in ledger.list_months()])
    elif args.month_action == "seed":
        seeded = db_manager.seed_initial_month()
        emit(seeded.to_dict() if seeded else None)
    elif args.month_action == "create":
        emit(ledger.create_month(args.year, args.month).to_dict())
    elif args.month_action in ("finalize", "can-finalize"):
        engine = FinalizationEngine(
            db_manager,
            require_actuals=bool(get_setting(config, "finalization", "require_actuals", False))
        )
        if args.month_action == "finalize":
            emit(engine.finalize(args.id).to_dict())
        else:
            ready, reason = engine.can_finalize(args.id)
            emit({"can_finalize": ready, "reason": reason})


def handle_line_command(args: argparse.Namespace, config: dict, db_manager: DatabaseManager) -> None:
    """
    Handle budget line commands.

    Args:
        args: Parsed command-line arguments
        config: Configuration dictionary
        db_manager: DatabaseManager instance
    """
    ledger = MonthLedger(db_manager)
    if args.line_action == "list":
        emit([line.to_dict() for line in ledger.list_budget_lines(args.month_id)])
    elif args.line_action == "create":
        line = ledger.create_budget_line(args.month_id, args.category_id, args.label, args.expected)
        emit(line.to_dict())
    elif args.line_action == "update":
        emit(ledger.update_budget_line(args.id, label=args.label, expected_amount=args.expected).to_dict())
    elif args.line_action == "delete":
        ledger.delete_budget_line(args.id)


def handle_actual_command(args: argparse.Namespace, config: dict, db_manager: DatabaseManager) -> None:
    """Handle the actual set command."""
    ledger = MonthLedger(db_manager)
    emit(ledger.set_actual(args.budget_line_id, args.actual).to_dict())


def handle_board_command(args: argparse.Namespace, config: dict, db_manager: DatabaseManager) -> None:
    """Handle the board view command."""
    emit(MonthLedger(db_manager).get_board_data(args.month_id).to_dict())


def handle_dashboard_command(args: argparse.Namespace, config: dict, db_manager: DatabaseManager) -> None:
    """Handle the dashboard command."""
    emit(load_dashboard(db_manager, args.month_id))


def handle_report_command(args: argparse.Namespace, config: dict, db_manager: DatabaseManager) -> None:
    """
    Handle annual report commands.

    Snapshot details are printed exactly as stored.
    """
    archive = SnapshotArchive(
        db_manager,
        min_year=int(get_setting(config, "reports", "min_year")),
        max_years_ahead=int(get_setting(config, "reports", "max_years_ahead"))
    )
    if args.report_action == "annual":
        emit([meta.to_dict() for meta in archive.list_by_year(args.year)])
    elif args.report_action == "snapshot":
        print(archive.get_detail_json(args.id))


def handle_export_command(args: argparse.Namespace, config: dict, db_manager: DatabaseManager) -> None:
    """Handle the export command."""
    output = Path(args.output) if args.output else None
    path = write_export(db_manager, config=config, output_path=output)
    emit({"message": "Export written", "path": str(path)})


COMMAND_HANDLERS: Dict[str, Callable[[argparse.Namespace, dict, DatabaseManager], None]] = {
    "category": handle_category_command,
    "cat": handle_category_command,
    "month": handle_month_command,
    "line": handle_line_command,
    "budget-line": handle_line_command,
    "actual": handle_actual_command,
    "board": handle_board_command,
    "dashboard": handle_dashboard_command,
    "report": handle_report_command,
    "export": handle_export_command,
}


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the application.

    Returns:
        Process exit code
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    # Handle case where no command is provided
    if not args.command:
        parser.print_help()
        return 1

    try:
        config = load_config(Path(args.config))
    except BudgetBoardError as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return 1

    # Ensure data directory exists before logging/database work
    try:
        ensure_data_dir(config)
    except OSError as exc:
        print(f"Failed to prepare data directory: {exc}", file=sys.stderr)
        return 1

    setup_logging(config)

    db_manager: Optional[DatabaseManager] = None
    try:
        db_manager = create_db_manager(config)
        COMMAND_HANDLERS[args.command](args, config, db_manager)
        return 0
    except BudgetBoardError as e:
        logger.error(f"{args.command} failed: {e}")
        print(json.dumps(e.to_dict(), default=str), file=sys.stderr)
        return 1
    finally:
        if db_manager is not None:
            db_manager.close()


if __name__ == "__main__":
    sys.exit(main())
