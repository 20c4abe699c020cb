"""
Database operations module for the budget board.

This module defines the normalized storage schema (categories, months, budget
lines, actual lines and frozen snapshots) using SQLAlchemy ORM, and manages
engine and session lifecycles. Supports SQLite by default with easy migration
to other databases.
"""

import enum
import logging
from contextlib import contextmanager
from datetime import UTC, date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterator, Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker

from exceptions import StorageError
from utils import CENT, month_name

# Configure logging
logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    """
    Get current UTC datetime with timezone awareness.

    All timestamps in the database are stored in UTC.

    Returns:
        Current datetime in UTC with timezone info
    """
    return datetime.now(UTC)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class Money(TypeDecorator):
    """
    Money column stored as integer minor units (cents).

    Binds Decimal/int/float values rounded half-up to cents and reads them back
    as Decimal quantized to 0.01, so aggregation never touches binary floats.
    """

    impl = Integer
    cache_ok = True

    def process_bind_param(self, value: Any, dialect) -> Optional[int]:  # type: ignore[override]
        if value is None:
            return None
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
        return int((amount.quantize(CENT, rounding=ROUND_HALF_UP) * 100).to_integral_value())

    def process_result_value(self, value: Any, dialect) -> Optional[Decimal]:  # type: ignore[override]
        if value is None:
            return None
        return (Decimal(int(value)) / 100).quantize(CENT)

    @property
    def python_type(self):  # type: ignore[override]
        return Decimal


# Base class for declarative models
Base = declarative_base()


class MonthState(enum.Enum):
    """Lifecycle state of an accounting month. FINALIZED is terminal."""
    OPEN = "open"
    FINALIZED = "finalized"


class Category(Base):
    """
    SQLAlchemy model representing a spending category.

    Attributes:
        id: Auto-incrementing primary key
        name: Display name (e.g., "Groceries")
        color: Display color token (e.g., "bg-green-500")
    """

    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    color = Column(String(50), nullable=False)

    budget_lines = relationship("BudgetLine", back_populates="category")

    def __repr__(self) -> str:
        """String representation of the category."""
        return f"<Category(id={self.id}, name='{self.name}', color='{self.color}')>"

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "color": self.color}


class Month(Base):
    """
    SQLAlchemy model representing an accounting period.

    ``is_finalized`` is a one-way latch; it is only ever flipped by
    ``month_lifecycle.transition_to_finalized``.

    Attributes:
        id: Auto-incrementing primary key
        year: Calendar year
        month: Calendar month number (1-12)
        is_finalized: True once the month has been closed
    """

    __tablename__ = "months"

    id = Column(Integer, primary_key=True, autoincrement=True)
    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)
    is_finalized = Column(Boolean, nullable=False, default=False)

    budget_lines = relationship("BudgetLine", back_populates="month_ref", order_by="BudgetLine.id")

    __table_args__ = (
        UniqueConstraint("year", "month", name="uq_months_year_month"),
    )

    @property
    def name(self) -> str:
        return month_name(self.month)

    @property
    def state(self) -> MonthState:
        return MonthState.FINALIZED if self.is_finalized else MonthState.OPEN

    def __repr__(self) -> str:
        """String representation of the month."""
        return f"<Month(id={self.id}, period={self.year}-{self.month:02d}, state={self.state.value})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "year": self.year,
            "month": self.month,
            "is_finalized": bool(self.is_finalized),
        }


class BudgetLine(Base):
    """
    SQLAlchemy model representing a planned spending line within a month.

    Only ``category_id`` is stored; name and color are joined at read time.
    ``category_id`` becomes NULL when a category used only by finalized
    months is deleted.

    Attributes:
        id: Auto-incrementing primary key
        month_id: Owning month
        category_id: Referenced category
        label: Free-text label (e.g., "Weekly shop")
        expected_amount: Planned amount
    """

    __tablename__ = "budget_lines"

    id = Column(Integer, primary_key=True, autoincrement=True)
    month_id = Column(Integer, ForeignKey("months.id"), nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True, index=True)
    label = Column(String(200), nullable=False)
    expected_amount = Column(Money(), nullable=False, default=Decimal("0.00"))

    month_ref = relationship("Month", back_populates="budget_lines")
    category = relationship("Category", back_populates="budget_lines")
    actual = relationship(
        "ActualLine",
        back_populates="budget_line",
        uselist=False,
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        """String representation of the budget line."""
        return (
            f"<BudgetLine(id={self.id}, month_id={self.month_id}, category_id={self.category_id}, "
            f"label='{self.label}', expected={self.expected_amount})>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "month_id": self.month_id,
            "category_id": self.category_id,
            "label": self.label,
            "expected": float(self.expected_amount),
        }


class ActualLine(Base):
    """
    SQLAlchemy model representing the recorded spend for a budget line.

    At most one row exists per budget line; it is created lazily on the first
    ``set_actual`` call.
    """

    __tablename__ = "actual_lines"

    id = Column(Integer, primary_key=True, autoincrement=True)
    budget_line_id = Column(
        Integer,
        ForeignKey("budget_lines.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )
    actual_amount = Column(Money(), nullable=False)

    budget_line = relationship("BudgetLine", back_populates="actual")

    def __repr__(self) -> str:
        """String representation of the actual line."""
        return f"<ActualLine(id={self.id}, budget_line_id={self.budget_line_id}, actual={self.actual_amount})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "budget_line_id": self.budget_line_id,
            "actual": float(self.actual_amount),
        }


class Snapshot(Base):
    """
    SQLAlchemy model representing the frozen dashboard of a finalized month.

    ``payload_json`` is written exactly once at finalize time and never
    recomputed. The unique constraint on ``month_id`` backs the
    one-snapshot-per-month guarantee.
    """

    __tablename__ = "snapshots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    month_id = Column(Integer, ForeignKey("months.id"), nullable=False, unique=True)
    year = Column(Integer, nullable=False, index=True)
    month = Column(Integer, nullable=False)
    month_name = Column(String(20), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    payload_json = Column(Text, nullable=False)

    def __repr__(self) -> str:
        """String representation of the snapshot."""
        return f"<Snapshot(id={self.id}, month_id={self.month_id}, period={self.year}-{self.month:02d})>"


def _attach_sqlite_listeners(engine) -> None:
    """Enable foreign key enforcement on every SQLite connection."""
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):  # pragma: no cover - driver hook
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


class DatabaseManager:
    """
    Manages database connections and sessions.

    This class handles engine initialization, table creation, session
    management and the initial month seed.
    """

    def __init__(self, connection_string: str, busy_timeout: Optional[float] = None):
        """
        Initialize the database manager.

        Args:
            connection_string: SQLAlchemy connection string (e.g., 'sqlite:///data/budget_board.db')
            busy_timeout: Seconds a SQLite writer waits for a competing lock

        Raises:
            StorageError: If the engine cannot be created
        """
        connect_args = {}
        if connection_string.startswith("sqlite") and busy_timeout is not None:
            connect_args["timeout"] = float(busy_timeout)
        try:
            self.engine = create_engine(connection_string, echo=False, connect_args=connect_args)
            _attach_sqlite_listeners(self.engine)
            self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)
            logger.info(f"Database manager initialized with connection: {connection_string}")
        except SQLAlchemyError as e:
            logger.error(f"Failed to initialize database: {e}")
            raise StorageError(
                "Failed to initialize database",
                details={"operation": "initialize", "error": str(e)},
                original_error=e
            ) from e

    def create_tables(self) -> None:
        """
        Create all database tables if they don't exist.

        Raises:
            StorageError: If table creation fails
        """
        try:
            Base.metadata.create_all(self.engine)
            logger.info("Database tables created/verified successfully")
        except SQLAlchemyError as e:
            logger.error(f"Failed to create database tables: {e}")
            raise StorageError(
                "Failed to create database tables",
                details={"operation": "create_tables", "error": str(e)},
                original_error=e
            ) from e

    def get_session(self) -> Session:
        """
        Get a new database session.

        Returns:
            SQLAlchemy session object

        Note:
            Caller is responsible for closing the session.
        """
        return self.SessionLocal()

    @contextmanager
    def session_scope(self, operation: str) -> Iterator[Session]:
        """
        Provide a transactional scope around a series of operations.

        Commits when the block exits normally. Any exception rolls the whole
        unit back; SQLAlchemy errors are re-raised as StorageError and domain
        errors propagate unchanged.

        Args:
            operation: Name used in logs and error details
        """
        session = self.get_session()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Storage failure during {operation}: {e}")
            raise StorageError(
                f"Storage failure during {operation}",
                details={"operation": operation, "error": str(e)},
                original_error=e
            ) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def seed_initial_month(self, today: Optional[date] = None) -> Optional[Month]:
        """
        Insert the current calendar month when no month exists yet.

        Args:
            today: Date used to pick the period (defaults to today, UTC)

        Returns:
            The seeded Month, or None if months already exist
        """
        today = today or utc_now().date()
        with self.session_scope("seed_initial_month") as session:
            count = session.scalar(select(func.count(Month.id)))
            if count:
                logger.info(f"Months table is not empty (count: {count}). No seeding required.")
                return None
            month = Month(year=today.year, month=today.month, is_finalized=False)
            session.add(month)
            session.flush()
            logger.info(f"Seeded months table with {today.year}-{today.month:02d}")
            return month

    def close(self) -> None:
        """Close the database engine connection."""
        if hasattr(self, "engine"):
            self.engine.dispose()
            logger.info("Database connection closed")
