"""
Category registry for spending categories.

This module provides CRUD operations for categories (name and display color).
Budget lines reference categories by id only; deleting a category that an open
month still uses is refused, while lines of finalized months are orphaned
because their reports are served from frozen snapshots.
"""

import logging
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from database_ops import BudgetLine, Category, DatabaseManager, Month
from exceptions import CategoryInUseError, NotFoundError, ValidationError
from utils import parse_id, require_text

# Configure logging
logger = logging.getLogger(__name__)


def lock_category(session: Session, category_id: int) -> bool:
    """
    Take the write lock on a category row for the rest of the transaction.

    Runs a no-op UPDATE, so a category delete and a budget line referencing
    the same category are serialized.

    Returns:
        False if the category does not exist
    """
    statement = (
        update(Category)
        .where(Category.id == category_id)
        .values(name=Category.name)
        .execution_options(synchronize_session=False)
    )
    return session.execute(statement).rowcount > 0


class CategoryRegistry:
    """
    Manages spending categories.

    Provides create, list, update and delete operations.
    """

    def __init__(self, db_manager: DatabaseManager):
        """
        Initialize the category registry.

        Args:
            db_manager: DatabaseManager instance
        """
        self.db_manager = db_manager
        logger.info("Category registry initialized")

    def list_categories(self) -> List[Category]:
        """Return all categories ordered by name."""
        with self.db_manager.session_scope("list_categories") as session:
            return list(session.scalars(select(Category).order_by(Category.name, Category.id)))

    def get_category(self, category_id: int) -> Category:
        """
        Get a category by ID.

        Raises:
            NotFoundError: If the category does not exist
        """
        category_id = parse_id(category_id, "category_id")
        with self.db_manager.session_scope("get_category") as session:
            category = session.get(Category, category_id)
            if category is None:
                raise NotFoundError("Category not found", details={"category_id": category_id})
            return category

    def create(self, name: str, color: str) -> Category:
        """
        Create a new category.

        Args:
            name: Display name
            color: Display color token

        Returns:
            Created Category

        Raises:
            ValidationError: If name or color is empty
        """
        name = require_text(name, "name")
        color = require_text(color, "color")

        with self.db_manager.session_scope("create_category") as session:
            category = Category(name=name, color=color)
            session.add(category)
            session.flush()
            logger.info(f"Created category '{name}' with ID {category.id}")
            return category

    def update(self, category_id: int, name: Optional[str] = None, color: Optional[str] = None) -> Category:
        """
        Update a category's name and/or color.

        Args:
            category_id: Category ID
            name: New name (optional)
            color: New color (optional)

        Returns:
            Updated Category

        Raises:
            ValidationError: If no field is given or a given field is empty
            NotFoundError: If the category does not exist
        """
        category_id = parse_id(category_id, "category_id")
        if name is None and color is None:
            raise ValidationError(
                "Nothing to update: provide name and/or color",
                details={"category_id": category_id}
            )
        if name is not None:
            name = require_text(name, "name")
        if color is not None:
            color = require_text(color, "color")

        with self.db_manager.session_scope("update_category") as session:
            category = session.get(Category, category_id)
            if category is None:
                logger.warning(f"Category {category_id} not found")
                raise NotFoundError("Category not found", details={"category_id": category_id})

            if name is not None:
                category.name = name
            if color is not None:
                category.color = color

            logger.info(f"Updated category {category_id}")
            return category

    def delete(self, category_id: int) -> None:
        """
        Delete a category.

        Note: Budget lines of finalized months that reference the category
        keep their row with category_id set to NULL.

        Raises:
            NotFoundError: If the category does not exist
            CategoryInUseError: If an open month still has budget lines in it
        """
        category_id = parse_id(category_id, "category_id")

        with self.db_manager.session_scope("delete_category") as session:
            # locked first: the open-month count below holds until commit
            if not lock_category(session, category_id):
                logger.warning(f"Category {category_id} not found")
                raise NotFoundError("Category not found", details={"category_id": category_id})

            open_lines = session.scalar(
                select(func.count(BudgetLine.id))
                .join(Month, BudgetLine.month_id == Month.id)
                .where(BudgetLine.category_id == category_id, Month.is_finalized.is_(False))
            )
            if open_lines:
                logger.warning(f"Refused to delete category {category_id}: used by {open_lines} open budget lines")
                raise CategoryInUseError(
                    "Category is used by budget lines of an open month",
                    details={"category_id": category_id, "open_budget_lines": open_lines}
                )

            # finalized lines are detached by the ORM (category_id -> NULL)
            session.delete(session.get(Category, category_id))
            logger.info(f"Deleted category {category_id}")
