"""
Tests for the category registry.
"""

import threading

import pytest
from sqlalchemy.orm import Session

from database_ops import Category
from exceptions import CategoryInUseError, NotFoundError, ValidationError


class TestCategoryCrud:
    def test_create_and_list(self, registry):
        registry.create("Utilities", "bg-blue-500")
        registry.create("Groceries", "bg-green-500")

        names = [category.name for category in registry.list_categories()]

        assert names == ["Groceries", "Utilities"]

    def test_create_requires_name_and_color(self, registry):
        with pytest.raises(ValidationError):
            registry.create("", "bg-blue-500")
        with pytest.raises(ValidationError):
            registry.create("Rent", "  ")

    def test_update_changes_only_given_fields(self, registry):
        category = registry.create("Fun", "bg-pink-500")

        updated = registry.update(category.id, name="Leisure")

        assert updated.name == "Leisure"
        assert updated.color == "bg-pink-500"
        assert registry.get_category(category.id).name == "Leisure"

    def test_update_without_fields_is_rejected(self, registry):
        category = registry.create("Fun", "bg-pink-500")
        with pytest.raises(ValidationError):
            registry.update(category.id)

    def test_missing_category(self, registry):
        with pytest.raises(NotFoundError):
            registry.get_category(99)
        with pytest.raises(NotFoundError):
            registry.update(99, name="x")
        with pytest.raises(NotFoundError):
            registry.delete(99)

    def test_delete_unused_category(self, registry):
        category = registry.create("Temp", "bg-gray-500")
        registry.delete(category.id)
        assert registry.list_categories() == []


class TestCategoryDeletePolicy:
    def test_refused_while_open_month_uses_it(self, registry, scenario):
        with pytest.raises(CategoryInUseError) as exc_info:
            registry.delete(scenario["groceries"].id)

        assert exc_info.value.details["open_budget_lines"] == 1
        assert registry.get_category(scenario["groceries"].id).name == "Groceries"

    def test_finalized_lines_are_orphaned(self, registry, ledger, engine, scenario):
        result = engine.finalize(scenario["month_id"])
        # the carried-forward line in the new open month still uses the category
        ledger.delete_budget_line(ledger.list_budget_lines(result.new_month_id)[0].id)

        registry.delete(scenario["groceries"].id)

        lines = ledger.list_budget_lines(scenario["month_id"])
        orphan = next(line for line in lines if line.id == scenario["grocery_line"].id)
        assert orphan.category_id is None
        assert orphan.category_name is None
        assert orphan.actual_amount is not None

    def test_line_created_during_delete_is_never_orphaned(self, registry, ledger, month, monkeypatch):
        category = registry.create("Rent", "bg-red-500")
        outcome = []

        def create_line():
            try:
                ledger.create_budget_line(month.id, category.id, "Flat", 10)
                outcome.append("created")
            except ValidationError:
                outcome.append("rejected")

        worker = threading.Thread(target=create_line)
        original_delete = Session.delete

        def delete_with_competing_writer(session, instance):
            if isinstance(instance, Category) and worker.ident is None:
                # the writer blocks on the delete's lock until it commits
                worker.start()
                worker.join(timeout=0.5)
            return original_delete(session, instance)

        monkeypatch.setattr(Session, "delete", delete_with_competing_writer)

        registry.delete(category.id)
        worker.join(timeout=30)

        assert outcome == ["rejected"]
        assert ledger.list_budget_lines(month.id) == []
