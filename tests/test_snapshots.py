"""
Tests for the snapshot archive and the annual report.
"""

from datetime import datetime

import pytest

from database_ops import utc_now
from exceptions import NotFoundError, ValidationError
from snapshots import SnapshotArchive


@pytest.fixture
def finalized_out_of_order(ledger, engine):
    """Finalize March 2024, then January 2024, then June 2023."""
    results = {}
    for year, number in [(2024, 3), (2024, 1), (2023, 6)]:
        month = ledger.create_month(year, number)
        results[(year, number)] = engine.finalize(month.id)
    return results


def test_list_by_year_orders_by_calendar_month(archive, finalized_out_of_order):
    metas = archive.list_by_year(2024)

    assert [meta.month for meta in metas] == ["January", "March"]
    assert [meta.id for meta in metas] == [
        finalized_out_of_order[(2024, 1)].snapshot_id,
        finalized_out_of_order[(2024, 3)].snapshot_id,
    ]
    assert all(meta.year == 2024 for meta in metas)
    assert metas[0].snap_created_at.tzinfo is not None

    older = archive.list_by_year("2023")
    assert [meta.month for meta in older] == ["June"]


def test_list_by_year_wire_shape(archive, finalized_out_of_order):
    body = archive.list_by_year(2023)[0].to_dict()

    assert set(body) == {"id", "month_id", "year", "month", "snap_created_at"}
    assert datetime.fromisoformat(body["snap_created_at"]).tzinfo is not None


def test_empty_year(archive):
    assert archive.list_by_year(2020) == []


@pytest.mark.parametrize("year", ["abc", None, 1999, 1850])
def test_invalid_year(archive, year):
    with pytest.raises(ValidationError):
        archive.list_by_year(year)


def test_year_upper_bound_follows_config(db_manager):
    strict = SnapshotArchive(db_manager, min_year=2010, max_years_ahead=0)
    current = utc_now().year

    assert strict.list_by_year(current) == []
    with pytest.raises(ValidationError):
        strict.list_by_year(current + 1)
    with pytest.raises(ValidationError):
        strict.list_by_year(2009)


def test_history_is_frozen(ledger, registry, archive, engine, scenario):
    result = engine.finalize(scenario["month_id"])
    before = archive.get_detail_json(result.snapshot_id)

    registry.update(scenario["groceries"].id, name="Food", color="bg-lime-500")
    for line in ledger.list_budget_lines(result.new_month_id):
        if line.category_id == scenario["utilities"].id:
            ledger.delete_budget_line(line.id)
    registry.delete(scenario["utilities"].id)

    assert archive.get_detail_json(result.snapshot_id) == before
    detail = archive.get_detail(result.snapshot_id)
    assert [s["category_name"] for s in detail["category_summaries"]] == ["Groceries", "Utilities"]
    assert detail["total_difference"] == pytest.approx(17.40)


def test_get_detail_for_month(archive, engine, scenario):
    result = engine.finalize(scenario["month_id"])

    assert archive.get_detail_for_month(scenario["month_id"]) == archive.get_detail(result.snapshot_id)
    with pytest.raises(NotFoundError):
        archive.get_detail_for_month(result.new_month_id)


def test_missing_snapshot(archive):
    with pytest.raises(NotFoundError):
        archive.get_detail(123)
    with pytest.raises(ValidationError):
        archive.get_detail_json("nope")
