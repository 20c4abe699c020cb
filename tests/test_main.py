"""
Tests for the command-line entry point.
"""

import json
import logging

import pytest
import yaml

from main import main, setup_logging


@pytest.fixture(autouse=True)
def restore_root_logger():
    """basicConfig(force=True) replaces root handlers; put them back afterwards."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def config_path(tmp_path, monkeypatch):
    monkeypatch.delenv("DB_CONNECTION_STRING", raising=False)
    path = tmp_path / "config.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "database": {"data_dir": str(tmp_path / "data"), "path": "cli.db"},
                "logging": {"level": "WARNING"},
                "months": {"seed_initial": False},
            }
        )
    )
    return str(path)


@pytest.fixture
def run(config_path, capsys):
    def _run(*argv):
        code = main(["--config", config_path, *argv])
        captured = capsys.readouterr()
        return code, captured.out, captured.err

    return _run


def _json(out):
    return json.loads(out)


def test_no_command_prints_help(capsys):
    assert main([]) == 1
    assert "usage" in capsys.readouterr().out


def test_full_month_cycle(run):
    code, out, _ = run("month", "create", "--year", "2024", "--month", "1")
    assert code == 0
    month_id = _json(out)["id"]

    category_id = _json(run("category", "create", "--name", "Groceries", "--color", "bg-green-500")[1])["id"]
    line = _json(run(
        "line", "create", "--month-id", str(month_id), "--category-id", str(category_id),
        "--label", "Weekly shop", "--expected", "200",
    )[1])
    assert line["expected"] == 200.0

    actual = _json(run("actual", "set", "--budget-line-id", str(line["id"]), "--actual", "185.50")[1])
    assert actual["actual"] == 185.5

    board = _json(run("board", "--month-id", str(month_id))[1])
    assert board["budget_lines"][0]["actual_amount"] == 185.5

    dashboard = _json(run("dashboard", "--month-id", str(month_id))[1])
    assert dashboard["total_difference"] == 14.5

    code, out, _ = run("month", "finalize", "--id", str(month_id))
    assert code == 0
    body = _json(out)
    assert body["message"] == "Month finalized successfully"

    lines = _json(run("line", "list", "--month-id", str(body["new_month_id"]))[1])
    assert [(item["label"], item["actual_id"], item["actual_amount"]) for item in lines] == [
        ("Weekly shop", None, 0.0)
    ]

    annual = _json(run("report", "annual", "--year", "2024")[1])
    assert [meta["month"] for meta in annual] == ["January"]

    _, raw, _ = run("report", "snapshot", "--id", str(annual[0]["id"]))
    assert json.loads(raw) == dashboard


def test_write_to_finalized_month_is_a_conflict(run):
    month_id = _json(run("month", "create", "--year", "2024", "--month", "5")[1])["id"]
    run("month", "finalize", "--id", str(month_id))
    category_id = _json(run("category", "create", "--name", "Rent", "--color", "bg-red-500")[1])["id"]

    code, _, err = run(
        "line", "create", "--month-id", str(month_id), "--category-id", str(category_id),
        "--label", "Late", "--expected", "1",
    )

    assert code == 1
    assert _json(err.strip().splitlines()[-1])["error"] == "finalized_month"


def test_validation_error_body(run):
    code, _, err = run("report", "annual", "--year", "1800")
    assert code == 1
    assert _json(err.strip().splitlines()[-1])["error"] == "validation_error"


def test_seed_command(run):
    code, out, _ = run("month", "seed")
    assert code == 0
    assert _json(out)["is_finalized"] is False
    assert _json(run("month", "seed")[1]) is None


def test_can_finalize_command(run):
    month_id = _json(run("month", "create", "--year", "2024", "--month", "7")[1])["id"]
    assert _json(run("month", "can-finalize", "--id", str(month_id))[1]) == {"can_finalize": True, "reason": ""}


def test_export_command(run, tmp_path):
    target = tmp_path / "export.json"
    code, out, _ = run("export", "--output", str(target))
    assert code == 0
    assert _json(out)["path"] == str(target)
    assert set(json.loads(target.read_text())) >= {"categories", "months", "snapshots"}


def test_invalid_config_file(tmp_path, capsys):
    path = tmp_path / "broken.yaml"
    path.write_text("database: [oops")
    assert main(["--config", str(path), "month", "list"]) == 1
    assert "Error loading config" in capsys.readouterr().err


class TestSetupLogging:
    def test_level_and_file_handler(self, tmp_path):
        log_file = tmp_path / "logs" / "board.log"
        setup_logging({"logging": {"level": "DEBUG", "file": str(log_file)}})

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert any(isinstance(h, logging.FileHandler) for h in root.handlers)
        logging.getLogger("ledger").debug("hello")
        for handler in root.handlers:
            handler.flush()
        assert "hello" in log_file.read_text()

    def test_invalid_level_defaults_to_info(self):
        setup_logging({"logging": {"level": "CHATTY"}})
        assert logging.getLogger().level == logging.INFO
