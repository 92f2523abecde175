import logging
from pathlib import Path

import pytest

from windcube import config
from windcube import main as cli

SAMPLE_SCENARIO = Path(__file__).resolve().parent.parent / "scenarios" / "wind_farm.json"


@pytest.fixture(autouse=True)
def keep_test_logging(monkeypatch):
    monkeypatch.setattr(cli, "configure_logging", lambda level, log_file=None: None)
    # wide enough that rich never wraps metric names
    monkeypatch.setenv("COLUMNS", "200")


def test_parser_defaults():
    args = cli.build_parser().parse_args(["scenario.json"])
    assert args.scenario == "scenario.json"
    assert not args.force and not args.no_sensitivity
    assert args.log_file is None


def test_file_log_handler_uses_the_plain_format(tmp_path):
    handler = cli.file_log_handler(str(tmp_path / "windcube.log"))
    try:
        assert handler.formatter._fmt == config.LOG_FORMAT
        record = logging.LogRecord("windcube.sources", logging.INFO, __file__, 1, "[Sources] done", None, None)
        assert handler.format(record).endswith("windcube.sources - INFO - [Sources] done")
    finally:
        handler.close()


def test_sample_scenario_refreshes(capsys):
    assert cli.main([str(SAMPLE_SCENARIO), "--no-sensitivity"]) == 0
    output = capsys.readouterr().out
    assert "Financial Metrics" in output
    assert "Project IRR" in output


def test_missing_scenario_file(tmp_path, capsys):
    assert cli.main([str(tmp_path / "absent.json")]) == 1
    assert "Could not load the scenario" in capsys.readouterr().err


def test_incomplete_scenario_reports_the_failed_stage(tmp_path, capsys):
    scenario = tmp_path / "empty.json"
    scenario.write_text('{"settings": {}}', encoding="utf-8")
    assert cli.main([str(scenario)]) == 1
    assert "dependencies stage" in capsys.readouterr().out
