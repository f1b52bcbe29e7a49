"""Tests for logging configuration."""

import json

import pytest
import structlog

from git_conductor.config.settings import ConductorSettings
from git_conductor.utils.logging_config import configure_logging, get_logger


@pytest.fixture(autouse=True)
def reset_structlog():
    yield
    structlog.reset_defaults()


def test_json_output_includes_bound_context(capsys):
    configure_logging("INFO")
    log = get_logger("git_conductor.test")

    with structlog.contextvars.bound_contextvars(workflow_id="wf-1"):
        log.info("branch_created", branch="feature/x")

    line = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert line["event"] == "branch_created"
    assert line["workflow_id"] == "wf-1"
    assert line["branch"] == "feature/x"
    assert line["level"] == "info"


def test_level_filtering(capsys):
    configure_logging("WARNING")
    log = get_logger()

    log.info("hidden")
    log.warning("shown")

    out = capsys.readouterr().out
    assert "hidden" not in out
    assert "shown" in out


def test_settings_log_level_applies(capsys, monkeypatch):
    """Test that the configured log level filters engine logs."""
    monkeypatch.setenv("CONDUCTOR_LOG_LEVEL", "ERROR")
    settings = ConductorSettings()

    settings.configure_logging()
    log = get_logger("git_conductor.test")
    log.warning("merge_blocked", reason="review_score")
    log.error("git_workflow_failed", failed_stage="merging")

    lines = [json.loads(line) for line in capsys.readouterr().out.strip().splitlines()]
    assert [line["event"] for line in lines] == ["git_workflow_failed"]
