"""Tests for the click CLI over the in-memory backends."""

from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from content_relay.cli import main


@pytest.fixture
def runner(monkeypatch, tmp_path):
    # Keep pytest's log capture handlers in place
    monkeypatch.setattr("content_relay.main._setup_logging", lambda settings: None)
    monkeypatch.chdir(tmp_path)
    return CliRunner()


def test_help_lists_commands(runner):
    result = runner.invoke(main, ["--help"])
    assert result.exit_code == 0
    for command in ("consume", "history", "recommendations", "dispatch-outbox"):
        assert command in result.output


def test_recommendations_empty(runner):
    result = runner.invoke(main, ["recommendations", "--config", "absent.toml"])
    assert result.exit_code == 0, result.output
    assert json.loads(result.output) == []


def test_history_empty(runner):
    result = runner.invoke(main, ["history", "visitor-1", "--config", "absent.toml"])
    assert result.exit_code == 0, result.output
    assert json.loads(result.output) == []


def test_dispatch_outbox_once(runner):
    result = runner.invoke(main, ["dispatch-outbox", "--once", "--config", "absent.toml"])
    assert result.exit_code == 0, result.output
    assert "Dispatched 0 outbox entries." in result.output


def test_invalid_config_fails(runner, tmp_path):
    path = tmp_path / "bad.toml"
    path.write_text("[bus]\npartitions = 0\n")
    result = runner.invoke(main, ["recommendations", "--config", str(path)])
    assert result.exit_code != 0
