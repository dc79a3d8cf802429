"""Tests for the ruleflow Typer CLI: validate, execute, closures, --version."""

import json

from typer.testing import CliRunner

from ruleflow.cli.main import app
from ruleflow.version import __version__

cli = CliRunner()

INVALID_RUNNER = """
flows:
  - name: broken
    steps:
      - closure: ghost
"""

WARNING_RUNNER = """
inputs:
  - type: init
    flow: missing
flows:
  - name: ok
    steps:
      - closure: assign
        value: 1
"""


# ── Global options ───────────────────────────────────────────────────────────

def test_version_flag():
    result = cli.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert f"ruleflow v{__version__}" in result.output


# ── validate ─────────────────────────────────────────────────────────────────

def test_validate_valid_config(sample_runner_path):
    result = cli.invoke(app, ["validate", "-c", str(sample_runner_path)])
    assert result.exit_code == 0, result.output
    assert "Configuration is valid" in result.output


def test_validate_reports_errors_and_exits_1(runner_yaml):
    result = cli.invoke(app, ["validate", "-c", str(runner_yaml(INVALID_RUNNER))])
    assert result.exit_code == 1
    assert "1 error(s)" in result.output


def test_validate_warnings_do_not_fail(runner_yaml):
    result = cli.invoke(app, ["validate", "-c", str(runner_yaml(WARNING_RUNNER))])
    assert result.exit_code == 0
    assert "Valid with 1 warning(s)" in result.output


def test_validate_missing_file_exits_1(tmp_path):
    result = cli.invoke(app, ["validate", "-c", str(tmp_path / "nope.yaml")])
    assert result.exit_code == 1
    assert "not found" in result.output


def test_validate_schema_error_lists_violations(runner_yaml):
    result = cli.invoke(app, ["validate", "-c", str(runner_yaml("version: 1\nflows: []\n"))])
    assert result.exit_code == 1
    assert "Configuration error" in result.output


# ── execute ──────────────────────────────────────────────────────────────────

def test_execute_prints_final_state(sample_runner_path):
    result = cli.invoke(app, ["execute", "checkout", "-c", str(sample_runner_path), "--state", json.dumps({"user": 1})])
    assert result.exit_code == 0, result.output
    assert "hello world" in result.output
    assert "lastResult" in result.output


def test_execute_with_trace(sample_runner_path):
    result = cli.invoke(app, ["execute", "checkout", "-c", str(sample_runner_path), "--trace"])
    assert result.exit_code == 0, result.output
    assert "Step trace" in result.output
    assert "markSeen" in result.output


def test_execute_rejects_bad_state_json(sample_runner_path):
    result = cli.invoke(app, ["execute", "checkout", "-c", str(sample_runner_path), "--state", "{oops"])
    assert result.exit_code == 2


def test_execute_rejects_non_object_state(sample_runner_path):
    result = cli.invoke(app, ["execute", "checkout", "-c", str(sample_runner_path), "--state", "[1]"])
    assert result.exit_code == 2


def test_execute_unknown_flow_exits_1(sample_runner_path):
    result = cli.invoke(app, ["execute", "nope", "-c", str(sample_runner_path)])
    assert result.exit_code == 1
    assert "nope" in result.output


def test_execute_failing_flow_exits_1(runner_yaml):
    path = runner_yaml("""
flows:
  - name: bad
    steps:
      - closure: respond
        status: teapot
""")
    result = cli.invoke(app, ["execute", "bad", "-c", str(path)])
    assert result.exit_code == 1
    assert "failed" in result.output


# ── closures ─────────────────────────────────────────────────────────────────

def test_closures_lists_builtin_and_config_closures(sample_runner_path):
    result = cli.invoke(app, ["closures", "-c", str(sample_runner_path)])
    assert result.exit_code == 0, result.output
    for name in ("forEach", "greaterThan", "markSeen", "notFound", "greet"):
        assert name in result.output
    assert "13 Closures" in result.output


def test_closures_without_config_lists_builtins(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    result = cli.invoke(app, ["closures"])
    assert result.exit_code == 0, result.output
    assert "10 Closures" in result.output
