import json

from typer.testing import CliRunner

from sprint_scheduler.cli import app

runner = CliRunner()


def test_cli_validate_success():
    r = runner.invoke(app, ["validate", "examples/basic-sprint.yaml"])
    assert r.exit_code == 0
    assert "OK: sprint S-1 with 5 tasks" in r.output


def test_cli_validate_failure_exit_code():
    r = runner.invoke(app, ["validate", "examples/invalid-unknown-dep.yaml"])
    assert r.exit_code == 2
    assert "E_UNKNOWN_DEPENDENCY" in r.output


def test_cli_validate_missing_file_exit_code():
    r = runner.invoke(app, ["validate", "examples/nope.yaml"])
    assert r.exit_code == 1
    assert "E_FILE_NOT_FOUND" in r.output


def test_cli_validate_json_success():
    r = runner.invoke(app, ["validate", "examples/basic-sprint.yaml", "--format", "json"])
    assert r.exit_code == 0
    payload = json.loads(r.stdout)
    assert payload["tool"] == "sprint-scheduler"
    assert payload["command"] == "validate"
    assert payload["ok"] is True
    assert payload["error_count"] == 0
    assert payload["summary"]["task_count"] == 5


def test_cli_validate_json_failure_contains_codes():
    r = runner.invoke(app, ["validate", "examples/cyclic-sprint.yaml", "--format", "json"])
    assert r.exit_code == 2
    payload = json.loads(r.stdout)
    assert payload["ok"] is False
    assert [e["code"] for e in payload["errors"]] == ["E_CYCLIC_DEPENDENCY"]
    assert payload["errors"][0]["source"] == "validate"


def test_cli_validate_unknown_format():
    r = runner.invoke(app, ["validate", "examples/basic-sprint.yaml", "--format", "xml"])
    assert r.exit_code == 2
    assert "E_VALIDATE_UNKNOWN_FORMAT" in r.output
