"""
Tests for the command line interface.
"""

import json

import pytest

from stepflow import cli


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch):
    monkeypatch.setattr(cli, "setup_logging_from_config", lambda config: None)


def write_workflow(tmp_path, **overrides):
    document = {
        "name": "Shout",
        "steps": [
            {
                "id": "upper",
                "name": "Uppercase",
                "type": "text_processing",
                "parameters": {"text": "${who}", "operation": "uppercase", "outputVariable": "shout"},
            }
        ],
        "variables": {"who": "world"},
    }
    document.update(overrides)
    path = tmp_path / "workflow.json"
    path.write_text(json.dumps(document))
    return path


class TestValidateCommand:
    """Tests for `stepflow validate`."""

    def test_valid(self, tmp_path, capsys):
        path = write_workflow(tmp_path)

        assert cli.main(["validate", str(path)]) == 0
        assert capsys.readouterr().out.strip() == "OK: Shout (1 steps)"

    def test_invalid(self, tmp_path, capsys):
        path = write_workflow(tmp_path, name="", steps=[])

        assert cli.main(["validate", str(path)]) == 1

        out = capsys.readouterr().out
        assert "- Workflow name is required" in out
        assert "- Workflow must have at least one step" in out

    def test_missing_file(self, tmp_path, capsys):
        assert cli.main(["validate", str(tmp_path / "nope.json")]) == 1
        assert "cannot load" in capsys.readouterr().err


class TestRunCommand:
    """Tests for `stepflow run`."""

    def test_successful_run(self, tmp_path, capsys):
        path = write_workflow(tmp_path)

        code = cli.main(["run", str(path), "--var", "who=ada"])

        result = json.loads(capsys.readouterr().out)
        assert code == 0
        assert result["status"] == "completed"
        assert result["variables"]["shout"] == "ADA"

    def test_failing_run(self, tmp_path, capsys):
        path = write_workflow(
            tmp_path,
            steps=[{
                "id": "bad",
                "name": "Reverse",
                "type": "text_processing",
                "parameters": {"text": "abc", "operation": "reverse"},
            }],
        )

        code = cli.main(["--log-level", "error", "run", str(path)])

        result = json.loads(capsys.readouterr().out)
        assert code == 1
        assert result["status"] == "failed"
        assert result["error_type"] == "RetriesExhaustedError"

    def test_bad_variable(self, tmp_path, capsys):
        path = write_workflow(tmp_path)

        assert cli.main(["run", str(path), "--var", "novalue"]) == 2
        assert "NAME=VALUE" in capsys.readouterr().err


class TestHelpers:
    """Tests for CLI helpers."""

    def test_parse_variables(self):
        assert cli.parse_variables(["n=3", "flag=true", "name=Ada", "raw={bad"]) == {
            "n": 3,
            "flag": True,
            "name": "Ada",
            "raw": "{bad",
        }

    def test_default_timeout_applied(self, tmp_path):
        path = write_workflow(tmp_path)
        config = cli.EngineConfig(default_step_timeout=7.0)

        definition = cli.load_definition(path, config)

        assert definition.steps[0].timeout == 7.0
