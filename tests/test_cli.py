"""Tests for the command-line interface."""

import json
from unittest.mock import patch

import pytest
import yaml

from store_workflows import __version__
from store_workflows.cli import build_parser, main
from store_workflows.cli.base import load_document


@pytest.fixture
def workflow_file(tmp_path):
    """Write a workflow definition to a YAML file and return its path."""

    def write(actions, name="workflow.yaml"):
        path = tmp_path / name
        path.write_text(
            yaml.safe_dump(
                {
                    "name": "CLI workflow",
                    "store_id": "store-1",
                    "trigger": {
                        "name": "Manual",
                        "type": "external_event",
                        "config": {"event_type": "manual"},
                    },
                    "actions": actions,
                }
            )
        )
        return str(path)

    return write


EMAIL_ACTION = {
    "name": "Notify",
    "type": "email",
    "config": {"recipient": "{{email}}", "subject": "Hi", "body": "Stock {{quantity}}"},
    "order": 1,
}


class TestCliParsing:
    """Tests for the argument parsing logic."""

    def test_no_args_prints_help(self, capsys):
        """Test that running with no arguments prints help and exits."""
        with pytest.raises(SystemExit) as e:
            main([])
        assert e.value.code == 0
        assert "usage: store-workflows" in capsys.readouterr().out

    def test_version_flag(self, capsys):
        """Test the -v / --version flag."""
        with pytest.raises(SystemExit) as e:
            main(["--version"])
        assert e.value.code == 0
        assert __version__ in capsys.readouterr().out

    def test_serve_command_args(self):
        """Test parsing for the 'serve' command."""
        args = build_parser().parse_args(
            ["serve", "-c", "my.yaml", "--host", "0.0.0.0", "-p", "9999", "-d"]
        )

        assert args.command == "serve"
        assert args.config == "my.yaml"
        assert args.host == "0.0.0.0"
        assert args.port == 9999
        assert args.debug is True

    def test_run_command_args(self):
        """Test parsing for the 'run' command."""
        args = build_parser().parse_args(["run", "wf.yaml", "--data", '{"a": 1}', "--json"])

        assert args.file == "wf.yaml"
        assert args.data == '{"a": 1}'
        assert args.as_json is True
        assert args.config is None


class TestLoadDocument:
    """Tests for reading workflow files."""

    def test_json_and_yaml(self, tmp_path):
        """Test both supported formats."""
        json_file = tmp_path / "wf.json"
        json_file.write_text(json.dumps({"name": "x"}))
        yaml_file = tmp_path / "wf.yml"
        yaml_file.write_text("name: y\n")

        assert load_document(json_file) == {"name": "x"}
        assert load_document(yaml_file) == {"name": "y"}

    def test_errors(self, tmp_path):
        """Test unsupported, missing and malformed files."""
        bad = tmp_path / "wf.json"
        bad.write_text("{nope")

        with pytest.raises(ValueError, match="Unsupported file format"):
            load_document(tmp_path / "wf.txt")
        with pytest.raises(FileNotFoundError):
            load_document(tmp_path / "missing.yaml")
        with pytest.raises(ValueError, match="Invalid content"):
            load_document(bad)


class TestCommands:
    """Tests for the command handlers."""

    def test_serve_applies_overrides(self):
        """Test that serve builds the app with CLI overrides and runs it."""
        with patch("store_workflows.cli.commands.serve.WorkflowApp") as app_class:
            assert main(["serve", "--host", "0.0.0.0", "--port", "9001", "--debug"]) == 0

        settings = app_class.call_args[0][0]
        assert settings.server.host == "0.0.0.0"
        assert settings.server.port == 9001
        assert settings.logging.level == "DEBUG"
        app_class.return_value.run.assert_called_once()

    def test_serve_missing_config(self, tmp_path):
        """Test that a missing config file is reported."""
        assert main(["serve", "-c", str(tmp_path / "missing.yaml")]) == 1

    def test_templates_lists_library(self, capsys):
        """Test the templates listing."""
        assert main(["templates", "--category", "inventory"]) == 0

        assert "templates" in capsys.readouterr().out

    def test_templates_show(self, capsys):
        """Test showing a single template."""
        assert main(["templates", "--show", "low_inventory_alert"]) == 0
        assert "Low Inventory Alert" in capsys.readouterr().out

        assert main(["templates", "--show", "nope"]) == 1

    def test_validate(self, workflow_file, capsys):
        """Test validating good and bad files."""
        assert main(["validate", workflow_file([EMAIL_ACTION])]) == 0
        assert "is valid" in capsys.readouterr().out

        assert main(["validate", workflow_file([], name="empty.yaml")]) == 1
        assert "At least one action is required" in capsys.readouterr().out

    def test_run_completes(self, workflow_file, capsys):
        """Test running a workflow once with trigger data."""
        path = workflow_file([EMAIL_ACTION])

        code = main(["run", path, "--data", '{"email": "ops@example.com", "quantity": 4}'])

        assert code == 0
        assert "completed" in capsys.readouterr().out

    def test_run_json_output(self, workflow_file, capsys):
        """Test --json prints the execution record."""
        path = workflow_file([EMAIL_ACTION])

        assert main(["run", path, "--json", "--data", '{"email": "a@b.c"}']) == 0
        assert '"status": "completed"' in capsys.readouterr().out

    def test_run_failed_action_exits_nonzero(self, workflow_file):
        """Test that a failed action makes the command fail."""
        failing = {
            "name": "Missing function",
            "type": "custom",
            "config": {"function_name": "does_not_exist"},
            "order": 1,
        }

        assert main(["run", workflow_file([failing])]) == 1

    def test_run_rejects_bad_data(self, workflow_file):
        """Test that malformed --data is reported."""
        assert main(["run", workflow_file([EMAIL_ACTION]), "--data", "{oops"]) == 1
