"""Integration tests for the doc-batch command line."""

import json
import os

import pytest

from doc_batch.cli import build_parser, main, prompt_confirm
from doc_batch.config.config_manager import ENV_PREFIX, reset_config_manager


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Run every CLI test from an empty directory with no DOC_BATCH_ settings."""
    for key in list(os.environ):
        if key.startswith(ENV_PREFIX):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)
    reset_config_manager()
    yield
    reset_config_manager()


@pytest.fixture
def source_file(tmp_path):
    path = tmp_path / "export.json"
    path.write_text(json.dumps({"users": [
        {"_id": "u1", "name": "Ada"},
        {"_id": "u2", "name": "Bo", "approvalStatus": "Approved", "phoneNumber": "555"},
    ]}))
    return path


class TestPromptConfirm:

    @pytest.mark.parametrize("answer,expected", [
        ("y", True), (" Y ", True), ("yes", False), ("n", False), ("", False),
    ])
    def test_only_y_is_affirmative(self, answer, expected):
        assert prompt_confirm("Continue? ", input_func=lambda prompt: answer) is expected

    def test_end_of_input_declines(self):
        def closed(prompt):
            raise EOFError
        assert prompt_confirm("Continue? ", input_func=closed) is False


class TestCommands:

    def test_list(self, capsys):
        assert main(["list"]) == 0
        out = capsys.readouterr().out
        assert "payments-migrate" in out
        assert "users-validate" in out

    def test_parser_requires_command(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_offline_normalize_run_writes_back(self, source_file, tmp_path, capsys):
        report = tmp_path / "out" / "users.json"

        code = main(["run", "users-migrate", "--source-file", str(source_file), "--yes",
                     "--report", str(report), "--log-level", "WARNING"])

        assert code == 0
        users = json.loads(source_file.read_text())["users"]
        assert users[0]["approvalStatus"] == "Pending"
        assert users[0]["phoneNumber"] == "Unknown"
        assert users[1]["approvalStatus"] == "Approved"
        assert json.loads(report.read_text())["tally"] == {
            "scanned": 2, "updated": 1, "skipped": 1, "failed": 0}
        assert "users-migrate: Migration complete." in capsys.readouterr().out

    def test_dry_run_leaves_source_untouched(self, source_file):
        before = source_file.read_text()
        code = main(["run", "users-migrate", "--source-file", str(source_file), "--yes", "--dry-run",
                     "--log-level", "WARNING"])
        assert code == 0
        assert source_file.read_text() == before

    def test_default_report_path(self, source_file, tmp_path):
        main(["run", "users-validate", "--source-file", str(source_file), "--yes",
              "--log-level", "WARNING"])
        assert (tmp_path / "reports" / "users-validate_failures.json").exists()

    def test_declined_run_exits_zero(self, source_file, monkeypatch, capsys):
        monkeypatch.setattr("builtins.input", lambda prompt: "n")
        before = source_file.read_text()

        code = main(["run", "users-migrate", "--source-file", str(source_file),
                     "--log-level", "WARNING"])

        assert code == 0
        assert "Migration aborted." in capsys.readouterr().out
        assert source_file.read_text() == before


class TestConfigurationErrors:

    def test_missing_connection_target(self, capsys):
        code = main(["run", "users-validate", "--yes", "--log-level", "CRITICAL"])
        assert code == 1
        assert "Configuration error" in capsys.readouterr().err

    def test_unknown_rule_set(self, capsys):
        code = main(["run", "products-migrate", "--yes", "--log-level", "CRITICAL"])
        assert code == 1
        assert "Unknown rule set 'products-migrate'" in capsys.readouterr().err

    def test_invalid_batch_size(self, source_file, capsys):
        code = main(["run", "users-migrate", "--source-file", str(source_file), "--yes",
                     "--batch-size", "0", "--log-level", "CRITICAL"])
        assert code == 1

    def test_missing_source_file(self, tmp_path):
        code = main(["run", "users-migrate", "--source-file", str(tmp_path / "nope.json"),
                     "--yes", "--log-level", "CRITICAL"])
        assert code == 1
