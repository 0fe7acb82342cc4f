"""Tests for the Backup Rotator CLI."""

import json

import pytest
from click.testing import CliRunner

from tools.backup_rotator.cli import main
from tools.backup_rotator.lock import TargetLock

WRITE_COMMAND = "printf data > {destination}"


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def dest(tmp_path):
    return tmp_path / "dest"


class TestRunCommand:
    """Test the run command."""

    def test_run_commits(self, runner, dest):
        """Test that a successful run exits 0 and records history."""
        result = runner.invoke(main, ["--dest", str(dest), "run", "--command", WRITE_COMMAND])

        assert result.exit_code == 0
        assert "set0-l0-n0" in result.output
        assert (dest / "set0" / "0" / "n0.dump").exists()
        assert (dest / "rotation.history").read_text().startswith("set0-l0-n0\t")

    def test_run_command_from_environment(self, runner, dest):
        """Test that the command template can come from the environment."""
        result = runner.invoke(
            main,
            ["--dest", str(dest), "run"],
            env={"BACKUP_ROTATOR_COMMAND": WRITE_COMMAND},
        )

        assert result.exit_code == 0

    def test_run_failure(self, runner, dest):
        """Test that a failed backup exits 1 and commits nothing."""
        result = runner.invoke(main, ["--dest", str(dest), "run", "--command", "exit 1"])

        assert result.exit_code == 1
        assert "ExecutorFailure" in result.output
        assert not (dest / "rotation.history").exists()

    def test_run_override_out_of_range(self, runner, dest):
        """Test that an invalid override exits 1."""
        result = runner.invoke(
            main, ["--dest", str(dest), "--sets", "2", "run", "5", "0", "--command", WRITE_COMMAND]
        )

        assert result.exit_code == 1
        assert "ConfigError" in result.output

    def test_run_override(self, runner, dest):
        """Test a manual set and level."""
        result = runner.invoke(
            main, ["--dest", str(dest), "run", "2", "3", "--command", WRITE_COMMAND]
        )

        assert result.exit_code == 0
        assert (dest / "set2" / "3" / "n0.dump").exists()

    def test_run_lock_contention(self, runner, dest):
        """Test that a concurrent run exits 1."""
        with TargetLock(dest / ".rotation.lock"):
            result = runner.invoke(main, ["--dest", str(dest), "run", "--command", WRITE_COMMAND])

        assert result.exit_code == 1
        assert "LockContention" in result.output

    def test_invalid_config(self, runner, dest):
        """Test that invalid options exit 1 before anything runs."""
        result = runner.invoke(
            main, ["--dest", str(dest), "--level-zero", "sometimes", "run", "--command", "true"]
        )

        assert result.exit_code == 1
        assert "Configuration error" in result.output

    def test_missing_destination(self, runner):
        """Test that a destination root is required."""
        result = runner.invoke(main, ["run", "--command", WRITE_COMMAND])

        assert result.exit_code == 1

    def test_config_file(self, runner, tmp_path, dest):
        """Test options loaded from a JSON file."""
        config_file = tmp_path / "rotator.json"
        config_file.write_text(json.dumps({"destination_root": str(dest), "extension": "img"}))

        result = runner.invoke(
            main, ["--config", str(config_file), "run", "--command", WRITE_COMMAND]
        )

        assert result.exit_code == 0
        assert (dest / "set0" / "0" / "n0.img").exists()


class TestQueries:
    """Test plan, status and last."""

    def test_plan_does_not_write(self, runner, dest):
        """Test that plan only reports the next position."""
        result = runner.invoke(main, ["--dest", str(dest), "plan"])

        assert result.exit_code == 0
        assert "set0-l0-n0" in result.output
        assert not dest.exists()

    def test_status_empty(self, runner, dest):
        """Test status before the first run."""
        result = runner.invoke(main, ["--dest", str(dest), "status"])

        assert result.exit_code == 0
        assert "No backups recorded" in result.output

    def test_status_after_runs(self, runner, dest):
        """Test that status reports the current position and is repeatable."""
        for _ in range(2):
            runner.invoke(main, ["--dest", str(dest), "run", "--command", WRITE_COMMAND])

        first = runner.invoke(main, ["--dest", str(dest), "status"])
        second = runner.invoke(main, ["--dest", str(dest), "status"])

        assert first.exit_code == 0
        assert "set0-l0-n1" in first.output
        assert first.output == second.output

    def test_last_found(self, runner, dest):
        """Test looking up the last backup of a unit."""
        runner.invoke(
            main, ["--dest", str(dest), "--unit", "tank/home", "run", "--command", WRITE_COMMAND]
        )

        result = runner.invoke(main, ["--dest", str(dest), "last", "tank/home"])

        assert result.exit_code == 0
        assert "tank/home@set0-l0-n0" in result.output

    def test_last_not_found(self, runner, dest):
        """Test that an unknown unit is reported without failing."""
        result = runner.invoke(main, ["--dest", str(dest), "last", "tank/usr"])

        assert result.exit_code == 0
        assert "Couldn't find" in result.output
