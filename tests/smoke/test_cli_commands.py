"""
Smoke Tests for CLI Commands.

These tests verify that CLI commands run without errors and produce output.
They don't validate correctness deeply - just that commands work.

Usage:
    pytest tests/smoke/test_cli_commands.py -v
    pytest tests/smoke/test_cli_commands.py -v -m smoke
"""

import os
import subprocess
import sys
from pathlib import Path

import pytest

# Mark all tests in this module as smoke tests
pytestmark = pytest.mark.smoke

# Project root
PROJECT_ROOT = Path(__file__).parent.parent.parent

USER_ID = "11111111-1111-1111-1111-111111111111"
COURSE_ID = "33333333-3333-3333-3333-333333333333"


@pytest.fixture
def cli_env(tmp_path):
    """Environment pointing the CLI at a throwaway cache and an unreachable backend."""
    env = dict(os.environ)
    env.update(
        {
            "LMS_DATA_DIR": str(tmp_path),
            "LMS_API_BASE_URL": "http://127.0.0.1:9",
            "LMS_API_TIMEOUT_SECONDS": "2",
            "LMS_LOG_LEVEL": "ERROR",
        }
    )
    env.pop("LMS_USER_ID", None)
    env.pop("LMS_DATABASE_URL", None)
    return env


def run_cli_command(command: str, env: dict, timeout: int = 30) -> tuple[int, str, str]:
    """
    Run a CLI command and return exit code, stdout, stderr.

    Args:
        command: The command to run (after 'python main.py')
        env: Process environment
        timeout: Maximum time to wait

    Returns:
        Tuple of (exit_code, stdout, stderr)
    """
    full_command = f"{sys.executable} main.py {command}"

    result = subprocess.run(
        full_command,
        shell=True,
        cwd=PROJECT_ROOT,
        capture_output=True,
        text=True,
        timeout=timeout,
        env=env,
    )

    return result.returncode, result.stdout, result.stderr


class TestCLIHelp:
    """Test that help commands work."""

    def test_main_help(self, cli_env):
        code, stdout, stderr = run_cli_command("--help", cli_env)
        assert code == 0, f"Failed: {stderr}"
        for group in ("sync", "cache", "conflicts", "grades", "consent"):
            assert group in stdout

    def test_grades_help(self, cli_env):
        code, stdout, stderr = run_cli_command("grades --help", cli_env)
        assert code == 0, f"Failed: {stderr}"
        assert "needed" in stdout

    def test_version(self, cli_env):
        code, stdout, stderr = run_cli_command("version", cli_env)
        assert code == 0, f"Failed: {stderr}"
        assert "lms-offline" in stdout


class TestCLICommands:
    """Commands against an empty cache."""

    def test_requires_user(self, cli_env):
        code, stdout, _ = run_cli_command("cache info", cli_env)
        assert code == 1
        assert "No active user" in stdout

    def test_cache_info_empty(self, cli_env):
        code, stdout, stderr = run_cli_command(f"--user {USER_ID} cache info", cli_env)
        assert code == 0, f"Failed: {stderr}"
        assert "never" in stdout

    def test_cache_clear(self, cli_env):
        code, stdout, stderr = run_cli_command(f"--user {USER_ID} cache clear --yes", cli_env)
        assert code == 0, f"Failed: {stderr}"
        assert "cleared" in stdout

    def test_conflicts_list_empty(self, cli_env):
        code, stdout, stderr = run_cli_command(f"--user {USER_ID} conflicts list", cli_env)
        assert code == 0, f"Failed: {stderr}"
        assert "No conflicts" in stdout

    def test_grades_report_empty(self, cli_env):
        code, stdout, stderr = run_cli_command(f"--user {USER_ID} grades report", cli_env)
        assert code == 0, f"Failed: {stderr}"
        assert "No cached grades" in stdout

    def test_grades_needed(self, cli_env):
        code, stdout, stderr = run_cli_command(
            "grades needed --earned 170 --total 200 --remaining 100 --target 80", cli_env
        )
        assert code == 0, f"Failed: {stderr}"
        assert "70.0%" in stdout

    def test_grades_needed_out_of_reach(self, cli_env):
        code, stdout, _ = run_cli_command(
            "grades needed --earned 100 --total 200 --remaining 100 --target 95", cli_env
        )
        assert code == 1
        assert "out of reach" in stdout

    def test_grades_weights_roundtrip(self, cli_env):
        code, _, stderr = run_cli_command(
            f"--user {USER_ID} grades weights {COURSE_ID} --assignments 0.5 --quizzes 0.2", cli_env
        )
        assert code == 0, f"Failed: {stderr}"

        code, stdout, stderr = run_cli_command(f"--user {USER_ID} grades weights {COURSE_ID}", cli_env)
        assert code == 0, f"Failed: {stderr}"
        assert "50%" in stdout

    def test_grades_weights_invalid(self, cli_env):
        code, stdout, _ = run_cli_command(
            f"--user {USER_ID} grades weights {COURSE_ID} --assignments 0.9", cli_env
        )
        assert code == 1
        assert "sum to 1.0" in stdout

    def test_consent_status(self, cli_env):
        code, stdout, stderr = run_cli_command(f"--user {USER_ID} consent status", cli_env)
        assert code == 0, f"Failed: {stderr}"
        assert "up to date" in stdout

    def test_sync_unreachable_backend_reports_errors(self, cli_env):
        code, stdout, _ = run_cli_command(f"--user {USER_ID} sync run", cli_env, timeout=60)
        assert code == 1
        assert "errors occurred" in stdout
