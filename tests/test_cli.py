"""Tests for dbpulse CLI."""

from collections.abc import Iterator
from contextlib import contextmanager
import json
import os
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from dbpulse import __version__
from dbpulse.__main__ import EXIT_INTERRUPTED
from dbpulse.__main__ import main as console_main
from dbpulse.cli import app, build_cli_overrides
from dbpulse.collectors import Collector
from dbpulse.models import DatabaseInfo, Payload

runner = CliRunner()

BASE_ENV = {
    "DBPULSE_API_KEY": "test-key",
    "DATABASE_URL": "postgres://monitor@localhost:5432/app",
}


class StaticCollector(Collector):
    """Collector returning one fixed payload."""

    name = "static"

    async def collect(self) -> Payload:
        return Payload.create(
            DatabaseInfo(type="postgres", version="16.2"),
            "postgres://monitor@localhost:5432/app",
            settings={"work_mem": "4MB"},
        )

    async def test_connection(self) -> None:
        return None

    @property
    def provider(self) -> str:
        return "generic"

    @property
    def version(self) -> str | None:
        return "16.2"


@contextmanager
def cli_env(home: Path, **env: str) -> Iterator[None]:
    """Isolate the CLI from the real environment and global logging/Sentry setup."""
    with (
        patch.dict(os.environ, env, clear=True),
        patch.object(Path, "home", return_value=home),
        patch("dbpulse.config.loader.SYSTEM_CONFIG_PATH", home / "etc" / "config.yaml"),
        patch("dbpulse.cli.setup_logging"),
        patch("dbpulse.cli.init_sentry"),
    ):
        yield


class TestBuildCliOverrides:
    """Tests for CLI override building."""

    def test_no_overrides(self) -> None:
        """Test no flags produce no overrides."""
        assert build_cli_overrides() == {}

    def test_interval_override(self) -> None:
        """Test --interval maps to collection.interval."""
        assert build_cli_overrides(interval=120) == {"collection": {"interval": 120}}


class TestCliBasics:
    """Tests for basic CLI behavior."""

    def test_version(self) -> None:
        """Test --version prints version and exits."""
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"dbpulse version {__version__}" in result.output

    def test_help(self) -> None:
        """Test --help lists the run mode flags."""
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "--dry-run" in result.output
        assert "--test-connection" in result.output

    def test_interval_below_minimum(self, tmp_path: Path) -> None:
        """Test intervals below 10 seconds are rejected by the parser."""
        with cli_env(tmp_path, **BASE_ENV):
            result = runner.invoke(app, ["--interval", "5"])
        assert result.exit_code == 2

    def test_dry_run_and_test_connection_exclusive(self, tmp_path: Path) -> None:
        """Test the two one-shot modes cannot be combined."""
        with cli_env(tmp_path, **BASE_ENV):
            result = runner.invoke(app, ["--dry-run", "--test-connection"])
        assert result.exit_code == 1
        assert "cannot be combined" in result.output


class TestCliConfigErrors:
    """Tests for configuration failures at startup."""

    def test_missing_config_file(self, tmp_path: Path) -> None:
        """Test a missing --config file exits 1."""
        with cli_env(tmp_path, **BASE_ENV):
            result = runner.invoke(app, ["--config", str(tmp_path / "missing.yaml")])
        assert result.exit_code == 1
        assert "Config file not found" in result.output

    def test_missing_api_key(self, tmp_path: Path) -> None:
        """Test a missing API key exits 1 with a configuration error."""
        with cli_env(tmp_path, DATABASE_URL=BASE_ENV["DATABASE_URL"]):
            result = runner.invoke(app, [])
        assert result.exit_code == 1
        assert "Configuration error" in result.output
        assert "DBPULSE_API_KEY" in result.output

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        """Test a YAML syntax error exits 1."""
        path = tmp_path / "config.yaml"
        path.write_text("ingest:\n  api_key: [oops\n")
        with cli_env(tmp_path, **BASE_ENV):
            result = runner.invoke(app, ["--config", str(path)])
        assert result.exit_code == 1
        assert "Configuration error" in result.output


class TestCliModes:
    """Tests for run mode dispatch."""

    def test_agent_mode(self, tmp_path: Path) -> None:
        """Test the default mode runs the agent with overrides applied."""
        with (
            cli_env(tmp_path, **BASE_ENV),
            patch("dbpulse.cli.run_mode", return_value=0) as run_mode,
        ):
            result = runner.invoke(app, ["--interval", "120"])

        assert result.exit_code == 0
        config = run_mode.call_args.args[0]
        assert config.collection.interval == 120
        assert run_mode.call_args.kwargs == {"dry_run": False, "test_connection": False}

    def test_failure_exit_code(self, tmp_path: Path) -> None:
        """Test a failed run exits with the run's exit code."""
        with (
            cli_env(tmp_path, **BASE_ENV),
            patch("dbpulse.cli.run_mode", return_value=1),
        ):
            result = runner.invoke(app, ["--test-connection"])
        assert result.exit_code == 1

    def test_logging_and_sentry_configured(self, tmp_path: Path) -> None:
        """Test logging and error reporting are set up from config."""
        with (
            patch.dict(os.environ, {**BASE_ENV, "LOG_LEVEL": "debug"}, clear=True),
            patch.object(Path, "home", return_value=tmp_path),
            patch("dbpulse.config.loader.SYSTEM_CONFIG_PATH", tmp_path / "none.yaml"),
            patch("dbpulse.cli.setup_logging") as setup_logging,
            patch("dbpulse.cli.init_sentry") as init_sentry,
            patch("dbpulse.cli.run_mode", return_value=0),
        ):
            result = runner.invoke(app, ["--verbose", "--json-logs"])

        assert result.exit_code == 0
        logging_config = setup_logging.call_args.args[0]
        assert logging_config.level == "DEBUG"
        assert setup_logging.call_args.kwargs == {"verbose": True, "json_logs": True}
        init_sentry.assert_called_once()

    def test_dry_run_prints_payload(self, tmp_path: Path) -> None:
        """Test --dry-run prints the collected payload as JSON."""
        with (
            cli_env(tmp_path, **BASE_ENV),
            patch("dbpulse.runner.create_collector", return_value=StaticCollector()),
            patch("dbpulse.runner.Uploader") as uploader_cls,
        ):
            result = runner.invoke(app, ["--dry-run"])

        assert result.exit_code == 0
        uploader_cls.assert_not_called()
        document = json.loads(result.stdout)
        assert document["database"]["type"] == "postgres"
        assert document["settings"] == {"work_mem": "4MB"}


class TestConsoleEntryPoint:
    """Tests for the console script wrapper."""

    @pytest.mark.parametrize(
        ("code", "expected"),
        [(None, 0), (0, 0), (1, 1), (2, 2), ("fatal", 1)],
    )
    def test_system_exit_codes(self, code: int | str | None, expected: int) -> None:
        """Test SystemExit codes are mapped to integers."""
        with patch("dbpulse.__main__.cli_main", MagicMock(side_effect=SystemExit(code))):
            assert console_main() == expected

    def test_keyboard_interrupt(self) -> None:
        """Test Ctrl+C before the agent takes over exits 130."""
        with patch("dbpulse.__main__.cli_main", MagicMock(side_effect=KeyboardInterrupt)):
            assert console_main() == EXIT_INTERRUPTED

    def test_normal_return(self) -> None:
        """Test a normal return exits 0."""
        with patch("dbpulse.__main__.cli_main"):
            assert console_main() == 0
