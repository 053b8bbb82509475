"""Tests for the root regctl CLI."""

from __future__ import annotations

import json
from collections.abc import Generator
from pathlib import Path

import pytest
from click.testing import CliRunner

from regctl import __version__
from regctl.cli import cli
from regctl.services.telemetry import disable_telemetry


@pytest.fixture(autouse=True)
def _reset_telemetry() -> Generator[None]:
    yield
    disable_telemetry()


def test_cli_help(cli_runner: CliRunner) -> None:
    result = cli_runner.invoke(cli, ["--help"])
    assert result.exit_code == 0
    assert "regctl" in result.output
    assert "--now" in result.output


def test_cli_version(cli_runner: CliRunner) -> None:
    result = cli_runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_cli_no_args(cli_runner: CliRunner) -> None:
    result = cli_runner.invoke(cli, [])
    assert result.exit_code == 0
    assert "Usage" in result.output


def test_missing_config_file(cli_runner: CliRunner, tmp_path: Path) -> None:
    result = cli_runner.invoke(cli, ["-c", str(tmp_path / "absent.toml"), "check"])
    assert result.exit_code == 1
    assert "Config file not found" in result.output


def test_data_root_option(cli_runner: CliRunner, tmp_path: Path) -> None:
    root = tmp_path / "registry"
    result = cli_runner.invoke(
        cli, ["--data-root", str(root), "--now", "2026-03-01T00:00:00Z", "create", "tld", "example"]
    )
    assert result.exit_code == 0, result.output
    assert (root / ".regctl" / "registry.db").is_file()


@pytest.mark.usefixtures("_isolated_root")
def test_config_file_drives_defaults(cli_runner: CliRunner, tmp_path: Path) -> None:
    (tmp_path / "regctl.toml").write_text('[registry]\ndefault_renew_cost = "9.25"\n')
    cli_runner.invoke(cli, ["--now", "2026-03-01T00:00:00Z", "create", "tld", "example"])
    result = cli_runner.invoke(
        cli, ["--json", "--now", "2026-03-01T00:00:00Z", "show", "tld", "example"]
    )
    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout)["data"]["renew_cost"] == "9.25"


@pytest.mark.usefixtures("_isolated_root")
def test_verbose_attaches_telemetry(cli_runner: CliRunner) -> None:
    result = cli_runner.invoke(
        cli, ["--json", "-v", "--now", "2026-03-01T00:00:00Z", "create", "tld", "example"]
    )
    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["meta"]["telemetry"]["name"] == "ResourceService.create_tld"
