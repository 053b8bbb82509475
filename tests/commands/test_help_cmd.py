"""Tests for --help and --examples on every command."""

from __future__ import annotations

import pytest
from click.testing import CliRunner

from regctl.cli import cli

COMMANDS = [
    ["create"],
    ["create", "tld"],
    ["create", "domain"],
    ["create", "host"],
    ["create", "contact"],
    ["show"],
    ["update"],
    ["delete"],
    ["deletion-status"],
    ["transfer"],
    ["transfer", "request"],
    ["transfer", "approve"],
    ["transfer", "reject"],
    ["transfer", "cancel"],
    ["transfer", "query"],
    ["check"],
]


@pytest.mark.parametrize("path", COMMANDS, ids=lambda p: " ".join(p))
def test_help(cli_runner: CliRunner, path: list[str]) -> None:
    result = cli_runner.invoke(cli, [*path, "--help"])
    assert result.exit_code == 0
    assert "Usage:" in result.output
    assert "--examples" in result.output


@pytest.mark.parametrize("path", COMMANDS, ids=lambda p: " ".join(p))
def test_examples(cli_runner: CliRunner, path: list[str]) -> None:
    result = cli_runner.invoke(cli, [*path, "--examples"])
    assert result.exit_code == 0
    assert result.output.startswith(f"Examples for 'cli {' '.join(path)}'")
    assert "regctl " in result.output
