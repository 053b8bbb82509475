"""Tests for delete and deletion-status commands."""

from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from regctl.cli import cli

CREATED = "2026-03-01T12:00:00Z"
LATER = "2026-03-02T12:00:00Z"


def _run(cli_runner: CliRunner, now: str, *args: str):
    return cli_runner.invoke(cli, ["--json", "--now", now, *args])


@pytest.fixture
def seeded(cli_runner: CliRunner, _isolated_root: None) -> None:
    for args in (
        ("create", "tld", "example"),
        ("create", "contact", "jd1234", "--client", "R1"),
        ("create", "contact", "spare", "--client", "R1"),
        ("create", "domain", "foo.example", "--client", "R1", "--registrant", "jd1234"),
    ):
        assert _run(cli_runner, CREATED, *args).exit_code == 0


@pytest.mark.usefixtures("seeded")
class TestDelete:
    def test_unreferenced_contact_waits_for_scan(self, cli_runner: CliRunner) -> None:
        result = _run(
            cli_runner, LATER, "delete", "contact", "spare", "--client", "R1", "--request-id", "d1"
        )
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)["data"]
        assert data["request_id"] == "d1"
        assert data["outcome"] == "succeeded"

        shown = _run(cli_runner, LATER, "show", "contact", "spare")
        assert json.loads(shown.stdout)["data"]["state"] == "deleted"

    def test_linked_contact_fails_fast(self, cli_runner: CliRunner) -> None:
        result = _run(cli_runner, LATER, "delete", "contact", "jd1234", "--client", "R1")
        assert result.exit_code == 1
        error = json.loads(result.stderr)["error"]
        assert error["code"] == "RESOURCE_LINKED"

    def test_wrong_client(self, cli_runner: CliRunner) -> None:
        result = _run(cli_runner, LATER, "delete", "contact", "spare", "--client", "R2")
        assert result.exit_code == 1
        assert json.loads(result.stderr)["error"]["code"] == "RESOURCE_NOT_OWNED"

    def test_domain_deleted_immediately(self, cli_runner: CliRunner) -> None:
        result = _run(cli_runner, LATER, "delete", "domain", "foo.example", "--client", "R1")
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)["op"] == "delete_domain"

    def test_status_after_completion(self, cli_runner: CliRunner) -> None:
        _run(cli_runner, LATER, "delete", "contact", "spare", "--client", "R1", "--request-id", "d2")
        result = _run(cli_runner, LATER, "deletion-status", "d2")
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)["data"]
        assert data["outcome"] == "succeeded"
        assert data["resource_type"] == "contact"

    def test_repeated_request_id(self, cli_runner: CliRunner) -> None:
        first = _run(cli_runner, LATER, "delete", "contact", "spare", "--client", "R1", "--request-id", "d3")
        again = _run(cli_runner, LATER, "delete", "contact", "spare", "--client", "R1", "--request-id", "d3")
        assert again.exit_code == 0
        assert json.loads(again.stdout)["data"] == json.loads(first.stdout)["data"]

    def test_unknown_request(self, cli_runner: CliRunner) -> None:
        result = _run(cli_runner, LATER, "deletion-status", "nope")
        assert result.exit_code == 1
