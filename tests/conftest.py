"""Shared pytest fixtures and test helpers for regctl tests."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any

import pytest
from click.testing import CliRunner

from regctl.config.settings import RegSettings
from regctl.domain.lifecycle import TldState
from regctl.domain.times import START_OF_TIME
from regctl.infrastructure.datastore import Datastore
from regctl.infrastructure.jobs import JobRunner
from regctl.infrastructure.retry import Retrier

# Fixed logical clock shared by service tests.
T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def days(n: float) -> timedelta:
    return timedelta(days=n)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's REGCTL_* environment out of the tests."""
    import os

    for key in list(os.environ):
        if key.startswith("REGCTL_"):
            monkeypatch.delenv(key)


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def settings(tmp_path: Path) -> RegSettings:
    return RegSettings.from_cli(data_root=tmp_path)


@pytest.fixture
def store(settings: RegSettings) -> Iterator[Datastore]:
    """Initialized datastore on a temp directory; retries never sleep."""
    s = Datastore(settings, retrier=Retrier(attempts=3, sleeper=lambda _d: None, jitter=False))
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def runner() -> Iterator[JobRunner]:
    """Inline job runner: jobs complete inside ``start``."""
    r = JobRunner(sync=True)
    try:
        yield r
    finally:
        r.shutdown()


@pytest.fixture
def _isolated_root(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Change CWD to a temp directory so the CLI creates an isolated datastore.

    Use via ``@pytest.mark.usefixtures("_isolated_root")`` on command test
    classes.
    """
    monkeypatch.chdir(tmp_path)


# ---------------------------------------------------------------------------
# Shared test helpers (used across service test modules)
# ---------------------------------------------------------------------------


def create_tld(store: Datastore, name: str = "tld", **kwargs: Any) -> dict[str, Any]:
    """Create a TLD in general availability, asserting success."""
    from regctl.services.resources import ResourceService

    kwargs.setdefault(
        "tld_state_transitions",
        {
            START_OF_TIME: TldState.PREDELEGATION,
            START_OF_TIME + days(1): TldState.GENERAL_AVAILABILITY,
        },
    )
    kwargs.setdefault("renew_billing_cost_transitions", {START_OF_TIME: Decimal("11.00")})
    result = ResourceService(store).create_tld(name, **kwargs)
    assert result.ok, result.error
    return result.data


def create_contact(
    store: Datastore, contact_id: str, client_id: str = "TheRegistrar", now: datetime = T0
) -> dict[str, Any]:
    from regctl.services.resources import ResourceService

    result = ResourceService(store).create_contact(contact_id, client_id, now)
    assert result.ok, result.error
    return result.data


def create_host(
    store: Datastore, label: str, client_id: str = "TheRegistrar", now: datetime = T0
) -> dict[str, Any]:
    from regctl.services.resources import ResourceService

    result = ResourceService(store).create_host(label, client_id, now)
    assert result.ok, result.error
    return result.data


def create_domain(
    store: Datastore,
    label: str,
    client_id: str = "TheRegistrar",
    now: datetime = T0,
    **kwargs: Any,
) -> dict[str, Any]:
    from regctl.services.resources import ResourceService

    result = ResourceService(store).create_domain(label, client_id, now, **kwargs)
    assert result.ok, result.error
    return result.data
