"""AppContext — shared Click context for all commands.

Created once by the root CLI group and passed to subcommands via
``@click.pass_obj``. The datastore and job runner are created lazily so
``--help`` never touches the database.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

import click

from regctl.config.logging import configure_logging
from regctl.output.formatters import format_result
from regctl.services.telemetry import enable_telemetry

if TYPE_CHECKING:
    from regctl.config.settings import RegSettings
    from regctl.infrastructure.datastore import Datastore
    from regctl.infrastructure.jobs import JobRunner
    from regctl.services.result import ServiceResult


class AppContext:
    """Settings, logical clock, and lazily built infrastructure for one invocation."""

    def __init__(self, settings: RegSettings, *, now: datetime | None = None) -> None:
        self.settings = settings
        self.now = now or datetime.now(UTC)
        self._store: Datastore | None = None
        self._runner: JobRunner | None = None

        configure_logging(verbose=settings.verbose, log_json=settings.log_json)
        if settings.verbose:
            enable_telemetry()

    @property
    def store(self) -> Datastore:
        if self._store is None:
            from regctl.infrastructure.datastore import Datastore

            self._store = Datastore(self.settings)
        return self._store

    @property
    def runner(self) -> JobRunner:
        if self._runner is None:
            from regctl.infrastructure.jobs import JobRunner

            jobs = self.settings.jobs
            self._runner = JobRunner(max_workers=jobs.max_workers, sync=jobs.sync)
        return self._runner

    def close(self) -> None:
        """Wait for running jobs, then release the engine."""
        if self._runner is not None:
            self._runner.shutdown()
            self._runner = None
        if self._store is not None:
            self._store.close()
            self._store = None

    def emit(self, result: ServiceResult) -> None:
        """Print a ServiceResult; failures go to stderr with exit code 1."""
        output = format_result(
            result, json_output=self.settings.json_output, verbose=self.settings.verbose
        )
        if result.ok:
            click.echo(output)
            if not self.settings.json_output:
                for warning in result.warnings:
                    click.echo(f"WARNING: {warning}", err=True)
        else:
            click.echo(output, err=True)
            raise SystemExit(1)
