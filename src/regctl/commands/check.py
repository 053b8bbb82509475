"""Command: integrity scan of resources and indexes."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from regctl.commands._base import RegCommand

if TYPE_CHECKING:
    from regctl.commands._context import AppContext


@click.command(
    cls=RegCommand,
    examples="""\
  regctl check
  regctl check --scan-id nightly-2026-10-19
  regctl --json check""",
)
@click.option("--scan-id", default=None, help="Identifier for the findings written by this scan.")
@click.option("--strict", is_flag=True, help="Exit 2 when any violation is found.")
@click.pass_obj
def check(app: AppContext, scan_id: str | None, strict: bool) -> None:
    """Scan all resources for index and reference violations."""
    from regctl.services.integrity import IntegrityService

    result = IntegrityService(app.store, app.runner).scan(app.now, scan_id=scan_id)
    app.emit(result)
    if strict and result.data.get("count"):
        raise SystemExit(2)
