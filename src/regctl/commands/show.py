"""Command: project a resource or TLD at the invocation's clock."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from regctl.commands._base import RegCommand
from regctl.domain.lifecycle import ResourceType

if TYPE_CHECKING:
    from regctl.commands._context import AppContext


@click.command(
    cls=RegCommand,
    examples="""\
  regctl show domain foo.example
  regctl --now 2026-11-01T00:00:00Z show domain foo.example
  regctl show host ns1.foo.example --repo-id 7-ROID
  regctl show tld example""",
)
@click.argument("kind", type=click.Choice(["domain", "host", "contact", "tld"]))
@click.argument("label")
@click.option("--repo-id", default=None, help="Show a specific instance instead of the active one.")
@click.pass_obj
def show(app: AppContext, kind: str, label: str, repo_id: str | None) -> None:
    """Show a resource as it stands at --now. Never writes."""
    from regctl.services.resources import ResourceService

    svc = ResourceService(app.store)
    if kind == "tld":
        app.emit(svc.tld_at(label, app.now))
    else:
        app.emit(svc.show(ResourceType(kind), label, app.now, repo_id=repo_id))
