"""Commands: delete resources and inspect asynchronous deletion requests."""

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
  regctl delete domain foo.example --client TheRegistrar
  regctl delete host ns1.foo.example --client TheRegistrar
  regctl delete contact jd1234 --client TheRegistrar --request-id del-42
  regctl delete contact jd1234 --client TheRegistrar --no-wait""",
)
@click.argument("kind", type=click.Choice(["domain", "host", "contact"]))
@click.argument("label")
@click.option("--client", "client_id", required=True, help="Acting client id.")
@click.option(
    "--request-id",
    default=None,
    help="Idempotency key; repeating it returns the recorded request.",
)
@click.option(
    "--wait/--no-wait",
    default=True,
    help="Wait for the reference scan of a host or contact to finish.",
)
@click.pass_obj
def delete(
    app: AppContext,
    kind: str,
    label: str,
    client_id: str,
    request_id: str | None,
    wait: bool,
) -> None:
    """Delete a resource.

    Domains are deleted immediately. Hosts and contacts go pendingDelete,
    then a full scan for referencing domains decides the outcome.
    """
    resource_type = ResourceType(kind)
    if resource_type is ResourceType.DOMAIN:
        from regctl.services.resources import ResourceService

        app.emit(ResourceService(app.store).delete_domain(label, client_id, app.now))
        return

    from regctl.services.deletion import DeletionService

    svc = DeletionService(app.store, app.runner)
    result = svc.request_delete(
        resource_type, label, client_id, app.now, request_id=request_id
    )
    if wait and result.ok:
        result = svc.wait(result.data["request_id"])
    app.emit(result)


@click.command(
    "deletion-status",
    cls=RegCommand,
    examples="""\
  regctl deletion-status del-42
  regctl deletion-status del-42 --resume""",
)
@click.argument("request_id")
@click.option("--resume", is_flag=True, help="Re-run the reference scan if still pending.")
@click.pass_obj
def deletion_status(app: AppContext, request_id: str, resume: bool) -> None:
    """Show the recorded state of a deletion request."""
    from regctl.services.deletion import DeletionService

    svc = DeletionService(app.store, app.runner)
    if resume:
        result = svc.resume(request_id)
        if result.ok:
            result = svc.wait(request_id)
        app.emit(result)
    else:
        app.emit(svc.status(request_id))
