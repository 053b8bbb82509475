"""Command: update a domain's nameservers, registrant and client statuses."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from regctl.commands._base import RegCommand
from regctl.domain.lifecycle import StatusValue

if TYPE_CHECKING:
    from regctl.commands._context import AppContext

_CLIENT_STATUSES = [
    str(StatusValue.CLIENT_TRANSFER_PROHIBITED),
    str(StatusValue.CLIENT_DELETE_PROHIBITED),
]


@click.command(
    cls=RegCommand,
    examples="""\
  regctl update foo.example --client TheRegistrar --ns ns1.bar.example --ns ns2.bar.example
  regctl update foo.example --client TheRegistrar --registrant jd1234
  regctl update foo.example --client TheRegistrar --add-status clientTransferProhibited""",
)
@click.argument("label")
@click.option("--client", "client_id", required=True, help="Acting client id.")
@click.option("--ns", "nameservers", multiple=True, help="Replace nameservers (repeatable).")
@click.option("--clear-ns", is_flag=True, help="Remove all nameservers.")
@click.option("--registrant", default=None, help="New registrant contact id.")
@click.option(
    "--add-status",
    "add_statuses",
    multiple=True,
    type=click.Choice(_CLIENT_STATUSES),
    help="Client status to add (repeatable).",
)
@click.option(
    "--remove-status",
    "remove_statuses",
    multiple=True,
    type=click.Choice(_CLIENT_STATUSES),
    help="Client status to remove (repeatable).",
)
@click.pass_obj
def update(
    app: AppContext,
    label: str,
    client_id: str,
    nameservers: tuple[str, ...],
    clear_ns: bool,
    registrant: str | None,
    add_statuses: tuple[str, ...],
    remove_statuses: tuple[str, ...],
) -> None:
    """Update a domain."""
    from regctl.services.resources import ResourceService

    if clear_ns and nameservers:
        raise click.UsageError("--clear-ns cannot be combined with --ns")

    new_nameservers: list[str] | None = None
    if clear_ns:
        new_nameservers = []
    elif nameservers:
        new_nameservers = list(nameservers)

    svc = ResourceService(app.store)
    app.emit(
        svc.update_domain(
            label,
            client_id,
            app.now,
            nameservers=new_nameservers,
            registrant=registrant,
            add_statuses=[StatusValue(s) for s in add_statuses],
            remove_statuses=[StatusValue(s) for s in remove_statuses],
        )
    )
