"""Command group: domain transfer protocol."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from regctl.commands._base import RegGroup
from regctl.domain.lifecycle import TransferOutcome

if TYPE_CHECKING:
    from regctl.commands._context import AppContext


@click.group(
    cls=RegGroup,
    examples="""\
  regctl transfer request foo.example --client NewRegistrar
  regctl transfer approve foo.example --client NewRegistrar
  regctl transfer cancel foo.example --client TheRegistrar
  regctl --now 2026-11-01T00:00:00Z transfer query foo.example""",
)
def transfer() -> None:
    """Request, resolve and inspect domain transfers."""


@transfer.command(
    examples="""\
  regctl transfer request foo.example --client NewRegistrar
  regctl transfer request foo.example --client NewRegistrar --years 2""",
)
@click.argument("label")
@click.option("--client", "client_id", required=True, help="Gaining client id.")
@click.option("--years", type=click.IntRange(1, 10), default=1, help="Years added on transfer.")
@click.pass_obj
def request(app: AppContext, label: str, client_id: str, years: int) -> None:
    """Open a transfer; it auto-approves unless resolved first."""
    from regctl.services.transfer import TransferService

    app.emit(TransferService(app.store).request(label, client_id, app.now, years=years))


def _resolve_command(outcome: TransferOutcome, summary: str) -> click.Command:
    @transfer.command(
        str(outcome),
        help=summary,
        examples=f"  regctl transfer {outcome} foo.example --client NewRegistrar",
    )
    @click.argument("label")
    @click.option("--client", "client_id", required=True, help="Acting client id.")
    @click.pass_obj
    def _command(app: AppContext, label: str, client_id: str) -> None:
        from regctl.services.transfer import TransferService

        app.emit(TransferService(app.store).resolve(label, outcome, client_id, app.now))

    return _command


approve = _resolve_command(TransferOutcome.APPROVE, "Approve a pending transfer.")
reject = _resolve_command(TransferOutcome.REJECT, "Reject a pending transfer.")
cancel = _resolve_command(TransferOutcome.CANCEL, "Withdraw a pending transfer.")


@transfer.command(
    examples="""\
  regctl transfer query foo.example
  regctl --now 2026-11-01T00:00:00Z transfer query foo.example""",
)
@click.argument("label")
@click.pass_obj
def query(app: AppContext, label: str) -> None:
    """Show the transfer data of a domain as projected at --now."""
    from regctl.services.transfer import TransferService

    app.emit(TransferService(app.store).query(label, app.now))
