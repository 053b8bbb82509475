"""Command group: create TLDs, domains, hosts and contacts."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING

import click

from regctl.commands._base import RegGroup
from regctl.domain.lifecycle import ContactType, TldState
from regctl.domain.times import from_iso

if TYPE_CHECKING:
    from regctl.commands._context import AppContext


def _split_pair(raw: str) -> tuple[datetime, str]:
    instant, sep, value = raw.partition("=")
    if not sep:
        raise click.BadParameter(f"expected TIME=VALUE, got {raw!r}")
    try:
        return from_iso(instant), value
    except ValueError as exc:
        raise click.BadParameter(f"not an ISO 8601 timestamp: {instant!r}") from exc


def _parse_states(
    _ctx: click.Context, _param: click.Parameter, values: tuple[str, ...]
) -> dict[datetime, TldState] | None:
    if not values:
        return None
    states: dict[datetime, TldState] = {}
    for raw in values:
        instant, value = _split_pair(raw)
        try:
            states[instant] = TldState(value.upper())
        except ValueError as exc:
            raise click.BadParameter(f"unknown TLD state: {value!r}") from exc
    return states


def _parse_costs(
    _ctx: click.Context, _param: click.Parameter, values: tuple[str, ...]
) -> dict[datetime, Decimal] | None:
    if not values:
        return None
    costs: dict[datetime, Decimal] = {}
    for raw in values:
        instant, value = _split_pair(raw)
        try:
            costs[instant] = Decimal(value)
        except InvalidOperation as exc:
            raise click.BadParameter(f"not a decimal amount: {value!r}") from exc
    return costs


@click.group(
    cls=RegGroup,
    examples="""\
  regctl create tld example --state 1970-01-01T00:00:00Z=GENERAL_AVAILABILITY
  regctl create domain foo.example --client TheRegistrar --years 2
  regctl create contact jd1234 --client TheRegistrar
  regctl create host ns1.foo.example --client TheRegistrar""",
)
def create() -> None:
    """Create registry resources."""


@create.command(
    examples="""\
  regctl create tld example
  regctl create tld example --renew-cost 1970-01-01T00:00:00Z=8 \\
      --renew-cost 2027-01-01T00:00:00Z=10
  regctl create tld example --state 1970-01-01T00:00:00Z=PREDELEGATION \\
      --state 2026-11-01T00:00:00Z=GENERAL_AVAILABILITY""",
)
@click.argument("name")
@click.option(
    "--state",
    "states",
    multiple=True,
    callback=_parse_states,
    help="TIME=STATE launch phase transition (repeatable).",
)
@click.option(
    "--renew-cost",
    "renew_costs",
    multiple=True,
    callback=_parse_costs,
    help="TIME=AMOUNT renewal price transition (repeatable).",
)
@click.option("--create-cost", type=Decimal, default="13.00", help="One-time create charge.")
@click.pass_obj
def tld(
    app: AppContext,
    name: str,
    states: dict[datetime, TldState] | None,
    renew_costs: dict[datetime, Decimal] | None,
    create_cost: Decimal,
) -> None:
    """Create or replace a TLD with its time-varying state and prices."""
    from regctl.services.resources import ResourceService

    svc = ResourceService(app.store)
    app.emit(
        svc.create_tld(
            name,
            tld_state_transitions=states,
            renew_billing_cost_transitions=renew_costs,
            create_billing_cost=create_cost,
        )
    )


@create.command(
    examples="""\
  regctl create domain foo.example --client TheRegistrar
  regctl create domain foo.example --client TheRegistrar --registrant jd1234 \\
      --admin jd1234 --tech jd1234 --ns ns1.bar.example""",
)
@click.argument("label")
@click.option("--client", "client_id", required=True, help="Sponsoring client id.")
@click.option("--years", type=click.IntRange(1, 10), default=1, help="Registration period.")
@click.option("--registrant", default=None, help="Registrant contact id.")
@click.option("--admin", default=None, help="Admin contact id.")
@click.option("--tech", default=None, help="Tech contact id.")
@click.option("--billing", default=None, help="Billing contact id.")
@click.option("--ns", "nameservers", multiple=True, help="Nameserver host name (repeatable).")
@click.pass_obj
def domain(
    app: AppContext,
    label: str,
    client_id: str,
    years: int,
    registrant: str | None,
    admin: str | None,
    tech: str | None,
    billing: str | None,
    nameservers: tuple[str, ...],
) -> None:
    """Register a domain."""
    from regctl.services.resources import ResourceService

    contacts = {
        kind: value
        for kind, value in (
            (ContactType.ADMIN, admin),
            (ContactType.TECH, tech),
            (ContactType.BILLING, billing),
        )
        if value is not None
    }
    svc = ResourceService(app.store)
    app.emit(
        svc.create_domain(
            label,
            client_id,
            app.now,
            years=years,
            registrant=registrant,
            contacts=contacts,
            nameservers=nameservers,
        )
    )


@create.command(
    examples="""\
  regctl create host ns1.foo.example --client TheRegistrar""",
)
@click.argument("label")
@click.option("--client", "client_id", required=True, help="Sponsoring client id.")
@click.pass_obj
def host(app: AppContext, label: str, client_id: str) -> None:
    """Create a host. In-bailiwick hosts link to their superordinate domain."""
    from regctl.services.resources import ResourceService

    app.emit(ResourceService(app.store).create_host(label, client_id, app.now))


@create.command(
    examples="""\
  regctl create contact jd1234 --client TheRegistrar""",
)
@click.argument("contact_id")
@click.option("--client", "client_id", required=True, help="Sponsoring client id.")
@click.pass_obj
def contact(app: AppContext, contact_id: str, client_id: str) -> None:
    """Create a contact."""
    from regctl.services.resources import ResourceService

    app.emit(ResourceService(app.store).create_contact(contact_id, client_id, app.now))
