"""Per-TLD configuration driven by timed transition schedules.

A TLD's launch phase and standard renew price both change at known
instants, so both are stored as :class:`TimedTransitionMap` instances and
read at an explicit ``now``.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from regctl.domain.errors import OrderViolation, ValidationError
from regctl.domain.lifecycle import TLD_STATE_TRANSITIONS, TldState
from regctl.domain.times import START_OF_TIME
from regctl.domain.transitions import TimedTransitionMap, graph_validator

DEFAULT_AUTOMATIC_TRANSFER_LENGTH = timedelta(days=5)
DEFAULT_TRANSFER_GRACE_PERIOD = timedelta(days=5)


def _non_negative(_previous: Any, value: Any) -> bool:
    return Decimal(value) >= 0


def tld_state_map(transitions: Mapping[datetime, TldState]) -> TimedTransitionMap[TldState]:
    """Validated launch-phase schedule. Must start in PREDELEGATION."""
    return TimedTransitionMap.from_mapping(
        {k: TldState(v) for k, v in transitions.items()},
        validator=graph_validator(TLD_STATE_TRANSITIONS, str(TldState.PREDELEGATION)),
    )


def price_map(transitions: Mapping[datetime, Decimal]) -> TimedTransitionMap[Decimal]:
    """Validated price schedule. Amounts must be non-negative."""
    return TimedTransitionMap.from_mapping(
        {k: Decimal(v) for k, v in transitions.items()},
        validator=_non_negative,
    )


class Tld:
    """Registry configuration for one top-level domain."""

    def __init__(
        self,
        name: str,
        *,
        currency: str = "USD",
        tld_state_transitions: Mapping[datetime, TldState] | None = None,
        renew_billing_cost_transitions: Mapping[datetime, Decimal] | None = None,
        create_billing_cost: Decimal = Decimal("13.00"),
        restore_billing_cost: Decimal = Decimal("17.00"),
        automatic_transfer_length: timedelta = DEFAULT_AUTOMATIC_TRANSFER_LENGTH,
        transfer_grace_period: timedelta = DEFAULT_TRANSFER_GRACE_PERIOD,
    ) -> None:
        if not name or name != name.lower() or name.startswith("."):
            msg = f"Invalid TLD name: {name!r}"
            raise ValidationError(msg)
        if automatic_transfer_length <= timedelta(0):
            msg = "automatic_transfer_length must be positive"
            raise ValidationError(msg)
        for label, cost in (("create", create_billing_cost), ("restore", restore_billing_cost)):
            if Decimal(cost) < 0:
                msg = f"{label} billing cost must be non-negative"
                raise OrderViolation(msg)
        self.name = name
        self.currency = currency
        self.tld_state_transitions = tld_state_map(
            tld_state_transitions or {START_OF_TIME: TldState.PREDELEGATION}
        )
        self.renew_billing_cost_transitions = price_map(
            renew_billing_cost_transitions or {START_OF_TIME: Decimal("11.00")}
        )
        self.create_billing_cost = Decimal(create_billing_cost)
        self.restore_billing_cost = Decimal(restore_billing_cost)
        self.automatic_transfer_length = automatic_transfer_length
        self.transfer_grace_period = transfer_grace_period

    def get_tld_state(self, now: datetime) -> TldState:
        return self.tld_state_transitions.get(now)

    def get_standard_renew_cost(self, now: datetime) -> Decimal:
        return self.renew_billing_cost_transitions.get(now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "currency": self.currency,
            "tld_state_transitions": self.tld_state_transitions.to_dict(),
            "renew_billing_cost_transitions": self.renew_billing_cost_transitions.to_dict(),
            "create_billing_cost": str(self.create_billing_cost),
            "restore_billing_cost": str(self.restore_billing_cost),
            "automatic_transfer_length": self.automatic_transfer_length.total_seconds(),
            "transfer_grace_period": self.transfer_grace_period.total_seconds(),
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> Tld:
        states = TimedTransitionMap.from_dict(
            raw["tld_state_transitions"],
            TldState,
            validator=graph_validator(TLD_STATE_TRANSITIONS, str(TldState.PREDELEGATION)),
        )
        prices = TimedTransitionMap.from_dict(
            raw["renew_billing_cost_transitions"], Decimal, validator=_non_negative
        )
        return cls(
            raw["name"],
            currency=raw.get("currency", "USD"),
            tld_state_transitions=dict(states.to_ordered_sequence()),
            renew_billing_cost_transitions=dict(prices.to_ordered_sequence()),
            create_billing_cost=Decimal(raw["create_billing_cost"]),
            restore_billing_cost=Decimal(raw["restore_billing_cost"]),
            automatic_transfer_length=timedelta(seconds=raw["automatic_transfer_length"]),
            transfer_grace_period=timedelta(seconds=raw["transfer_grace_period"]),
        )
