"""Tests for Tld schedules."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from regctl.domain.errors import InvalidTransitionValue, OrderViolation, ValidationError
from regctl.domain.lifecycle import TldState
from regctl.domain.times import START_OF_TIME
from regctl.domain.tld import Tld

LAUNCH = datetime(2026, 6, 1, tzinfo=UTC)


def _tld(**kwargs: object) -> Tld:
    return Tld(
        "example",
        tld_state_transitions={
            START_OF_TIME: TldState.PREDELEGATION,
            LAUNCH: TldState.SUNRISE,
            LAUNCH + timedelta(days=30): TldState.GENERAL_AVAILABILITY,
        },
        renew_billing_cost_transitions={
            START_OF_TIME: Decimal("8.00"),
            LAUNCH + timedelta(days=365): Decimal("10.00"),
        },
        **kwargs,  # type: ignore[arg-type]
    )


class TestTld:
    def test_state_at_instants(self) -> None:
        tld = _tld()
        assert tld.get_tld_state(LAUNCH - timedelta(seconds=1)) == TldState.PREDELEGATION
        assert tld.get_tld_state(LAUNCH) == TldState.SUNRISE
        assert tld.get_tld_state(LAUNCH + timedelta(days=31)) == TldState.GENERAL_AVAILABILITY

    def test_price_at_instants(self) -> None:
        tld = _tld()
        assert tld.get_standard_renew_cost(LAUNCH) == Decimal("8.00")
        assert tld.get_standard_renew_cost(LAUNCH + timedelta(days=365)) == Decimal("10.00")

    def test_defaults(self) -> None:
        tld = Tld("test")
        assert tld.get_tld_state(LAUNCH) == TldState.PREDELEGATION
        assert tld.automatic_transfer_length == timedelta(days=5)

    def test_negative_price_rejected(self) -> None:
        with pytest.raises(InvalidTransitionValue):
            Tld("test", renew_billing_cost_transitions={START_OF_TIME: Decimal("-1")})

    def test_negative_create_cost_rejected(self) -> None:
        with pytest.raises(OrderViolation):
            Tld("test", create_billing_cost=Decimal("-1"))

    def test_backwards_phase_rejected(self) -> None:
        with pytest.raises(InvalidTransitionValue):
            Tld(
                "test",
                tld_state_transitions={
                    START_OF_TIME: TldState.PREDELEGATION,
                    LAUNCH: TldState.GENERAL_AVAILABILITY,
                    LAUNCH + timedelta(days=1): TldState.SUNRISE,
                },
            )

    @pytest.mark.parametrize("name", ["", "Example", ".example"])
    def test_invalid_name(self, name: str) -> None:
        with pytest.raises(ValidationError):
            Tld(name)

    def test_dict_round_trip(self) -> None:
        tld = _tld(create_billing_cost=Decimal("20.00"))
        restored = Tld.from_dict(tld.to_dict())
        assert restored.to_dict() == tld.to_dict()
        assert restored.get_tld_state(LAUNCH) == TldState.SUNRISE
