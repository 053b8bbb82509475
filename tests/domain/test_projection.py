"""Tests for the lazy state projection."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from regctl.domain.lifecycle import LogicalState, ResourceType, StatusValue, TransferStatus
from regctl.domain.projection import (
    clone_projected_at_time,
    has_implicitly_resolved_transfer,
    is_logically_pending,
    project,
)
from regctl.domain.resources import Resource, TransferData

T0 = datetime(2026, 3, 1, tzinfo=UTC)
EXPIRY = T0 + timedelta(days=5)


def _domain(**overrides: object) -> Resource:
    fields: dict[str, object] = {
        "repo_id": "1-TLD",
        "resource_type": ResourceType.DOMAIN,
        "label": "example.tld",
        "creation_time": T0 - timedelta(days=400),
        "current_sponsor": "Losing",
        "creation_client_id": "Losing",
        "statuses": frozenset({StatusValue.PENDING_TRANSFER}),
        "registration_expiration_time": T0 + timedelta(days=100),
        "autorenew_billing_event": 1,
        "transfer_data": TransferData(
            gaining_client_id="Gaining",
            losing_client_id="Losing",
            request_time=T0,
            pending_expiration_time=EXPIRY,
            transferred_registration_expiration_time=T0 + timedelta(days=465),
            server_approve_autorenew_event=7,
            server_approve_autorenew_poll_message=8,
        ),
    }
    fields.update(overrides)
    return Resource(**fields)  # type: ignore[arg-type]


class TestImplicitTransfer:
    def test_pending_before_expiry(self) -> None:
        state = project(_domain(), EXPIRY - timedelta(microseconds=1))
        assert state.transfer_status == TransferStatus.PENDING
        assert state.sponsor == "Losing"
        assert StatusValue.PENDING_TRANSFER in state.statuses

    def test_server_approved_at_expiry(self) -> None:
        state = project(_domain(), EXPIRY)
        assert state.transfer_status == TransferStatus.SERVER_APPROVED
        assert state.sponsor == "Gaining"
        assert StatusValue.PENDING_TRANSFER not in state.statuses
        assert state.last_transfer_time == EXPIRY
        assert state.registration_expiration_time == T0 + timedelta(days=465)

    def test_later_reads_stay_resolved(self) -> None:
        resource = _domain()
        for offset in (0, 1, 30, 3650):
            state = project(resource, EXPIRY + timedelta(days=offset))
            assert state.transfer_status == TransferStatus.SERVER_APPROVED

    def test_reads_are_deterministic(self) -> None:
        resource = _domain()
        assert project(resource, EXPIRY) == project(resource, EXPIRY)

    def test_projection_does_not_mutate(self) -> None:
        resource = _domain()
        project(resource, EXPIRY + timedelta(days=1))
        assert resource.transfer_data is not None
        assert resource.transfer_data.status == TransferStatus.PENDING

    def test_clone_switches_autorenew_links(self) -> None:
        clone = clone_projected_at_time(_domain(), EXPIRY)
        assert clone.autorenew_billing_event == 7
        assert clone.autorenew_poll_message == 8
        assert clone.transfer_data is not None
        assert clone.transfer_data.server_approve_autorenew_event is None

    def test_clone_is_identity_when_nothing_resolved(self) -> None:
        resource = _domain()
        assert clone_projected_at_time(resource, T0) is resource

    def test_explicit_terminal_status_is_not_reprojected(self) -> None:
        data = _domain().transfer_data
        assert data is not None
        resource = _domain(
            statuses=frozenset(),
            transfer_data=data.resolved(TransferStatus.CLIENT_REJECTED, T0 + timedelta(days=1)),
        )
        state = project(resource, EXPIRY + timedelta(days=1))
        assert state.transfer_status == TransferStatus.CLIENT_REJECTED
        assert state.sponsor == "Losing"


class TestDeletion:
    def test_deleted_wins(self) -> None:
        resource = _domain(deletion_time=T0 + timedelta(days=1))
        state = project(resource, EXPIRY)
        assert state.state == LogicalState.DELETED

    def test_transfer_expiring_after_deletion_never_resolves(self) -> None:
        resource = _domain(deletion_time=T0 + timedelta(days=1))
        assert not has_implicitly_resolved_transfer(resource, EXPIRY)
        assert project(resource, EXPIRY).sponsor == "Losing"

    def test_active_before_deletion(self) -> None:
        resource = _domain(deletion_time=T0 + timedelta(days=1))
        assert project(resource, T0).state == LogicalState.ACTIVE

    def test_deletion_boundary_is_inclusive(self) -> None:
        when = T0 + timedelta(days=1)
        assert project(_domain(deletion_time=when), when).state == LogicalState.DELETED


class TestLogicallyPending:
    def test_pending_window(self) -> None:
        resource = _domain()
        assert is_logically_pending(resource, T0)
        assert not is_logically_pending(resource, EXPIRY)

    def test_no_transfer(self) -> None:
        assert not is_logically_pending(_domain(transfer_data=None), T0)
