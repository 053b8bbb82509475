"""TransferLifecycle — request, approve, reject, cancel, and implicit resolution.

A request stages everything a completed transfer needs (gaining billing,
gaining autorenew, server-approve notices, the losing autorenew end time)
and commits only the "transfer requested" notices. The staged rows take
effect when:

- the gaining client approves (explicit), or
- ``pending_expiration_time`` passes (implicit). Reads report the result
  immediately through projection; storage catches up in :func:`materialize`
  the next time any mutation touches the resource.

Reject and cancel discard the staged rows, which restores sponsor and
billing to the pre-request state.
"""

from __future__ import annotations

from datetime import datetime

import structlog

from regctl.domain.errors import (
    AlreadyPendingTransfer,
    InvalidTransferState,
    NotAuthorizedForTransfer,
    ObjectAlreadySponsored,
    RegistryError,
    TransferLockPeriod,
    ValidationError,
)
from regctl.domain.lifecycle import (
    OUTCOME_STATUS,
    TRANSFER_AUTHORIZED_PARTIES,
    TRANSFER_PROHIBITING_STATUSES,
    TRANSFER_TRANSITIONS,
    BillingReason,
    EntityStage,
    HistoryType,
    ResourceType,
    StatusValue,
    TransferOutcome,
    TransferParty,
    TransferStatus,
    is_valid_transition,
)
from regctl.domain.projection import (
    clone_projected_at_time,
    has_implicitly_resolved_transfer,
    is_logically_pending,
)
from regctl.domain.resources import BillingEvent, PollMessage, Resource, TransferData
from regctl.domain.times import END_OF_TIME, earliest, ensure_utc, plus, plus_years, to_iso
from regctl.domain.tld import Tld
from regctl.infrastructure.datastore import DatastoreTransaction
from regctl.services._helpers import (
    history,
    notify,
    projected_payload,
    reject_statuses,
    require_active,
)
from regctl.services.base import BaseService
from regctl.services.result import ServiceResult
from regctl.services.telemetry import traced

logger = structlog.get_logger(__name__)

MAX_TRANSFER_YEARS = 10

TRANSFER_REQUESTED = "Transfer requested."
TRANSFER_SERVER_APPROVED = "Transfer approved by server."
TRANSFER_APPROVED = "Transfer approved."
TRANSFER_REJECTED = "Transfer rejected."
TRANSFER_CANCELLED = "Transfer cancelled."
TRANSFER_SERVER_CANCELLED = "Transfer cancelled by server because the domain was deleted."

_OUTCOME_HISTORY = {
    TransferOutcome.APPROVE: HistoryType.DOMAIN_TRANSFER_APPROVE,
    TransferOutcome.REJECT: HistoryType.DOMAIN_TRANSFER_REJECT,
    TransferOutcome.CANCEL: HistoryType.DOMAIN_TRANSFER_CANCEL,
}


# ---------------------------------------------------------------------------
# Storage-side helpers shared with the resource and deletion services
# ---------------------------------------------------------------------------


def truncate_autorenew(txn: DatastoreTransaction, resource: Resource, end: datetime) -> None:
    """End the resource's current recurring billing and autorenew poll at *end*."""
    if resource.autorenew_billing_event is not None:
        event = txn.load_billing_event(resource.autorenew_billing_event)
        if event is not None:
            current = event.recurrence_end_time or END_OF_TIME
            txn.set_recurrence_end_time(event.id, earliest(current, end))  # type: ignore[arg-type]
    if resource.autorenew_poll_message is not None:
        message = txn.load_poll_message(resource.autorenew_poll_message)
        if message is not None:
            current = message.autorenew_end_time or END_OF_TIME
            txn.set_autorenew_end_time(message.id, earliest(current, end))  # type: ignore[arg-type]


def materialize(txn: DatastoreTransaction, resource: Resource, now: datetime) -> Resource:
    """Write an implicitly resolved transfer to storage; otherwise a no-op.

    Commits every staged row of the transfer (including the server-approve
    notices), applies the staged losing autorenew end time, and saves the
    projected resource. Must run inside the caller's write transaction.
    """
    if not has_implicitly_resolved_transfer(resource, now):
        return resource
    data = resource.transfer_data
    assert data is not None
    truncate_autorenew(
        txn, resource, data.losing_autorenew_end_time or data.pending_expiration_time
    )
    txn.commit_staged(billing_ids=data.staged_billing_ids(), poll_ids=data.staged_poll_ids())
    resolved = clone_projected_at_time(resource, now)
    txn.save_resource(resolved)
    history(
        txn,
        resolved,
        HistoryType.DOMAIN_TRANSFER_SERVER_APPROVE,
        data.gaining_client_id,
        data.pending_expiration_time,
        losing_client_id=data.losing_client_id,
    )
    logger.info(
        "transfer.materialized",
        repo_id=resource.repo_id,
        gaining=data.gaining_client_id,
        resolved_at=to_iso(data.pending_expiration_time),
    )
    return resolved


def server_cancel(txn: DatastoreTransaction, resource: Resource, now: datetime) -> Resource:
    """Cancel a logically pending transfer because the resource is being deleted.

    Returns the updated resource unsaved; the caller persists it along with
    the deletion.
    """
    if not is_logically_pending(resource, now):
        return resource
    data = resource.transfer_data
    assert data is not None
    txn.discard_staged(billing_ids=data.staged_billing_ids(), poll_ids=data.staged_poll_ids())
    for client_id in (data.gaining_client_id, data.losing_client_id):
        notify(txn, resource, client_id, now, TRANSFER_SERVER_CANCELLED)
    logger.info("transfer.server_cancelled", repo_id=resource.repo_id)
    return resource.with_status(StatusValue.PENDING_TRANSFER, present=False).model_copy(
        update={"transfer_data": data.resolved(TransferStatus.SERVER_CANCELLED, now)}
    )


def require_tld(txn: DatastoreTransaction, name: str | None) -> Tld:
    tld = txn.load_tld(name) if name else None
    if tld is None:
        msg = f"Unknown TLD: {name}"
        raise ValidationError(msg, tld=str(name))
    return tld


# ---------------------------------------------------------------------------
# TransferService
# ---------------------------------------------------------------------------


class TransferService(BaseService):
    """Domain transfer protocol. Every method takes the logical clock explicitly."""

    @traced
    def request(
        self,
        label: str,
        gaining_client_id: str,
        now: datetime,
        *,
        years: int = 1,
    ) -> ServiceResult:
        """Open a transfer of *label* to *gaining_client_id*.

        The transfer auto-approves at ``now + automatic_transfer_length``
        unless resolved explicitly before then.
        """
        op = "transfer_request"
        now = ensure_utc(now)

        def _request(txn: DatastoreTransaction) -> Resource:
            if not 1 <= years <= MAX_TRANSFER_YEARS:
                msg = f"Transfer period must be 1-{MAX_TRANSFER_YEARS} years, got {years}"
                raise ValidationError(msg, years=str(years))
            resource = materialize(txn, require_active(txn, ResourceType.DOMAIN, label, now), now)
            reject_statuses(
                resource,
                TRANSFER_PROHIBITING_STATUSES | {StatusValue.PENDING_DELETE},
                "Transfer",
            )
            if is_logically_pending(resource, now):
                msg = f"{label} already has a pending transfer"
                raise AlreadyPendingTransfer(msg, label=label)
            if resource.current_sponsor == gaining_client_id:
                msg = f"{label} is already sponsored by {gaining_client_id}"
                raise ObjectAlreadySponsored(msg, label=label)
            current = resource.transfer_data.status if resource.transfer_data else TransferStatus.NONE
            if not is_valid_transition(current, TransferStatus.PENDING, TRANSFER_TRANSITIONS):
                msg = f"Cannot request a transfer from state {current}"
                raise InvalidTransferState(msg, status=str(current))
            lock = self._settings.registry.transfer_lock_period
            if resource.last_transfer_time is not None:
                unlocked_at = plus(resource.last_transfer_time, lock)
                if now < unlocked_at:
                    msg = f"{label} was transferred too recently; eligible at {to_iso(unlocked_at)}"
                    raise TransferLockPeriod(msg, label=label, eligible_at=to_iso(unlocked_at))

            tld = require_tld(txn, resource.tld)
            return self._stage_transfer(txn, resource, tld, gaining_client_id, now, years)

        try:
            resource = self._store.transact(_request)
        except RegistryError as exc:
            logger.info("transfer.request_rejected", label=label, code=exc.code)
            return ServiceResult.failure(op, exc, label=label)

        logger.info("transfer.requested", label=label, gaining=gaining_client_id)
        return ServiceResult(ok=True, op=op, data=projected_payload(resource, now))

    def _stage_transfer(
        self,
        txn: DatastoreTransaction,
        resource: Resource,
        tld: Tld,
        gaining: str,
        now: datetime,
        years: int,
    ) -> Resource:
        losing = resource.current_sponsor
        expiration = plus(now, tld.automatic_transfer_length)
        base_expiration = resource.registration_expiration_time or now
        extended = plus_years(base_expiration, years)
        staged = EntityStage.STAGED

        transfer_charge = txn.insert_billing_event(
            BillingEvent(
                kind="one_time",
                repo_id=resource.repo_id,
                target_label=resource.label,
                reason=BillingReason.TRANSFER,
                client_id=gaining,
                event_time=expiration,
                billing_time=plus(expiration, tld.transfer_grace_period),
                cost=tld.get_standard_renew_cost(now) * years,
                currency=tld.currency,
                period_years=years,
                stage=staged,
            )
        )
        gaining_autorenew = txn.insert_billing_event(
            BillingEvent(
                kind="recurring",
                repo_id=resource.repo_id,
                target_label=resource.label,
                reason=BillingReason.AUTO_RENEW,
                client_id=gaining,
                event_time=extended,
                recurrence_end_time=END_OF_TIME,
                stage=staged,
            )
        )
        gaining_autorenew_poll = txn.insert_poll_message(
            PollMessage(
                kind="autorenew",
                repo_id=resource.repo_id,
                client_id=gaining,
                event_time=extended,
                msg="Domain was auto-renewed.",
                autorenew_end_time=END_OF_TIME,
                stage=staged,
            )
        )
        server_approve_notices = tuple(
            txn.insert_poll_message(
                PollMessage(
                    repo_id=resource.repo_id,
                    client_id=client_id,
                    event_time=expiration,
                    msg=TRANSFER_SERVER_APPROVED,
                    stage=staged,
                )
            )
            for client_id in (gaining, losing)
        )
        for client_id in (gaining, losing):
            notify(txn, resource, client_id, now, TRANSFER_REQUESTED)

        data = TransferData(
            gaining_client_id=gaining,
            losing_client_id=losing,
            request_time=now,
            pending_expiration_time=expiration,
            extended_registration_years=years,
            transferred_registration_expiration_time=extended,
            losing_autorenew_end_time=expiration,
            server_approve_billing_event=transfer_charge,
            server_approve_autorenew_event=gaining_autorenew,
            server_approve_autorenew_poll_message=gaining_autorenew_poll,
            server_approve_entities=server_approve_notices,
        )
        updated = resource.with_status(StatusValue.PENDING_TRANSFER, present=True).model_copy(
            update={"transfer_data": data}
        )
        txn.save_resource(updated)
        history(
            txn,
            updated,
            HistoryType.DOMAIN_TRANSFER_REQUEST,
            gaining,
            now,
            losing_client_id=losing,
            pending_expiration_time=to_iso(expiration),
        )
        return updated

    # ------------------------------------------------------------------
    # Explicit resolution
    # ------------------------------------------------------------------

    def approve(self, label: str, client_id: str, now: datetime) -> ServiceResult:
        return self.resolve(label, TransferOutcome.APPROVE, client_id, now)

    def reject(self, label: str, client_id: str, now: datetime) -> ServiceResult:
        return self.resolve(label, TransferOutcome.REJECT, client_id, now)

    def cancel(self, label: str, client_id: str, now: datetime) -> ServiceResult:
        return self.resolve(label, TransferOutcome.CANCEL, client_id, now)

    @traced
    def resolve(
        self,
        label: str,
        outcome: TransferOutcome,
        acting_client_id: str,
        now: datetime,
    ) -> ServiceResult:
        """Apply an explicit outcome to a logically pending transfer."""
        op = f"transfer_{outcome}"
        now = ensure_utc(now)

        def _resolve(txn: DatastoreTransaction) -> Resource:
            resource = materialize(txn, require_active(txn, ResourceType.DOMAIN, label, now), now)
            data = resource.transfer_data
            if data is None or not is_logically_pending(resource, now):
                status = data.status if data is not None else TransferStatus.NONE
                msg = f"{label} has no pending transfer (status {status})"
                raise InvalidTransferState(msg, label=label, status=str(status))
            party = self._party(data, acting_client_id)
            if party is None or party not in TRANSFER_AUTHORIZED_PARTIES[outcome]:
                msg = f"{acting_client_id} may not {outcome} the transfer of {label}"
                raise NotAuthorizedForTransfer(msg, label=label, client_id=acting_client_id)

            if outcome == TransferOutcome.APPROVE:
                updated = self._apply_approval(txn, resource, data, now)
            else:
                updated = self._apply_withdrawal(txn, resource, data, outcome, acting_client_id, now)
            txn.save_resource(updated)
            history(txn, updated, _OUTCOME_HISTORY[outcome], acting_client_id, now)
            return updated

        try:
            resource = self._store.transact(_resolve)
        except RegistryError as exc:
            logger.info("transfer.resolve_rejected", label=label, outcome=str(outcome), code=exc.code)
            return ServiceResult.failure(op, exc, label=label)

        logger.info("transfer.resolved", label=label, outcome=str(outcome), client=acting_client_id)
        return ServiceResult(ok=True, op=op, data=projected_payload(resource, now))

    @staticmethod
    def _party(data: TransferData, client_id: str) -> TransferParty | None:
        if client_id == data.gaining_client_id:
            return TransferParty.GAINING
        if client_id == data.losing_client_id:
            return TransferParty.LOSING
        return None

    @staticmethod
    def _apply_approval(
        txn: DatastoreTransaction, resource: Resource, data: TransferData, now: datetime
    ) -> Resource:
        # Staged rows are committed verbatim so the billing outcome matches
        # implicit resolution; only the server-approve notices are dropped.
        truncate_autorenew(
            txn, resource, data.losing_autorenew_end_time or data.pending_expiration_time
        )
        autorenew_poll = (
            [data.server_approve_autorenew_poll_message]
            if data.server_approve_autorenew_poll_message is not None
            else []
        )
        txn.commit_staged(billing_ids=data.staged_billing_ids(), poll_ids=autorenew_poll)
        txn.discard_staged(billing_ids=[], poll_ids=list(data.server_approve_entities))
        notify(txn, resource, data.losing_client_id, now, TRANSFER_APPROVED)

        update: dict[str, object] = {
            "current_sponsor": data.gaining_client_id,
            "last_transfer_time": now,
            "transfer_data": data.resolved(OUTCOME_STATUS[TransferOutcome.APPROVE], now),
            "autorenew_billing_event": data.server_approve_autorenew_event,
            "autorenew_poll_message": data.server_approve_autorenew_poll_message,
        }
        if data.transferred_registration_expiration_time is not None:
            update["registration_expiration_time"] = data.transferred_registration_expiration_time
        return resource.with_status(StatusValue.PENDING_TRANSFER, present=False).model_copy(
            update=update
        )

    @staticmethod
    def _apply_withdrawal(
        txn: DatastoreTransaction,
        resource: Resource,
        data: TransferData,
        outcome: TransferOutcome,
        acting_client_id: str,
        now: datetime,
    ) -> Resource:
        txn.discard_staged(billing_ids=data.staged_billing_ids(), poll_ids=data.staged_poll_ids())
        other = (
            data.losing_client_id
            if acting_client_id == data.gaining_client_id
            else data.gaining_client_id
        )
        message = TRANSFER_REJECTED if outcome == TransferOutcome.REJECT else TRANSFER_CANCELLED
        notify(txn, resource, other, now, message)
        return resource.with_status(StatusValue.PENDING_TRANSFER, present=False).model_copy(
            update={"transfer_data": data.resolved(OUTCOME_STATUS[outcome], now)}
        )

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    @traced
    def query(self, label: str, now: datetime) -> ServiceResult:
        """Projected transfer state of *label*. Never writes."""
        op = "transfer_query"
        now = ensure_utc(now)
        try:
            with self._store.read() as txn:
                resource = require_active(txn, ResourceType.DOMAIN, label, now)
        except RegistryError as exc:
            return ServiceResult.failure(op, exc, label=label)
        if resource.transfer_data is None:
            exc = InvalidTransferState(f"{label} has no transfer history", label=label)
            return ServiceResult.failure(op, exc, label=label)
        return ServiceResult(ok=True, op=op, data=projected_payload(resource, now))
