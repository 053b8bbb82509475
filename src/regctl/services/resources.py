"""ResourceService — TLD setup, resource creation, updates, reads, domain delete.

Every mutating method materializes the resource first (see
:func:`regctl.services.transfer.materialize`), so a transfer that expired
since the last write is applied before anything else changes.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from datetime import datetime, timedelta
from decimal import Decimal

import structlog

from regctl.domain.errors import (
    DomainHasSubordinateHosts,
    LabelAlreadyActive,
    RegistryError,
    ResourceDoesNotExist,
    ValidationError,
)
from regctl.domain.lifecycle import (
    DELETE_PROHIBITING_STATUSES,
    BillingReason,
    ContactType,
    GracePeriodStatus,
    HistoryType,
    ResourceType,
    StatusValue,
    TldState,
)
from regctl.domain.projection import ProjectedState, project
from regctl.domain.resources import (
    BillingEvent,
    DesignatedContact,
    GracePeriod,
    PollMessage,
    Resource,
)
from regctl.domain.times import END_OF_TIME, START_OF_TIME, ensure_utc, plus, plus_years
from regctl.domain.tld import Tld
from regctl.infrastructure.datastore import DatastoreTransaction
from regctl.services._helpers import (
    history,
    projected_payload,
    reject_statuses,
    require_active,
    require_linkable,
    require_sponsor,
)
from regctl.services.base import BaseService
from regctl.services.result import ServiceResult
from regctl.services.telemetry import traced
from regctl.services.transfer import (
    materialize,
    require_tld,
    server_cancel,
    truncate_autorenew,
)

logger = structlog.get_logger(__name__)

ADD_GRACE_PERIOD = timedelta(days=5)
MAX_REGISTRATION_YEARS = 10

# Repo id suffix for resources that are not bound to a TLD.
ROID_SUFFIX = "ROID"


class ResourceService(BaseService):
    """Create, update, read and (for domains) delete registry resources."""

    # ------------------------------------------------------------------
    # TLDs
    # ------------------------------------------------------------------

    @traced
    def create_tld(
        self,
        name: str,
        *,
        tld_state_transitions: Mapping[datetime, TldState] | None = None,
        renew_billing_cost_transitions: Mapping[datetime, Decimal] | None = None,
        create_billing_cost: Decimal = Decimal("13.00"),
    ) -> ServiceResult:
        """Create or replace a TLD. Unset values come from ``[registry]`` config."""
        op = "create_tld"
        registry = self._settings.registry
        try:
            tld = Tld(
                name,
                currency=registry.currency,
                tld_state_transitions=tld_state_transitions,
                renew_billing_cost_transitions=(
                    renew_billing_cost_transitions
                    or {START_OF_TIME: registry.default_renew_cost}
                ),
                automatic_transfer_length=registry.automatic_transfer_length,
                transfer_grace_period=registry.transfer_grace_period,
                create_billing_cost=create_billing_cost,
            )
            self._store.transact(lambda txn: txn.save_tld(tld))
        except RegistryError as exc:
            return ServiceResult.failure(op, exc, name=name)
        logger.info("tld.saved", name=name)
        return ServiceResult(ok=True, op=op, data=tld.to_dict())

    @traced
    def tld_at(self, name: str, now: datetime) -> ServiceResult:
        op = "tld_at"
        now = ensure_utc(now)
        try:
            with self._store.read() as txn:
                tld = require_tld(txn, name)
            data = {
                "name": name,
                "tld_state": str(tld.get_tld_state(now)),
                "renew_cost": str(tld.get_standard_renew_cost(now)),
                "currency": tld.currency,
            }
        except RegistryError as exc:
            return ServiceResult.failure(op, exc, name=name)
        return ServiceResult(ok=True, op=op, data=data)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    @traced
    def create_domain(
        self,
        label: str,
        client_id: str,
        now: datetime,
        *,
        years: int = 1,
        registrant: str | None = None,
        contacts: Mapping[ContactType, str] | None = None,
        nameservers: Sequence[str] = (),
    ) -> ServiceResult:
        """Register *label*. Contacts and nameservers are given by label."""
        op = "create_domain"
        now = ensure_utc(now)
        label = label.lower()

        def _create(txn: DatastoreTransaction) -> Resource:
            if not 1 <= years <= MAX_REGISTRATION_YEARS:
                msg = f"Registration period must be 1-{MAX_REGISTRATION_YEARS} years"
                raise ValidationError(msg, years=str(years))
            if "." not in label:
                msg = f"Domain name must include a TLD: {label}"
                raise ValidationError(msg, label=label)
            tld = require_tld(txn, label.split(".", 1)[1])
            self._require_free(txn, ResourceType.DOMAIN, label, now)

            host_ids = tuple(
                require_linkable(txn, ResourceType.HOST, ns.lower(), now).repo_id
                for ns in nameservers
            )
            registrant_id = (
                require_linkable(txn, ResourceType.CONTACT, registrant, now).repo_id
                if registrant is not None
                else None
            )
            designated = tuple(
                DesignatedContact(
                    type=kind, contact=require_linkable(txn, ResourceType.CONTACT, c, now).repo_id
                )
                for kind, c in sorted((contacts or {}).items())
            )

            repo_id = txn.allocate_repo_id(tld.name)
            expiration = plus_years(now, years)
            create_charge = txn.insert_billing_event(
                BillingEvent(
                    kind="one_time",
                    repo_id=repo_id,
                    target_label=label,
                    reason=BillingReason.CREATE,
                    client_id=client_id,
                    event_time=now,
                    billing_time=plus(now, ADD_GRACE_PERIOD),
                    cost=tld.create_billing_cost * years,
                    currency=tld.currency,
                    period_years=years,
                )
            )
            autorenew = txn.insert_billing_event(
                BillingEvent(
                    kind="recurring",
                    repo_id=repo_id,
                    target_label=label,
                    reason=BillingReason.AUTO_RENEW,
                    client_id=client_id,
                    event_time=expiration,
                    recurrence_end_time=END_OF_TIME,
                )
            )
            autorenew_poll = txn.insert_poll_message(
                PollMessage(
                    kind="autorenew",
                    repo_id=repo_id,
                    client_id=client_id,
                    event_time=expiration,
                    msg="Domain was auto-renewed.",
                    autorenew_end_time=END_OF_TIME,
                )
            )
            domain = Resource(
                repo_id=repo_id,
                resource_type=ResourceType.DOMAIN,
                label=label,
                creation_time=now,
                current_sponsor=client_id,
                creation_client_id=client_id,
                tld=tld.name,
                registration_expiration_time=expiration,
                nameservers=host_ids,
                registrant=registrant_id,
                contacts=designated,
                grace_periods=(
                    GracePeriod(
                        type=GracePeriodStatus.ADD,
                        expiration_time=plus(now, ADD_GRACE_PERIOD),
                        client_id=client_id,
                        billing_event_id=create_charge,
                    ),
                ),
                autorenew_billing_event=autorenew,
                autorenew_poll_message=autorenew_poll,
            )
            txn.insert_resource(domain)
            history(txn, domain, HistoryType.DOMAIN_CREATE, client_id, now)
            return domain

        return self._run_create(op, label, now, _create)

    @traced
    def create_host(self, label: str, client_id: str, now: datetime) -> ServiceResult:
        """Create a host. A host under a registered domain becomes its subordinate."""
        op = "create_host"
        now = ensure_utc(now)
        label = label.lower()

        def _create(txn: DatastoreTransaction) -> Resource:
            self._require_free(txn, ResourceType.HOST, label, now)
            superordinate = self._find_superordinate(txn, label, now)
            if superordinate is not None:
                require_sponsor(superordinate, client_id)
            host = Resource(
                repo_id=txn.allocate_repo_id(ROID_SUFFIX),
                resource_type=ResourceType.HOST,
                label=label,
                creation_time=now,
                current_sponsor=client_id,
                creation_client_id=client_id,
                superordinate_domain=superordinate.repo_id if superordinate else None,
            )
            txn.insert_resource(host)
            if superordinate is not None:
                txn.save_resource(
                    superordinate.model_copy(
                        update={
                            "subordinate_hosts": (*superordinate.subordinate_hosts, host.repo_id)
                        }
                    )
                )
            history(txn, host, HistoryType.HOST_CREATE, client_id, now)
            return host

        return self._run_create(op, label, now, _create)

    @traced
    def create_contact(self, contact_id: str, client_id: str, now: datetime) -> ServiceResult:
        op = "create_contact"
        now = ensure_utc(now)

        def _create(txn: DatastoreTransaction) -> Resource:
            self._require_free(txn, ResourceType.CONTACT, contact_id, now)
            contact = Resource(
                repo_id=txn.allocate_repo_id(ROID_SUFFIX),
                resource_type=ResourceType.CONTACT,
                label=contact_id,
                creation_time=now,
                current_sponsor=client_id,
                creation_client_id=client_id,
            )
            txn.insert_resource(contact)
            history(txn, contact, HistoryType.CONTACT_CREATE, client_id, now)
            return contact

        return self._run_create(op, contact_id, now, _create)

    def _run_create(
        self,
        op: str,
        label: str,
        now: datetime,
        work: Callable[[DatastoreTransaction], Resource],
    ) -> ServiceResult:
        try:
            resource = self._store.transact(work)
        except RegistryError as exc:
            logger.info("resource.create_rejected", op=op, label=label, code=exc.code)
            return ServiceResult.failure(op, exc, label=label)
        logger.info("resource.created", op=op, label=label, repo_id=resource.repo_id)
        return ServiceResult(ok=True, op=op, data=projected_payload(resource, now))

    @staticmethod
    def _require_free(
        txn: DatastoreTransaction, resource_type: ResourceType, label: str, now: datetime
    ) -> None:
        if txn.load_by_label(str(resource_type), label, now) is not None:
            msg = f"Object with given ID ({label}) already exists"
            raise LabelAlreadyActive(msg, resource_type=str(resource_type), label=label)

    @staticmethod
    def _find_superordinate(
        txn: DatastoreTransaction, host_label: str, now: datetime
    ) -> Resource | None:
        parts = host_label.split(".")
        for i in range(1, len(parts) - 1):
            domain = txn.load_by_label(str(ResourceType.DOMAIN), ".".join(parts[i:]), now)
            if domain is not None:
                return materialize(txn, domain, now)
        return None

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    @traced
    def update_domain(
        self,
        label: str,
        client_id: str,
        now: datetime,
        *,
        nameservers: Sequence[str] | None = None,
        registrant: str | None = None,
        add_statuses: Sequence[StatusValue] = (),
        remove_statuses: Sequence[StatusValue] = (),
    ) -> ServiceResult:
        """Replace nameservers and/or registrant, add or remove client statuses."""
        op = "update_domain"
        now = ensure_utc(now)

        def _update(txn: DatastoreTransaction) -> Resource:
            domain = materialize(txn, require_active(txn, ResourceType.DOMAIN, label, now), now)
            require_sponsor(domain, client_id)
            reject_statuses(domain, {StatusValue.PENDING_DELETE}, "Update")
            update: dict[str, object] = {}
            if nameservers is not None:
                update["nameservers"] = tuple(
                    require_linkable(txn, ResourceType.HOST, ns.lower(), now).repo_id
                    for ns in nameservers
                )
            if registrant is not None:
                update["registrant"] = require_linkable(
                    txn, ResourceType.CONTACT, registrant, now
                ).repo_id
            statuses = (set(domain.statuses) | set(add_statuses)) - set(remove_statuses)
            update["statuses"] = frozenset(statuses)
            updated = domain.model_copy(update=update)
            txn.save_resource(updated)
            history(txn, updated, HistoryType.DOMAIN_UPDATE, client_id, now)
            return updated

        try:
            domain = self._store.transact(_update)
        except RegistryError as exc:
            return ServiceResult.failure(op, exc, label=label)
        return ServiceResult(ok=True, op=op, data=projected_payload(domain, now))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def project(
        self,
        resource_type: ResourceType,
        label: str,
        now: datetime,
        *,
        repo_id: str | None = None,
    ) -> ProjectedState:
        """Logical state of a resource at *now*. Never writes.

        Raises ResourceDoesNotExist when nothing matches.
        """
        now = ensure_utc(now)
        with self._store.read() as txn:
            resource = self._lookup(txn, resource_type, label, now, repo_id)
        return project(resource, now)

    @traced
    def show(
        self,
        resource_type: ResourceType,
        label: str,
        now: datetime,
        *,
        repo_id: str | None = None,
    ) -> ServiceResult:
        """Project a resource at *now* with its history. Never writes.

        Without *repo_id*, the resource active under *label* is shown, falling
        back to the most recently created instance if none is active.
        """
        op = "show"
        now = ensure_utc(now)
        try:
            with self._store.read() as txn:
                resource = self._lookup(txn, resource_type, label, now, repo_id)
                history_rows = txn.history_for(resource.repo_id)
        except RegistryError as exc:
            return ServiceResult.failure(op, exc, label=label)
        data = projected_payload(resource, now)
        data["history"] = [
            {"type": str(h.type), "client_id": h.client_id, "at": h.modification_time.isoformat()}
            for h in history_rows
        ]
        return ServiceResult(ok=True, op=op, data=data)

    @staticmethod
    def _lookup(
        txn: DatastoreTransaction,
        resource_type: ResourceType,
        label: str,
        now: datetime,
        repo_id: str | None,
    ) -> Resource:
        if repo_id is not None:
            return txn.require_resource(repo_id)
        active = txn.load_by_label(str(resource_type), label, now)
        if active is not None:
            return active
        candidates = [
            r
            for row in txn.foreign_key_rows(str(resource_type), label)
            if (r := txn.load_resource(row.repo_id)) is not None and r.creation_time <= now
        ]
        if not candidates:
            msg = f"The {resource_type} with given ID ({label}) doesn't exist."
            raise ResourceDoesNotExist(msg, resource_type=str(resource_type), label=label)
        return max(candidates, key=lambda r: r.creation_time)

    # ------------------------------------------------------------------
    # Domain delete
    # ------------------------------------------------------------------

    @traced
    def delete_domain(self, label: str, client_id: str, now: datetime) -> ServiceResult:
        """Soft-delete a domain at *now*.

        Domains are only referenced by their own subordinate hosts, so the
        check is local: a domain with subordinate hosts cannot be deleted.
        A pending transfer is cancelled by the server.
        """
        op = "delete_domain"
        now = ensure_utc(now)

        def _delete(txn: DatastoreTransaction) -> Resource:
            domain = materialize(txn, require_active(txn, ResourceType.DOMAIN, label, now), now)
            require_sponsor(domain, client_id)
            reject_statuses(domain, DELETE_PROHIBITING_STATUSES, "Deletion")
            live_hosts = [
                h
                for h in domain.subordinate_hosts
                if (host := txn.load_resource(h)) is not None and host.is_active_at(now)
            ]
            if live_hosts:
                msg = f"Domain to be deleted has {len(live_hosts)} subordinate hosts"
                raise DomainHasSubordinateHosts(msg, label=label, hosts=live_hosts)
            domain = server_cancel(txn, domain, now)
            truncate_autorenew(txn, domain, now)
            deleted = domain.model_copy(update={"deletion_time": now})
            txn.save_resource(deleted)
            history(txn, deleted, HistoryType.DOMAIN_DELETE, client_id, now)
            return deleted

        try:
            domain = self._store.transact(_delete)
        except RegistryError as exc:
            logger.info("domain.delete_rejected", label=label, code=exc.code)
            return ServiceResult.failure(op, exc, label=label)
        logger.info("domain.deleted", label=label, repo_id=domain.repo_id)
        return ServiceResult(ok=True, op=op, data=projected_payload(domain, now))
