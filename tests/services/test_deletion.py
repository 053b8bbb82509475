"""Tests for DeletionService — fail-fast check, full scan, terminal outcomes."""

from __future__ import annotations

import itertools
import threading

import pytest
from sqlalchemy import delete
from structlog.testing import capture_logs

from regctl.domain.lifecycle import (
    DeletionOutcome,
    HistoryType,
    ResourceType,
    StatusValue,
)
from regctl.domain.times import to_iso
from regctl.infrastructure.database.schema import reference_index
from regctl.infrastructure.datastore import Datastore, DeletionRequestRecord
from regctl.infrastructure.jobs import JobRunner
from regctl.services.deletion import DeletionService
from regctl.services.resources import ResourceService
from tests.conftest import T0, create_contact, create_domain, create_host, create_tld, days

CLIENT = "TheRegistrar"
REQUESTED_AT = T0 + days(1)


@pytest.fixture
def linked(store: Datastore) -> dict:
    """Contact jd1234 used as registrant of example.tld."""
    create_tld(store)
    contact = create_contact(store, "jd1234")
    create_domain(store, "example.tld", registrant="jd1234")
    return contact


def _statuses(store: Datastore, repo_id: str) -> frozenset[StatusValue]:
    resource = store.load_resource(repo_id)
    assert resource is not None
    return resource.statuses


def _messages(store: Datastore, client_id: str = CLIENT) -> list[str]:
    with store.read() as txn:
        return [m.msg for m in txn.poll_messages_for(client_id=client_id)]


def _orphan_request(store: Datastore, repo_id: str, request_id: str = "orphan") -> None:
    """Mark *repo_id* pendingDelete with a PENDING request and no running scan."""
    with store.transaction() as txn:
        resource = txn.require_resource(repo_id)
        txn.save_resource(resource.with_status(StatusValue.PENDING_DELETE, present=True))
        txn.insert_deletion_request(
            DeletionRequestRecord(
                request_id=request_id,
                repo_id=repo_id,
                resource_type=resource.resource_type,
                requesting_client_id=CLIENT,
                requested_at=REQUESTED_AT,
                outcome=DeletionOutcome.PENDING,
            )
        )


class TestFailFast:
    def test_live_reference_rejects_immediately(
        self, store: Datastore, runner: JobRunner, linked: dict
    ) -> None:
        result = DeletionService(store, runner).request_delete(
            ResourceType.CONTACT, "jd1234", CLIENT, REQUESTED_AT
        )
        assert not result.ok
        assert result.error is not None
        assert result.error.code == "RESOURCE_LINKED"
        assert StatusValue.PENDING_DELETE not in _statuses(store, linked["repo_id"])

    def test_deleted_referrer_is_ignored(
        self, store: Datastore, runner: JobRunner, linked: dict
    ) -> None:
        ResourceService(store).delete_domain("example.tld", CLIENT, T0 + days(1))
        result = DeletionService(store, runner).request_delete(
            ResourceType.CONTACT, "jd1234", CLIENT, T0 + days(2)
        )
        assert result.ok, result.error
        assert result.data["outcome"] == "succeeded"

    def test_non_sponsor(self, store: Datastore, runner: JobRunner, linked: dict) -> None:
        result = DeletionService(store, runner).request_delete(
            ResourceType.CONTACT, "jd1234", "Other", REQUESTED_AT
        )
        assert not result.ok
        assert result.error is not None
        assert result.error.code == "RESOURCE_NOT_OWNED"

    def test_domains_are_not_async(self, store: Datastore, runner: JobRunner, linked: dict) -> None:
        result = DeletionService(store, runner).request_delete(
            ResourceType.DOMAIN, "example.tld", CLIENT, REQUESTED_AT
        )
        assert not result.ok
        assert result.error is not None
        assert result.error.code == "VALIDATION_ERROR"


class TestFullScan:
    def test_stale_index_caught_by_scan(
        self, store: Datastore, runner: JobRunner, linked: dict
    ) -> None:
        with store.transaction() as txn:
            txn.conn.execute(delete(reference_index))

        result = DeletionService(store, runner).request_delete(
            ResourceType.CONTACT, "jd1234", CLIENT, REQUESTED_AT
        )
        assert result.ok, result.error
        assert result.data["outcome"] == "failed_linked"
        assert result.data["referrers"] == ["2-TLD"]

        contact = store.load_resource(linked["repo_id"])
        assert contact is not None
        assert contact.is_active_at(REQUESTED_AT + days(1))
        assert StatusValue.PENDING_DELETE not in contact.statuses
        assert (
            "Can't delete contact jd1234 because it is referenced by a domain."
            in _messages(store)
        )

    def test_unreferenced_contact_is_deleted(self, store: Datastore, runner: JobRunner) -> None:
        contact = create_contact(store, "spare")
        result = DeletionService(store, runner).request_delete(
            ResourceType.CONTACT, "spare", CLIENT, REQUESTED_AT
        )
        assert result.ok, result.error
        assert result.data["outcome"] == "succeeded"

        stored = store.load_resource(contact["repo_id"])
        assert stored is not None
        assert stored.deletion_time == REQUESTED_AT
        assert StatusValue.PENDING_DELETE not in stored.statuses
        assert "Deleted contact spare." in _messages(store)
        with store.read() as txn:
            types = [h.type for h in txn.history_for(contact["repo_id"])]
        assert types == [
            HistoryType.CONTACT_CREATE,
            HistoryType.CONTACT_PENDING_DELETE,
            HistoryType.CONTACT_DELETE,
        ]

    def test_subordinate_host_is_unlinked(self, store: Datastore, runner: JobRunner) -> None:
        create_tld(store)
        domain = create_domain(store, "example.tld")
        create_host(store, "ns1.example.tld")

        result = DeletionService(store, runner).request_delete(
            ResourceType.HOST, "ns1.example.tld", CLIENT, REQUESTED_AT
        )
        assert result.ok, result.error
        assert result.data["outcome"] == "succeeded"
        parent = store.load_resource(domain["repo_id"])
        assert parent is not None
        assert parent.subordinate_hosts == ()
        assert ResourceService(store).delete_domain("example.tld", CLIENT, T0 + days(2)).ok

    def test_nameserver_host_is_linked(self, store: Datastore, runner: JobRunner) -> None:
        create_tld(store)
        create_host(store, "ns1.other.net")
        create_domain(store, "example.tld", nameservers=["ns1.other.net"])
        result = DeletionService(store, runner).request_delete(
            ResourceType.HOST, "ns1.other.net", CLIENT, REQUESTED_AT
        )
        assert not result.ok
        assert result.error is not None
        assert result.error.code == "RESOURCE_LINKED"


class TestPendingDeleteTargets:
    def test_pending_delete_contact_cannot_be_linked(
        self, store: Datastore, runner: JobRunner
    ) -> None:
        create_tld(store)
        contact = create_contact(store, "jd1234")
        _orphan_request(store, contact["repo_id"], "r1")

        result = ResourceService(store).create_domain(
            "example.tld", CLIENT, T0 + days(2), registrant="jd1234"
        )
        assert not result.ok
        assert result.error is not None
        assert result.error.code == "STATUS_PROHIBITS_OPERATION"

        resumed = DeletionService(store, runner).resume("r1")
        assert resumed.data["outcome"] == "succeeded"

    def test_pending_delete_host_cannot_be_added(
        self, store: Datastore, runner: JobRunner
    ) -> None:
        create_tld(store)
        create_domain(store, "example.tld")
        host = create_host(store, "ns1.other.net")
        _orphan_request(store, host["repo_id"])

        result = ResourceService(store).update_domain(
            "example.tld", CLIENT, T0 + days(2), nameservers=["ns1.other.net"]
        )
        assert not result.ok
        assert result.error is not None
        assert result.error.code == "STATUS_PROHIBITS_OPERATION"

    def test_referrer_created_after_request_blocks_delete(
        self, store: Datastore, runner: JobRunner
    ) -> None:
        create_tld(store)
        contact = create_contact(store, "jd1234")
        create_domain(store, "example.tld", registrant="jd1234", now=T0 + days(2))
        _orphan_request(store, contact["repo_id"], "r1")

        result = DeletionService(store, runner).resume("r1")
        assert result.ok, result.error
        assert result.data["outcome"] == "failed_linked"
        assert result.data["referrers"] == ["2-TLD"]
        assert StatusValue.PENDING_DELETE not in _statuses(store, contact["repo_id"])


class TestTimeout:
    def test_budget_exceeded(self, store: Datastore, linked: dict) -> None:
        contact = create_contact(store, "spare")
        ticks = itertools.count(start=0, step=4000)
        runner = JobRunner(sync=True, clock=lambda: next(ticks))

        with capture_logs() as logs:
            result = DeletionService(store, runner).request_delete(
                ResourceType.CONTACT, "spare", CLIENT, REQUESTED_AT
            )

        assert result.ok, result.error
        assert result.data["outcome"] == "timed_out"
        assert StatusValue.PENDING_DELETE not in _statuses(store, contact["repo_id"])
        alerts = [e for e in logs if e["event"] == "deletion.scan_timeout"]
        assert len(alerts) == 1
        assert alerts[0]["log_level"] == "error"


class TestCancel:
    def test_cancel_running_scan(
        self, store: Datastore, linked: dict, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        contact = create_contact(store, "spare")
        started = threading.Event()
        release = threading.Event()
        original = store.load_resource

        def blocking_load(repo_id: str):
            started.set()
            release.wait(5)
            return original(repo_id)

        monkeypatch.setattr(store, "load_resource", blocking_load)
        runner = JobRunner(max_workers=2)
        svc = DeletionService(store, runner)
        try:
            result = svc.request_delete(
                ResourceType.CONTACT, "spare", CLIENT, REQUESTED_AT, request_id="c1"
            )
            assert result.ok, result.error
            assert result.data["outcome"] == "pending"
            assert started.wait(5)
            assert svc.cancel("c1").data["cancel_requested"] is True
            release.set()
            handle = svc.handle("c1")
            assert handle is not None
            assert handle.result(timeout=5).outcome == DeletionOutcome.CANCELLED
        finally:
            release.set()
            runner.shutdown()

        assert svc.status("c1").data["outcome"] == "cancelled"
        assert svc.handle("c1") is None
        assert StatusValue.PENDING_DELETE not in _statuses(store, contact["repo_id"])

    def test_cancel_unknown_request(self, store: Datastore, runner: JobRunner) -> None:
        result = DeletionService(store, runner).cancel("nope")
        assert result.ok
        assert result.data["cancel_requested"] is False


class TestIdempotency:
    def test_repeated_request_id_returns_recorded_state(
        self, store: Datastore, runner: JobRunner
    ) -> None:
        contact = create_contact(store, "spare")
        svc = DeletionService(store, runner)
        first = svc.request_delete(
            ResourceType.CONTACT, "spare", CLIENT, REQUESTED_AT, request_id="r1"
        )
        again = svc.request_delete(
            ResourceType.CONTACT, "spare", CLIENT, REQUESTED_AT + days(1), request_id="r1"
        )
        assert first.data["outcome"] == again.data["outcome"] == "succeeded"
        assert again.data["completed_at"] == to_iso(REQUESTED_AT)
        with store.read() as txn:
            assert len(txn.history_for(contact["repo_id"])) == 3

    def test_resume_pending_request(self, store: Datastore, runner: JobRunner) -> None:
        contact = create_contact(store, "spare")
        _orphan_request(store, contact["repo_id"])
        svc = DeletionService(store, runner)
        assert svc.status("orphan").data["outcome"] == "pending"

        result = svc.resume("orphan")
        assert result.ok, result.error
        assert result.data["outcome"] == "succeeded"
        again = svc.resume("orphan")
        assert again.data["outcome"] == "succeeded"

    def test_status_is_stable_once_terminal(self, store: Datastore, runner: JobRunner) -> None:
        create_contact(store, "spare")
        svc = DeletionService(store, runner)
        svc.request_delete(ResourceType.CONTACT, "spare", CLIENT, REQUESTED_AT, request_id="r1")
        assert svc.handle("r1") is None
        assert svc.status("r1").data == DeletionService(store, runner).status("r1").data
        assert "job_status" not in svc.status("r1").data

    def test_already_pending_delete(self, store: Datastore, runner: JobRunner) -> None:
        contact = create_contact(store, "spare")
        with store.transaction() as txn:
            resource = txn.require_resource(contact["repo_id"])
            txn.save_resource(resource.with_status(StatusValue.PENDING_DELETE, present=True))
        result = DeletionService(store, runner).request_delete(
            ResourceType.CONTACT, "spare", CLIENT, REQUESTED_AT
        )
        assert not result.ok
        assert result.error is not None
        assert result.error.code == "RESOURCE_ALREADY_PENDING_DELETE"

    def test_unknown_request_status(self, store: Datastore, runner: JobRunner) -> None:
        result = DeletionService(store, runner).status("nope")
        assert not result.ok
        assert result.error is not None
        assert result.error.code == "RESOURCE_DOES_NOT_EXIST"
