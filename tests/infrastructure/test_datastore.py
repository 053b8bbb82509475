"""Tests for the Datastore repository and its transactions."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from regctl.domain.errors import TransientStorageError, ValidationError
from regctl.domain.lifecycle import (
    BillingReason,
    DeletionOutcome,
    EntityStage,
    ResourceType,
)
from regctl.domain.resources import BillingEvent, PollMessage, Resource
from regctl.domain.times import END_OF_TIME
from regctl.infrastructure.database.schema import reference_index, resource_index
from regctl.infrastructure.datastore import (
    SHARD_BUCKETS,
    Datastore,
    DeletionRequestRecord,
    bucket_for,
    shard_ranges,
)
from tests.conftest import T0


def _contact(repo_id: str, label: str, **kwargs: object) -> Resource:
    return Resource(
        repo_id=repo_id,
        resource_type=ResourceType.CONTACT,
        label=label,
        creation_time=T0,
        current_sponsor="TheRegistrar",
        creation_client_id="TheRegistrar",
        **kwargs,  # type: ignore[arg-type]
    )


def _domain(repo_id: str, label: str, registrant: str) -> Resource:
    return Resource(
        repo_id=repo_id,
        resource_type=ResourceType.DOMAIN,
        label=label,
        creation_time=T0,
        current_sponsor="TheRegistrar",
        creation_client_id="TheRegistrar",
        tld="tld",
        registrant=registrant,
    )


class TestSharding:
    def test_ranges_cover_bucket_space(self) -> None:
        ranges = shard_ranges(3)
        assert ranges[0][0] == 0
        assert ranges[-1][1] == SHARD_BUCKETS
        for (_, hi), (lo, _) in zip(ranges, ranges[1:], strict=False):
            assert hi == lo

    def test_count_is_clamped(self) -> None:
        assert shard_ranges(0) == [(0, SHARD_BUCKETS)]
        assert len(shard_ranges(SHARD_BUCKETS * 2)) == SHARD_BUCKETS

    def test_bucket_is_stable(self) -> None:
        assert bucket_for("1-ROID") == bucket_for("1-ROID")
        assert 0 <= bucket_for("1-ROID") < SHARD_BUCKETS


class TestResources:
    def test_allocate_repo_id_increments(self, store: Datastore) -> None:
        with store.transaction() as txn:
            first = txn.allocate_repo_id("tld")
            second = txn.allocate_repo_id("ROID")
        assert first == "1-TLD"
        assert second == "2-ROID"

    def test_insert_and_load(self, store: Datastore) -> None:
        contact = _contact("1-ROID", "jd1234")
        with store.transaction() as txn:
            txn.insert_resource(contact)
        assert store.load_resource("1-ROID") == contact
        assert store.load_resource("404-ROID") is None

    def test_insert_writes_indexes(self, store: Datastore) -> None:
        with store.transaction() as txn:
            txn.insert_resource(_contact("1-ROID", "jd1234"))
            txn.insert_resource(_domain("2-TLD", "example.tld", "1-ROID"))
        with store.read() as txn:
            assert txn.has_resource_index("1-ROID")
            assert txn.query_referrers("1-ROID", 10) == ["2-TLD"]
            rows = txn.foreign_key_rows("contact", "jd1234")
        assert [r.repo_id for r in rows] == ["1-ROID"]
        assert rows[0].deletion_time == END_OF_TIME

    def test_rollback_on_error(self, store: Datastore) -> None:
        with pytest.raises(RuntimeError), store.transaction() as txn:
            txn.insert_resource(_contact("1-ROID", "jd1234"))
            raise RuntimeError("boom")
        assert store.load_resource("1-ROID") is None

    def test_save_syncs_foreign_key_deletion_time(self, store: Datastore) -> None:
        contact = _contact("1-ROID", "jd1234")
        with store.transaction() as txn:
            txn.insert_resource(contact)
        gone = T0 + timedelta(days=1)
        with store.transaction() as txn:
            txn.save_resource(contact.model_copy(update={"deletion_time": gone}))
        with store.read() as txn:
            assert txn.foreign_key_rows("contact", "jd1234")[0].deletion_time == gone
            assert txn.load_by_label("contact", "jd1234", T0) is not None
            assert txn.load_by_label("contact", "jd1234", gone) is None

    def test_deletion_time_cannot_move_later(self, store: Datastore) -> None:
        contact = _contact("1-ROID", "jd1234", deletion_time=T0 + timedelta(days=1))
        with store.transaction() as txn:
            txn.insert_resource(contact)
        with pytest.raises(ValidationError), store.transaction() as txn:
            txn.save_resource(contact.model_copy(update={"deletion_time": END_OF_TIME}))

    def test_save_rewrites_reference_rows(self, store: Datastore) -> None:
        with store.transaction() as txn:
            txn.insert_resource(_contact("1-ROID", "a"))
            txn.insert_resource(_contact("2-ROID", "b"))
            txn.insert_resource(_domain("3-TLD", "example.tld", "1-ROID"))
        with store.transaction() as txn:
            domain = txn.require_resource("3-TLD")
            txn.save_resource(domain.model_copy(update={"registrant": "2-ROID"}))
        with store.read() as txn:
            assert txn.query_referrers("1-ROID", 10) == []
            assert txn.query_referrers("2-ROID", 10) == ["3-TLD"]

    def test_enumeration_bypasses_indexes(self, store: Datastore) -> None:
        with store.transaction() as txn:
            txn.insert_resource(_contact("1-ROID", "a"))
            txn.insert_resource(_domain("2-TLD", "example.tld", "1-ROID"))
            txn.conn.execute(resource_index.delete())
        full = (0, SHARD_BUCKETS)
        with store.read() as txn:
            assert txn.indexed_repo_ids(full) == []
            assert txn.stored_repo_ids(full) == ["1-ROID", "2-TLD"]

    def test_indexed_repo_ids_by_type(self, store: Datastore) -> None:
        with store.transaction() as txn:
            txn.insert_resource(_contact("1-ROID", "a"))
            txn.insert_resource(_domain("2-TLD", "example.tld", "1-ROID"))
        with store.read() as txn:
            ids = txn.indexed_repo_ids((0, SHARD_BUCKETS), resource_type=ResourceType.DOMAIN)
        assert ids == ["2-TLD"]

    def test_query_referrers_limit(self, store: Datastore) -> None:
        with store.transaction() as txn:
            txn.insert_resource(_contact("1-ROID", "a"))
            for i in range(2, 6):
                txn.insert_resource(_domain(f"{i}-TLD", f"d{i}.tld", "1-ROID"))
            rows = txn.conn.execute(select(reference_index)).fetchall()
        assert len(rows) == 4
        with store.read() as txn:
            assert len(txn.query_referrers("1-ROID", 2)) == 2


class TestStagedRows:
    def _event(self, stage: EntityStage) -> BillingEvent:
        return BillingEvent(
            kind="one_time",
            repo_id="1-TLD",
            target_label="example.tld",
            reason=BillingReason.TRANSFER,
            client_id="Gaining",
            event_time=T0,
            cost=Decimal("11.00"),
            currency="USD",
            stage=stage,
        )

    def test_commit_staged(self, store: Datastore) -> None:
        with store.transaction() as txn:
            event_id = txn.insert_billing_event(self._event(EntityStage.STAGED))
            txn.commit_staged(billing_ids=[event_id], poll_ids=[])
            event = txn.load_billing_event(event_id)
        assert event is not None
        assert event.stage == EntityStage.COMMITTED
        assert event.cost == Decimal("11.00")

    def test_discard_only_deletes_staged(self, store: Datastore) -> None:
        with store.transaction() as txn:
            staged = txn.insert_billing_event(self._event(EntityStage.STAGED))
            committed = txn.insert_billing_event(self._event(EntityStage.COMMITTED))
            poll = txn.insert_poll_message(
                PollMessage(
                    repo_id="1-TLD",
                    client_id="Gaining",
                    event_time=T0,
                    msg="x",
                    stage=EntityStage.STAGED,
                )
            )
            txn.discard_staged(billing_ids=[staged, committed], poll_ids=[poll])
            assert txn.load_billing_event(staged) is None
            assert txn.load_billing_event(committed) is not None
            assert txn.load_poll_message(poll) is None


class TestDeletionRequests:
    def test_complete_is_compare_and_set(self, store: Datastore) -> None:
        record = DeletionRequestRecord(
            request_id="r1",
            repo_id="1-ROID",
            resource_type=ResourceType.CONTACT,
            requesting_client_id="TheRegistrar",
            requested_at=T0,
            outcome=DeletionOutcome.PENDING,
        )
        with store.transaction() as txn:
            txn.insert_deletion_request(record)
            first = txn.complete_deletion_request(
                "r1", DeletionOutcome.SUCCEEDED, completed_at=T0, message="done"
            )
            second = txn.complete_deletion_request(
                "r1", DeletionOutcome.TIMED_OUT, completed_at=T0
            )
            loaded = txn.load_deletion_request("r1")
        assert first is True
        assert second is False
        assert loaded is not None
        assert loaded.outcome == DeletionOutcome.SUCCEEDED
        assert loaded.message == "done"


class TestTransact:
    def test_retries_transient_failures(self, store: Datastore) -> None:
        calls: list[int] = []

        def work(txn: object) -> str:
            calls.append(1)
            if len(calls) < 3:
                raise TransientStorageError("locked")
            return "ok"

        assert store.transact(work) == "ok"
        assert len(calls) == 3

    def test_does_not_retry_validation_errors(self, store: Datastore) -> None:
        calls: list[int] = []

        def work(txn: object) -> None:
            calls.append(1)
            raise ValidationError("bad")

        with pytest.raises(ValidationError):
            store.transact(work)
        assert len(calls) == 1
