"""SQLAlchemy Core table definitions for the registry datastore.

Timestamps are stored as fixed-width UTC ISO text (``regctl.domain.times.to_iso``)
so lexicographic order equals time order and ``END_OF_TIME`` sorts last.

``resources.payload`` holds the full serialized :class:`Resource`; the other
resource columns are denormalized copies used for bulk enumeration.
``reference_index`` is the eventually-consistent reverse index: it is written
on a best-effort basis and readers must confirm every hit with a direct read.
"""

from __future__ import annotations

from sqlalchemy import (
    Column,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
    UniqueConstraint,
)

metadata = MetaData()

resources = Table(
    "resources",
    metadata,
    Column("repo_id", Text, primary_key=True),
    Column("resource_type", Text, nullable=False),
    Column("label", Text, nullable=False),
    Column("creation_time", Text, nullable=False),
    Column("deletion_time", Text, nullable=False),
    Column("sponsor", Text, nullable=False),
    Column("payload", Text, nullable=False),  # JSON Resource
)

# Top-level existence index ("EPP resource index"): one row per resource.
resource_index = Table(
    "resource_index",
    metadata,
    Column("repo_id", Text, primary_key=True),
    Column("resource_type", Text, nullable=False),
    Column("shard", Integer, nullable=False),
)

foreign_key_index = Table(
    "foreign_key_index",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("resource_type", Text, nullable=False),
    Column("label", Text, nullable=False),
    Column("repo_id", Text, nullable=False),
    Column("deletion_time", Text, nullable=False),
    UniqueConstraint("resource_type", "label", "repo_id"),
)

reference_index = Table(
    "reference_index",
    metadata,
    Column("target_repo_id", Text, nullable=False),
    Column("referrer_repo_id", Text, nullable=False),
    UniqueConstraint("target_repo_id", "referrer_repo_id"),
)

billing_events = Table(
    "billing_events",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("kind", Text, nullable=False),  # one_time | recurring
    Column("repo_id", Text, nullable=False),
    Column("target_label", Text, nullable=False),
    Column("reason", Text, nullable=False),
    Column("client_id", Text, nullable=False),
    Column("event_time", Text, nullable=False),
    Column("billing_time", Text),
    Column("cost", Text),  # Decimal as string
    Column("currency", Text),
    Column("period_years", Integer),
    Column("recurrence_end_time", Text),
    Column("stage", Text, nullable=False),  # staged | committed
)

poll_messages = Table(
    "poll_messages",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("kind", Text, nullable=False),  # one_time | autorenew
    Column("repo_id", Text, nullable=False),
    Column("client_id", Text, nullable=False),
    Column("event_time", Text, nullable=False),
    Column("msg", Text, nullable=False),
    Column("autorenew_end_time", Text),
    Column("stage", Text, nullable=False),
)

history_entries = Table(
    "history_entries",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("repo_id", Text, nullable=False),
    Column("type", Text, nullable=False),
    Column("client_id", Text, nullable=False),
    Column("modification_time", Text, nullable=False),
    Column("detail", Text),  # JSON object
)

tlds = Table(
    "tlds",
    metadata,
    Column("name", Text, primary_key=True),
    Column("payload", Text, nullable=False),  # JSON Tld.to_dict()
)

deletion_requests = Table(
    "deletion_requests",
    metadata,
    Column("request_id", Text, primary_key=True),
    Column("repo_id", Text, nullable=False),
    Column("resource_type", Text, nullable=False),
    Column("requesting_client_id", Text, nullable=False),
    Column("requested_at", Text, nullable=False),
    Column("outcome", Text, nullable=False),
    Column("referrers", Text),  # JSON array of repo ids
    Column("message", Text),
    Column("completed_at", Text),
)

integrity_findings = Table(
    "integrity_findings",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("scan_id", Text, nullable=False),
    Column("scan_time", Text, nullable=False),
    Column("source", Text),
    Column("target", Text, nullable=False),
    Column("message", Text, nullable=False),
)

id_counters = Table(
    "id_counters",
    metadata,
    Column("type_prefix", Text, primary_key=True),
    Column("next_value", Integer, nullable=False, default=1, server_default="1"),
)

# ---------------------------------------------------------------------------
# Indexes for frequently filtered columns
# ---------------------------------------------------------------------------

Index("ix_resources_type_label", resources.c.resource_type, resources.c.label)
Index("ix_resource_index_shard", resource_index.c.shard)
Index("ix_fki_type_label", foreign_key_index.c.resource_type, foreign_key_index.c.label)
Index("ix_reference_index_target", reference_index.c.target_repo_id)
Index("ix_billing_events_repo", billing_events.c.repo_id)
Index("ix_poll_messages_client", poll_messages.c.client_id)
Index("ix_history_entries_repo", history_entries.c.repo_id)
Index("ix_integrity_findings_scan", integrity_findings.c.scan_id)
