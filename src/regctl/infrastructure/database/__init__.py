"""SQLite datastore engine and schema via SQLAlchemy Core."""

from regctl.infrastructure.database.engine import create_db_engine, init_database
from regctl.infrastructure.database.schema import (
    billing_events,
    deletion_requests,
    foreign_key_index,
    history_entries,
    id_counters,
    integrity_findings,
    metadata,
    poll_messages,
    reference_index,
    resource_index,
    resources,
    tlds,
)

__all__ = [
    "billing_events",
    "create_db_engine",
    "deletion_requests",
    "foreign_key_index",
    "history_entries",
    "id_counters",
    "init_database",
    "integrity_findings",
    "metadata",
    "poll_messages",
    "reference_index",
    "resource_index",
    "resources",
    "tlds",
]
