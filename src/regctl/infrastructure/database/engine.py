"""Database engine setup for SQLite with WAL mode.

SQLite provides the per-item strong consistency the engine relies on:
every single-resource mutation runs in one ``BEGIN IMMEDIATE`` transaction,
so writers to the same store are serialized. The DB is stored at
``{data_root}/.regctl/registry.db``.

SQLAlchemy Core (not ORM) is used; resources are serialized pydantic models.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, event, insert, select
from sqlalchemy.engine import Engine

from regctl.infrastructure.database.schema import id_counters, metadata

REPO_ID_PREFIX = "REPO-"

# Execution option marking a connection as a reader (deferred BEGIN).
READ_ONLY_OPTION = "regctl_read_only"


def create_db_engine(db_path: Path, *, busy_timeout: float = 5.0) -> Engine:
    """Create a SQLite engine with WAL mode and explicit transaction control.

    pysqlite's implicit BEGIN is disabled so that writers can issue
    ``BEGIN IMMEDIATE`` and take the write lock up front. Connections tagged
    with :data:`READ_ONLY_OPTION` use a deferred ``BEGIN`` instead.
    """
    engine = create_engine(
        f"sqlite:///{db_path}",
        echo=False,
        connect_args={"check_same_thread": False, "timeout": busy_timeout},
    )

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn: Any, _: Any) -> None:
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _begin(conn: Any) -> None:
        if conn.get_execution_options().get(READ_ONLY_OPTION):
            conn.exec_driver_sql("BEGIN")
        else:
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def init_database(data_root: Path, *, busy_timeout: float = 5.0) -> Engine:
    """Initialize the datastore at ``{data_root}/.regctl/registry.db``.

    Creates the directory, all tables from :data:`schema.metadata`, and
    seeds the repository-id counter.

    Idempotent — safe to call on an existing data root.
    """
    regctl_dir = data_root / ".regctl"
    regctl_dir.mkdir(parents=True, exist_ok=True)

    engine = create_db_engine(regctl_dir / "registry.db", busy_timeout=busy_timeout)
    metadata.create_all(engine)
    _seed_counters(engine)
    return engine


def _seed_counters(engine: Engine) -> None:
    with engine.begin() as conn:
        row = conn.execute(
            select(id_counters.c.type_prefix).where(id_counters.c.type_prefix == REPO_ID_PREFIX)
        ).first()
        if row is None:
            conn.execute(insert(id_counters).values(type_prefix=REPO_ID_PREFIX, next_value=1))
