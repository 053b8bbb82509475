"""Integrity report sinks.

A finding is one ``{source, target, message, scan_time}`` row. Sinks only
append: re-running a scan on unchanged data appends an identical set of
rows under a new ``scan_id``.
"""

from __future__ import annotations

import threading
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol

from sqlalchemy import insert, select

from regctl.domain.times import from_iso, to_iso
from regctl.infrastructure.database.engine import READ_ONLY_OPTION
from regctl.infrastructure.database.schema import integrity_findings

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine


@dataclass(frozen=True)
class Finding:
    """One integrity violation. ``source`` is None when no referrer applies."""

    target: str
    message: str
    source: str | None
    scan_time: datetime

    def to_row(self) -> dict[str, Any]:
        row = asdict(self)
        row["scan_time"] = to_iso(self.scan_time)
        return row


class FindingSink(Protocol):
    def write(self, scan_id: str, findings: list[Finding]) -> None: ...

    def read(self, scan_id: str) -> list[Finding]: ...


class MemorySink:
    """Thread-safe in-memory sink."""

    def __init__(self) -> None:
        self._rows: dict[str, list[Finding]] = {}
        self._lock = threading.Lock()

    def write(self, scan_id: str, findings: list[Finding]) -> None:
        with self._lock:
            self._rows.setdefault(scan_id, []).extend(findings)

    def read(self, scan_id: str) -> list[Finding]:
        with self._lock:
            return list(self._rows.get(scan_id, []))

    @property
    def scan_ids(self) -> list[str]:
        with self._lock:
            return list(self._rows)


class TableSink:
    """Appends findings to the ``integrity_findings`` table."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def write(self, scan_id: str, findings: list[Finding]) -> None:
        if not findings:
            return
        with self._engine.begin() as conn:
            conn.execute(
                insert(integrity_findings),
                [{"scan_id": scan_id, **f.to_row()} for f in findings],
            )

    def read(self, scan_id: str) -> list[Finding]:
        with self._engine.connect() as conn:
            conn.execution_options(**{READ_ONLY_OPTION: True})
            rows = conn.execute(
                select(integrity_findings)
                .where(integrity_findings.c.scan_id == scan_id)
                .order_by(integrity_findings.c.id)
            ).fetchall()
        return [
            Finding(
                target=r.target,
                message=r.message,
                source=r.source,
                scan_time=from_iso(r.scan_time),
            )
            for r in rows
        ]
