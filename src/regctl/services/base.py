"""BaseService — foundation for all regctl services.

Every service receives a :class:`Datastore` at construction time and owns
its transaction boundaries via ``self._store.transact(...)``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from regctl.config.settings import RegSettings
    from regctl.infrastructure.datastore import Datastore

logger = structlog.get_logger(__name__)


class BaseService:
    """Base for all service-layer classes.

    Usage::

        class TransferService(BaseService):
            def request(self, label: str, ...) -> ServiceResult:
                resource = self._store.transact(lambda txn: ...)
    """

    def __init__(self, store: Datastore) -> None:
        self._store = store

    @property
    def _settings(self) -> RegSettings:
        return self._store.settings
