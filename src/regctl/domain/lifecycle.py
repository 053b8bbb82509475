"""Status enums and transition graphs for registry resources.

Two kinds of lifecycle live here:
- Stored status flags (``StatusValue``) carried on a resource.
- Transfer and TLD state graphs, checked with :func:`is_valid_transition`.

Logical state is never set by a scheduler; see ``regctl.domain.projection``.
"""

from __future__ import annotations

from enum import StrEnum

# --- Resource kinds and flags ---


class ResourceType(StrEnum):
    DOMAIN = "domain"
    HOST = "host"
    CONTACT = "contact"


class StatusValue(StrEnum):
    """Stored status flags on a resource."""

    OK = "ok"
    PENDING_TRANSFER = "pendingTransfer"
    PENDING_DELETE = "pendingDelete"
    CLIENT_TRANSFER_PROHIBITED = "clientTransferProhibited"
    CLIENT_DELETE_PROHIBITED = "clientDeleteProhibited"
    SERVER_TRANSFER_PROHIBITED = "serverTransferProhibited"
    SERVER_DELETE_PROHIBITED = "serverDeleteProhibited"


TRANSFER_PROHIBITING_STATUSES = frozenset(
    {StatusValue.CLIENT_TRANSFER_PROHIBITED, StatusValue.SERVER_TRANSFER_PROHIBITED}
)
DELETE_PROHIBITING_STATUSES = frozenset(
    {StatusValue.CLIENT_DELETE_PROHIBITED, StatusValue.SERVER_DELETE_PROHIBITED}
)


class LogicalState(StrEnum):
    """Top-level projected existence state."""

    ACTIVE = "active"
    DELETED = "deleted"


# --- Transfer lifecycle ---


class TransferStatus(StrEnum):
    NONE = "none"
    PENDING = "pending"
    CLIENT_APPROVED = "clientApproved"
    CLIENT_REJECTED = "clientRejected"
    CLIENT_CANCELLED = "clientCancelled"
    SERVER_APPROVED = "serverApproved"
    SERVER_CANCELLED = "serverCancelled"


TERMINAL_TRANSFER_STATUSES = frozenset(
    {
        TransferStatus.CLIENT_APPROVED,
        TransferStatus.CLIENT_REJECTED,
        TransferStatus.CLIENT_CANCELLED,
        TransferStatus.SERVER_APPROVED,
        TransferStatus.SERVER_CANCELLED,
    }
)

_REREQUEST = ["pending"]

TRANSFER_TRANSITIONS: dict[str, list[str]] = {
    "none": ["pending"],
    "pending": [
        "clientApproved",
        "clientRejected",
        "clientCancelled",
        "serverApproved",
        "serverCancelled",
    ],
    "clientApproved": _REREQUEST,
    "clientRejected": _REREQUEST,
    "clientCancelled": _REREQUEST,
    "serverApproved": _REREQUEST,
    "serverCancelled": _REREQUEST,
}


class TransferOutcome(StrEnum):
    """Explicit client resolutions of a pending transfer."""

    APPROVE = "approve"
    REJECT = "reject"
    CANCEL = "cancel"


OUTCOME_STATUS: dict[TransferOutcome, TransferStatus] = {
    TransferOutcome.APPROVE: TransferStatus.CLIENT_APPROVED,
    TransferOutcome.REJECT: TransferStatus.CLIENT_REJECTED,
    TransferOutcome.CANCEL: TransferStatus.CLIENT_CANCELLED,
}


class TransferParty(StrEnum):
    GAINING = "gaining"
    LOSING = "losing"


# Which side of a pending transfer may apply each outcome.
TRANSFER_AUTHORIZED_PARTIES: dict[TransferOutcome, frozenset[TransferParty]] = {
    TransferOutcome.APPROVE: frozenset({TransferParty.GAINING}),
    TransferOutcome.REJECT: frozenset({TransferParty.GAINING}),
    TransferOutcome.CANCEL: frozenset({TransferParty.GAINING, TransferParty.LOSING}),
}


# --- TLD launch phases ---


class TldState(StrEnum):
    PREDELEGATION = "PREDELEGATION"
    SUNRISE = "SUNRISE"
    SUNRUSH = "SUNRUSH"
    LANDRUSH = "LANDRUSH"
    QUIET_PERIOD = "QUIET_PERIOD"
    GENERAL_AVAILABILITY = "GENERAL_AVAILABILITY"


_TLD_ORDER = list(TldState)

# Forward-only: a phase may be followed by any later phase.
TLD_STATE_TRANSITIONS: dict[str, list[str]] = {
    str(state): [str(later) for later in _TLD_ORDER[i + 1 :]]
    for i, state in enumerate(_TLD_ORDER)
}


# --- Billing, grace periods, history, deletion ---


class BillingReason(StrEnum):
    CREATE = "CREATE"
    RENEW = "RENEW"
    AUTO_RENEW = "AUTO_RENEW"
    TRANSFER = "TRANSFER"
    RESTORE = "RESTORE"


class EntityStage(StrEnum):
    """Whether a billing event or poll message has taken effect yet."""

    STAGED = "staged"
    COMMITTED = "committed"


class GracePeriodStatus(StrEnum):
    ADD = "ADD"
    RENEW = "RENEW"
    AUTO_RENEW = "AUTO_RENEW"
    TRANSFER = "TRANSFER"
    REDEMPTION = "REDEMPTION"


class ContactType(StrEnum):
    ADMIN = "admin"
    TECH = "tech"
    BILLING = "billing"


class HistoryType(StrEnum):
    DOMAIN_CREATE = "DOMAIN_CREATE"
    DOMAIN_UPDATE = "DOMAIN_UPDATE"
    DOMAIN_DELETE = "DOMAIN_DELETE"
    DOMAIN_TRANSFER_REQUEST = "DOMAIN_TRANSFER_REQUEST"
    DOMAIN_TRANSFER_APPROVE = "DOMAIN_TRANSFER_APPROVE"
    DOMAIN_TRANSFER_REJECT = "DOMAIN_TRANSFER_REJECT"
    DOMAIN_TRANSFER_CANCEL = "DOMAIN_TRANSFER_CANCEL"
    DOMAIN_TRANSFER_SERVER_APPROVE = "DOMAIN_TRANSFER_SERVER_APPROVE"
    HOST_CREATE = "HOST_CREATE"
    HOST_PENDING_DELETE = "HOST_PENDING_DELETE"
    HOST_DELETE = "HOST_DELETE"
    HOST_DELETE_FAILURE = "HOST_DELETE_FAILURE"
    CONTACT_CREATE = "CONTACT_CREATE"
    CONTACT_PENDING_DELETE = "CONTACT_PENDING_DELETE"
    CONTACT_DELETE = "CONTACT_DELETE"
    CONTACT_DELETE_FAILURE = "CONTACT_DELETE_FAILURE"


class DeletionOutcome(StrEnum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED_LINKED = "failed_linked"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


TERMINAL_DELETION_OUTCOMES = frozenset(
    {
        DeletionOutcome.SUCCEEDED,
        DeletionOutcome.FAILED_LINKED,
        DeletionOutcome.TIMED_OUT,
        DeletionOutcome.CANCELLED,
    }
)


def is_valid_transition(
    current: str,
    target: str,
    transitions: dict[str, list[str]],
) -> bool:
    """Check if transitioning from *current* to *target* is allowed."""
    allowed = transitions.get(current, [])
    return target in allowed
