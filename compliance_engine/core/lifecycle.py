"""Audit lifecycle state machine."""

from enum import Enum

from compliance_engine.errors.exceptions import AuditStateError
from compliance_engine.schemas.common import AuditStatus


class AuditEvent(str, Enum):
    """Events that move an audit between statuses."""

    FIRST_RESPONSE = "first_response"
    COMPLETE = "complete"
    CLOSE = "close"
    REOPEN = "reopen"


# (from_status, event) -> to_status
TRANSITIONS: dict[tuple[AuditStatus, AuditEvent], AuditStatus] = {
    (AuditStatus.DRAFT, AuditEvent.FIRST_RESPONSE): AuditStatus.IN_PROGRESS,
    (AuditStatus.IN_PROGRESS, AuditEvent.COMPLETE): AuditStatus.COMPLETED,
    (AuditStatus.COMPLETED, AuditEvent.CLOSE): AuditStatus.CLOSED,
    (AuditStatus.COMPLETED, AuditEvent.REOPEN): AuditStatus.IN_PROGRESS,
    (AuditStatus.CLOSED, AuditEvent.REOPEN): AuditStatus.IN_PROGRESS,
}


def transition(status: AuditStatus, event: AuditEvent) -> AuditStatus:
    """
    Apply an event to an audit status.

    Raises:
        AuditStateError: If the event is not allowed from this status
    """
    try:
        return TRANSITIONS[(status, event)]
    except KeyError:
        raise AuditStateError(
            f"Cannot {event.value.replace('_', ' ')} an audit in status '{status.value}'"
        ) from None


def accepts_responses(status: AuditStatus) -> bool:
    """Completed and closed audits are read-only until reopened."""
    return status in (AuditStatus.DRAFT, AuditStatus.IN_PROGRESS)
