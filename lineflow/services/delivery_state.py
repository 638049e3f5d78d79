from enum import Enum


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


VALID_TRANSITIONS = {
    DeliveryStatus.PENDING: [DeliveryStatus.PROCESSING, DeliveryStatus.CANCELLED],
    DeliveryStatus.PROCESSING: [DeliveryStatus.SENT, DeliveryStatus.FAILED],
    DeliveryStatus.SENT: [],
    DeliveryStatus.FAILED: [],
    DeliveryStatus.CANCELLED: [],
}


class InvalidTransitionError(Exception):
    def __init__(self, from_status: DeliveryStatus, to_status: DeliveryStatus):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid delivery transition: {from_status.value} -> {to_status.value}")


def can_transition(from_status: DeliveryStatus, to_status: DeliveryStatus) -> bool:
    """Check if transition is valid."""
    allowed = VALID_TRANSITIONS.get(DeliveryStatus(from_status), [])
    return DeliveryStatus(to_status) in allowed


def transition(from_status: DeliveryStatus, to_status: DeliveryStatus) -> DeliveryStatus:
    """Perform status transition. Raises InvalidTransitionError if not allowed."""
    from_status = DeliveryStatus(from_status)
    to_status = DeliveryStatus(to_status)
    if not can_transition(from_status, to_status):
        raise InvalidTransitionError(from_status, to_status)
    return to_status


def complete(current: DeliveryStatus) -> DeliveryStatus:
    return transition(current, DeliveryStatus.SENT)


def fail(current: DeliveryStatus) -> DeliveryStatus:
    return transition(current, DeliveryStatus.FAILED)


def cancel(current: DeliveryStatus) -> DeliveryStatus:
    """Cancel a delivery that has not been claimed yet."""
    return transition(current, DeliveryStatus.CANCELLED)
