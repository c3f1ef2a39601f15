"""Webhook event status transitions enforced by the delivery loop."""

PENDING = "pending"
PROCESSING = "processing"
DELIVERED = "delivered"
FAILED = "failed"

TERMINAL_STATUSES = frozenset({DELIVERED, FAILED})

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    PENDING: {PROCESSING},
    # A stale `processing` row is re-claimed by the recovery sweep.
    PROCESSING: {PENDING, DELIVERED, FAILED, PROCESSING},
    DELIVERED: set(),
    FAILED: set(),
}


def validate_transition(current: str, new: str) -> None:
    """Raise when a transition is not allowed by the state machine."""

    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise ValueError(f"Invalid transition: {current} -> {new}")
