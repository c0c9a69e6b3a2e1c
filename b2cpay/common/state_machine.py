"""Payment state machine transitions enforced by the orchestrator."""

from enum import StrEnum


class PaymentStatus(StrEnum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SUCCESSFUL = "SUCCESSFUL"
    FAILED = "FAILED"


class InvalidTransition(ValueError):
    pass


class InvariantViolation(ValueError):
    pass


ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    PaymentStatus.PENDING: {PaymentStatus.PROCESSING},
    PaymentStatus.PROCESSING: {PaymentStatus.SUCCESSFUL, PaymentStatus.FAILED},
    PaymentStatus.SUCCESSFUL: set(),
    PaymentStatus.FAILED: set(),
}

TERMINAL_STATES: frozenset[str] = frozenset({PaymentStatus.SUCCESSFUL, PaymentStatus.FAILED})


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATES


def validate_transition(current: str, new: str) -> None:
    """Raise when a transition is not allowed by the state machine."""

    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise InvalidTransition(f"Invalid transition: {current} -> {new}")


def validate_outcome_fields(status: str, provider_reference: str | None, failure_reason: str | None) -> None:
    """Enforce that exactly the field matching the status is populated.

    SUCCESSFUL carries a provider reference and no reason, FAILED carries a
    reason and no reference, and non-terminal states carry neither.
    """

    if status == PaymentStatus.SUCCESSFUL:
        if not provider_reference or failure_reason is not None:
            raise InvariantViolation("status=SUCCESSFUL requires provider_reference and no failure_reason")
    elif status == PaymentStatus.FAILED:
        if not failure_reason or provider_reference is not None:
            raise InvariantViolation("status=FAILED requires failure_reason and no provider_reference")
    elif provider_reference is not None or failure_reason is not None:
        raise InvariantViolation(f"status={status} must not carry provider_reference or failure_reason")
