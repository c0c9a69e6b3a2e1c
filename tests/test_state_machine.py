"""Unit tests for core payment state-machine guardrails."""

import pytest

from b2cpay.common.state_machine import (
    InvalidTransition,
    InvariantViolation,
    is_terminal,
    validate_outcome_fields,
    validate_transition,
)


def test_valid_transition():
    """Sanity check: the forward path is legal."""

    validate_transition("PENDING", "PROCESSING")
    validate_transition("PROCESSING", "SUCCESSFUL")
    validate_transition("PROCESSING", "FAILED")


@pytest.mark.parametrize(
    "current,new",
    [
        ("PENDING", "SUCCESSFUL"),
        ("PENDING", "FAILED"),
        ("PROCESSING", "PENDING"),
        ("SUCCESSFUL", "FAILED"),
        ("FAILED", "SUCCESSFUL"),
        ("FAILED", "PROCESSING"),
    ],
)
def test_invalid_transition(current, new):
    """Illegal transitions must raise to protect orchestration correctness."""

    with pytest.raises(InvalidTransition):
        validate_transition(current, new)


def test_terminal_states():
    assert is_terminal("SUCCESSFUL")
    assert is_terminal("FAILED")
    assert not is_terminal("PENDING")
    assert not is_terminal("PROCESSING")


def test_outcome_fields_match_status():
    validate_outcome_fields("SUCCESSFUL", "REF", None)
    validate_outcome_fields("FAILED", None, "Insufficient funds")
    validate_outcome_fields("PROCESSING", None, None)

    with pytest.raises(InvariantViolation):
        validate_outcome_fields("SUCCESSFUL", "REF", "also a reason")
    with pytest.raises(InvariantViolation):
        validate_outcome_fields("FAILED", "REF", "reason")
    with pytest.raises(InvariantViolation):
        validate_outcome_fields("PROCESSING", None, "reason")
