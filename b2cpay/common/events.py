"""Completion event envelope.

Every gateway handle resolution is turned into one `CompletionEvent` and
handed to the orchestrator's completion handler, keyed by payment id.
"""

from concurrent.futures import Future
from datetime import datetime, timezone
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, Field


COMPLETED = "disbursement.completed"
REJECTED = "disbursement.rejected"


class CompletionEvent(BaseModel):
    """Canonical shape of a provider outcome delivered to the orchestrator."""

    event_id: str = Field(default_factory=lambda: str(uuid4()))
    event_type: Literal["disbursement.completed", "disbursement.rejected"]
    payment_id: str
    occurred_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    trace_id: str = ""
    payload: dict[str, Any] = Field(default_factory=dict)

    @property
    def rejected(self) -> bool:
        return self.event_type == REJECTED


def completion_event_from_future(payment_id: str, future: Future, trace_id: str = "") -> CompletionEvent:
    """Translate a resolved gateway handle into a completion event.

    A resolved handle yields the provider's status, reference and reason; a
    rejected (or cancelled) handle yields the error description.
    """

    try:
        outcome = future.result()
    except Exception as exc:
        return CompletionEvent(
            event_type=REJECTED,
            payment_id=payment_id,
            trace_id=trace_id,
            payload={"error": str(exc) or type(exc).__name__, "error_type": type(exc).__name__},
        )
    return CompletionEvent(
        event_type=COMPLETED,
        payment_id=payment_id,
        trace_id=trace_id,
        payload={
            "status": str(outcome.status),
            "provider_reference": outcome.provider_reference,
            "failure_reason": outcome.failure_reason,
        },
    )
