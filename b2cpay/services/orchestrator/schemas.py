"""API request/response schemas for orchestrator endpoints."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from b2cpay.common.state_machine import PaymentStatus


RECIPIENT_PATTERN = r"^\+?[0-9. ()-]{7,25}$"


class PaymentCreateRequest(BaseModel):
    """Disbursement initiation payload."""

    transaction_key: str = Field(min_length=1, max_length=50)
    recipient_identifier: str = Field(pattern=RECIPIENT_PATTERN)
    amount: Decimal = Field(ge=Decimal("0.01"), max_digits=12, decimal_places=2)
    currency_code: str = Field(min_length=3, max_length=3)


class PaymentSnapshot(BaseModel):
    """Read-only view of a payment, returned to clients and handed to the gateway."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    payment_id: str
    transaction_key: str
    recipient_identifier: str
    amount: Decimal
    currency_code: str
    status: PaymentStatus
    provider_reference: str | None = None
    failure_reason: str | None = None
    created_at: datetime
    updated_at: datetime
    state_version: int = Field(default=0, exclude=True)


class TimelineEntry(BaseModel):
    """One audited status transition."""

    model_config = ConfigDict(from_attributes=True)

    sequence: int
    from_state: str | None
    to_state: str
    reason: str
    event_id: str | None
    created_at: datetime


class ErrorResponse(BaseModel):
    timestamp: datetime
    status: int
    error: str
    message: str
    path: str
    details: list[str] | None = None
