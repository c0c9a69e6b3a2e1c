"""Mock mobile-money gateway behavior."""

import re
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError

from b2cpay.common.errors import GatewayCompletionError, GatewaySubmissionError
from b2cpay.common.events import COMPLETED, REJECTED, completion_event_from_future
from b2cpay.common.state_machine import PaymentStatus
from b2cpay.services.orchestrator.schemas import PaymentSnapshot
from b2cpay.services.provider_adapter.service import FAILURE_REASONS, MockMobileMoneyGateway


def _snapshot() -> PaymentSnapshot:
    now = datetime.now(timezone.utc)
    return PaymentSnapshot(
        payment_id="p-1",
        transaction_key="TXN-G",
        recipient_identifier="+254700000000",
        amount=Decimal("100.00"),
        currency_code="KES",
        status=PaymentStatus.PROCESSING,
        created_at=now,
        updated_at=now,
        state_version=1,
    )


@pytest.fixture
def make_gateway():
    gateways = []

    def factory(**kwargs):
        gateway = MockMobileMoneyGateway(min_delay_ms=0, max_delay_ms=0, max_workers=2, seed=7, **kwargs)
        gateway.start()
        gateways.append(gateway)
        return gateway

    yield factory
    for gateway in gateways:
        gateway.shutdown(wait=True)


def test_success_resolves_with_reference(make_gateway):
    payment = _snapshot()
    result = make_gateway(success_rate=1.0).submit(payment).result(timeout=5)

    assert result.status == PaymentStatus.SUCCESSFUL
    assert re.fullmatch(r"MOCK_MNO_[0-9a-f]{12}", result.provider_reference)
    assert result.failure_reason is None
    assert payment.status == PaymentStatus.PROCESSING
    assert payment.provider_reference is None


def test_failure_resolves_with_known_reason(make_gateway):
    result = make_gateway(success_rate=0.0).submit(_snapshot()).result(timeout=5)

    assert result.status == PaymentStatus.FAILED
    assert result.failure_reason in FAILURE_REASONS
    assert result.provider_reference is None


def test_rejection_raises_completion_error(make_gateway):
    future = make_gateway(rejection_rate=1.0).submit(_snapshot())

    with pytest.raises(GatewayCompletionError):
        future.result(timeout=5)
    event = completion_event_from_future("p-1", future, trace_id="trace-1")
    assert event.event_type == REJECTED
    assert event.rejected
    assert "provider connection reset" in event.payload["error"]
    assert event.trace_id == "trace-1"


def test_resolved_handle_becomes_completed_event(make_gateway):
    future = make_gateway(success_rate=1.0).submit(_snapshot())
    future.result(timeout=5)

    event = completion_event_from_future("p-1", future)

    assert event.event_type == COMPLETED
    assert not event.rejected
    assert event.payload["status"] == "SUCCESSFUL"
    assert event.payload["provider_reference"].startswith("MOCK_MNO_")


def test_submit_requires_running_gateway():
    gateway = MockMobileMoneyGateway(min_delay_ms=0, max_delay_ms=0)

    with pytest.raises(GatewaySubmissionError):
        gateway.submit(_snapshot())

    gateway.start()
    gateway.shutdown(wait=True)
    with pytest.raises(GatewaySubmissionError):
        gateway.submit(_snapshot())


@pytest.mark.parametrize(
    "kwargs",
    [
        {"success_rate": 1.5},
        {"rejection_rate": -0.1},
        {"min_delay_ms": 10, "max_delay_ms": 5},
    ],
)
def test_invalid_configuration_is_rejected(kwargs):
    with pytest.raises(ValueError):
        MockMobileMoneyGateway(**kwargs)


def test_snapshot_is_read_only():
    payment = _snapshot()

    with pytest.raises(ValidationError):
        payment.status = PaymentStatus.SUCCESSFUL
