"""Shared fixtures: a throwaway SQLite database and controllable collaborators."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("TRACING_ENABLED", "false")

import threading
from concurrent.futures import Future
from decimal import Decimal

import pytest

from b2cpay.common.db import Base, build_engine, build_session_factory
from b2cpay.common.errors import GatewayCompletionError
from b2cpay.common.state_machine import PaymentStatus
from b2cpay.services.notification import models as notification_models  # noqa: F401
from b2cpay.services.orchestrator.schemas import PaymentCreateRequest, PaymentSnapshot
from b2cpay.services.orchestrator.service import PaymentOrchestrator
from b2cpay.services.orchestrator.store import SqlPaymentStore


class RecordingStore(SqlPaymentStore):
    """SqlPaymentStore that counts write calls."""

    def __init__(self, session_factory) -> None:
        super().__init__(session_factory)
        self.writes: list[str] = []

    def create(self, **kwargs) -> PaymentSnapshot:
        self.writes.append("create")
        return super().create(**kwargs)

    def transition(self, payment, new_status, **kwargs) -> PaymentSnapshot:
        self.writes.append(f"transition:{new_status}")
        return super().transition(payment, new_status, **kwargs)


class ManualGateway:
    """Gateway double whose handles are resolved by the test."""

    def __init__(self) -> None:
        self.submitted: list[tuple[PaymentSnapshot, Future]] = []
        self.submit_error: Exception | None = None

    def submit(self, payment: PaymentSnapshot) -> Future:
        if self.submit_error is not None:
            raise self.submit_error
        future: Future = Future()
        self.submitted.append((payment, future))
        return future

    def succeed(self, index: int = 0, reference: str = "MNO-REF-1") -> None:
        payment, future = self.submitted[index]
        future.set_result(
            payment.model_copy(
                update={"status": PaymentStatus.SUCCESSFUL, "provider_reference": reference, "failure_reason": None}
            )
        )

    def fail(self, index: int = 0, reason: str = "Insufficient funds") -> None:
        payment, future = self.submitted[index]
        future.set_result(
            payment.model_copy(
                update={"status": PaymentStatus.FAILED, "provider_reference": None, "failure_reason": reason}
            )
        )

    def reject(self, index: int = 0, error: Exception | None = None) -> None:
        _, future = self.submitted[index]
        future.set_exception(error or GatewayCompletionError("connection reset by peer"))


class RecordingNotifier:
    def __init__(self) -> None:
        self.successes: list[PaymentSnapshot] = []
        self.failures: list[PaymentSnapshot] = []
        self.error: Exception | None = None
        self._lock = threading.Lock()

    def send_success(self, payment: PaymentSnapshot) -> None:
        with self._lock:
            self.successes.append(payment)
        if self.error is not None:
            raise self.error

    def send_failure(self, payment: PaymentSnapshot) -> None:
        with self._lock:
            self.failures.append(payment)
        if self.error is not None:
            raise self.error


def make_request(
    transaction_key: str = "TXN-1",
    recipient_identifier: str = "+254700000000",
    amount: str = "100.00",
    currency_code: str = "KES",
) -> PaymentCreateRequest:
    return PaymentCreateRequest(
        transaction_key=transaction_key,
        recipient_identifier=recipient_identifier,
        amount=Decimal(amount),
        currency_code=currency_code,
    )


@pytest.fixture
def session_factory(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'b2cpay.db'}")
    Base.metadata.create_all(engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture
def store(session_factory) -> RecordingStore:
    return RecordingStore(session_factory)


@pytest.fixture
def gateway() -> ManualGateway:
    return ManualGateway()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def orchestrator(store, gateway, notifier):
    orchestrator = PaymentOrchestrator(store, gateway, notifier, completion_workers=4, service_name="test")
    yield orchestrator
    orchestrator.shutdown(wait=True)
