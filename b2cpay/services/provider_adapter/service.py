"""Disbursement gateway contract and a simulated mobile-money operator."""

import random
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Protocol
from uuid import uuid4

from b2cpay.common.errors import GatewayCompletionError, GatewaySubmissionError
from b2cpay.common.logging import logger
from b2cpay.common.state_machine import PaymentStatus
from b2cpay.services.orchestrator.schemas import PaymentSnapshot


FAILURE_REASONS = (
    "Insufficient funds",
    "Recipient account invalid",
    "Transaction limit exceeded",
    "Temporary network error",
    "System unavailable",
    "Duplicate transaction",
)


class DisbursementGateway(Protocol):
    """Accepts a payment and resolves its handle exactly once.

    The handle resolves with a copy of the payment carrying SUCCESSFUL plus a
    provider reference or FAILED plus a reason, or is rejected with
    `GatewayCompletionError`. `submit` itself raises `GatewaySubmissionError`
    when the payment could not be handed over at all.
    """

    def submit(self, payment: PaymentSnapshot) -> Future: ...


class MockMobileMoneyGateway:
    """Simulated MNO with random latency and a configurable success rate."""

    def __init__(
        self,
        success_rate: float = 0.9,
        rejection_rate: float = 0.0,
        min_delay_ms: int = 500,
        max_delay_ms: int = 3000,
        max_workers: int = 10,
        seed: int | None = None,
    ) -> None:
        if not 0.0 <= success_rate <= 1.0:
            raise ValueError("success_rate must be within [0, 1]")
        if not 0.0 <= rejection_rate <= 1.0:
            raise ValueError("rejection_rate must be within [0, 1]")
        if min_delay_ms < 0 or max_delay_ms < min_delay_ms:
            raise ValueError("delay bounds must satisfy 0 <= min_delay_ms <= max_delay_ms")
        self.success_rate = success_rate
        self.rejection_rate = rejection_rate
        self.min_delay_ms = min_delay_ms
        self.max_delay_ms = max_delay_ms
        self.max_workers = max_workers
        self._random = random.Random(seed)
        self._random_lock = threading.Lock()
        self._executor: ThreadPoolExecutor | None = None
        self._lock = threading.Lock()

    def start(self) -> None:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="mno")
                logger.info("mock_mno_started workers=%s success_rate=%s", self.max_workers, self.success_rate)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting payments; with `wait` every submitted handle resolves first."""

        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)
            logger.info("mock_mno_stopped")

    def submit(self, payment: PaymentSnapshot) -> Future:
        with self._lock:
            if self._executor is None:
                raise GatewaySubmissionError("mobile money gateway is not running")
            try:
                future = self._executor.submit(self._process, payment)
            except RuntimeError as exc:
                raise GatewaySubmissionError(str(exc)) from exc
        logger.info("mock_mno_received payment_id=%s transaction_key=%s", payment.payment_id, payment.transaction_key)
        return future

    def _draw(self) -> tuple[float, float, float]:
        with self._random_lock:
            delay_ms = self._random.uniform(self.min_delay_ms, self.max_delay_ms)
            return delay_ms, self._random.random(), self._random.random()

    def _failure_reason(self) -> str:
        with self._random_lock:
            return self._random.choice(FAILURE_REASONS)

    def _process(self, payment: PaymentSnapshot) -> PaymentSnapshot:
        delay_ms, rejection_roll, success_roll = self._draw()
        logger.debug("mock_mno_delay payment_id=%s delay_ms=%.0f", payment.payment_id, delay_ms)
        time.sleep(delay_ms / 1000.0)

        if rejection_roll < self.rejection_rate:
            logger.warning("mock_mno_rejected payment_id=%s", payment.payment_id)
            raise GatewayCompletionError("provider connection reset")

        if success_roll < self.success_rate:
            reference = f"MOCK_MNO_{uuid4().hex[:12]}"
            logger.info("mock_mno_success payment_id=%s provider_reference=%s", payment.payment_id, reference)
            return payment.model_copy(
                update={
                    "status": PaymentStatus.SUCCESSFUL,
                    "provider_reference": reference,
                    "failure_reason": None,
                }
            )

        reason = self._failure_reason()
        logger.warning("mock_mno_failure payment_id=%s reason=%s", payment.payment_id, reason)
        return payment.model_copy(
            update={
                "status": PaymentStatus.FAILED,
                "provider_reference": None,
                "failure_reason": reason,
            }
        )
