"""Orchestrator disbursement logic.

Enforces transaction-key idempotency, moves payments through the status
state machine, hands them to the disbursement gateway without waiting for
the provider, and reconciles each gateway outcome on a dedicated completion
pool before notifying the recipient.
"""

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait as wait_futures
from datetime import datetime, timezone
from decimal import Decimal
from functools import partial

from b2cpay.common.errors import (
    DuplicateTransactionError,
    PaymentNotFoundError,
    PaymentValidationError,
    ServiceUnavailableError,
    StaleUpdateError,
)
from b2cpay.common.events import CompletionEvent, completion_event_from_future
from b2cpay.common.logging import log_context, logger
from b2cpay.common.metrics import (
    duplicate_completions_skipped_total,
    gateway_submission_failures_total,
    notification_failures_total,
    payment_e2e_seconds,
    payment_failure_total,
    payment_requests_total,
    payment_success_total,
)
from b2cpay.common.state_machine import PaymentStatus, is_terminal
from b2cpay.common.tracing import tracer
from b2cpay.services.notification.service import NotificationSink
from b2cpay.services.orchestrator.schemas import PaymentSnapshot, TimelineEntry
from b2cpay.services.orchestrator.store import PaymentStore
from b2cpay.services.provider_adapter.service import DisbursementGateway


MAX_TRANSACTION_KEY_LENGTH = 50
MAX_RECIPIENT_LENGTH = 32
MAX_PROVIDER_REFERENCE_LENGTH = 100
MAX_AMOUNT = Decimal(10) ** 10
CENT = Decimal("0.01")


class PaymentOrchestrator:
    """Owns payment state machine progression and completion reconciliation."""

    def __init__(
        self,
        store: PaymentStore,
        gateway: DisbursementGateway,
        notifier: NotificationSink,
        completion_workers: int = 10,
        service_name: str = "orchestrator",
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.notifier = notifier
        self.completion_workers = completion_workers
        self.service_name = service_name
        self._lock = threading.Lock()
        self._pending: set[Future] = set()
        self._executor: ThreadPoolExecutor | None = None
        self.start()

    # -- lifecycle -----------------------------------------------------------

    def start(self) -> None:
        """Create the completion pool; a no-op while it is already running."""

        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.completion_workers,
                    thread_name_prefix="completion",
                )
                logger.info("completion_pool_started workers=%s", self.completion_workers)

    def drain(self, timeout: float | None = None) -> bool:
        """Wait until every queued completion has run.

        Completions enqueued while waiting are waited for as well. Returns
        False if `timeout` expired first.
        """

        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._lock:
                pending = {future for future in self._pending if not future.done()}
            if not pending:
                return True
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            _, not_done = wait_futures(pending, timeout=remaining)
            if not_done:
                return False

    def shutdown(self, wait: bool = True) -> None:
        """Stop the completion pool, draining outstanding completions first when `wait` is set."""

        if wait:
            self.drain()
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)
            logger.info("completion_pool_stopped")

    @property
    def running(self) -> bool:
        return self._executor is not None

    # -- initiation ----------------------------------------------------------

    def _validate(self, req) -> None:
        key = req.transaction_key
        if not isinstance(key, str) or not key.strip() or len(key) > MAX_TRANSACTION_KEY_LENGTH:
            raise PaymentValidationError(
                f"transaction_key must be a non-blank string of at most {MAX_TRANSACTION_KEY_LENGTH} characters"
            )
        recipient = req.recipient_identifier
        if not isinstance(recipient, str) or not recipient.strip() or len(recipient) > MAX_RECIPIENT_LENGTH:
            raise PaymentValidationError(
                f"recipient_identifier must be a non-blank string of at most {MAX_RECIPIENT_LENGTH} characters"
            )
        amount = req.amount
        if not isinstance(amount, Decimal) or not amount.is_finite():
            raise PaymentValidationError("amount must be a finite decimal")
        if amount <= 0:
            raise PaymentValidationError("amount must be positive")
        if amount >= MAX_AMOUNT or amount != amount.quantize(CENT):
            raise PaymentValidationError("amount allows at most 10 integer and 2 fraction digits")
        currency = req.currency_code
        if not isinstance(currency, str) or len(currency) != 3 or not currency.isalpha():
            raise PaymentValidationError("currency_code must be a 3-letter code")

    def initiate(self, req, trace_id: str = "") -> PaymentSnapshot:
        """Create a payment once per transaction key and dispatch it to the gateway.

        Returns the PROCESSING snapshot for a new payment, or the stored
        snapshot when the key already reached a terminal status. Raises
        `DuplicateTransactionError` while an earlier request with the same key
        is still in flight and `ServiceUnavailableError` when the gateway
        refuses the submission.
        """

        self._validate(req)
        if not self.running:
            raise ServiceUnavailableError("Payment processing is shutting down")
        payment_requests_total.labels(service=self.service_name).inc()

        with tracer.start_as_current_span("payment.initiate") as span:
            span.set_attribute("payment.transaction_key", req.transaction_key)
            existing = self.store.get_by_transaction_key(req.transaction_key)
            if existing is not None:
                if not is_terminal(existing.status):
                    logger.warning(
                        "duplicate_transaction transaction_key=%s payment_id=%s status=%s",
                        req.transaction_key,
                        existing.payment_id,
                        existing.status,
                    )
                    raise DuplicateTransactionError(req.transaction_key)
                logger.info(
                    "transaction_already_completed transaction_key=%s payment_id=%s status=%s",
                    req.transaction_key,
                    existing.payment_id,
                    existing.status,
                )
                return existing

            payment = self.store.create(
                transaction_key=req.transaction_key,
                recipient_identifier=req.recipient_identifier,
                amount=req.amount,
                currency_code=req.currency_code.upper(),
            )
            span.set_attribute("payment.id", payment.payment_id)
            with log_context(payment_id=payment.payment_id):
                logger.debug("payment_created payment_id=%s status=%s", payment.payment_id, payment.status)
                payment = self.store.transition(payment, PaymentStatus.PROCESSING, reason="dispatch_requested")
                logger.info("payment_processing payment_id=%s", payment.payment_id)
                self._dispatch(payment, trace_id)
            return payment

    def _dispatch(self, payment: PaymentSnapshot, trace_id: str) -> None:
        try:
            handle = self.gateway.submit(payment)
        except Exception as exc:
            logger.error(
                "gateway_submission_failed payment_id=%s error=%s",
                payment.payment_id,
                exc,
                exc_info=True,
            )
            gateway_submission_failures_total.labels(service=self.service_name).inc()
            self.store.transition(
                payment,
                PaymentStatus.FAILED,
                reason="submission_failed",
                failure_reason=f"Failed to submit payment to provider: {exc}",
            )
            payment_failure_total.labels(service=self.service_name, stage="submission").inc()
            raise ServiceUnavailableError(f"Failed to submit payment processing task: {exc}") from exc

        handle.add_done_callback(partial(self._on_gateway_done, payment.payment_id, trace_id))
        logger.info("gateway_submitted payment_id=%s", payment.payment_id)

    # -- completion ----------------------------------------------------------

    def _on_gateway_done(self, payment_id: str, trace_id: str, handle: Future) -> None:
        self.enqueue_completion(completion_event_from_future(payment_id, handle, trace_id))

    def enqueue_completion(self, event: CompletionEvent) -> Future | None:
        """Queue one completion event on the completion pool."""

        with self._lock:
            if self._executor is None:
                logger.error(
                    "completion_dropped payment_id=%s event_id=%s reason=pool_stopped",
                    event.payment_id,
                    event.event_id,
                )
                return None
            future = self._executor.submit(self.handle_completion, event)
            self._pending.add(future)
        future.add_done_callback(self._completion_finished)
        return future

    def _completion_finished(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)
        exc = future.exception()
        if exc is not None:
            logger.error("completion_handler_error error=%s", exc, exc_info=exc)

    def handle_completion(self, event: CompletionEvent) -> PaymentSnapshot | None:
        """Reconcile one gateway outcome against the stored payment.

        Returns the terminal snapshot when this call finalized the payment,
        or None when the event was ignored (unknown payment, already
        finalized, or beaten by a concurrent delivery).
        """

        with log_context(trace_id=event.trace_id or None, event_id=event.event_id, payment_id=event.payment_id):
            with tracer.start_as_current_span("payment.complete") as span:
                span.set_attribute("payment.id", event.payment_id)
                span.set_attribute("completion.event_type", event.event_type)
                return self._reconcile(event)

    def _reconcile(self, event: CompletionEvent) -> PaymentSnapshot | None:
        # Always re-read: the snapshot handed to the gateway may be stale.
        payment = self.store.get(event.payment_id)
        if payment is None:
            logger.error("completion_for_unknown_payment payment_id=%s", event.payment_id)
            return None

        if payment.status != PaymentStatus.PROCESSING:
            logger.warning(
                "completion_skipped payment_id=%s status=%s event_type=%s",
                payment.payment_id,
                payment.status,
                event.event_type,
            )
            duplicate_completions_skipped_total.labels(service=self.service_name, reason="not_processing").inc()
            return None

        new_status, provider_reference, failure_reason, reason = self._resolve_outcome(event)
        try:
            final = self.store.transition(
                payment,
                new_status,
                reason=reason,
                provider_reference=provider_reference,
                failure_reason=failure_reason,
                event_id=event.event_id,
            )
        except StaleUpdateError as exc:
            logger.warning("completion_lost_race payment_id=%s error=%s", payment.payment_id, exc)
            duplicate_completions_skipped_total.labels(service=self.service_name, reason="stale_update").inc()
            return None

        logger.info(
            "payment_finalized payment_id=%s status=%s provider_reference=%s failure_reason=%s",
            final.payment_id,
            final.status,
            final.provider_reference,
            final.failure_reason,
        )
        self._observe_terminal(final)
        self._notify(final)
        return final

    def _resolve_outcome(self, event: CompletionEvent) -> tuple[PaymentStatus, str | None, str | None, str]:
        """Map an event to (status, provider_reference, failure_reason, timeline reason)."""

        if event.rejected:
            error = event.payload.get("error") or "unknown error"
            return PaymentStatus.FAILED, None, f"Provider communication error: {error}", "provider_rejected"

        status = event.payload.get("status")
        provider_reference = event.payload.get("provider_reference")
        failure_reason = event.payload.get("failure_reason")
        if (
            status == PaymentStatus.SUCCESSFUL
            and isinstance(provider_reference, str)
            and 0 < len(provider_reference) <= MAX_PROVIDER_REFERENCE_LENGTH
        ):
            return PaymentStatus.SUCCESSFUL, provider_reference, None, "provider_succeeded"
        if status == PaymentStatus.FAILED:
            reason = failure_reason or "Provider reported a failure without a reason"
            return PaymentStatus.FAILED, None, reason, "provider_failed"
        return (
            PaymentStatus.FAILED,
            None,
            f"Provider returned an invalid outcome: status={status} provider_reference={provider_reference}",
            "provider_invalid_outcome",
        )

    def _observe_terminal(self, payment: PaymentSnapshot) -> None:
        if payment.status == PaymentStatus.SUCCESSFUL:
            payment_success_total.labels(service=self.service_name).inc()
        else:
            payment_failure_total.labels(service=self.service_name, stage="provider").inc()
        created_at = payment.created_at
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        elapsed = max(0.0, (datetime.now(timezone.utc) - created_at).total_seconds())
        payment_e2e_seconds.labels(service=self.service_name, terminal_state=payment.status.value).observe(elapsed)

    def _notify(self, payment: PaymentSnapshot) -> None:
        # Notification problems are logged only; the record is already final.
        if payment.status == PaymentStatus.SUCCESSFUL:
            kind, send = "success", self.notifier.send_success
        else:
            kind, send = "failure", self.notifier.send_failure
        try:
            send(payment)
        except Exception as exc:
            logger.exception("notification_failed payment_id=%s kind=%s error=%s", payment.payment_id, kind, exc)
            notification_failures_total.labels(service=self.service_name, kind=kind).inc()

    # -- queries -------------------------------------------------------------

    def get_by_id(self, payment_id: str) -> PaymentSnapshot:
        payment = self.store.get(payment_id)
        if payment is None:
            raise PaymentNotFoundError.by_id(payment_id)
        return payment

    def get_by_transaction_key(self, transaction_key: str) -> PaymentSnapshot:
        payment = self.store.get_by_transaction_key(transaction_key)
        if payment is None:
            raise PaymentNotFoundError.by_transaction_key(transaction_key)
        return payment

    def get_timeline(self, payment_id: str) -> list[TimelineEntry]:
        entries = self.store.timeline(payment_id)
        if entries is None:
            raise PaymentNotFoundError.by_id(payment_id)
        return entries
