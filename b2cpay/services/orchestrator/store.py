"""Payment persistence.

`PaymentStore` is the contract the orchestrator depends on; `SqlPaymentStore`
backs it with the orchestrator database. Every call opens its own session so
the request path and the completion path never share a transaction.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from b2cpay.common.errors import DuplicateTransactionError, StaleUpdateError
from b2cpay.common.state_machine import PaymentStatus, validate_outcome_fields, validate_transition
from b2cpay.services.orchestrator.models import Payment, PaymentTimeline, utcnow
from b2cpay.services.orchestrator.schemas import PaymentSnapshot, TimelineEntry


class PaymentStore(Protocol):
    def create(
        self,
        *,
        transaction_key: str,
        recipient_identifier: str,
        amount: Decimal,
        currency_code: str,
    ) -> PaymentSnapshot: ...

    def get(self, payment_id: str) -> PaymentSnapshot | None: ...

    def get_by_transaction_key(self, transaction_key: str) -> PaymentSnapshot | None: ...

    def transition(
        self,
        payment: PaymentSnapshot,
        new_status: PaymentStatus,
        *,
        reason: str,
        provider_reference: str | None = None,
        failure_reason: str | None = None,
        event_id: str | None = None,
    ) -> PaymentSnapshot: ...

    def timeline(self, payment_id: str) -> list[TimelineEntry] | None: ...


def _not_before(now: datetime, previous: datetime) -> datetime:
    """Clamp `now` so a stepped-back wall clock never moves `updated_at` backwards."""

    if previous.tzinfo is None:
        previous = previous.replace(tzinfo=timezone.utc)
    return max(now, previous)


class SqlPaymentStore:
    """SQLAlchemy-backed `PaymentStore`."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def create(
        self,
        *,
        transaction_key: str,
        recipient_identifier: str,
        amount: Decimal,
        currency_code: str,
    ) -> PaymentSnapshot:
        """Insert a PENDING payment and its first timeline row in one commit.

        A unique-key collision means another request created the same
        transaction key first.
        """

        with self.session_factory() as db:
            now = utcnow()
            payment = Payment(
                transaction_key=transaction_key,
                recipient_identifier=recipient_identifier,
                amount=amount,
                currency_code=currency_code,
                status=PaymentStatus.PENDING.value,
                state_version=0,
                created_at=now,
                updated_at=now,
            )
            try:
                db.add(payment)
                db.flush()
                db.add(
                    PaymentTimeline(
                        payment_id=payment.payment_id,
                        from_state=None,
                        to_state=PaymentStatus.PENDING.value,
                        sequence=0,
                        reason="payment_created",
                        event_id=None,
                        created_at=now,
                    )
                )
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise DuplicateTransactionError(transaction_key) from exc
            return PaymentSnapshot.model_validate(payment)

    def get(self, payment_id: str) -> PaymentSnapshot | None:
        with self.session_factory() as db:
            payment = db.get(Payment, payment_id)
            return PaymentSnapshot.model_validate(payment) if payment else None

    def get_by_transaction_key(self, transaction_key: str) -> PaymentSnapshot | None:
        with self.session_factory() as db:
            payment = db.execute(
                select(Payment).where(Payment.transaction_key == transaction_key)
            ).scalar_one_or_none()
            return PaymentSnapshot.model_validate(payment) if payment else None

    def transition(
        self,
        payment: PaymentSnapshot,
        new_status: PaymentStatus,
        *,
        reason: str,
        provider_reference: str | None = None,
        failure_reason: str | None = None,
        event_id: str | None = None,
    ) -> PaymentSnapshot:
        """Apply one validated state transition with optimistic concurrency.

        The write is guarded by `(payment_id, status, state_version)` taken
        from `payment`, so a caller holding a stale snapshot gets
        `StaleUpdateError` instead of overwriting a newer state.
        """

        validate_transition(payment.status, new_status)
        validate_outcome_fields(new_status, provider_reference, failure_reason)
        from_status = PaymentStatus(payment.status).value
        to_status = PaymentStatus(new_status).value

        with self.session_factory() as db:
            now = _not_before(utcnow(), payment.updated_at)
            result = db.execute(
                update(Payment)
                .where(
                    Payment.payment_id == payment.payment_id,
                    Payment.status == from_status,
                    Payment.state_version == payment.state_version,
                )
                .values(
                    status=to_status,
                    state_version=payment.state_version + 1,
                    provider_reference=provider_reference,
                    failure_reason=failure_reason,
                    updated_at=now,
                )
            )
            if result.rowcount != 1:
                db.rollback()
                raise StaleUpdateError(
                    f"payment {payment.payment_id} is no longer {from_status} "
                    f"at version {payment.state_version}"
                )
            db.add(
                PaymentTimeline(
                    payment_id=payment.payment_id,
                    from_state=from_status,
                    sequence=payment.state_version + 1,
                    to_state=to_status,
                    reason=reason,
                    event_id=event_id,
                    created_at=now,
                )
            )
            db.commit()
            return PaymentSnapshot.model_validate(db.get(Payment, payment.payment_id))

    def timeline(self, payment_id: str) -> list[TimelineEntry] | None:
        with self.session_factory() as db:
            if db.get(Payment, payment_id) is None:
                return None
            rows = db.execute(
                select(PaymentTimeline)
                .where(PaymentTimeline.payment_id == payment_id)
                .order_by(PaymentTimeline.sequence, PaymentTimeline.created_at)
            ).scalars()
            return [TimelineEntry.model_validate(row) for row in rows]
