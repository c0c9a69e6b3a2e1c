"""Customer notifications for terminal payment outcomes."""

from typing import Protocol

from b2cpay.common.logging import logger
from b2cpay.services.notification.models import NotificationLog
from b2cpay.services.orchestrator.schemas import PaymentSnapshot


class NotificationSink(Protocol):
    """Fire-and-forget delivery of outcome messages; return values are ignored."""

    def send_success(self, payment: PaymentSnapshot) -> None: ...

    def send_failure(self, payment: PaymentSnapshot) -> None: ...


def success_message(payment: PaymentSnapshot) -> str:
    reference = payment.provider_reference or payment.transaction_key
    return (
        f"Dear Customer, you have received {payment.currency_code} {payment.amount}. "
        f"Transaction Ref: {reference}."
    )


def failure_message(payment: PaymentSnapshot) -> str:
    reason = payment.failure_reason or "an unknown issue"
    return (
        f"Dear Customer, the payment of {payment.currency_code} {payment.amount} failed due to: {reason}. "
        f"Transaction ID: {payment.transaction_key}."
    )


class SmsNotificationService:
    """Writes SMS notification logs for successful/failed disbursements.

    Actual SMS delivery is outside this service; the message is logged and
    recorded so it can be relayed or audited.
    """

    channel = "sms"

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def send_success(self, payment: PaymentSnapshot) -> None:
        self._send(payment, "SUCCESS", success_message(payment))

    def send_failure(self, payment: PaymentSnapshot) -> None:
        self._send(payment, "FAILURE", failure_message(payment))

    def _send(self, payment: PaymentSnapshot, kind: str, message: str) -> None:
        with self.session_factory() as db:
            db.add(
                NotificationLog(
                    payment_id=payment.payment_id,
                    channel=self.channel,
                    recipient=payment.recipient_identifier,
                    kind=kind,
                    message=message,
                )
            )
            db.commit()
        logger.info(
            "sms_sent payment_id=%s recipient=%s kind=%s message=%s",
            payment.payment_id,
            payment.recipient_identifier,
            kind,
            message,
        )
