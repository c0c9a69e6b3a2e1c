"""Error taxonomy shared by the orchestrator, its collaborators and the HTTP layer."""


class PaymentError(Exception):
    """Base class for errors surfaced to the caller of a payment operation.

    `status_code` and `error` drive the HTTP error response.
    """

    status_code = 500
    error = "Internal Server Error"


class PaymentValidationError(PaymentError):
    status_code = 400
    error = "Bad Request"


class DuplicateTransactionError(PaymentError):
    status_code = 409
    error = "Conflict"

    def __init__(self, transaction_key: str) -> None:
        super().__init__(f"Transaction with key '{transaction_key}' is already being processed.")
        self.transaction_key = transaction_key


class PaymentNotFoundError(PaymentError):
    status_code = 404
    error = "Not Found"

    @classmethod
    def by_id(cls, payment_id: str) -> "PaymentNotFoundError":
        return cls(f"Payment not found with ID: {payment_id}")

    @classmethod
    def by_transaction_key(cls, transaction_key: str) -> "PaymentNotFoundError":
        return cls(f"Payment not found with transaction key: {transaction_key}")


class ServiceUnavailableError(PaymentError):
    status_code = 503
    error = "Service Unavailable"


class GatewaySubmissionError(Exception):
    """The disbursement gateway refused a payment before returning a handle."""


class GatewayCompletionError(Exception):
    """A gateway handle was rejected after the payment had been submitted."""


class StaleUpdateError(Exception):
    """A conditional status update matched no row because the record moved on."""
