"""JSON logs carrying the trace, completion event and payment being worked on.

The request path binds `trace_id` and `payment_id`; the completion pool
binds all three for the event it reconciles. Threads do not inherit these
context vars, so each completion re-binds them from its `CompletionEvent`.
"""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

from pythonjsonlogger.json import JsonFormatter

from b2cpay.common.config import settings


trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="")
event_id_ctx: ContextVar[str] = ContextVar("event_id", default="")
payment_id_ctx: ContextVar[str] = ContextVar("payment_id", default="")

_CORRELATION_VARS = {
    "trace_id": trace_id_ctx,
    "event_id": event_id_ctx,
    "payment_id": payment_id_ctx,
}

LOG_FIELDS = ("asctime", "levelname", "service_name", "threadName", *_CORRELATION_VARS, "message")


class CorrelationFilter(logging.Filter):
    """Stamp the service name and bound correlation ids onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = settings.service_name
        for field, var in _CORRELATION_VARS.items():
            setattr(record, field, var.get())
        return True


@contextmanager
def log_context(**ids: str | None) -> Iterator[None]:
    """Bind correlation ids for the duration of the block; `None` leaves a var untouched."""

    tokens = []
    try:
        for field, value in ids.items():
            if value is not None:
                tokens.append((_CORRELATION_VARS[field], _CORRELATION_VARS[field].set(value)))
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def configure_logging(level: str | None = None) -> None:
    """Route every logger through one JSON handler on stdout."""

    correlation = CorrelationFilter()
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(correlation)
    handler.setFormatter(
        JsonFormatter(
            " ".join(f"%({field})s" for field in LOG_FIELDS),
            rename_fields={"asctime": "timestamp", "levelname": "level", "threadName": "thread"},
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level or settings.log_level)
    root.addFilter(correlation)


logger = logging.getLogger("b2cpay")
