"""HTTP surface for disbursement initiation and status polling."""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from time import perf_counter
from uuid import uuid4

from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from b2cpay.common.config import settings
from b2cpay.common.db import Base, SessionLocal, engine
from b2cpay.common.errors import PaymentError
from b2cpay.common.logging import configure_logging, log_context, logger
from b2cpay.common.metrics import (
    http_request_duration_seconds,
    http_requests_total,
    metrics_response,
    payment_latency_seconds,
)
from b2cpay.common.startup import log_startup_config
from b2cpay.common.tracing import instrument_app, setup_tracing
from b2cpay.services.notification.service import SmsNotificationService
from b2cpay.services.orchestrator.schemas import (
    ErrorResponse,
    PaymentCreateRequest,
    PaymentSnapshot,
    TimelineEntry,
)
from b2cpay.services.orchestrator.service import PaymentOrchestrator
from b2cpay.services.orchestrator.store import SqlPaymentStore
from b2cpay.services.provider_adapter.service import MockMobileMoneyGateway


PAYMENTS_PREFIX = "/api/v1/payments"

router = APIRouter(prefix=PAYMENTS_PREFIX, tags=["payments"])


def get_orchestrator(request: Request) -> PaymentOrchestrator:
    return request.app.state.orchestrator


@router.post("", status_code=202, response_model=PaymentSnapshot)
def create_payment(
    req: PaymentCreateRequest,
    response: Response,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
    x_trace_id: str | None = Header(default=None),
):
    """Accept a disbursement; the provider outcome is polled for afterwards."""

    trace_id = x_trace_id or str(uuid4())
    with log_context(trace_id=trace_id):
        logger.info("payment_request_received transaction_key=%s", req.transaction_key)
        with payment_latency_seconds.labels(service=settings.service_name).time():
            payment = orchestrator.initiate(req, trace_id)
    response.headers["Location"] = f"{PAYMENTS_PREFIX}/{payment.payment_id}"
    return payment


@router.get("", response_model=PaymentSnapshot)
def get_payment_by_transaction_key(
    transaction_key: str = Query(min_length=1),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    """Fetch current status by client transaction key."""

    return orchestrator.get_by_transaction_key(transaction_key)


@router.get("/{payment_id}", response_model=PaymentSnapshot)
def get_payment(payment_id: str, orchestrator: PaymentOrchestrator = Depends(get_orchestrator)):
    """Fetch current status for one payment."""

    return orchestrator.get_by_id(payment_id)


@router.get("/{payment_id}/timeline", response_model=list[TimelineEntry])
def get_payment_timeline(payment_id: str, orchestrator: PaymentOrchestrator = Depends(get_orchestrator)):
    """Audit trail of status transitions for one payment."""

    return orchestrator.get_timeline(payment_id)


def _error_body(request: Request, status: int, error: str, message: str, details: list[str] | None = None) -> dict:
    return ErrorResponse(
        timestamp=datetime.now(timezone.utc),
        status=status,
        error=error,
        message=message,
        path=request.url.path,
        details=details,
    ).model_dump(mode="json", exclude_none=True)


def register_exception_handlers(app: FastAPI) -> None:
    """Map the payment error taxonomy onto HTTP responses."""

    @app.exception_handler(PaymentError)
    async def payment_error_handler(request: Request, exc: PaymentError):
        if exc.status_code >= 500:
            logger.error("request_failed path=%s error=%s", request.url.path, exc, exc_info=exc.__cause__)
        else:
            logger.warning("request_rejected path=%s status=%s error=%s", request.url.path, exc.status_code, exc)
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(request, exc.status_code, exc.error, str(exc)),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        details = []
        for error in exc.errors():
            field = ".".join(str(part) for part in error.get("loc", ()) if part not in ("body", "query"))
            details.append(f"'{field}': {error.get('msg')}")
        logger.warning("request_validation_failed path=%s details=%s", request.url.path, details)
        return JSONResponse(
            status_code=400,
            content=_error_body(
                request,
                400,
                "Validation Failed",
                "Request contains invalid data. See details.",
                details,
            ),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error("unexpected_error path=%s error=%s", request.url.path, exc, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content=_error_body(
                request,
                500,
                "Internal Server Error",
                "An unexpected error occurred. Please try again later or contact support.",
            ),
        )


def create_app(orchestrator: PaymentOrchestrator, gateway: MockMobileMoneyGateway | None = None) -> FastAPI:
    """Build the FastAPI app around one orchestrator.

    When `gateway` is given its worker pool is started and stopped with the
    app; on shutdown it is stopped first so that every in-flight handle
    resolves before the orchestrator drains its completions.
    """

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        if settings.db_create_all:
            Base.metadata.create_all(engine)
        if gateway is not None:
            gateway.start()
        orchestrator.start()
        yield
        if gateway is not None:
            gateway.shutdown(wait=True)
        orchestrator.shutdown(wait=True)

    app = FastAPI(title="B2C Disbursement Orchestrator", lifespan=lifespan)
    app.state.orchestrator = orchestrator
    instrument_app(app)
    register_exception_handlers(app)
    app.include_router(router)

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        """Record request count and latency for every HTTP call."""

        start = perf_counter()
        route = request.url.path
        method = request.method
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            route_obj = request.scope.get("route")
            if route_obj is not None and getattr(route_obj, "path", None):
                route = route_obj.path
            return response
        finally:
            elapsed = max(0.0, perf_counter() - start)
            http_request_duration_seconds.labels(
                service=settings.service_name,
                route=route,
                method=method,
            ).observe(elapsed)
            http_requests_total.labels(
                service=settings.service_name,
                route=route,
                method=method,
                status_code=str(status_code),
            ).inc()

    @app.get("/metrics")
    def metrics():
        """Prometheus scrape endpoint."""

        return metrics_response()

    @app.get("/health")
    def health():
        """Container health probe endpoint."""

        return {"ok": True}

    return app


def build_orchestrator(gateway: MockMobileMoneyGateway) -> PaymentOrchestrator:
    return PaymentOrchestrator(
        store=SqlPaymentStore(SessionLocal),
        gateway=gateway,
        notifier=SmsNotificationService(SessionLocal),
        completion_workers=settings.completion_workers,
        service_name=settings.service_name,
    )


configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    [
        "SERVICE_NAME",
        "DATABASE_URL",
        "COMPLETION_WORKERS",
        "GATEWAY_WORKERS",
        "GATEWAY_SUCCESS_RATE",
        "GATEWAY_REJECTION_RATE",
    ],
)
gateway = MockMobileMoneyGateway(
    success_rate=settings.gateway_success_rate,
    rejection_rate=settings.gateway_rejection_rate,
    min_delay_ms=settings.gateway_min_delay_ms,
    max_delay_ms=settings.gateway_max_delay_ms,
    max_workers=settings.gateway_workers,
)
service = build_orchestrator(gateway)
app = create_app(service, gateway)
