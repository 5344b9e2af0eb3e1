from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Body, FastAPI, HTTPException, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from backend.app.errors import (
    ForbiddenError,
    InvalidArgumentError,
    MalformedPayloadError,
    NotFoundError,
    UpstreamError,
)
from backend.app.models import (
    ApplicationItem,
    ApplicationSubmitResponse,
    EligibilityResponse,
    PaymentInitRequest,
    PaymentInitResponse,
    PaymentVerifyRequest,
    PaymentVerifyResponse,
    ShareRecord,
    ShareRequest,
    ShareStatusResponse,
    WebhookAckResponse,
)
from backend.app.observability import MetricsRegistry, configure_logging, logger, observe_request
from backend.app.persistence import SqlPersistence
from backend.app.services.applications import ApplicationGate
from backend.app.services.eligibility import EligibilityEvaluator
from backend.app.services.payments import PaymentLedger, VerificationOutcome
from backend.app.services.paystack import PaystackClient
from backend.app.services.shares import ShareLedger
from backend.app.settings import load_settings


def create_app(*, payment_provider: Optional[PaystackClient] = None) -> FastAPI:
    app = FastAPI(title="CCT Application Gate API", version="0.1.0")
    configure_logging()
    settings = load_settings()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    persistence = SqlPersistence(settings.database_url)
    provider = payment_provider or PaystackClient(
        secret_key=settings.paystack_secret_key,
        base_url=settings.paystack_base_url,
        timeout_seconds=settings.paystack_timeout_seconds,
    )
    shares = ShareLedger(persistence)
    payments = PaymentLedger(
        persistence=persistence,
        provider=provider,
        callback_url=settings.payment_callback_url,
        upgrade_threshold_minor=settings.upgrade_threshold_minor,
        webhook_secret=settings.paystack_secret_key,
        verify_webhook_signature=settings.paystack_verify_webhook_signature,
    )
    evaluator = EligibilityEvaluator(shares=shares, payments=payments)

    app.state.settings = settings
    app.state.persistence = persistence
    app.state.shares = shares
    app.state.payments = payments
    app.state.evaluator = evaluator
    app.state.applications = ApplicationGate(persistence=persistence, evaluator=evaluator)
    app.state.metrics = MetricsRegistry()

    @app.middleware("http")
    async def observability_middleware(request: Request, call_next):
        return await observe_request(request, call_next, metrics=app.state.metrics)

    @app.exception_handler(RequestValidationError)
    async def invalid_request_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": "invalid request body"},
        )

    app.include_router(build_router())
    return app


def get_persistence(request: Request) -> SqlPersistence:
    return request.app.state.persistence


def get_shares(request: Request) -> ShareLedger:
    return request.app.state.shares


def get_payments(request: Request) -> PaymentLedger:
    return request.app.state.payments


def get_evaluator(request: Request) -> EligibilityEvaluator:
    return request.app.state.evaluator


def get_applications(request: Request) -> ApplicationGate:
    return request.app.state.applications


def get_metrics(request: Request) -> MetricsRegistry:
    return request.app.state.metrics


def share_status(record: ShareRecord) -> ShareStatusResponse:
    return ShareStatusResponse(friends=record.friends, groups=record.groups)


def verification_response(outcome: VerificationOutcome) -> PaymentVerifyResponse:
    return PaymentVerifyResponse(
        success=outcome.success,
        amount=outcome.amount,
        is_upgrade=outcome.is_upgrade,
        message=outcome.message,
    )


def build_router() -> APIRouter:
    router = APIRouter()

    @router.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @router.get("/health/ready")
    def readiness(request: Request) -> dict[str, str]:
        if not get_persistence(request).ping():
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="database unavailable",
            )
        return {"status": "ready"}

    @router.get("/metrics", response_class=PlainTextResponse)
    def metrics(request: Request) -> Response:
        registry = get_metrics(request)
        return PlainTextResponse(registry.to_prometheus())

    @router.post("/api/share", response_model=ShareStatusResponse)
    def record_share(payload: ShareRequest, request: Request) -> ShareStatusResponse:
        try:
            record = get_shares(request).record_share(payload.phone, payload.type)
        except InvalidArgumentError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        return share_status(record)

    @router.get("/api/share-status", response_model=ShareStatusResponse)
    def get_share_status(request: Request, phone: Optional[str] = None) -> ShareStatusResponse:
        if not phone or not phone.strip():
            return ShareStatusResponse(friends=0, groups=0)
        return share_status(get_shares(request).get_shares(phone))

    @router.get("/api/eligibility", response_model=EligibilityResponse)
    def eligibility(request: Request, phone: Optional[str] = None) -> EligibilityResponse:
        if not phone or not phone.strip():
            return EligibilityResponse(
                can_access_form=False,
                paid=False,
                shares=ShareStatusResponse(friends=0, groups=0),
            )
        decision = get_evaluator(request).evaluate(phone)
        return EligibilityResponse(
            can_access_form=decision.can_access_form,
            paid=decision.paid,
            shares=share_status(decision.shares),
        )

    @router.post("/api/application", response_model=ApplicationSubmitResponse)
    def submit_application(
        request: Request,
        payload: dict[str, Any] = Body(...),
    ) -> ApplicationSubmitResponse:
        try:
            get_applications(request).submit(payload.get("phone"), payload)
        except InvalidArgumentError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        except ForbiddenError as exc:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
        return ApplicationSubmitResponse(success=True)

    @router.get("/api/application", response_model=ApplicationItem)
    def get_application(request: Request, phone: Optional[str] = None) -> ApplicationItem:
        try:
            record = get_applications(request).get_application(phone)
        except InvalidArgumentError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        except NotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        return ApplicationItem(
            phone=record.phone,
            upgraded=record.upgraded,
            fields=record.fields,
            created_at_utc=record.created_at_utc,
            updated_at_utc=record.updated_at_utc,
        )

    @router.post("/api/init-payment", response_model=PaymentInitResponse)
    def init_payment(payload: PaymentInitRequest, request: Request) -> PaymentInitResponse:
        try:
            initialization = get_payments(request).initiate(
                phone=payload.phone,
                amount=payload.amount,
                email=payload.email,
                is_upgrade=payload.is_upgrade,
            )
        except InvalidArgumentError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        except UpstreamError as exc:
            logger.warning("payment_init_failed phone=%s error=%s", payload.phone, exc)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Payment initialization failed",
            ) from exc
        return PaymentInitResponse(
            authorization_url=initialization.authorization_url,
            access_code=initialization.access_code,
            reference=initialization.reference,
        )

    def run_verification(
        request: Request, reference: Optional[str], phone: Optional[str]
    ) -> PaymentVerifyResponse:
        try:
            outcome = get_payments(request).verify(reference, phone=phone)
        except InvalidArgumentError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        except NotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        except UpstreamError as exc:
            logger.warning("payment_verify_failed reference=%s error=%s", reference, exc)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Payment verification failed",
            ) from exc
        return verification_response(outcome)

    @router.get(
        "/api/verify-payment",
        response_model=PaymentVerifyResponse,
        response_model_exclude_none=True,
    )
    def verify_payment_callback(
        request: Request,
        reference: Optional[str] = None,
        trxref: Optional[str] = None,
    ) -> PaymentVerifyResponse:
        # Paystack's checkout redirect carries the reference as both reference and trxref.
        return run_verification(request, reference or trxref, None)

    @router.post(
        "/api/verify-payment",
        response_model=PaymentVerifyResponse,
        response_model_exclude_none=True,
    )
    def verify_payment(payload: PaymentVerifyRequest, request: Request) -> PaymentVerifyResponse:
        return run_verification(request, payload.reference, payload.phone)

    @router.post("/api/paystack-webhook", response_model=WebhookAckResponse)
    async def paystack_webhook(request: Request) -> WebhookAckResponse:
        metrics_registry = get_metrics(request)
        raw_body = await request.body()
        try:
            outcome = get_payments(request).handle_webhook(
                raw_body,
                signature=request.headers.get("x-paystack-signature"),
            )
        except MalformedPayloadError as exc:
            logger.warning("paystack_webhook_malformed error=%s", exc)
            outcome = "malformed"
        except Exception:
            # Paystack redelivers any event not answered with a 2xx.
            logger.exception("paystack_webhook_failed")
            outcome = "error"
        metrics_registry.record_webhook(outcome)
        return WebhookAckResponse(status="ok")

    return router


app = create_app()
