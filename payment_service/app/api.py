import datetime as dt
import logging
from functools import lru_cache
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, status

from libs.errors import NotFoundError, ProviderError, ValidationError
from payment_service.app.messaging.publisher import EventNotifier, Notifier
from payment_service.app.mpesa.callbacks import (
    ACCEPTED,
    C2B_INVALID_ACCOUNT,
    C2BConfirmation,
    parse_stk_callback,
)
from payment_service.app.mpesa.daraja import DarajaClient, PaymentProvider
from payment_service.app.reconciliation import PaymentService
from payment_service.app.schemas import (
    C2BRegisterRequest,
    ManualPaymentRequest,
    PaymentListResponse,
    PaymentOut,
    PaymentResponse,
    PaymentStatsResponse,
    ReconcileRequest,
    ReconcileResponse,
    StkPushRequest,
    StkPushResponse,
    StkStatusResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@lru_cache(maxsize=1)
def get_daraja_client() -> DarajaClient:
    # One instance per process so the OAuth token is reused.
    return DarajaClient.from_settings()


def get_payment_provider() -> PaymentProvider:
    return get_daraja_client()


def get_notifier() -> Notifier:
    return EventNotifier()


def get_payment_service(
    provider: PaymentProvider = Depends(get_payment_provider),
    notifier: Notifier = Depends(get_notifier),
) -> PaymentService:
    return PaymentService(provider, notifier)


def _provider_failure(exc: ProviderError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.message)


# ---- M-Pesa ----

@router.post("/mpesa/stk-push", response_model=StkPushResponse)
def stk_push(body: StkPushRequest, svc: PaymentService = Depends(get_payment_service)):
    try:
        initiated = svc.initiate_stk_push(
            body.student_id, body.amount, body.phone_number, fee_record_id=body.fee_record_id
        )
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=exc.message)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message)
    except ProviderError as exc:
        raise _provider_failure(exc)
    return StkPushResponse(
        payment_id=initiated.payment_id,
        checkout_request_id=initiated.request_id,
        phone_number=initiated.phone,
        fee_record_id=initiated.fee_record_id,
        message=initiated.customer_message or "STK Push sent. Please check your phone.",
    )


@router.post("/mpesa/callback")
def stk_callback(payload: Dict[str, Any] = Body(...), svc: PaymentService = Depends(get_payment_service)):
    """Safaricom retries anything but 200, so the answer is always Accepted."""
    try:
        outcome = svc.handle_stk_callback(parse_stk_callback(payload))
        logger.info("mpesa callback processed outcome=%s", outcome.value)
    except Exception:
        logger.exception("mpesa callback processing failed")
    return ACCEPTED


@router.post("/mpesa/c2b/validation")
def c2b_validation(payload: Dict[str, Any] = Body(...), svc: PaymentService = Depends(get_payment_service)):
    try:
        if not svc.validate_c2b(C2BConfirmation.model_validate(payload)):
            logger.info("c2b validation rejected account=%s", payload.get("BillRefNumber"))
            return C2B_INVALID_ACCOUNT
    except Exception:
        logger.exception("c2b validation failed; accepting")
    return ACCEPTED


@router.post("/mpesa/c2b/confirmation")
def c2b_confirmation(payload: Dict[str, Any] = Body(...), svc: PaymentService = Depends(get_payment_service)):
    try:
        outcome = svc.handle_c2b_confirmation(C2BConfirmation.model_validate(payload))
        logger.info("c2b confirmation processed trans_id=%s outcome=%s", payload.get("TransID"), outcome.value)
    except Exception:
        logger.exception("c2b confirmation processing failed")
    return ACCEPTED


@router.post("/mpesa/c2b/register")
def c2b_register(body: C2BRegisterRequest, client: DarajaClient = Depends(get_daraja_client)):
    try:
        return client.register_c2b_urls(body.validation_url, body.confirmation_url, body.response_type)
    except ProviderError as exc:
        raise _provider_failure(exc)


@router.get("/mpesa/stk-status/{checkout_request_id}", response_model=StkStatusResponse)
def stk_status(checkout_request_id: str, svc: PaymentService = Depends(get_payment_service)):
    if svc.get_payment_by_request_id(checkout_request_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found")
    try:
        result, outcome = svc.query_status(checkout_request_id)
    except ProviderError as exc:
        raise _provider_failure(exc)
    payment = svc.get_payment_by_request_id(checkout_request_id)
    return StkStatusResponse(
        checkout_request_id=checkout_request_id,
        result_code=result.result_code,
        result_desc=result.result_desc,
        outcome=outcome,
        payment=PaymentOut.from_payment(payment) if payment else None,
    )


@router.post("/mpesa/reconcile", response_model=ReconcileResponse)
def reconcile(body: Optional[ReconcileRequest] = None, svc: PaymentService = Depends(get_payment_service)):
    report = svc.reconcile_pending(body.older_than_minutes if body else None)
    return ReconcileResponse(
        checked=report.checked,
        completed=report.completed,
        failed=report.failed,
        still_pending=report.still_pending,
        errors=report.errors,
    )


# ---- payments ----

@router.post("/payments", response_model=PaymentResponse, status_code=status.HTTP_201_CREATED)
def record_payment(body: ManualPaymentRequest, svc: PaymentService = Depends(get_payment_service)):
    try:
        payment = svc.record_manual_payment(
            body.student_id,
            body.amount,
            body.method,
            fee_record_id=body.fee_record_id,
            paid_by=body.paid_by,
            notes=body.notes,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=exc.message)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message)
    return PaymentResponse(payment=PaymentOut.from_payment(payment))


@router.get("/payments", response_model=PaymentListResponse)
def list_payments(
    student_id: Optional[str] = None,
    start_date: Optional[dt.datetime] = None,
    end_date: Optional[dt.datetime] = None,
    svc: PaymentService = Depends(get_payment_service),
):
    payments = svc.list_payments(student_id=student_id, start=start_date, end=end_date)
    return PaymentListResponse(payments=[PaymentOut.from_payment(p) for p in payments], total=len(payments))


@router.get("/payments/stats", response_model=PaymentStatsResponse)
def payment_stats(svc: PaymentService = Depends(get_payment_service)):
    return PaymentStatsResponse(**svc.payment_stats())


@router.get("/health")
def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "payment-service"}
