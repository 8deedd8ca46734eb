from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse

from libs.errors import ConflictError, NotFoundError, ValidationError
from payment_service.app.api import get_notifier
from payment_service.app.enums import FeeStatus
from payment_service.app.fees import FeeService
from payment_service.app.messaging.publisher import Notifier
from payment_service.app.schemas import (
    CountResponse,
    DefaulterListResponse,
    DefaulterOut,
    FeeRecordCreate,
    FeeRecordListResponse,
    FeeRecordOut,
)

router = APIRouter(prefix="/fees")


def get_fee_service(notifier: Notifier = Depends(get_notifier)) -> FeeService:
    return FeeService(notifier)


@router.post("/records", response_model=FeeRecordOut, status_code=status.HTTP_201_CREATED)
def create_fee_record(body: FeeRecordCreate, svc: FeeService = Depends(get_fee_service)):
    try:
        record = svc.create_fee_record(
            body.student_id, body.academic_year, body.term, body.total_amount, due_date=body.due_date
        )
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=exc.message)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message)
    except ConflictError as exc:
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"success": False, "error": exc.message})
    return FeeRecordOut.from_record(record)


@router.get("/records", response_model=FeeRecordListResponse)
def list_fee_records(
    student_id: Optional[str] = None,
    status_filter: Optional[FeeStatus] = Query(default=None, alias="status"),
    svc: FeeService = Depends(get_fee_service),
):
    records = svc.list_fee_records(student_id=student_id, status=status_filter)
    return FeeRecordListResponse(records=[FeeRecordOut.from_record(r) for r in records], total=len(records))


@router.get("/records/{fee_record_id}", response_model=FeeRecordOut)
def get_fee_record(fee_record_id: str, svc: FeeService = Depends(get_fee_service)):
    try:
        return FeeRecordOut.from_record(svc.get_fee_record(fee_record_id))
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message)


@router.get("/defaulters", response_model=DefaulterListResponse)
def list_defaulters(svc: FeeService = Depends(get_fee_service)):
    pairs = svc.defaulters()
    return DefaulterListResponse(
        defaulters=[DefaulterOut.from_pair(record, student) for record, student in pairs],
        total=len(pairs),
        total_outstanding=sum((record.balance for record, _ in pairs), Decimal("0")),
    )


@router.post("/mark-overdue", response_model=CountResponse)
def mark_overdue(svc: FeeService = Depends(get_fee_service)):
    count = svc.mark_overdue()
    return CountResponse(message=f"Marked {count} fee records overdue", count=count)


@router.post("/reminders", response_model=CountResponse)
def send_reminders(svc: FeeService = Depends(get_fee_service)):
    count = svc.send_reminders()
    return CountResponse(message=f"Queued {count} fee reminders", count=count)
