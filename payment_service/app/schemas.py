from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from payment_service.app.enums import CallbackOutcome, FeeStatus, PaymentMethod, PaymentStatus
from payment_service.app.models import FeeRecord, Payment, Student


# ---- requests ----

class StkPushRequest(BaseModel):
    student_id: str = Field(min_length=1)
    amount: Decimal = Field(gt=0)
    phone_number: str = Field(min_length=9, examples=["0712345678"])
    fee_record_id: Optional[str] = None


class ManualPaymentRequest(BaseModel):
    student_id: str = Field(min_length=1)
    amount: Decimal = Field(gt=0)
    method: PaymentMethod = PaymentMethod.CASH
    fee_record_id: Optional[str] = None
    paid_by: Optional[str] = None
    notes: Optional[str] = None


class ReconcileRequest(BaseModel):
    older_than_minutes: Optional[int] = Field(default=None, ge=0)


class FeeRecordCreate(BaseModel):
    student_id: str = Field(min_length=1)
    academic_year: str = Field(min_length=1, examples=["2026"])
    term: int = Field(ge=1, le=3)
    total_amount: Decimal = Field(gt=0)
    due_date: Optional[dt.date] = None


class C2BRegisterRequest(BaseModel):
    validation_url: str
    confirmation_url: str
    response_type: str = Field(default="Completed", pattern="^(Completed|Cancelled)$")


# ---- responses ----

class StkPushResponse(BaseModel):
    success: bool = True
    payment_id: str
    checkout_request_id: str
    phone_number: str
    fee_record_id: Optional[str] = None
    message: str


class PaymentOut(BaseModel):
    id: str
    student_id: str
    fee_record_id: Optional[str] = None
    amount: Decimal
    method: PaymentMethod
    status: PaymentStatus
    receipt_number: str
    mpesa_request_id: Optional[str] = None
    mpesa_receipt_number: Optional[str] = None
    mpesa_phone: Optional[str] = None
    transaction_date: Optional[dt.datetime] = None
    result_code: Optional[int] = None
    result_desc: Optional[str] = None
    paid_by: Optional[str] = None
    notes: Optional[str] = None
    created_at: dt.datetime

    @classmethod
    def from_payment(cls, p: Payment) -> "PaymentOut":
        return cls(
            id=p.id,
            student_id=p.student_id,
            fee_record_id=p.fee_record_id,
            amount=p.amount,
            method=p.method,
            status=p.status,
            receipt_number=p.receipt_number,
            mpesa_request_id=p.mpesa_request_id,
            mpesa_receipt_number=p.mpesa_receipt_number,
            mpesa_phone=p.mpesa_phone,
            transaction_date=p.transaction_date,
            result_code=p.result_code,
            result_desc=p.result_desc,
            paid_by=p.paid_by,
            notes=p.notes,
            created_at=p.created_at,
        )


class PaymentResponse(BaseModel):
    success: bool = True
    payment: PaymentOut


class PaymentListResponse(BaseModel):
    payments: List[PaymentOut]
    total: int


class StkStatusResponse(BaseModel):
    checkout_request_id: str
    result_code: Optional[int] = None
    result_desc: str
    outcome: CallbackOutcome
    payment: Optional[PaymentOut] = None


class ReconcileResponse(BaseModel):
    checked: int
    completed: int
    failed: int
    still_pending: int
    errors: int


class PaymentStatsResponse(BaseModel):
    total_collected: Decimal
    today_collected: Decimal
    week_collected: Decimal
    month_collected: Decimal


class FeeRecordOut(BaseModel):
    id: str
    student_id: str
    academic_year: str
    term: int
    total_amount: Decimal
    paid_amount: Decimal
    balance: Decimal
    status: FeeStatus
    due_date: Optional[dt.date] = None
    created_at: dt.datetime

    @classmethod
    def from_record(cls, r: FeeRecord) -> "FeeRecordOut":
        return cls(
            id=r.id,
            student_id=r.student_id,
            academic_year=r.academic_year,
            term=r.term,
            total_amount=r.total_amount,
            paid_amount=r.paid_amount,
            balance=r.balance,
            status=r.status,
            due_date=r.due_date,
            created_at=r.created_at,
        )


class FeeRecordListResponse(BaseModel):
    records: List[FeeRecordOut]
    total: int


class DefaulterOut(BaseModel):
    fee_record: FeeRecordOut
    student_id: str
    admission_number: str
    student_name: str
    parent_phone: Optional[str] = None

    @classmethod
    def from_pair(cls, record: FeeRecord, student: Student) -> "DefaulterOut":
        return cls(
            fee_record=FeeRecordOut.from_record(record),
            student_id=student.id,
            admission_number=student.admission_number,
            student_name=student.full_name,
            parent_phone=student.parent_phone,
        )


class DefaulterListResponse(BaseModel):
    defaulters: List[DefaulterOut]
    total: int
    total_outstanding: Decimal


class CountResponse(BaseModel):
    message: str
    count: int
