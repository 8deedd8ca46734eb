from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Dict, List, Optional, Union

import pytest
from sqlalchemy import create_engine, update
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from payment_service.app import repository as payment_repo
from payment_service.app.db import session_scope as payment_session
from payment_service.app.mpesa.daraja import StkPushResult, StkStatus
from payment_service.db import schema as payment_schema
from timetable_service.db import schema as timetable_schema


def _sqlite_factory(metadata):
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture
def timetable_db():
    return _sqlite_factory(timetable_schema.metadata)


@pytest.fixture
def payment_db():
    return _sqlite_factory(payment_schema.metadata)


class FakeProvider:
    """In-memory stand-in for Daraja; statuses are scripted per request id."""

    def __init__(self) -> None:
        self.pushes: List[dict] = []
        self.queries: List[str] = []
        self.statuses: Dict[str, Union[StkStatus, Exception]] = {}
        self.initiate_error: Optional[Exception] = None
        self._seq = 0

    def initiate(self, phone, amount, account_reference, description) -> StkPushResult:
        if self.initiate_error is not None:
            raise self.initiate_error
        self._seq += 1
        request_id = f"ws_CO_{self._seq:04d}"
        self.pushes.append({
            "phone": phone,
            "amount": amount,
            "account_reference": account_reference,
            "description": description,
            "request_id": request_id,
        })
        return StkPushResult(
            request_id=request_id,
            merchant_request_id=f"29115-{self._seq}",
            response_code="0",
            customer_message="Success. Request accepted for processing",
        )

    def query_status(self, request_id: str) -> StkStatus:
        self.queries.append(request_id)
        scripted = self.statuses.get(request_id)
        if isinstance(scripted, Exception):
            raise scripted
        if scripted is None:
            return StkStatus(request_id, None, "The transaction is being processed", {})
        return scripted


class FakeNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.completed: list = []
        self.failed: list = []
        self.reminders: list = []

    def _record(self, bucket: list, event) -> None:
        if self.fail:
            raise RuntimeError("broker unavailable")
        bucket.append(event)

    def payment_completed(self, event) -> None:
        self._record(self.completed, event)

    def payment_failed(self, event) -> None:
        self._record(self.failed, event)

    def fee_reminder(self, event) -> None:
        self._record(self.reminders, event)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


def add_student(factory, admission_number: str = "ADM-001", *, first_name: str = "Achieng",
                last_name: str = "Otieno", parent_phone: Optional[str] = "0712345678") -> str:
    with payment_session(factory) as db:
        return payment_repo.insert_student(
            db,
            admission_number=admission_number,
            first_name=first_name,
            last_name=last_name,
            parent_phone=parent_phone,
        )


def add_fee_record(factory, student_id: str, total, *, academic_year: str = "2024", term: int = 1,
                   paid=None, due_date: Optional[dt.date] = None,
                   created_at: Optional[dt.datetime] = None) -> str:
    """Inserts a fee record; `paid` pre-loads a partial payment, `created_at` pins ordering."""
    with payment_session(factory) as db:
        fee_record_id = payment_repo.insert_fee_record(
            db,
            student_id=student_id,
            academic_year=academic_year,
            term=term,
            total_amount=Decimal(str(total)),
            due_date=due_date,
        )
        values = {}
        if paid is not None:
            paid = Decimal(str(paid))
            values.update(
                paid_amount=paid,
                balance=Decimal(str(total)) - paid,
                status="PAID" if paid >= Decimal(str(total)) else "PARTIAL",
            )
        if created_at is not None:
            values["created_at"] = created_at
        if values:
            db.execute(
                update(payment_schema.fee_records)
                .where(payment_schema.fee_records.c.fee_record_id == fee_record_id)
                .values(**values)
            )
        return fee_record_id


def get_fee_record(factory, fee_record_id: str):
    with payment_session(factory) as db:
        return payment_repo.get_fee_record(db, fee_record_id)


def get_payment(factory, payment_id: str):
    with payment_session(factory) as db:
        return payment_repo.get_payment(db, payment_id)


@pytest.fixture
def student(payment_db):
    """A student owing KES 15,000 for term 1."""
    student_id = add_student(payment_db)
    fee_record_id = add_fee_record(payment_db, student_id, "15000.00")
    return {"student_id": student_id, "fee_record_id": fee_record_id, "admission_number": "ADM-001"}


def stk_callback_payload(request_id: str, result_code: int = 0, *, amount=1000,
                         receipt: str = "QKJ7XYZ123", result_desc: Optional[str] = None) -> dict:
    callback = {
        "MerchantRequestID": "29115-1",
        "CheckoutRequestID": request_id,
        "ResultCode": result_code,
        "ResultDesc": result_desc or ("The service request is processed successfully." if result_code == 0
                                      else "Request cancelled by user"),
    }
    if result_code == 0:
        callback["CallbackMetadata"] = {
            "Item": [
                {"Name": "Amount", "Value": amount},
                {"Name": "MpesaReceiptNumber", "Value": receipt},
                {"Name": "Balance"},
                {"Name": "TransactionDate", "Value": 20241017143015},
                {"Name": "PhoneNumber", "Value": 254712345678},
            ]
        }
    return {"Body": {"stkCallback": callback}}
