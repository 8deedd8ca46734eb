from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping, Optional

from payment_service.app.enums import FeeStatus, PaymentMethod, PaymentStatus
from payment_service.app.ledger import FeeLedgerEntry


@dataclass(frozen=True)
class Student:
    id: str
    admission_number: str
    first_name: str
    last_name: str
    parent_phone: Optional[str]
    status: str

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Student":
        return cls(
            id=row["student_id"],
            admission_number=row["admission_number"],
            first_name=row["first_name"],
            last_name=row["last_name"],
            parent_phone=row["parent_phone"],
            status=row["status"],
        )


@dataclass(frozen=True)
class FeeRecord:
    id: str
    student_id: str
    academic_year: str
    term: int
    total_amount: Decimal
    paid_amount: Decimal
    balance: Decimal
    status: FeeStatus
    due_date: Optional[dt.date]
    created_at: dt.datetime

    @property
    def ledger_entry(self) -> FeeLedgerEntry:
        return FeeLedgerEntry(
            fee_record_id=self.id,
            total_amount=self.total_amount,
            paid_amount=self.paid_amount,
            balance=self.balance,
            status=self.status,
        )

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "FeeRecord":
        return cls(
            id=row["fee_record_id"],
            student_id=row["student_id"],
            academic_year=row["academic_year"],
            term=int(row["term"]),
            total_amount=Decimal(row["total_amount"]),
            paid_amount=Decimal(row["paid_amount"]),
            balance=Decimal(row["balance"]),
            status=FeeStatus(row["status"]),
            due_date=row["due_date"],
            created_at=row["created_at"],
        )


@dataclass(frozen=True)
class Payment:
    id: str
    student_id: str
    fee_record_id: Optional[str]
    amount: Decimal
    method: PaymentMethod
    status: PaymentStatus
    receipt_number: str
    mpesa_request_id: Optional[str]
    mpesa_receipt_number: Optional[str]
    mpesa_phone: Optional[str]
    transaction_date: Optional[dt.datetime]
    result_code: Optional[int]
    result_desc: Optional[str]
    paid_by: Optional[str]
    notes: Optional[str]
    created_at: dt.datetime

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Payment":
        return cls(
            id=row["payment_id"],
            student_id=row["student_id"],
            fee_record_id=row["fee_record_id"],
            amount=Decimal(row["amount"]),
            method=PaymentMethod(row["method"]),
            status=PaymentStatus(row["status"]),
            receipt_number=row["receipt_number"],
            mpesa_request_id=row["mpesa_request_id"],
            mpesa_receipt_number=row["mpesa_receipt_number"],
            mpesa_phone=row["mpesa_phone"],
            transaction_date=row["transaction_date"],
            result_code=row["result_code"],
            result_desc=row["result_desc"],
            paid_by=row["paid_by"],
            notes=row["notes"],
            created_at=row["created_at"],
        )
