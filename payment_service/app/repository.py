from __future__ import annotations

import datetime as dt
import uuid
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func, insert, select, update
from sqlalchemy.orm import Session

from payment_service.app.enums import FeeStatus, PaymentMethod, PaymentStatus
from payment_service.app.ledger import LedgerUpdate
from payment_service.app.models import FeeRecord, Payment, Student
from payment_service.db.schema import fee_records, payments, students

OUTSTANDING_STATUSES = (FeeStatus.PENDING.value, FeeStatus.PARTIAL.value, FeeStatus.OVERDUE.value)


# ---- students ----

def get_student(db: Session, student_id: str) -> Optional[Student]:
    row = db.execute(select(students).where(students.c.student_id == student_id)).mappings().first()
    return Student.from_row(row) if row else None


def get_student_by_admission(db: Session, admission_number: str) -> Optional[Student]:
    row = db.execute(
        select(students).where(students.c.admission_number == (admission_number or "").strip())
    ).mappings().first()
    return Student.from_row(row) if row else None


def insert_student(db: Session, *, admission_number: str, first_name: str, last_name: str,
                   parent_phone: Optional[str] = None, student_id: Optional[str] = None) -> str:
    sid = student_id or str(uuid.uuid4())
    db.execute(insert(students).values(
        student_id=sid,
        admission_number=admission_number,
        first_name=first_name,
        last_name=last_name,
        parent_phone=parent_phone,
        status="ACTIVE",
    ))
    return sid


# ---- fee records ----

def get_fee_record(db: Session, fee_record_id: str, *, for_update: bool = False) -> Optional[FeeRecord]:
    stmt = select(fee_records).where(fee_records.c.fee_record_id == fee_record_id)
    if for_update:
        stmt = stmt.with_for_update()
    row = db.execute(stmt).mappings().first()
    return FeeRecord.from_row(row) if row else None


def latest_outstanding_fee_record(db: Session, student_id: str, *, for_update: bool = False) -> Optional[FeeRecord]:
    """Newest fee record of the student that still has a positive balance."""
    stmt = (
        select(fee_records)
        .where(fee_records.c.student_id == student_id, fee_records.c.balance > 0)
        .order_by(fee_records.c.created_at.desc())
        .limit(1)
    )
    if for_update:
        stmt = stmt.with_for_update()
    row = db.execute(stmt).mappings().first()
    return FeeRecord.from_row(row) if row else None


def insert_fee_record(db: Session, *, student_id: str, academic_year: str, term: int,
                      total_amount: Decimal, due_date: Optional[dt.date] = None) -> str:
    fid = str(uuid.uuid4())
    db.execute(insert(fee_records).values(
        fee_record_id=fid,
        student_id=student_id,
        academic_year=academic_year,
        term=term,
        total_amount=total_amount,
        paid_amount=Decimal("0"),
        balance=total_amount,
        status=FeeStatus.PENDING.value,
        due_date=due_date,
        created_at=dt.datetime.utcnow(),
    ))
    return fid


def save_ledger_update(db: Session, fee_record_id: str, change: LedgerUpdate) -> None:
    db.execute(
        update(fee_records)
        .where(fee_records.c.fee_record_id == fee_record_id)
        .values(
            paid_amount=change.paid_amount,
            balance=change.balance,
            status=change.status.value,
            updated_at=dt.datetime.utcnow(),
        )
    )


def list_fee_records(db: Session, *, student_id: Optional[str] = None,
                     status: Optional[FeeStatus] = None) -> List[FeeRecord]:
    stmt = select(fee_records)
    if student_id:
        stmt = stmt.where(fee_records.c.student_id == student_id)
    if status:
        stmt = stmt.where(fee_records.c.status == status.value)
    rows = db.execute(stmt.order_by(fee_records.c.created_at.desc())).mappings().all()
    return [FeeRecord.from_row(r) for r in rows]


def list_defaulters(db: Session) -> List[tuple]:
    """(FeeRecord, Student) for active students with an outstanding balance, largest first."""
    stmt = (
        select(fee_records, students.c.admission_number, students.c.first_name,
               students.c.last_name, students.c.parent_phone, students.c.status.label("student_status"))
        .join(students, students.c.student_id == fee_records.c.student_id)
        .where(
            students.c.status == "ACTIVE",
            fee_records.c.balance > 0,
            fee_records.c.status.in_(OUTSTANDING_STATUSES),
        )
        .order_by(fee_records.c.balance.desc())
    )
    out = []
    for row in db.execute(stmt).mappings().all():
        student = Student(
            id=row["student_id"],
            admission_number=row["admission_number"],
            first_name=row["first_name"],
            last_name=row["last_name"],
            parent_phone=row["parent_phone"],
            status=row["student_status"],
        )
        out.append((FeeRecord.from_row(row), student))
    return out


def mark_overdue(db: Session, today: dt.date) -> int:
    return db.execute(
        update(fee_records)
        .where(
            fee_records.c.due_date.is_not(None),
            fee_records.c.due_date < today,
            fee_records.c.balance > 0,
            fee_records.c.status.in_((FeeStatus.PENDING.value, FeeStatus.PARTIAL.value)),
        )
        .values(status=FeeStatus.OVERDUE.value, updated_at=dt.datetime.utcnow())
    ).rowcount


# ---- payments ----

def insert_payment(
    db: Session,
    *,
    student_id: str,
    amount: Decimal,
    method: PaymentMethod,
    status: PaymentStatus,
    receipt_number: str,
    fee_record_id: Optional[str] = None,
    mpesa_request_id: Optional[str] = None,
    mpesa_receipt_number: Optional[str] = None,
    mpesa_phone: Optional[str] = None,
    transaction_date: Optional[dt.datetime] = None,
    paid_by: Optional[str] = None,
    notes: Optional[str] = None,
) -> str:
    pid = str(uuid.uuid4())
    db.execute(insert(payments).values(
        payment_id=pid,
        student_id=student_id,
        fee_record_id=fee_record_id,
        amount=amount,
        method=method.value,
        status=status.value,
        receipt_number=receipt_number,
        mpesa_request_id=mpesa_request_id,
        mpesa_receipt_number=mpesa_receipt_number,
        mpesa_phone=mpesa_phone,
        transaction_date=transaction_date,
        paid_by=paid_by,
        notes=notes,
        created_at=dt.datetime.utcnow(),
    ))
    return pid


def get_payment(db: Session, payment_id: str) -> Optional[Payment]:
    row = db.execute(select(payments).where(payments.c.payment_id == payment_id)).mappings().first()
    return Payment.from_row(row) if row else None


def get_payment_by_request_id(db: Session, request_id: str) -> Optional[Payment]:
    row = db.execute(select(payments).where(payments.c.mpesa_request_id == request_id)).mappings().first()
    return Payment.from_row(row) if row else None


def get_pending_payment_for_update(db: Session, request_id: str) -> Optional[Payment]:
    """Row-locks the PENDING payment for `request_id`; None once it has been resolved."""
    row = db.execute(
        select(payments)
        .where(payments.c.mpesa_request_id == request_id, payments.c.status == PaymentStatus.PENDING.value)
        .with_for_update()
    ).mappings().first()
    return Payment.from_row(row) if row else None


def payment_with_mpesa_receipt_exists(db: Session, mpesa_receipt_number: str) -> bool:
    return db.execute(
        select(payments.c.payment_id).where(payments.c.mpesa_receipt_number == mpesa_receipt_number)
    ).first() is not None


def complete_payment(db: Session, payment_id: str, *, mpesa_receipt_number: Optional[str],
                     transaction_date: dt.datetime, result_desc: Optional[str]) -> bool:
    """PENDING -> COMPLETED. False when another writer already resolved the row."""
    result = db.execute(
        update(payments)
        .where(payments.c.payment_id == payment_id, payments.c.status == PaymentStatus.PENDING.value)
        .values(
            status=PaymentStatus.COMPLETED.value,
            mpesa_receipt_number=mpesa_receipt_number,
            transaction_date=transaction_date,
            result_code=0,
            result_desc=result_desc,
            updated_at=dt.datetime.utcnow(),
        )
    )
    return result.rowcount == 1


def fail_payment(db: Session, payment_id: str, *, result_code: int, result_desc: Optional[str]) -> bool:
    """PENDING -> FAILED. False when another writer already resolved the row."""
    result = db.execute(
        update(payments)
        .where(payments.c.payment_id == payment_id, payments.c.status == PaymentStatus.PENDING.value)
        .values(
            status=PaymentStatus.FAILED.value,
            result_code=result_code,
            result_desc=result_desc,
            updated_at=dt.datetime.utcnow(),
        )
    )
    return result.rowcount == 1


def stale_pending_request_ids(db: Session, cutoff: dt.datetime, limit: int = 100) -> List[str]:
    rows = db.execute(
        select(payments.c.mpesa_request_id)
        .where(
            payments.c.status == PaymentStatus.PENDING.value,
            payments.c.method == PaymentMethod.MPESA.value,
            payments.c.mpesa_request_id.is_not(None),
            payments.c.created_at < cutoff,
        )
        .order_by(payments.c.created_at)
        .limit(limit)
    ).all()
    return [r[0] for r in rows]


def list_payments(db: Session, *, student_id: Optional[str] = None,
                  start: Optional[dt.datetime] = None, end: Optional[dt.datetime] = None) -> List[Payment]:
    stmt = select(payments)
    if student_id:
        stmt = stmt.where(payments.c.student_id == student_id)
    if start is not None:
        stmt = stmt.where(payments.c.created_at >= start)
    if end is not None:
        stmt = stmt.where(payments.c.created_at <= end)
    rows = db.execute(stmt.order_by(payments.c.created_at.desc())).mappings().all()
    return [Payment.from_row(r) for r in rows]


def sum_completed(db: Session, since: Optional[dt.datetime] = None) -> Decimal:
    stmt = select(func.coalesce(func.sum(payments.c.amount), 0)).where(
        payments.c.status == PaymentStatus.COMPLETED.value
    )
    if since is not None:
        stmt = stmt.where(payments.c.created_at >= since)
    return Decimal(str(db.execute(stmt).scalar_one()))
