"""
Tables owned by the Payment Service: the student read model, the fee
ledger and the payment history.

Create them (dev / tests):
  python -m payment_service.db.schema
"""

from __future__ import annotations

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.engine import Engine

metadata = MetaData()

MONEY = Numeric(12, 2)

students = Table(
    "students",
    metadata,
    Column("student_id", String(36), primary_key=True),
    Column("admission_number", String(32), nullable=False, unique=True),
    Column("first_name", String(64), nullable=False),
    Column("last_name", String(64), nullable=False),
    Column("parent_phone", String(16), nullable=True),
    Column("status", String(16), nullable=False, server_default="ACTIVE"),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

fee_records = Table(
    "fee_records",
    metadata,
    Column("fee_record_id", String(36), primary_key=True),
    Column("student_id", String(36), ForeignKey("students.student_id"), nullable=False),
    Column("academic_year", String(16), nullable=False),
    Column("term", Integer, nullable=False),
    Column("total_amount", MONEY, nullable=False),
    Column("paid_amount", MONEY, nullable=False),
    Column("balance", MONEY, nullable=False),
    Column("status", String(16), nullable=False),
    Column("due_date", Date, nullable=True),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=True),
    UniqueConstraint("student_id", "academic_year", "term", name="uq_fee_records_student_term"),
    Index("ix_fee_records_student_balance", "student_id", "balance"),
)

payments = Table(
    "payments",
    metadata,
    Column("payment_id", String(36), primary_key=True),
    Column("student_id", String(36), ForeignKey("students.student_id"), nullable=False),
    Column("fee_record_id", String(36), ForeignKey("fee_records.fee_record_id"), nullable=True),
    Column("amount", MONEY, nullable=False),
    Column("method", String(16), nullable=False),
    Column("status", String(16), nullable=False),
    Column("receipt_number", String(32), nullable=False, unique=True),
    Column("mpesa_request_id", String(64), nullable=True, unique=True),
    Column("mpesa_receipt_number", String(32), nullable=True, unique=True),
    Column("mpesa_phone", String(64), nullable=True),
    Column("transaction_date", DateTime, nullable=True),
    Column("result_code", Integer, nullable=True),
    Column("result_desc", String(255), nullable=True),
    Column("paid_by", String(128), nullable=True),
    Column("notes", Text, nullable=True),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=True),
    Index("ix_payments_status_created", "status", "created_at"),
    Index("ix_payments_student", "student_id"),
)


def init_schema(engine: Engine) -> None:
    metadata.create_all(engine)


if __name__ == "__main__":
    from payment_service.app.db import get_engine

    init_schema(get_engine())
    print("Payment schema created.")
