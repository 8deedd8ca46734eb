"""
Seed data for Payment Service.

Creates three students with a Term 3 fee record each. Admission numbers
double as the M-Pesa paybill account reference.

Run:
  python -m payment_service.db.seed
"""

from __future__ import annotations

import datetime as dt
from decimal import Decimal

from payment_service.app import repository as repo
from payment_service.app.db import get_engine, session_scope
from payment_service.db.schema import init_schema

ACADEMIC_YEAR = "2024"
TERM = 3
DUE_DATE = dt.date(2024, 9, 30)

STUDENTS = [
    {
        "student_id": "00000000-0000-0000-0000-000000000001",
        "admission_number": "ADM-2024-001",
        "first_name": "Achieng",
        "last_name": "Otieno",
        "parent_phone": "0712345678",
        "fees": Decimal("15000.00"),
    },
    {
        "student_id": "00000000-0000-0000-0000-000000000002",
        "admission_number": "ADM-2024-002",
        "first_name": "Kamau",
        "last_name": "Njoroge",
        "parent_phone": "0722000111",
        "fees": Decimal("15000.00"),
    },
    {
        "student_id": "00000000-0000-0000-0000-000000000003",
        "admission_number": "ADM-2024-003",
        "first_name": "Wanjiku",
        "last_name": "Mwangi",
        "parent_phone": None,
        "fees": Decimal("12500.00"),
    },
]


def seed() -> None:
    init_schema(get_engine())
    with session_scope() as db:
        for s in STUDENTS:
            if repo.get_student(db, s["student_id"]) is not None:
                continue
            repo.insert_student(
                db,
                student_id=s["student_id"],
                admission_number=s["admission_number"],
                first_name=s["first_name"],
                last_name=s["last_name"],
                parent_phone=s["parent_phone"],
            )
            repo.insert_fee_record(
                db,
                student_id=s["student_id"],
                academic_year=ACADEMIC_YEAR,
                term=TERM,
                total_amount=s["fees"],
                due_date=DUE_DATE,
            )


if __name__ == "__main__":
    seed()
    print("Payment seed completed.")
