import datetime as dt
from decimal import Decimal

import pytest

from conftest import FakeNotifier, add_fee_record, add_student, get_fee_record
from libs.errors import ConflictError, NotFoundError, ValidationError
from payment_service.app.enums import FeeStatus
from payment_service.app.fees import FeeService


@pytest.fixture
def fees(payment_db, notifier):
    return FeeService(notifier, payment_db)


def test_create_fee_record_starts_pending(fees, payment_db):
    student_id = add_student(payment_db)
    record = fees.create_fee_record(student_id, "2024", 2, "18000", due_date=dt.date(2024, 6, 1))
    assert record.total_amount == Decimal("18000.00")
    assert record.balance == record.total_amount
    assert record.paid_amount == Decimal("0.00")
    assert record.status is FeeStatus.PENDING


def test_create_fee_record_validation(fees, payment_db):
    student_id = add_student(payment_db)
    with pytest.raises(ValidationError):
        fees.create_fee_record(student_id, "2024", 1, 0)
    with pytest.raises(ValidationError):
        fees.create_fee_record(student_id, "2024", 4, 1000)
    with pytest.raises(NotFoundError):
        fees.create_fee_record("missing", "2024", 1, 1000)


def test_duplicate_term_record_conflicts(fees, payment_db):
    student_id = add_student(payment_db)
    fees.create_fee_record(student_id, "2024", 1, 1000)
    with pytest.raises(ConflictError):
        fees.create_fee_record(student_id, "2024", 1, 2000)


def test_defaulters_largest_balance_first(fees, payment_db):
    a = add_student(payment_db, "ADM-001")
    b = add_student(payment_db, "ADM-002", first_name="Kamau", last_name="Njoroge")
    c = add_student(payment_db, "ADM-003", first_name="Wanjiku", last_name="Mwangi")
    add_fee_record(payment_db, a, "5000")
    add_fee_record(payment_db, b, "20000", paid="5000")
    add_fee_record(payment_db, c, "8000", paid="8000")

    defaulters = fees.defaulters()
    assert [s.admission_number for _, s in defaulters] == ["ADM-002", "ADM-001"]
    assert defaulters[0][0].balance == Decimal("15000.00")


def test_mark_overdue_only_past_due_with_balance(fees, payment_db):
    student_id = add_student(payment_db)
    past = add_fee_record(payment_db, student_id, "5000", term=1, due_date=dt.date(2024, 3, 1))
    future = add_fee_record(payment_db, student_id, "5000", term=2, due_date=dt.date(2024, 12, 1))
    settled = add_fee_record(payment_db, student_id, "5000", term=3, paid="5000", due_date=dt.date(2024, 3, 1))

    assert fees.mark_overdue(today=dt.date(2024, 10, 17)) == 1
    assert get_fee_record(payment_db, past).status is FeeStatus.OVERDUE
    assert get_fee_record(payment_db, future).status is FeeStatus.PENDING
    assert get_fee_record(payment_db, settled).status is FeeStatus.PAID

    assert fees.mark_overdue(today=dt.date(2024, 10, 17)) == 0


def test_send_reminders_one_per_defaulter_with_phone(fees, notifier, payment_db):
    a = add_student(payment_db, "ADM-001", parent_phone="0712345678")
    b = add_student(payment_db, "ADM-002", parent_phone=None)
    add_fee_record(payment_db, a, "5000")
    add_fee_record(payment_db, b, "7000")

    assert fees.send_reminders() == 1
    event = notifier.reminders[0]
    assert event.phone == "254712345678"
    assert event.admission_number == "ADM-001"
    assert event.balance == 5000.0


def test_send_reminders_survives_notifier_failure(payment_db):
    student_id = add_student(payment_db)
    add_fee_record(payment_db, student_id, "5000")
    assert FeeService(FakeNotifier(fail=True), payment_db).send_reminders() == 0
