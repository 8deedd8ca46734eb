import datetime as dt
from decimal import Decimal

import pytest
from sqlalchemy import update

from conftest import add_fee_record, add_student, get_fee_record, get_payment, stk_callback_payload
from libs.errors import NotFoundError, ProviderError, ValidationError
from payment_service.app.enums import CallbackOutcome, FeeStatus, PaymentMethod, PaymentStatus
from payment_service.app.mpesa.callbacks import C2BConfirmation, parse_stk_callback
from payment_service.app.mpesa.daraja import StkStatus
from payment_service.app.reconciliation import PaymentService
from payment_service.db.schema import payments


@pytest.fixture
def service(payment_db, provider, notifier):
    return PaymentService(provider, notifier, payment_db)


def callback(request_id, result_code=0, **kwargs):
    return parse_stk_callback(stk_callback_payload(request_id, result_code, **kwargs))


def c2b(trans_id="QKJ1ABC001", account="ADM-001", amount="2500", msisdn="254712345678"):
    return C2BConfirmation.model_validate({
        "TransactionType": "Pay Bill",
        "TransID": trans_id,
        "TransTime": "20241017143015",
        "TransAmount": amount,
        "BusinessShortCode": "600000",
        "BillRefNumber": account,
        "MSISDN": msisdn,
        "FirstName": "Jane",
        "LastName": "Otieno",
    })


# ---- initiation ----

def test_initiate_creates_pending_payment_linked_to_outstanding_record(service, provider, payment_db, student):
    initiated = service.initiate_stk_push(student["student_id"], "1000", "0712 345 678")

    assert provider.pushes[0]["phone"] == "254712345678"
    assert provider.pushes[0]["account_reference"] == "ADM-001"
    assert initiated.fee_record_id == student["fee_record_id"]

    payment = get_payment(payment_db, initiated.payment_id)
    assert payment.status is PaymentStatus.PENDING
    assert payment.method is PaymentMethod.MPESA
    assert payment.mpesa_request_id == initiated.request_id
    assert payment.amount == Decimal("1000.00")
    assert payment.receipt_number.startswith("REC-")


def test_initiate_provider_error_writes_nothing(service, provider, payment_db, student):
    provider.initiate_error = ProviderError("STK Push failed", status=500)
    with pytest.raises(ProviderError):
        service.initiate_stk_push(student["student_id"], 1000, "0712345678")
    assert service.list_payments() == []


@pytest.mark.parametrize("amount", [0, "-5"])
def test_initiate_rejects_non_positive_amount(service, provider, student, amount):
    with pytest.raises(ValidationError):
        service.initiate_stk_push(student["student_id"], amount, "0712345678")
    assert provider.pushes == []


def test_initiate_rejects_bad_phone_and_unknown_student(service, provider, student):
    with pytest.raises(ValidationError):
        service.initiate_stk_push(student["student_id"], 100, "12345")
    with pytest.raises(NotFoundError):
        service.initiate_stk_push("missing", 100, "0712345678")
    assert provider.pushes == []


def test_initiate_rejects_fee_record_of_another_student(service, payment_db, student):
    other = add_student(payment_db, "ADM-002")
    foreign = add_fee_record(payment_db, other, "5000")
    with pytest.raises(NotFoundError):
        service.initiate_stk_push(student["student_id"], 100, "0712345678", fee_record_id=foreign)


# ---- STK callback ----

def test_successful_callback_completes_payment_and_updates_ledger(service, notifier, payment_db, student):
    initiated = service.initiate_stk_push(student["student_id"], 5000, "0712345678")

    outcome = service.handle_stk_callback(callback(initiated.request_id, amount=5000))

    assert outcome is CallbackOutcome.COMPLETED
    payment = get_payment(payment_db, initiated.payment_id)
    assert payment.status is PaymentStatus.COMPLETED
    assert payment.mpesa_receipt_number == "QKJ7XYZ123"
    assert payment.transaction_date == dt.datetime(2024, 10, 17, 14, 30, 15)

    record = get_fee_record(payment_db, student["fee_record_id"])
    assert record.paid_amount == Decimal("5000.00")
    assert record.balance == Decimal("10000.00")
    assert record.status is FeeStatus.PARTIAL

    assert len(notifier.completed) == 1
    event = notifier.completed[0]
    assert event.phone == "254712345678"
    assert event.new_balance == 10000.0
    assert event.student_name == "Achieng Otieno"


def test_duplicate_callback_is_a_no_op(service, notifier, payment_db, student):
    initiated = service.initiate_stk_push(student["student_id"], 5000, "0712345678")
    first = service.handle_stk_callback(callback(initiated.request_id))
    second = service.handle_stk_callback(callback(initiated.request_id))

    assert first is CallbackOutcome.COMPLETED
    assert second is CallbackOutcome.IGNORED
    assert get_fee_record(payment_db, student["fee_record_id"]).paid_amount == Decimal("5000.00")
    assert len(notifier.completed) == 1


def test_failed_callback_leaves_ledger_untouched(service, notifier, payment_db, student):
    initiated = service.initiate_stk_push(student["student_id"], 5000, "0712345678")

    outcome = service.handle_stk_callback(callback(initiated.request_id, 1032))

    assert outcome is CallbackOutcome.FAILED
    payment = get_payment(payment_db, initiated.payment_id)
    assert payment.status is PaymentStatus.FAILED
    assert payment.result_code == 1032
    assert payment.result_desc == "Request cancelled by user"
    record = get_fee_record(payment_db, student["fee_record_id"])
    assert record.balance == Decimal("15000.00")
    assert record.status is FeeStatus.PENDING
    assert notifier.completed == []
    assert notifier.failed[0].reason_code == "1032"

    # A late success for an already failed payment changes nothing.
    assert service.handle_stk_callback(callback(initiated.request_id)) is CallbackOutcome.IGNORED
    assert get_payment(payment_db, initiated.payment_id).status is PaymentStatus.FAILED


def test_unknown_request_id_is_ignored(service, notifier):
    assert service.handle_stk_callback(callback("ws_CO_unknown")) is CallbackOutcome.IGNORED
    assert notifier.completed == [] and notifier.failed == []


def test_notifier_failure_does_not_undo_completion(payment_db, provider, student):
    from conftest import FakeNotifier

    service = PaymentService(provider, FakeNotifier(fail=True), payment_db)
    initiated = service.initiate_stk_push(student["student_id"], 15000, "0712345678")

    assert service.handle_stk_callback(callback(initiated.request_id)) is CallbackOutcome.COMPLETED
    assert get_payment(payment_db, initiated.payment_id).status is PaymentStatus.COMPLETED
    record = get_fee_record(payment_db, student["fee_record_id"])
    assert record.balance == Decimal("0.00")
    assert record.status is FeeStatus.PAID


def test_overpayment_via_callback_keeps_negative_balance(service, payment_db, student):
    initiated = service.initiate_stk_push(student["student_id"], 16000, "0712345678")
    service.handle_stk_callback(callback(initiated.request_id))
    record = get_fee_record(payment_db, student["fee_record_id"])
    assert record.balance == Decimal("-1000.00")
    assert record.status is FeeStatus.PAID


def test_payment_without_fee_record_completes_without_ledger(service, notifier, payment_db):
    student_id = add_student(payment_db, "ADM-009", parent_phone=None)
    initiated = service.initiate_stk_push(student_id, 300, "0722000111")
    assert initiated.fee_record_id is None

    assert service.handle_stk_callback(callback(initiated.request_id)) is CallbackOutcome.COMPLETED
    assert notifier.completed[0].new_balance is None
    assert notifier.completed[0].phone == "254722000111"


# ---- C2B ----

def test_c2b_applies_to_newest_outstanding_record(service, notifier, payment_db):
    student_id = add_student(payment_db, "ADM-001")
    older = add_fee_record(payment_db, student_id, "10000", term=1, created_at=dt.datetime(2024, 1, 5))
    newer = add_fee_record(payment_db, student_id, "12000", term=2, created_at=dt.datetime(2024, 5, 5))
    settled = add_fee_record(payment_db, student_id, "9000", term=3, paid="9000",
                             created_at=dt.datetime(2024, 9, 5))

    assert service.handle_c2b_confirmation(c2b(amount="2500")) is CallbackOutcome.COMPLETED

    assert get_fee_record(payment_db, newer).balance == Decimal("9500.00")
    assert get_fee_record(payment_db, older).balance == Decimal("10000.00")
    assert get_fee_record(payment_db, settled).balance == Decimal("0.00")

    payment = service.list_payments(student_id=student_id)[0]
    assert payment.status is PaymentStatus.COMPLETED
    assert payment.mpesa_receipt_number == "QKJ1ABC001"
    assert payment.paid_by == "Jane Otieno"
    assert payment.fee_record_id == newer
    assert notifier.completed[0].mpesa_receipt_number == "QKJ1ABC001"


def test_c2b_duplicate_trans_id_is_a_no_op(service, notifier, payment_db, student):
    assert service.handle_c2b_confirmation(c2b()) is CallbackOutcome.COMPLETED
    assert service.handle_c2b_confirmation(c2b()) is CallbackOutcome.IGNORED

    assert len(service.list_payments()) == 1
    assert get_fee_record(payment_db, student["fee_record_id"]).paid_amount == Decimal("2500.00")
    assert len(notifier.completed) == 1


def test_c2b_receipt_number_collision_retries_with_fresh_number(service, notifier, payment_db, student, monkeypatch):
    taken = service.record_manual_payment(student["student_id"], 100, PaymentMethod.CASH).receipt_number
    numbers = iter([taken, "REC-1729175415000-042"])
    monkeypatch.setattr("payment_service.app.reconciliation.generate_receipt_number", lambda: next(numbers))

    assert service.handle_c2b_confirmation(c2b()) is CallbackOutcome.COMPLETED

    recorded = [p for p in service.list_payments() if p.mpesa_receipt_number == "QKJ1ABC001"]
    assert len(recorded) == 1
    assert recorded[0].receipt_number == "REC-1729175415000-042"
    assert get_fee_record(payment_db, student["fee_record_id"]).paid_amount == Decimal("2600.00")
    assert len(notifier.completed) == 2


def test_c2b_unknown_account_is_ignored(service, student):
    assert service.handle_c2b_confirmation(c2b(account="NOPE")) is CallbackOutcome.IGNORED
    assert service.list_payments() == []


def test_validate_c2b_follows_reject_setting(service, student, monkeypatch):
    from payment_service.app.settings import settings

    assert service.validate_c2b(c2b(account="NOPE")) is True
    monkeypatch.setattr(settings, "C2B_REJECT_UNKNOWN_ACCOUNT", True)
    assert service.validate_c2b(c2b(account="NOPE")) is False
    assert service.validate_c2b(c2b()) is True


# ---- manual payments ----

def test_manual_cash_payment_applies_to_explicit_record(service, notifier, payment_db, student):
    payment = service.record_manual_payment(
        student["student_id"], "4000", PaymentMethod.CASH,
        fee_record_id=student["fee_record_id"], paid_by="Mr. Otieno", notes="Bursar desk",
    )
    assert payment.status is PaymentStatus.COMPLETED
    assert payment.method is PaymentMethod.CASH
    assert get_fee_record(payment_db, student["fee_record_id"]).balance == Decimal("11000.00")
    assert notifier.completed[0].phone == "254712345678"


def test_manual_payment_rejects_zero_and_unknown_student(service, student):
    with pytest.raises(ValidationError):
        service.record_manual_payment(student["student_id"], 0, PaymentMethod.CASH)
    with pytest.raises(NotFoundError):
        service.record_manual_payment("missing", 10, PaymentMethod.BANK_TRANSFER)


# ---- status query / reconciliation ----

def _age_payment(payment_db, payment_id, minutes):
    from payment_service.app.db import session_scope

    with session_scope(payment_db) as db:
        db.execute(
            update(payments)
            .where(payments.c.payment_id == payment_id)
            .values(created_at=dt.datetime.utcnow() - dt.timedelta(minutes=minutes))
        )


def test_query_status_still_processing_leaves_pending(service, payment_db, student):
    initiated = service.initiate_stk_push(student["student_id"], 1000, "0712345678")
    status, outcome = service.query_status(initiated.request_id)
    assert status.is_final is False
    assert outcome is CallbackOutcome.STILL_PENDING
    assert get_payment(payment_db, initiated.payment_id).status is PaymentStatus.PENDING


def test_reconcile_resolves_stale_pending_exactly_once(service, provider, notifier, payment_db, student):
    paid = service.initiate_stk_push(student["student_id"], 1000, "0712345678")
    cancelled = service.initiate_stk_push(student["student_id"], 2000, "0712345678")
    waiting = service.initiate_stk_push(student["student_id"], 3000, "0712345678")
    broken = service.initiate_stk_push(student["student_id"], 4000, "0712345678")
    fresh = service.initiate_stk_push(student["student_id"], 5000, "0712345678")
    for p in (paid, cancelled, waiting, broken):
        _age_payment(payment_db, p.payment_id, 30)

    provider.statuses[paid.request_id] = StkStatus(paid.request_id, 0, "The service request is processed successfully.", {})
    provider.statuses[cancelled.request_id] = StkStatus(cancelled.request_id, 1032, "Request cancelled by user", {})
    provider.statuses[broken.request_id] = ProviderError("STK Push query failed", status=500)

    report = service.reconcile_pending(older_than_minutes=5)

    assert (report.checked, report.completed, report.failed, report.still_pending, report.errors) == (4, 1, 1, 1, 1)
    assert fresh.request_id not in provider.queries
    assert get_payment(payment_db, paid.payment_id).status is PaymentStatus.COMPLETED
    assert get_payment(payment_db, cancelled.payment_id).status is PaymentStatus.FAILED
    assert get_payment(payment_db, waiting.payment_id).status is PaymentStatus.PENDING
    assert get_fee_record(payment_db, student["fee_record_id"]).paid_amount == Decimal("1000.00")

    # The late callback for the payment reconciliation already completed is ignored.
    assert service.handle_stk_callback(callback(paid.request_id)) is CallbackOutcome.IGNORED
    assert get_fee_record(payment_db, student["fee_record_id"]).paid_amount == Decimal("1000.00")
    assert len(notifier.completed) == 1

    second = service.reconcile_pending(older_than_minutes=5)
    assert second.completed == 0 and second.failed == 0


def test_reconcile_continues_past_unexpected_error(service, provider, payment_db, student):
    broken = service.initiate_stk_push(student["student_id"], 1000, "0712345678")
    paid = service.initiate_stk_push(student["student_id"], 2000, "0712345678")
    _age_payment(payment_db, broken.payment_id, 40)
    _age_payment(payment_db, paid.payment_id, 30)

    provider.statuses[broken.request_id] = RuntimeError("connection reset")
    provider.statuses[paid.request_id] = StkStatus(paid.request_id, 0, "The service request is processed successfully.", {})

    report = service.reconcile_pending(older_than_minutes=5)

    assert (report.checked, report.completed, report.errors) == (2, 1, 1)
    assert get_payment(payment_db, paid.payment_id).status is PaymentStatus.COMPLETED
    assert get_payment(payment_db, broken.payment_id).status is PaymentStatus.PENDING


def test_list_payments_applies_each_date_bound_alone(service, student):
    service.record_manual_payment(student["student_id"], 1000, PaymentMethod.CASH)
    now = dt.datetime.utcnow()
    tomorrow, yesterday = now + dt.timedelta(days=1), now - dt.timedelta(days=1)

    assert service.list_payments(start=tomorrow) == []
    assert service.list_payments(end=yesterday) == []
    assert len(service.list_payments(start=yesterday)) == 1
    assert len(service.list_payments(end=tomorrow)) == 1


def test_payment_stats_sum_completed_only(service, student):
    service.record_manual_payment(student["student_id"], 1000, PaymentMethod.CASH)
    service.record_manual_payment(student["student_id"], 500, PaymentMethod.BANK_TRANSFER)
    service.initiate_stk_push(student["student_id"], 9999, "0712345678")

    stats = service.payment_stats()
    assert stats["total_collected"] == Decimal("1500")
    assert stats["today_collected"] == Decimal("1500")
