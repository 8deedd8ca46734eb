"""
Payment reconciliation.

A payment moves PENDING -> COMPLETED or PENDING -> FAILED exactly once.
The status write and the fee-ledger update commit together; notifications
go out only after that commit and can never undo it.
"""
from __future__ import annotations

import datetime as dt
import logging
import random
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Tuple, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from libs.errors import NotFoundError, ProviderError, ValidationError
from libs.event_contracts.payment_v1 import PaymentCompleted, PaymentFailed
from libs.phone import format_phone_number, is_valid_msisdn
from payment_service.app import repository as repo
from payment_service.app.db import SessionFactory, session_scope
from payment_service.app.enums import CallbackOutcome, PaymentMethod, PaymentStatus
from payment_service.app.ledger import Amount, apply_payment, to_money
from payment_service.app.messaging.publisher import Notifier
from payment_service.app.models import FeeRecord, Payment, Student
from payment_service.app.mpesa.callbacks import (
    SUCCESS,
    C2BConfirmation,
    ParsedStkCallback,
    parse_mpesa_timestamp,
    result_message,
)
from payment_service.app.mpesa.daraja import PaymentProvider, StkStatus
from payment_service.app.settings import settings

logger = logging.getLogger(__name__)

PaymentEvent = Union[PaymentCompleted, PaymentFailed]


C2B_RECEIPT_ATTEMPTS = 3


def generate_receipt_number() -> str:
    return f"REC-{int(time.time() * 1000)}-{random.randint(0, 999):03d}"


@dataclass(frozen=True)
class InitiatedPayment:
    payment_id: str
    request_id: str
    phone: str
    fee_record_id: Optional[str]
    customer_message: str


@dataclass
class ReconcileReport:
    checked: int = 0
    completed: int = 0
    failed: int = 0
    still_pending: int = 0
    errors: int = 0


class PaymentService:
    def __init__(
        self,
        provider: PaymentProvider,
        notifier: Notifier,
        session_factory: Optional[SessionFactory] = None,
    ) -> None:
        self._provider = provider
        self._notifier = notifier
        self._session_factory = session_factory

    def _session(self):
        return session_scope(self._session_factory)

    # ---- helpers ----
    @staticmethod
    def _require_student(db: Session, student_id: str) -> Student:
        student = repo.get_student(db, student_id)
        if student is None:
            raise NotFoundError(f"Student {student_id} not found")
        return student

    @staticmethod
    def _fee_record_for(db: Session, student: Student, fee_record_id: Optional[str],
                        *, for_update: bool = False) -> Optional[FeeRecord]:
        if fee_record_id:
            record = repo.get_fee_record(db, fee_record_id, for_update=for_update)
            if record is None or record.student_id != student.id:
                raise NotFoundError(f"Fee record {fee_record_id} not found for student {student.id}")
            return record
        return repo.latest_outstanding_fee_record(db, student.id, for_update=for_update)

    @staticmethod
    def _apply_to_ledger(db: Session, record: Optional[FeeRecord], amount: Decimal) -> Optional[Decimal]:
        if record is None:
            return None
        change = apply_payment(record.ledger_entry, amount)
        repo.save_ledger_update(db, record.id, change)
        logger.info(
            "ledger updated fee_record_id=%s paid=%s balance=%s status=%s",
            record.id, change.paid_amount, change.balance, change.status.value,
        )
        return change.balance

    @staticmethod
    def _completed_event(payment: Payment, student: Student, new_balance: Optional[Decimal],
                         mpesa_receipt_number: Optional[str] = None) -> PaymentCompleted:
        return PaymentCompleted(
            payment_id=payment.id,
            student_id=student.id,
            student_name=student.full_name,
            phone=payment.mpesa_phone or (
                format_phone_number(student.parent_phone) if student.parent_phone else None
            ),
            amount=float(payment.amount),
            method=payment.method.value,
            receipt_number=payment.receipt_number,
            mpesa_receipt_number=mpesa_receipt_number or payment.mpesa_receipt_number,
            fee_record_id=payment.fee_record_id,
            new_balance=float(new_balance) if new_balance is not None else None,
        )

    def _dispatch(self, event: PaymentEvent) -> None:
        """Fire-and-forget; the payment is already committed."""
        try:
            if isinstance(event, PaymentCompleted):
                self._notifier.payment_completed(event)
            else:
                self._notifier.payment_failed(event)
        except Exception:
            logger.exception("notification dispatch failed payment_id=%s", event.payment_id)

    # ---- STK push ----
    def initiate_stk_push(self, student_id: str, amount: Amount, phone_number: str,
                          fee_record_id: Optional[str] = None) -> InitiatedPayment:
        amount = to_money(amount)
        if amount <= 0:
            raise ValidationError("Amount must be greater than zero")
        phone = format_phone_number(phone_number)
        if not is_valid_msisdn(phone):
            raise ValidationError(f"Invalid phone number '{phone_number}'")

        with self._session() as db:
            student = self._require_student(db, student_id)
            record = self._fee_record_for(db, student, fee_record_id)

        # No transaction is held open across the provider round-trip.
        pushed = self._provider.initiate(
            phone=phone,
            amount=amount,
            account_reference=student.admission_number,
            description=f"School fees - {student.full_name}",
        )

        with self._session() as db:
            payment_id = repo.insert_payment(
                db,
                student_id=student.id,
                fee_record_id=record.id if record else None,
                amount=amount,
                method=PaymentMethod.MPESA,
                status=PaymentStatus.PENDING,
                receipt_number=generate_receipt_number(),
                mpesa_request_id=pushed.request_id,
                mpesa_phone=phone,
            )
        logger.info(
            "stk push initiated payment_id=%s request_id=%s student_id=%s amount=%s",
            payment_id, pushed.request_id, student.id, amount,
        )
        return InitiatedPayment(
            payment_id=payment_id,
            request_id=pushed.request_id,
            phone=phone,
            fee_record_id=record.id if record else None,
            customer_message=pushed.customer_message,
        )

    def handle_stk_callback(self, callback: ParsedStkCallback) -> CallbackOutcome:
        return self._resolve(
            callback.checkout_request_id,
            callback.result_code,
            callback.result_desc,
            mpesa_receipt_number=callback.mpesa_receipt_number,
            transaction_date=callback.transaction_date,
        )

    def _resolve(
        self,
        request_id: str,
        result_code: int,
        result_desc: Optional[str],
        *,
        mpesa_receipt_number: Optional[str] = None,
        transaction_date: Optional[dt.datetime] = None,
    ) -> CallbackOutcome:
        event: PaymentEvent
        with self._session() as db:
            # Lookup and status write share one transaction: the row lock is the de-duplication guard.
            payment = repo.get_pending_payment_for_update(db, request_id)
            if payment is None:
                logger.info("no pending payment for request_id=%s; acknowledging without changes", request_id)
                return CallbackOutcome.IGNORED

            desc = result_desc or result_message(result_code)
            if result_code == SUCCESS:
                if not repo.complete_payment(
                    db, payment.id,
                    mpesa_receipt_number=mpesa_receipt_number,
                    transaction_date=transaction_date or dt.datetime.utcnow(),
                    result_desc=desc,
                ):
                    return CallbackOutcome.IGNORED
                record = repo.get_fee_record(db, payment.fee_record_id, for_update=True) if payment.fee_record_id else None
                new_balance = self._apply_to_ledger(db, record, payment.amount)
                student = self._require_student(db, payment.student_id)
                event = self._completed_event(payment, student, new_balance, mpesa_receipt_number)
                outcome = CallbackOutcome.COMPLETED
            else:
                if not repo.fail_payment(db, payment.id, result_code=result_code, result_desc=desc):
                    return CallbackOutcome.IGNORED
                event = PaymentFailed(
                    payment_id=payment.id,
                    student_id=payment.student_id,
                    phone=payment.mpesa_phone,
                    amount=float(payment.amount),
                    reason_code=str(result_code),
                    reason_message=desc,
                )
                outcome = CallbackOutcome.FAILED

        logger.info("payment resolved request_id=%s outcome=%s result_code=%s", request_id, outcome.value, result_code)
        self._dispatch(event)
        return outcome

    # ---- C2B (paybill / till) ----
    def validate_c2b(self, confirmation: C2BConfirmation) -> bool:
        if not settings.C2B_REJECT_UNKNOWN_ACCOUNT:
            return True
        with self._session() as db:
            return repo.get_student_by_admission(db, confirmation.BillRefNumber) is not None

    def handle_c2b_confirmation(self, confirmation: C2BConfirmation) -> CallbackOutcome:
        amount = to_money(confirmation.TransAmount)
        for attempt in range(1, C2B_RECEIPT_ATTEMPTS + 1):
            try:
                recorded = self._record_c2b(confirmation, amount)
                break
            except IntegrityError:
                with self._session() as db:
                    duplicate = repo.payment_with_mpesa_receipt_exists(db, confirmation.TransID)
                if duplicate:
                    logger.info("c2b confirmation lost duplicate race trans_id=%s", confirmation.TransID)
                    return CallbackOutcome.IGNORED
                # receipt_number collision
                logger.warning("c2b receipt number collision trans_id=%s attempt=%s",
                               confirmation.TransID, attempt)
                if attempt == C2B_RECEIPT_ATTEMPTS:
                    raise
        if recorded is None:
            return CallbackOutcome.IGNORED
        payment, event = recorded

        logger.info("c2b payment recorded payment_id=%s trans_id=%s amount=%s", payment.id, confirmation.TransID, amount)
        self._dispatch(event)
        return CallbackOutcome.COMPLETED

    def _record_c2b(self, confirmation: C2BConfirmation,
                    amount: Decimal) -> Optional[Tuple[Payment, PaymentCompleted]]:
        """One transaction; None when the confirmation is not recorded."""
        with self._session() as db:
            student = repo.get_student_by_admission(db, confirmation.BillRefNumber)
            if student is None:
                logger.warning("c2b confirmation for unknown account=%s trans_id=%s",
                               confirmation.BillRefNumber, confirmation.TransID)
                return None
            if repo.payment_with_mpesa_receipt_exists(db, confirmation.TransID):
                logger.info("c2b confirmation duplicate trans_id=%s", confirmation.TransID)
                return None
            if amount <= 0:
                logger.warning("c2b confirmation non-positive amount trans_id=%s", confirmation.TransID)
                return None

            record = repo.latest_outstanding_fee_record(db, student.id, for_update=True)
            payment_id = repo.insert_payment(
                db,
                student_id=student.id,
                fee_record_id=record.id if record else None,
                amount=amount,
                method=PaymentMethod.MPESA,
                status=PaymentStatus.COMPLETED,
                receipt_number=generate_receipt_number(),
                mpesa_receipt_number=confirmation.TransID,
                mpesa_phone=confirmation.MSISDN or None,
                transaction_date=parse_mpesa_timestamp(confirmation.TransTime) or dt.datetime.utcnow(),
                paid_by=confirmation.payer_name,
            )
            new_balance = self._apply_to_ledger(db, record, amount)
            payment = repo.get_payment(db, payment_id)
            return payment, self._completed_event(payment, student, new_balance)

    # ---- cash / bank ----
    def record_manual_payment(
        self,
        student_id: str,
        amount: Amount,
        method: PaymentMethod,
        *,
        fee_record_id: Optional[str] = None,
        paid_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Payment:
        amount = to_money(amount)
        if amount <= 0:
            raise ValidationError("Amount must be greater than zero")

        with self._session() as db:
            student = self._require_student(db, student_id)
            record = self._fee_record_for(db, student, fee_record_id, for_update=True)
            payment_id = repo.insert_payment(
                db,
                student_id=student.id,
                fee_record_id=record.id if record else None,
                amount=amount,
                method=method,
                status=PaymentStatus.COMPLETED,
                receipt_number=generate_receipt_number(),
                transaction_date=dt.datetime.utcnow(),
                paid_by=paid_by,
                notes=notes,
            )
            new_balance = self._apply_to_ledger(db, record, amount)
            payment = repo.get_payment(db, payment_id)
            event = self._completed_event(payment, student, new_balance)

        logger.info("manual payment recorded payment_id=%s method=%s amount=%s", payment.id, method.value, amount)
        self._dispatch(event)
        return payment

    # ---- status query / stale pending sweep ----
    def query_status(self, request_id: str) -> Tuple[StkStatus, CallbackOutcome]:
        status = self._provider.query_status(request_id)
        if not status.is_final:
            return status, CallbackOutcome.STILL_PENDING
        outcome = self._resolve(request_id, status.result_code, status.result_desc)
        return status, outcome

    def reconcile_pending(self, older_than_minutes: Optional[int] = None,
                          now: Optional[dt.datetime] = None) -> ReconcileReport:
        minutes = older_than_minutes if older_than_minutes is not None else settings.STALE_PENDING_MIN
        cutoff = (now or dt.datetime.utcnow()) - dt.timedelta(minutes=minutes)
        with self._session() as db:
            request_ids = repo.stale_pending_request_ids(db, cutoff)

        report = ReconcileReport()
        for request_id in request_ids:
            report.checked += 1
            try:
                _, outcome = self.query_status(request_id)
            except ProviderError as exc:
                logger.warning("reconcile query failed request_id=%s: %s", request_id, exc.message)
                report.errors += 1
                continue
            except Exception:
                logger.exception("reconcile failed request_id=%s", request_id)
                report.errors += 1
                continue
            if outcome is CallbackOutcome.COMPLETED:
                report.completed += 1
            elif outcome is CallbackOutcome.FAILED:
                report.failed += 1
            elif outcome is CallbackOutcome.STILL_PENDING:
                report.still_pending += 1
        logger.info(
            "reconcile sweep checked=%s completed=%s failed=%s still_pending=%s errors=%s",
            report.checked, report.completed, report.failed, report.still_pending, report.errors,
        )
        return report

    # ---- reads ----
    def get_payment_by_request_id(self, request_id: str) -> Optional[Payment]:
        with self._session() as db:
            return repo.get_payment_by_request_id(db, request_id)

    def list_payments(self, student_id: Optional[str] = None, start: Optional[dt.datetime] = None,
                      end: Optional[dt.datetime] = None) -> List[Payment]:
        with self._session() as db:
            return repo.list_payments(db, student_id=student_id, start=start, end=end)

    def payment_stats(self, now: Optional[dt.datetime] = None) -> dict:
        now = now or dt.datetime.utcnow()
        midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
        with self._session() as db:
            return {
                "total_collected": repo.sum_completed(db),
                "today_collected": repo.sum_completed(db, midnight),
                "week_collected": repo.sum_completed(db, now - dt.timedelta(days=7)),
                "month_collected": repo.sum_completed(db, midnight.replace(day=1)),
            }
