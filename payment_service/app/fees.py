from __future__ import annotations

import datetime as dt
import logging
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError

from libs.errors import ConflictError, NotFoundError, ValidationError
from libs.event_contracts.fee_v1 import FeeReminderRequested
from libs.phone import format_phone_number
from payment_service.app import repository as repo
from payment_service.app.db import SessionFactory, session_scope
from payment_service.app.enums import FeeStatus
from payment_service.app.ledger import Amount, to_money
from payment_service.app.messaging.publisher import Notifier
from payment_service.app.models import FeeRecord, Student

logger = logging.getLogger(__name__)


class FeeService:
    """Fee records per student and term, plus the defaulter follow-up."""

    def __init__(self, notifier: Notifier, session_factory: Optional[SessionFactory] = None) -> None:
        self._notifier = notifier
        self._session_factory = session_factory

    def _session(self):
        return session_scope(self._session_factory)

    def create_fee_record(self, student_id: str, academic_year: str, term: int, total_amount: Amount,
                          due_date: Optional[dt.date] = None) -> FeeRecord:
        total = to_money(total_amount)
        if total <= 0:
            raise ValidationError("Total amount must be greater than zero")
        if term not in (1, 2, 3):
            raise ValidationError("Term must be 1, 2 or 3")

        try:
            with self._session() as db:
                if repo.get_student(db, student_id) is None:
                    raise NotFoundError(f"Student {student_id} not found")
                fee_record_id = repo.insert_fee_record(
                    db,
                    student_id=student_id,
                    academic_year=academic_year,
                    term=term,
                    total_amount=total,
                    due_date=due_date,
                )
                record = repo.get_fee_record(db, fee_record_id)
        except IntegrityError as exc:
            raise ConflictError(
                f"Fee record for {academic_year} term {term} already exists", conflicts=[]
            ) from exc
        logger.info("fee record created fee_record_id=%s student_id=%s total=%s", record.id, student_id, total)
        return record

    def get_fee_record(self, fee_record_id: str) -> FeeRecord:
        with self._session() as db:
            record = repo.get_fee_record(db, fee_record_id)
        if record is None:
            raise NotFoundError(f"Fee record {fee_record_id} not found")
        return record

    def list_fee_records(self, student_id: Optional[str] = None,
                         status: Optional[FeeStatus] = None) -> List[FeeRecord]:
        with self._session() as db:
            return repo.list_fee_records(db, student_id=student_id, status=status)

    def defaulters(self) -> List[Tuple[FeeRecord, Student]]:
        with self._session() as db:
            return repo.list_defaulters(db)

    def mark_overdue(self, today: Optional[dt.date] = None) -> int:
        with self._session() as db:
            count = repo.mark_overdue(db, today or dt.date.today())
        logger.info("marked %s fee records overdue", count)
        return count

    def send_reminders(self) -> int:
        """One reminder per defaulter with a parent phone; returns how many were queued."""
        sent = 0
        for record, student in self.defaulters():
            if not student.parent_phone:
                continue
            event = FeeReminderRequested(
                fee_record_id=record.id,
                student_id=student.id,
                student_name=student.full_name,
                admission_number=student.admission_number,
                phone=format_phone_number(student.parent_phone),
                balance=float(record.balance),
                academic_year=record.academic_year,
                term=record.term,
            )
            try:
                self._notifier.fee_reminder(event)
            except Exception:
                logger.exception("fee reminder dispatch failed fee_record_id=%s", record.id)
                continue
            sent += 1
        logger.info("fee reminders queued=%s", sent)
        return sent
