from __future__ import annotations

import datetime as dt
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy import and_, delete, insert, or_, select, update
from sqlalchemy.orm import Session

from timetable_service.app.conflicts import DayOfWeek, TimeSlot
from timetable_service.db.schema import timetable_slots as t


def _to_slot(row: Mapping[str, Any]) -> TimeSlot:
    return TimeSlot(
        id=row["slot_id"],
        class_id=row["class_id"],
        subject_id=row["subject_id"],
        teacher_id=row["teacher_id"],
        day_of_week=DayOfWeek(row["day_of_week"]),
        start_time=row["start_time"],
        end_time=row["end_time"],
        room=row["room"],
        academic_year=row["academic_year"],
        term=int(row["term"]),
    )


def _values(slot: TimeSlot) -> dict:
    return {
        "class_id": slot.class_id,
        "subject_id": slot.subject_id,
        "teacher_id": slot.teacher_id,
        "day_of_week": slot.day_of_week.value,
        "start_time": slot.start_time,
        "end_time": slot.end_time,
        "room": slot.room or None,
        "academic_year": slot.academic_year,
        "term": slot.term,
    }


def get_slot(db: Session, slot_id: str, *, for_update: bool = False) -> Optional[TimeSlot]:
    stmt = select(t).where(t.c.slot_id == slot_id)
    if for_update:
        stmt = stmt.with_for_update()
    row = db.execute(stmt).mappings().first()
    return _to_slot(row) if row else None


def slots_in_scope(db: Session, academic_year: str, term: int, day: DayOfWeek) -> List[TimeSlot]:
    rows = db.execute(
        select(t).where(
            t.c.academic_year == academic_year,
            t.c.term == term,
            t.c.day_of_week == day.value,
        )
    ).mappings().all()
    return [_to_slot(r) for r in rows]


def slots_in_terms(db: Session, terms: Iterable[Tuple[str, int]]) -> List[TimeSlot]:
    pairs = list(set(terms))
    if not pairs:
        return []
    rows = db.execute(
        select(t).where(or_(*(and_(t.c.academic_year == y, t.c.term == n) for y, n in pairs)))
    ).mappings().all()
    return [_to_slot(r) for r in rows]


def insert_slot(db: Session, slot: TimeSlot) -> TimeSlot:
    db.execute(insert(t).values(slot_id=slot.id, **_values(slot)))
    return slot


def update_slot(db: Session, slot: TimeSlot) -> TimeSlot:
    db.execute(
        update(t)
        .where(t.c.slot_id == slot.id)
        .values(updated_at=dt.datetime.utcnow(), **_values(slot))
    )
    return slot


def delete_slot(db: Session, slot_id: str) -> int:
    return db.execute(delete(t).where(t.c.slot_id == slot_id)).rowcount


def delete_class_slots(db: Session, class_id: str, academic_year: Optional[str] = None,
                       term: Optional[int] = None) -> int:
    stmt = delete(t).where(t.c.class_id == class_id)
    if academic_year:
        stmt = stmt.where(t.c.academic_year == academic_year)
    if term:
        stmt = stmt.where(t.c.term == term)
    return db.execute(stmt).rowcount


def list_slots(
    db: Session,
    *,
    class_id: Optional[str] = None,
    teacher_id: Optional[str] = None,
    academic_year: Optional[str] = None,
    term: Optional[int] = None,
    day: Optional[DayOfWeek] = None,
) -> List[TimeSlot]:
    stmt = select(t)
    if class_id:
        stmt = stmt.where(t.c.class_id == class_id)
    if teacher_id:
        stmt = stmt.where(t.c.teacher_id == teacher_id)
    if academic_year:
        stmt = stmt.where(t.c.academic_year == academic_year)
    if term:
        stmt = stmt.where(t.c.term == term)
    if day:
        stmt = stmt.where(t.c.day_of_week == day.value)
    rows = db.execute(stmt.order_by(t.c.start_time)).mappings().all()
    return [_to_slot(r) for r in rows]
