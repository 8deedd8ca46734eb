from __future__ import annotations

import logging
import uuid
from collections import Counter
from dataclasses import asdict, replace
from typing import Dict, List, Optional

from libs.errors import ConflictError, NotFoundError
from timetable_service.app import repository as repo
from timetable_service.app.conflicts import (
    DAYS_IN_ORDER,
    BulkOutcome,
    Conflict,
    DayOfWeek,
    TimeSlot,
    find_conflicts,
    plan_bulk,
    validate_slot,
)
from timetable_service.app.db import SessionFactory, session_scope

logger = logging.getLogger(__name__)


def group_by_day(slots: List[TimeSlot]) -> Dict[str, List[TimeSlot]]:
    grouped: Dict[str, List[TimeSlot]] = {day.value: [] for day in DAYS_IN_ORDER}
    for slot in sorted(slots, key=lambda s: s.start_time):
        grouped[slot.day_of_week.value].append(slot)
    return grouped


class TimetableService:
    """Slot scheduling with conflict detection across teacher, class and room."""

    def __init__(self, session_factory: Optional[SessionFactory] = None):
        self._session_factory = session_factory

    def _session(self):
        return session_scope(self._session_factory)

    def check_conflicts(self, candidate: TimeSlot, *, exclude_id: Optional[str] = None) -> List[Conflict]:
        with self._session() as db:
            existing = repo.slots_in_scope(db, candidate.academic_year, candidate.term, candidate.day_of_week)
        return find_conflicts(candidate, existing, exclude_id=exclude_id)

    def create_slot(self, candidate: TimeSlot) -> TimeSlot:
        slot = candidate.with_id(str(uuid.uuid4()))
        with self._session() as db:
            existing = repo.slots_in_scope(db, slot.academic_year, slot.term, slot.day_of_week)
            conflicts = find_conflicts(slot, existing)
            if conflicts:
                logger.info(
                    "timetable slot rejected class_id=%s teacher_id=%s day=%s %s-%s conflicts=%s",
                    slot.class_id, slot.teacher_id, slot.day_of_week.value,
                    slot.start_time, slot.end_time, [c.type.value for c in conflicts],
                )
                raise ConflictError("Scheduling conflicts detected", conflicts)
            repo.insert_slot(db, slot)
        logger.info("timetable slot created slot_id=%s class_id=%s", slot.id, slot.class_id)
        return slot

    def bulk_create(self, candidates: List[TimeSlot]) -> BulkOutcome:
        """Candidates are validated in order against an accumulating committed set."""
        with_ids = [c.with_id(str(uuid.uuid4())) for c in candidates]
        with self._session() as db:
            committed = repo.slots_in_terms(db, ((c.academic_year, c.term) for c in with_ids))
            outcome = plan_bulk(with_ids, committed)
            for slot in outcome.accepted:
                repo.insert_slot(db, slot)
        logger.info(
            "timetable bulk create requested=%s created=%s rejected=%s",
            len(candidates), len(outcome.accepted), len(outcome.rejected),
        )
        return outcome

    def update_slot(self, slot_id: str, changes: dict) -> TimeSlot:
        with self._session() as db:
            current = repo.get_slot(db, slot_id, for_update=True)
            if current is None:
                raise NotFoundError(f"Slot {slot_id} not found")

            patch = {k: v for k, v in changes.items() if v is not None or k == "room"}
            if "day_of_week" in patch:
                patch["day_of_week"] = DayOfWeek(patch["day_of_week"])
            merged = replace(current, **patch)
            validate_slot(merged)

            existing = repo.slots_in_scope(db, merged.academic_year, merged.term, merged.day_of_week)
            conflicts = find_conflicts(merged, existing, exclude_id=slot_id)
            if conflicts:
                raise ConflictError("Scheduling conflicts detected", conflicts)
            repo.update_slot(db, merged)
        logger.info("timetable slot updated slot_id=%s", slot_id)
        return merged

    def get_slot(self, slot_id: str) -> TimeSlot:
        with self._session() as db:
            slot = repo.get_slot(db, slot_id)
        if slot is None:
            raise NotFoundError(f"Slot {slot_id} not found")
        return slot

    def delete_slot(self, slot_id: str) -> None:
        with self._session() as db:
            if not repo.delete_slot(db, slot_id):
                raise NotFoundError(f"Slot {slot_id} not found")
        logger.info("timetable slot deleted slot_id=%s", slot_id)

    def delete_class_slots(self, class_id: str, academic_year: Optional[str] = None,
                           term: Optional[int] = None) -> int:
        with self._session() as db:
            count = repo.delete_class_slots(db, class_id, academic_year, term)
        logger.info("timetable class cleared class_id=%s year=%s term=%s count=%s", class_id, academic_year, term, count)
        return count

    def list_slots(self, **filters) -> List[TimeSlot]:
        with self._session() as db:
            slots = repo.list_slots(db, **filters)
        return sorted(slots, key=lambda s: (DAYS_IN_ORDER.index(s.day_of_week), s.start_time))

    def class_timetable(self, class_id: str, academic_year: Optional[str] = None,
                        term: Optional[int] = None) -> List[TimeSlot]:
        return self.list_slots(class_id=class_id, academic_year=academic_year, term=term)

    def teacher_timetable(self, teacher_id: str, academic_year: Optional[str] = None,
                          term: Optional[int] = None) -> List[TimeSlot]:
        return self.list_slots(teacher_id=teacher_id, academic_year=academic_year, term=term)

    def statistics(self, academic_year: Optional[str] = None, term: Optional[int] = None) -> dict:
        slots = self.list_slots(academic_year=academic_year, term=term)
        by_day = Counter(s.day_of_week.value for s in slots)
        return {
            "total_slots": len(slots),
            "unique_teachers": len({s.teacher_id for s in slots}),
            "unique_classes": len({s.class_id for s in slots}),
            "slots_by_day": dict(by_day),
        }


def slot_as_dict(slot: TimeSlot) -> dict:
    data = asdict(slot)
    data["day_of_week"] = slot.day_of_week.value
    return data
