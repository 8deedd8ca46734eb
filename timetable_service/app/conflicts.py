"""
Timetable conflict detection.

A lesson occupies the half-open interval [start, end) on one day of one
term. Two lessons collide when their intervals overlap and they share a
teacher, a class or a (non-empty) room. Back-to-back lessons are legal.
"""
from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field, replace
from typing import Iterable, List, Optional, Sequence, Tuple

from libs.errors import ValidationError

_TIME_RE = re.compile(r"([01][0-9]|2[0-3]):([0-5][0-9])")


class DayOfWeek(str, enum.Enum):
    MONDAY = "Monday"
    TUESDAY = "Tuesday"
    WEDNESDAY = "Wednesday"
    THURSDAY = "Thursday"
    FRIDAY = "Friday"
    SATURDAY = "Saturday"
    SUNDAY = "Sunday"


DAYS_IN_ORDER: Tuple[DayOfWeek, ...] = tuple(DayOfWeek)


class ConflictType(str, enum.Enum):
    TEACHER = "teacher"
    CLASS = "class"
    ROOM = "room"


@dataclass(frozen=True)
class TimeSlot:
    class_id: str
    subject_id: str
    teacher_id: str
    day_of_week: DayOfWeek
    start_time: str
    end_time: str
    academic_year: str
    term: int
    room: Optional[str] = None
    id: Optional[str] = None

    @property
    def scope(self) -> Tuple[str, int, DayOfWeek]:
        return (self.academic_year, self.term, self.day_of_week)

    def with_id(self, slot_id: str) -> "TimeSlot":
        return replace(self, id=slot_id)


@dataclass(frozen=True)
class Conflict:
    type: ConflictType
    message: str
    slot: TimeSlot = field(compare=False)


def time_to_minutes(value: str) -> int:
    match = _TIME_RE.fullmatch(value or "")
    if not match:
        raise ValidationError(f"Invalid time '{value}', expected HH:MM (00:00-23:59)")
    return int(match.group(1)) * 60 + int(match.group(2))


def intervals_overlap(start1: int, end1: int, start2: int, end2: int) -> bool:
    return start1 < end2 and end1 > start2


def times_overlap(start1: str, end1: str, start2: str, end2: str) -> bool:
    return intervals_overlap(
        time_to_minutes(start1),
        time_to_minutes(end1),
        time_to_minutes(start2),
        time_to_minutes(end2),
    )


def validate_slot(slot: TimeSlot) -> None:
    if time_to_minutes(slot.start_time) >= time_to_minutes(slot.end_time):
        raise ValidationError(
            f"Start time {slot.start_time} must be before end time {slot.end_time}"
        )
    if slot.term not in (1, 2, 3):
        raise ValidationError(f"Term must be 1, 2 or 3, got {slot.term}")


def _same_room(a: Optional[str], b: Optional[str]) -> bool:
    return bool(a) and bool(b) and a == b


def find_conflicts(
    candidate: TimeSlot,
    existing: Iterable[TimeSlot],
    *,
    exclude_id: Optional[str] = None,
) -> List[Conflict]:
    """
    Every conflict between `candidate` and `existing`, one entry per clashing
    dimension per overlapping slot. `exclude_id` drops the candidate's own
    stored row when it is being updated.
    """
    validate_slot(candidate)
    conflicts: List[Conflict] = []

    for other in existing:
        if exclude_id is not None and other.id == exclude_id:
            continue
        if other.scope != candidate.scope:
            continue
        if not times_overlap(candidate.start_time, candidate.end_time, other.start_time, other.end_time):
            continue

        window = f"{other.day_of_week.value} {other.start_time}-{other.end_time}"
        if other.teacher_id == candidate.teacher_id:
            conflicts.append(Conflict(
                ConflictType.TEACHER,
                f"Teacher {other.teacher_id} is already scheduled for class {other.class_id} "
                f"({other.subject_id}) on {window}",
                other,
            ))
        if other.class_id == candidate.class_id:
            conflicts.append(Conflict(
                ConflictType.CLASS,
                f"Class {other.class_id} already has {other.subject_id} scheduled on {window}",
                other,
            ))
        if _same_room(other.room, candidate.room):
            conflicts.append(Conflict(
                ConflictType.ROOM,
                f"Room {other.room} is already booked for class {other.class_id} on {window}",
                other,
            ))

    return conflicts


@dataclass(frozen=True)
class BulkRejection:
    slot: TimeSlot
    error: str
    conflicts: List[Conflict] = field(default_factory=list)


@dataclass
class BulkOutcome:
    accepted: List[TimeSlot] = field(default_factory=list)
    rejected: List[BulkRejection] = field(default_factory=list)


def plan_bulk(candidates: Sequence[TimeSlot], committed: Iterable[TimeSlot]) -> BulkOutcome:
    """
    Left fold over `candidates`: each one is checked against the committed
    slots plus the candidates accepted before it, in order.
    """
    accumulator = list(committed)
    outcome = BulkOutcome()
    for candidate in candidates:
        try:
            conflicts = find_conflicts(candidate, accumulator)
        except ValidationError as exc:
            outcome.rejected.append(BulkRejection(candidate, exc.message))
            continue
        if conflicts:
            outcome.rejected.append(BulkRejection(candidate, "Scheduling conflicts detected", conflicts))
            continue
        accumulator.append(candidate)
        outcome.accepted.append(candidate)
    return outcome
