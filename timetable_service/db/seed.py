"""
Seed data for Timetable Service.

Creates a Monday/Tuesday timetable for two Grade 4 streams sharing the
science lab, going through the same conflict checks as the API.

Run:
  python -m timetable_service.db.seed
"""

from __future__ import annotations

from timetable_service.app.conflicts import DayOfWeek, TimeSlot
from timetable_service.app.db import get_engine
from timetable_service.app.service import TimetableService
from timetable_service.db.schema import init_schema

ACADEMIC_YEAR = "2024"
TERM = 3

LESSONS = [
    # class, subject, teacher, day, start, end, room
    ("G4-EAST", "MATH", "TSC-1001", DayOfWeek.MONDAY, "08:00", "08:35", None),
    ("G4-EAST", "ENG", "TSC-1002", DayOfWeek.MONDAY, "08:35", "09:10", None),
    ("G4-EAST", "SCI", "TSC-1003", DayOfWeek.MONDAY, "09:10", "09:45", "LAB-1"),
    ("G4-WEST", "SCI", "TSC-1003", DayOfWeek.MONDAY, "08:00", "08:35", "LAB-1"),
    ("G4-WEST", "MATH", "TSC-1001", DayOfWeek.MONDAY, "08:35", "09:10", None),
    ("G4-WEST", "KIS", "TSC-1004", DayOfWeek.MONDAY, "09:10", "09:45", None),
    ("G4-EAST", "KIS", "TSC-1004", DayOfWeek.TUESDAY, "08:00", "08:35", None),
    ("G4-WEST", "ENG", "TSC-1002", DayOfWeek.TUESDAY, "08:00", "08:35", None),
]


def seed() -> None:
    init_schema(get_engine())
    outcome = TimetableService().bulk_create([
        TimeSlot(
            class_id=class_id,
            subject_id=subject_id,
            teacher_id=teacher_id,
            day_of_week=day,
            start_time=start,
            end_time=end,
            room=room,
            academic_year=ACADEMIC_YEAR,
            term=TERM,
        )
        for class_id, subject_id, teacher_id, day, start, end, room in LESSONS
    ])
    for rejected in outcome.rejected:
        print(f"skipped {rejected.slot.class_id} {rejected.slot.subject_id}: {rejected.error}")
    print(f"seeded {len(outcome.accepted)} slots")


if __name__ == "__main__":
    seed()
    print("Timetable seed completed.")
