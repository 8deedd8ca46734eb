"""
Tables owned by the Timetable Service.

Create them (dev / tests):
  python -m timetable_service.db.schema
"""

from __future__ import annotations

from sqlalchemy import Column, DateTime, Index, Integer, MetaData, String, Table, func
from sqlalchemy.engine import Engine

metadata = MetaData()

timetable_slots = Table(
    "timetable_slots",
    metadata,
    Column("slot_id", String(36), primary_key=True),
    Column("class_id", String(64), nullable=False),
    Column("subject_id", String(64), nullable=False),
    Column("teacher_id", String(64), nullable=False),
    Column("day_of_week", String(16), nullable=False),
    Column("start_time", String(5), nullable=False),
    Column("end_time", String(5), nullable=False),
    Column("room", String(64), nullable=True),
    Column("academic_year", String(16), nullable=False),
    Column("term", Integer, nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime, nullable=True),
    Index("ix_timetable_slots_scope", "academic_year", "term", "day_of_week"),
    Index("ix_timetable_slots_class", "class_id"),
    Index("ix_timetable_slots_teacher", "teacher_id"),
)


def init_schema(engine: Engine) -> None:
    metadata.create_all(engine)


if __name__ == "__main__":
    from timetable_service.app.db import get_engine

    init_schema(get_engine())
    print("Timetable schema created.")
