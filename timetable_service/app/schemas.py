from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from timetable_service.app.conflicts import Conflict, DayOfWeek, TimeSlot, time_to_minutes

TIME_PATTERN = r"^([01][0-9]|2[0-3]):[0-5][0-9]$"


class SlotCreate(BaseModel):
    class_id: str = Field(min_length=1)
    subject_id: str = Field(min_length=1)
    teacher_id: str = Field(min_length=1)
    day_of_week: DayOfWeek
    start_time: str = Field(pattern=TIME_PATTERN, examples=["08:00"])
    end_time: str = Field(pattern=TIME_PATTERN, examples=["09:00"])
    room: Optional[str] = None
    academic_year: str = Field(min_length=1)
    term: int = Field(ge=1, le=3)

    @model_validator(mode="after")
    def _start_before_end(self) -> "SlotCreate":
        if time_to_minutes(self.start_time) >= time_to_minutes(self.end_time):
            raise ValueError("start_time must be before end_time")
        return self

    def to_slot(self, slot_id: Optional[str] = None) -> TimeSlot:
        return TimeSlot(id=slot_id, **self.model_dump())


class SlotUpdate(BaseModel):
    class_id: Optional[str] = Field(default=None, min_length=1)
    subject_id: Optional[str] = Field(default=None, min_length=1)
    teacher_id: Optional[str] = Field(default=None, min_length=1)
    day_of_week: Optional[DayOfWeek] = None
    start_time: Optional[str] = Field(default=None, pattern=TIME_PATTERN)
    end_time: Optional[str] = Field(default=None, pattern=TIME_PATTERN)
    room: Optional[str] = None
    academic_year: Optional[str] = Field(default=None, min_length=1)
    term: Optional[int] = Field(default=None, ge=1, le=3)


class BulkSlotsRequest(BaseModel):
    slots: List[SlotCreate]


class SlotOut(BaseModel):
    id: str
    class_id: str
    subject_id: str
    teacher_id: str
    day_of_week: DayOfWeek
    start_time: str
    end_time: str
    room: Optional[str] = None
    academic_year: str
    term: int

    @classmethod
    def from_slot(cls, slot: TimeSlot) -> "SlotOut":
        return cls(
            id=slot.id,
            class_id=slot.class_id,
            subject_id=slot.subject_id,
            teacher_id=slot.teacher_id,
            day_of_week=slot.day_of_week,
            start_time=slot.start_time,
            end_time=slot.end_time,
            room=slot.room,
            academic_year=slot.academic_year,
            term=slot.term,
        )


class ConflictOut(BaseModel):
    type: str
    message: str
    slot: SlotOut

    @classmethod
    def from_conflict(cls, conflict: Conflict) -> "ConflictOut":
        return cls(type=conflict.type.value, message=conflict.message, slot=SlotOut.from_slot(conflict.slot))


class SlotResponse(BaseModel):
    success: bool = True
    slot: SlotOut


class SlotListResponse(BaseModel):
    success: bool = True
    slots: List[SlotOut]
    total: int


class TimetableResponse(SlotListResponse):
    timetable_by_day: Dict[str, List[SlotOut]]


class ConflictCheckResponse(BaseModel):
    success: bool = True
    has_conflicts: bool
    conflicts: List[ConflictOut]


class BulkErrorOut(BaseModel):
    data: Dict[str, Any]
    error: str
    conflicts: List[ConflictOut] = []


class BulkCreateResponse(BaseModel):
    success: bool = True
    created: int
    errors: int
    results: List[SlotOut]
    error_details: List[BulkErrorOut]


class DeleteResponse(BaseModel):
    success: bool = True
    message: str
    count: int


class StatisticsOut(BaseModel):
    total_slots: int
    unique_teachers: int
    unique_classes: int
    slots_by_day: Dict[str, int]


class StatisticsResponse(BaseModel):
    success: bool = True
    statistics: StatisticsOut
