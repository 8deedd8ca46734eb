from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse

from libs.errors import ConflictError, NotFoundError, ValidationError
from timetable_service.app.conflicts import DayOfWeek
from timetable_service.app.schemas import (
    BulkCreateResponse,
    BulkErrorOut,
    BulkSlotsRequest,
    ConflictCheckResponse,
    ConflictOut,
    DeleteResponse,
    SlotCreate,
    SlotListResponse,
    SlotOut,
    SlotResponse,
    SlotUpdate,
    StatisticsOut,
    StatisticsResponse,
    TimetableResponse,
)
from timetable_service.app.service import TimetableService, group_by_day, slot_as_dict
from timetable_service.app.settings import settings

router = APIRouter()


def get_timetable_service() -> TimetableService:
    return TimetableService()


def _conflict_response(exc: ConflictError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={
            "success": False,
            "error": exc.message,
            "conflicts": [ConflictOut.from_conflict(c).model_dump(mode="json") for c in exc.conflicts],
        },
    )


@router.post("/timetable/slots", response_model=SlotResponse, status_code=status.HTTP_201_CREATED)
def create_slot(body: SlotCreate, svc: TimetableService = Depends(get_timetable_service)):
    try:
        slot = svc.create_slot(body.to_slot())
    except ConflictError as exc:
        return _conflict_response(exc)
    return SlotResponse(slot=SlotOut.from_slot(slot))


@router.post("/timetable/slots/bulk", response_model=BulkCreateResponse)
def bulk_create_slots(body: BulkSlotsRequest, svc: TimetableService = Depends(get_timetable_service)):
    if len(body.slots) > settings.BULK_MAX_SLOTS:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"At most {settings.BULK_MAX_SLOTS} slots per request",
        )
    outcome = svc.bulk_create([s.to_slot() for s in body.slots])
    error_details = [
        BulkErrorOut(
            data=slot_as_dict(r.slot),
            error=r.error,
            conflicts=[ConflictOut.from_conflict(c) for c in r.conflicts],
        )
        for r in outcome.rejected
    ]
    return BulkCreateResponse(
        created=len(outcome.accepted),
        errors=len(outcome.rejected),
        results=[SlotOut.from_slot(s) for s in outcome.accepted],
        error_details=error_details,
    )


@router.get("/timetable/slots", response_model=SlotListResponse)
def list_slots(
    class_id: Optional[str] = None,
    teacher_id: Optional[str] = None,
    academic_year: Optional[str] = None,
    term: Optional[int] = Query(default=None, ge=1, le=3),
    day_of_week: Optional[DayOfWeek] = None,
    svc: TimetableService = Depends(get_timetable_service),
):
    slots = svc.list_slots(
        class_id=class_id,
        teacher_id=teacher_id,
        academic_year=academic_year,
        term=term,
        day=day_of_week,
    )
    return SlotListResponse(slots=[SlotOut.from_slot(s) for s in slots], total=len(slots))


@router.get("/timetable/slots/{slot_id}", response_model=SlotResponse)
def get_slot(slot_id: str, svc: TimetableService = Depends(get_timetable_service)):
    try:
        slot = svc.get_slot(slot_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message)
    return SlotResponse(slot=SlotOut.from_slot(slot))


@router.put("/timetable/slots/{slot_id}", response_model=SlotResponse)
def update_slot(slot_id: str, body: SlotUpdate, svc: TimetableService = Depends(get_timetable_service)):
    try:
        slot = svc.update_slot(slot_id, body.model_dump(exclude_unset=True))
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=exc.message)
    except ConflictError as exc:
        return _conflict_response(exc)
    return SlotResponse(slot=SlotOut.from_slot(slot))


@router.delete("/timetable/slots/{slot_id}", response_model=DeleteResponse)
def delete_slot(slot_id: str, svc: TimetableService = Depends(get_timetable_service)):
    try:
        svc.delete_slot(slot_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message)
    return DeleteResponse(message="Slot deleted successfully", count=1)


@router.post("/timetable/check-conflicts", response_model=ConflictCheckResponse)
def check_conflicts(
    body: SlotCreate,
    exclude_id: Optional[str] = None,
    svc: TimetableService = Depends(get_timetable_service),
):
    conflicts = svc.check_conflicts(body.to_slot(), exclude_id=exclude_id)
    return ConflictCheckResponse(
        has_conflicts=bool(conflicts),
        conflicts=[ConflictOut.from_conflict(c) for c in conflicts],
    )


def _timetable(slots) -> TimetableResponse:
    grouped = group_by_day(slots)
    return TimetableResponse(
        slots=[SlotOut.from_slot(s) for s in slots],
        total=len(slots),
        timetable_by_day={day: [SlotOut.from_slot(s) for s in items] for day, items in grouped.items()},
    )


@router.get("/timetable/class/{class_id}", response_model=TimetableResponse)
def class_timetable(
    class_id: str,
    academic_year: Optional[str] = None,
    term: Optional[int] = Query(default=None, ge=1, le=3),
    svc: TimetableService = Depends(get_timetable_service),
):
    return _timetable(svc.class_timetable(class_id, academic_year, term))


@router.get("/timetable/teacher/{teacher_id}", response_model=TimetableResponse)
def teacher_timetable(
    teacher_id: str,
    academic_year: Optional[str] = None,
    term: Optional[int] = Query(default=None, ge=1, le=3),
    svc: TimetableService = Depends(get_timetable_service),
):
    return _timetable(svc.teacher_timetable(teacher_id, academic_year, term))


@router.delete("/timetable/class/{class_id}", response_model=DeleteResponse)
def delete_class_timetable(
    class_id: str,
    academic_year: Optional[str] = None,
    term: Optional[int] = Query(default=None, ge=1, le=3),
    svc: TimetableService = Depends(get_timetable_service),
):
    count = svc.delete_class_slots(class_id, academic_year, term)
    return DeleteResponse(message=f"Deleted {count} slots", count=count)


@router.get("/timetable/statistics", response_model=StatisticsResponse)
def timetable_statistics(
    academic_year: Optional[str] = None,
    term: Optional[int] = Query(default=None, ge=1, le=3),
    svc: TimetableService = Depends(get_timetable_service),
):
    return StatisticsResponse(statistics=StatisticsOut(**svc.statistics(academic_year, term)))


@router.get("/health")
def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "timetable-service"}
