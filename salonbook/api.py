from datetime import date
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from .core.availability import default_date_range
from .core.errors import (
    BookingError,
    ConfigurationError,
    InvalidTransition,
    MalformedRequestError,
    NotFoundError,
    OverlapConflict,
    PastTimeError,
    UnavailableError,
)
from .core.operating_hours import NOT_CONFIGURED, resolver
from .core.types import hours_to_dict
from .db import get_db
from .models import Appointment
from .schemas import (
    AppointmentOut,
    AppointmentStatusEventOut,
    AppointmentStatusUpdate,
    AvailabilitySummaryOut,
    BookingRequestIn,
    DayAvailabilityOut,
    NextAvailableOut,
    OperatingHoursOut,
    TimeSlotOut,
    ValidationOut,
)
from .services import LedgerStore

logger = structlog.get_logger("salonbook.api")

router = APIRouter(prefix="/api")

ERROR_STATUS_CODES = (
    (NotFoundError, 404),
    (OverlapConflict, 409),
    (PastTimeError, 422),
    (MalformedRequestError, 422),
    (UnavailableError, 422),
    (InvalidTransition, 400),
    (ConfigurationError, 500),
)


def status_for(exc: BookingError) -> int:
    for error_cls, code in ERROR_STATUS_CODES:
        if isinstance(exc, error_cls):
            return code
    return 400


async def booking_error_handler(request: Request, exc: BookingError):
    status_code = status_for(exc)
    log = logger.warning if isinstance(exc, MalformedRequestError) else logger.info
    log("booking_error", code=exc.code, reason=exc.message, status_code=status_code)
    return JSONResponse(status_code=status_code, content={"detail": exc.to_dict()})


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BookingError, booking_error_handler)


def get_store(db: Session = Depends(get_db)) -> LedgerStore:
    return LedgerStore(db)


def _positive_duration(duration: Optional[int]) -> Optional[int]:
    if duration is not None and duration <= 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Duration must be a positive number")
    return duration


def _to_appointment_out(a: Appointment) -> AppointmentOut:
    return AppointmentOut(
        id=a.id,
        salon_id=a.salon_id,
        employee_id=a.employee_id,
        service_id=a.service_id,
        customer_id=a.customer_id,
        scheduled_start=a.scheduled_start,
        scheduled_end=a.scheduled_end,
        status=a.status,
        notes=a.notes,
        created_at=a.created_at,
    )


@router.get("/salons/{salon_id}/operating-hours", response_model=OperatingHoursOut)
def get_salon_operating_hours(salon_id: int, store: LedgerStore = Depends(get_store)):
    raw = store.get_operating_hours(salon_id)
    hours = resolver.resolve(raw)
    configured = hours is not NOT_CONFIGURED
    if not configured:
        hours = resolver.resolve_or_default(raw)
    return OperatingHoursOut(salon_id=salon_id, raw=raw, configured=configured, hours=hours_to_dict(hours))


@router.get("/salons/{salon_id}/availability", response_model=List[DayAvailabilityOut])
def get_salon_availability(
    salon_id: int,
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    store: LedgerStore = Depends(get_store),
):
    salon = store.get_salon(salon_id)
    start, default_end = default_date_range(start_date or store.now_for(salon).date())
    days = store.salon_availability(salon.id, start, end_date or default_end)
    return [d.to_dict() for d in days]


@router.get("/salons/{salon_id}/slots", response_model=List[TimeSlotOut])
def get_salon_slots(
    salon_id: int,
    day: date = Query(..., alias="date"),
    service_id: Optional[int] = Query(None),
    duration: Optional[int] = Query(None),
    store: LedgerStore = Depends(get_store),
):
    slots = store.salon_time_slots(
        salon_id, day, service_id=service_id, duration_minutes=_positive_duration(duration)
    )
    return [s.to_dict() for s in slots]


@router.get("/availability/{employee_id}", response_model=List[DayAvailabilityOut])
def get_employee_availability(
    employee_id: int,
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    service_id: Optional[int] = Query(None),
    duration: Optional[int] = Query(None),
    store: LedgerStore = Depends(get_store),
):
    _positive_duration(duration)
    employee = store.get_employee(employee_id)
    start, default_end = default_date_range(start_date or store.now_for(store.get_salon(employee.salon_id)).date())
    end = end_date or default_end
    if end < start:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="End date must be after start date")

    days = store.get_employee_availability(employee.id, start, end, service_id=service_id, duration_minutes=duration)
    return [d.to_dict() for d in days]


@router.get("/availability/{employee_id}/slots", response_model=List[TimeSlotOut])
def get_employee_slots(
    employee_id: int,
    day: date = Query(..., alias="date"),
    service_id: Optional[int] = Query(None),
    duration: Optional[int] = Query(None),
    store: LedgerStore = Depends(get_store),
):
    slots = store.get_employee_time_slots(
        employee_id, day, duration_minutes=_positive_duration(duration), service_id=service_id
    )
    return [s.to_dict() for s in slots]


@router.get("/availability/{employee_id}/next-available", response_model=NextAvailableOut)
def get_next_available(
    employee_id: int,
    service_id: Optional[int] = Query(None),
    duration: Optional[int] = Query(None),
    store: LedgerStore = Depends(get_store),
):
    return store.next_available(employee_id, service_id=service_id, duration_minutes=_positive_duration(duration))


@router.get("/availability/{employee_id}/summary", response_model=AvailabilitySummaryOut)
def get_availability_summary(
    employee_id: int,
    day: Optional[date] = Query(None, alias="date"),
    store: LedgerStore = Depends(get_store),
):
    return store.availability_summary(employee_id, day)


@router.post("/availability/validate", response_model=ValidationOut)
def validate_booking(payload: BookingRequestIn, store: LedgerStore = Depends(get_store)):
    return store.validate_booking(payload.to_request())


@router.post("/appointments", response_model=AppointmentOut)
def create_appointment(payload: BookingRequestIn, store: LedgerStore = Depends(get_store)):
    appointment = store.create_appointment(payload.to_request())
    return _to_appointment_out(appointment)


@router.get("/appointments", response_model=List[AppointmentOut])
def list_appointments(
    employee_id: Optional[int] = Query(None),
    day: Optional[date] = Query(None),
    salon_id: Optional[int] = Query(None),
    store: LedgerStore = Depends(get_store),
):
    rows = store.list_appointments(employee_id=employee_id, day=day, salon_id=salon_id)
    return [_to_appointment_out(a) for a in rows]


@router.patch("/appointments/{appointment_id}/status", response_model=AppointmentOut)
def patch_appointment_status(
    appointment_id: int,
    payload: AppointmentStatusUpdate,
    store: LedgerStore = Depends(get_store),
):
    appointment = store.update_appointment_status(appointment_id, payload.status, note=payload.note)
    return _to_appointment_out(appointment)


@router.get("/appointments/{appointment_id}/events", response_model=List[AppointmentStatusEventOut])
def list_appointment_events(appointment_id: int, store: LedgerStore = Depends(get_store)):
    rows = store.list_status_events(appointment_id)
    return [
        AppointmentStatusEventOut(
            id=e.id,
            appointment_id=e.appointment_id,
            created_at=e.created_at,
            from_status=e.from_status,
            to_status=e.to_status,
            note=e.note,
        )
        for e in rows
    ]
