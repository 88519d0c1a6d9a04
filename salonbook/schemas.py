from datetime import date, datetime

from pydantic import BaseModel, Field, field_validator

from .core.types import ASSIGNMENT_MODES, ASSIGNMENT_SPECIFIC, BookingRequest


class DayWindowOut(BaseModel):
    isOpen: bool
    startTime: str
    endTime: str


class OperatingHoursOut(BaseModel):
    salon_id: int
    raw: dict
    configured: bool
    hours: dict[str, DayWindowOut]


class TimeSlotOut(BaseModel):
    start_time: str
    end_time: str
    available: bool
    reason: str | None = None


class DayAvailabilityOut(BaseModel):
    date: date
    status: str
    total_slots: int = Field(ge=0)
    available_slots: int = Field(ge=0)


class NextSlotOut(BaseModel):
    date: date
    start_time: str
    end_time: str


class NextAvailableOut(BaseModel):
    available: bool
    next_slot: NextSlotOut | None = None
    reason: str | None = None


class NextAvailableShortOut(BaseModel):
    date: date
    time: str


class AvailabilitySummaryOut(BaseModel):
    employee_id: int
    date: date
    is_working: bool
    total_slots: int
    available_slots: int
    booked_slots: int
    utilization_rate: float
    next_available: NextAvailableShortOut | None = None


class BookingRequestIn(BaseModel):
    service_id: int
    scheduled_start: datetime
    scheduled_end: datetime
    customer_id: int | None = None
    employee_id: int | None = None
    assignment_mode: str = ASSIGNMENT_SPECIFIC
    salon_id: int | None = None
    notes: str | None = Field(default=None, max_length=500)

    @field_validator("assignment_mode")
    @classmethod
    def normalize_assignment_mode(cls, value: str) -> str:
        mode = (value or "").strip().lower()
        if mode not in ASSIGNMENT_MODES:
            raise ValueError(f"assignment_mode must be one of {sorted(ASSIGNMENT_MODES)}")
        return mode

    def to_request(self) -> BookingRequest:
        return BookingRequest(
            service_id=self.service_id,
            scheduled_start=self.scheduled_start,
            scheduled_end=self.scheduled_end,
            customer_id=self.customer_id,
            employee_id=self.employee_id,
            assignment_mode=self.assignment_mode,
            salon_id=self.salon_id,
            notes=self.notes,
        )


class ValidationOut(BaseModel):
    valid: bool
    reason: str | None = None
    kind: str | None = None
    suggestions: list[TimeSlotOut] = Field(default_factory=list)


class AppointmentOut(BaseModel):
    id: int
    salon_id: int
    employee_id: int | None = None
    service_id: int
    customer_id: int | None = None
    scheduled_start: datetime
    scheduled_end: datetime
    status: str
    notes: str | None = None
    created_at: datetime | None = None


class AppointmentStatusUpdate(BaseModel):
    status: str = Field(min_length=3, max_length=32)
    note: str | None = Field(default=None, max_length=300)


class AppointmentStatusEventOut(BaseModel):
    id: int
    appointment_id: int
    created_at: datetime
    from_status: str | None = None
    to_status: str
    note: str | None = None
