from dataclasses import asdict, dataclass
from datetime import date, datetime
from typing import Mapping

from .clock import WEEKDAYS, format_hhmm, parse_hhmm

ASSIGNMENT_SPECIFIC = "specific"
ASSIGNMENT_ANY = "any"
ASSIGNMENT_MODES = {ASSIGNMENT_SPECIFIC, ASSIGNMENT_ANY}

DAY_AVAILABLE = "available"
DAY_UNAVAILABLE = "unavailable"

BLOCKING_STATUSES = frozenset({"pending", "confirmed", "in_progress"})


@dataclass(frozen=True)
class DayWindow:
    """
    Open/closed window for one weekday.

    Invariant: when ``is_open`` is false the times are ignored.
    """

    is_open: bool
    start_time: str = "09:00"
    end_time: str = "18:00"

    @property
    def open_minutes(self) -> int:
        return parse_hhmm(self.start_time)

    @property
    def close_minutes(self) -> int:
        return parse_hhmm(self.end_time)

    def contains(self, start_minutes: int, end_minutes: int) -> bool:
        if not self.is_open:
            return False
        return self.open_minutes <= start_minutes and end_minutes <= self.close_minutes

    def to_dict(self) -> dict:
        return {"isOpen": self.is_open, "startTime": self.start_time, "endTime": self.end_time}

    @classmethod
    def closed(cls) -> "DayWindow":
        return cls(is_open=False)

    @classmethod
    def from_minutes(cls, start: int, end: int) -> "DayWindow":
        return cls(is_open=True, start_time=format_hhmm(start), end_time=format_hhmm(end))


OperatingHours = Mapping[str, DayWindow]


def uniform_hours(start_time: str, end_time: str) -> dict[str, DayWindow]:
    window = DayWindow(is_open=True, start_time=start_time, end_time=end_time)
    return {day: window for day in WEEKDAYS}


def hours_to_dict(hours: OperatingHours) -> dict[str, dict]:
    return {day: hours[day].to_dict() for day in WEEKDAYS if day in hours}


@dataclass(frozen=True)
class ServiceInfo:
    id: int
    duration_minutes: int
    salon_id: int | None = None

    def __post_init__(self):
        if int(self.duration_minutes) <= 0:
            raise ValueError("duration_minutes must be > 0")


@dataclass(frozen=True)
class TimeSlot:
    start_time: str
    end_time: str
    available: bool = True
    reason: str | None = None

    @property
    def start_minutes(self) -> int:
        return parse_hhmm(self.start_time)

    @property
    def end_minutes(self) -> int:
        return parse_hhmm(self.end_time)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class DayAvailability:
    date: date
    status: str
    total_slots: int
    available_slots: int

    def __post_init__(self):
        if self.total_slots < 0 or not 0 <= self.available_slots <= self.total_slots:
            raise ValueError(
                f"Inconsistent slot counts for {self.date}: "
                f"{self.available_slots}/{self.total_slots}"
            )

    @classmethod
    def from_counts(cls, day: date, total: int, available: int) -> "DayAvailability":
        status = DAY_AVAILABLE if available > 0 else DAY_UNAVAILABLE
        return cls(date=day, status=status, total_slots=total, available_slots=available)

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "status": self.status,
            "total_slots": self.total_slots,
            "available_slots": self.available_slots,
        }


@dataclass(frozen=True)
class BookingRequest:
    service_id: int
    scheduled_start: datetime
    scheduled_end: datetime
    customer_id: int | None = None
    employee_id: int | None = None
    assignment_mode: str = ASSIGNMENT_SPECIFIC
    salon_id: int | None = None
    notes: str | None = None

    @property
    def duration_minutes(self) -> int:
        return int((self.scheduled_end - self.scheduled_start).total_seconds() // 60)

    def to_payload(self) -> dict:
        return {
            "service_id": self.service_id,
            "scheduled_start": self.scheduled_start.isoformat(),
            "scheduled_end": self.scheduled_end.isoformat(),
            "customer_id": self.customer_id,
            "employee_id": self.employee_id,
            "assignment_mode": self.assignment_mode,
            "salon_id": self.salon_id,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class BookedWindow:
    """Ledger snapshot entry used for overlap checks."""

    start: datetime
    end: datetime
    status: str = "pending"
    appointment_id: int | None = None
    employee_id: int | None = None

    @property
    def is_blocking(self) -> bool:
        return self.status in BLOCKING_STATUSES

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start < end and self.end > start

