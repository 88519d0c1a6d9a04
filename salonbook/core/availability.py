from datetime import date, timedelta
from typing import Callable, Iterable, Sequence

from ..config import settings
from .clock import date_range, weekday_name
from .operating_hours import NOT_CONFIGURED, window_for
from .store import BookingStore
from .types import DayAvailability, OperatingHours, ServiceInfo, TimeSlot


def default_date_range(today: date, days: int | None = None) -> tuple[date, date]:
    """Today plus the configured window, inclusive on both ends."""
    span = int(days if days is not None else settings.AVAILABILITY_WINDOW_DAYS)
    return today, today + timedelta(days=span)


def summarize_slots(day: date, slots: Sequence[TimeSlot]) -> DayAvailability:
    total = len(slots)
    available = sum(1 for s in slots if s.available)
    return DayAvailability.from_counts(day, total, available)


class AvailabilityCalculator:
    """
    Day-level availability.

    The employee path trusts the store's counts because the store already
    knows that employee's bookings. The "any available" path never calls the
    store: capacity comes from operating hours alone and may overcount, since
    assignment happens later at commit time.
    """

    def __init__(self, store: BookingStore | None = None, step_minutes: int | None = None):
        self.store = store
        self.step_minutes = int(step_minutes or settings.SLOT_STEP_MINUTES)

    def for_employee(
        self,
        employee_id: int,
        dates: tuple[date, date],
        service: ServiceInfo,
    ) -> list[DayAvailability]:
        if self.store is None:
            raise RuntimeError("Employee availability needs a booking store")
        start, end = dates
        return list(
            self.store.get_employee_availability(
                employee_id,
                start,
                end,
                service_id=service.id,
                duration_minutes=service.duration_minutes,
            )
        )

    def for_any_available(
        self,
        dates: tuple[date, date],
        operating_hours: "OperatingHours | object" = NOT_CONFIGURED,
    ) -> list[DayAvailability]:
        start, end = dates
        out: list[DayAvailability] = []
        for day in date_range(start, end):
            window = window_for(operating_hours, weekday_name(day))
            if not window.is_open:
                out.append(DayAvailability.from_counts(day, 0, 0))
                continue
            total = max(0, (window.close_minutes - window.open_minutes) // self.step_minutes)
            out.append(DayAvailability.from_counts(day, total, total))
        return out


def first_available(
    days: Iterable[DayAvailability],
    slots_for: Callable[[date], Sequence[TimeSlot]],
) -> tuple[date, TimeSlot] | None:
    """First day with capacity whose slot list really has a free slot."""
    for day in days:
        if day.available_slots <= 0:
            continue
        for slot in slots_for(day.date):
            if slot.available:
                return day.date, slot
    return None
