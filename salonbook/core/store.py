"""
Narrow contract between the engine and whoever owns the appointment ledger.

``LedgerStore`` (SQLAlchemy, in-process) and ``BookingApiClient`` (HTTP) both
satisfy it, so the flow controller and calculators never know which one they
are talking to.
"""

from datetime import date
from typing import Any, Mapping, Protocol

from .types import BookingRequest, DayAvailability, TimeSlot


class BookingStore(Protocol):
    def get_operating_hours(self, salon_id: int) -> Mapping[str, Any]:
        """Raw salon settings, possibly with multiply-encoded hours."""

    def get_employee_availability(
        self,
        employee_id: int,
        start_date: date,
        end_date: date,
        service_id: int | None = None,
        duration_minutes: int | None = None,
    ) -> list[DayAvailability]:
        """Day summaries already filtered by the employee's bookings."""

    def get_employee_time_slots(
        self,
        employee_id: int,
        day: date,
        duration_minutes: int | None = None,
        service_id: int | None = None,
    ) -> list[TimeSlot]:
        """Slots pre-marked against the employee's committed bookings."""

    def validate_booking(self, request: BookingRequest) -> dict:
        """Advisory check returning ``{"valid": bool, "reason"?: str}``."""

    def create_appointment(self, request: BookingRequest) -> Any:
        """Authoritative commit; raises ``ConflictError`` when the race is lost."""
