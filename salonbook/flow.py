"""
Booking wizard orchestration: service -> stylist -> date/time -> confirm.

The controller is stateless. Every step takes the current ``BookingAttempt``
and returns the next one; the caller keeps it between screens.
"""

from datetime import date, datetime
from typing import Callable

import structlog

from .config import settings
from .core.availability import AvailabilityCalculator, default_date_range
from .core.booking import BookingAttempt, BookingContext, BookingState, verdict_from_dict
from .core.clock import local_now, weekday_name
from .core.errors import BookingError, InvalidTransition, MalformedRequestError
from .core.operating_hours import resolver, window_for
from .core.slots import generate
from .core.store import BookingStore
from .core.types import ASSIGNMENT_ANY, ASSIGNMENT_SPECIFIC, DayAvailability, ServiceInfo, TimeSlot

logger = structlog.get_logger("salonbook.flow")


def _appointment_id(result) -> int:
    if isinstance(result, dict):
        return int(result["id"])
    return int(result.id)


class BookingFlowController:
    def __init__(
        self,
        store: BookingStore,
        tz_name: str | None = None,
        clock: Callable[[str | None], datetime] = local_now,
    ):
        self.store = store
        self.tz_name = tz_name or settings.DEFAULT_SALON_TIMEZONE
        self.clock = clock

    def _now(self) -> datetime:
        return self.clock(self.tz_name)

    def start(self, salon_id: int, customer_id: int | None = None) -> BookingAttempt:
        return BookingAttempt(context=BookingContext(salon_id=salon_id, customer_id=customer_id, now=self._now()))

    def choose_service(self, attempt: BookingAttempt, service: ServiceInfo) -> BookingAttempt:
        # slot width depends on the service, so any picked slot is dropped
        return attempt.edit(service=service, selected_date=None, selected_slot=None, now=self._now())

    def choose_employee(self, attempt: BookingAttempt, employee_id: int) -> BookingAttempt:
        return attempt.edit(
            employee_id=employee_id,
            assignment_mode=ASSIGNMENT_SPECIFIC,
            selected_slot=None,
            now=self._now(),
        )

    def choose_any_employee(self, attempt: BookingAttempt) -> BookingAttempt:
        return attempt.edit(
            employee_id=None,
            assignment_mode=ASSIGNMENT_ANY,
            selected_slot=None,
            now=self._now(),
        )

    def available_days(
        self,
        attempt: BookingAttempt,
        dates: tuple[date, date] | None = None,
    ) -> list[DayAvailability]:
        ctx = attempt.context
        if ctx.service is None:
            raise MalformedRequestError("Select a service first")
        now = ctx.now or self._now()
        dates = dates or default_date_range(now.date())
        calculator = AvailabilityCalculator(self.store)
        if ctx.is_any_available:
            hours = resolver.resolve_or_default(self.store.get_operating_hours(ctx.salon_id))
            return calculator.for_any_available(dates, hours)
        if ctx.employee_id is None:
            raise MalformedRequestError("Select a stylist first")
        return calculator.for_employee(ctx.employee_id, dates, ctx.service)

    def time_slots(self, attempt: BookingAttempt, day: date) -> list[TimeSlot]:
        ctx = attempt.context
        if ctx.service is None:
            raise MalformedRequestError("Select a service first")
        if ctx.is_any_available:
            hours = resolver.resolve_or_default(self.store.get_operating_hours(ctx.salon_id))
            return generate(day, window_for(hours, weekday_name(day)), ctx.service.duration_minutes, ctx.now or self._now())
        if ctx.employee_id is None:
            raise MalformedRequestError("Select a stylist first")
        return self.store.get_employee_time_slots(
            ctx.employee_id,
            day,
            duration_minutes=ctx.service.duration_minutes,
            service_id=ctx.service.id,
        )

    def choose_slot(self, attempt: BookingAttempt, day: date, slot: TimeSlot) -> BookingAttempt:
        if not slot.available:
            raise MalformedRequestError(slot.reason or "Time slot is not available")
        return attempt.edit(selected_date=day, selected_slot=slot, now=self._now())

    def submit(self, attempt: BookingAttempt) -> BookingAttempt:
        pending = attempt.submit()
        verdict = verdict_from_dict(self.store.validate_booking(pending.context.to_request()))
        resolved = pending.resolve(verdict)
        if resolved.state is BookingState.REJECTED:
            logger.info("booking_attempt_rejected", kind=resolved.kind, reason=resolved.reason)
        return resolved

    def confirm(self, attempt: BookingAttempt) -> BookingAttempt:
        if attempt.state is not BookingState.ACCEPTED:
            raise InvalidTransition(f"Cannot confirm a booking in state {attempt.state.value}")
        try:
            result = self.store.create_appointment(attempt.context.to_request())
        except BookingError as exc:
            logger.info("booking_commit_failed", code=exc.code, reason=exc.message)
            return attempt.commit_failed(exc)
        return attempt.commit(_appointment_id(result))
