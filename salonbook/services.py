import threading
from dataclasses import replace
from datetime import date, datetime, time, timedelta
from typing import Callable

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from .config import settings
from .core.availability import AvailabilityCalculator, default_date_range, first_available, summarize_slots
from .core.booking import Accepted, BookingConflictValidator, Rejected, Verdict
from .core.clock import date_range, format_hhmm, local_now, minutes_of, to_salon_local, weekday_name
from .core.errors import (
    ConflictError,
    InvalidTransition,
    MalformedRequestError,
    NotFoundError,
    OverlapConflict,
    PastTimeError,
    UnavailableError,
)
from .core.operating_hours import resolver, window_for
from .core.slots import available_only, generate, mark_booked, mark_breaks, mark_buffer, mark_lead_time
from .core.types import (
    ASSIGNMENT_ANY,
    ASSIGNMENT_SPECIFIC,
    BLOCKING_STATUSES,
    BookedWindow,
    BookingRequest,
    DayAvailability,
    DayWindow,
    TimeSlot,
)
from .models import (
    Appointment,
    AppointmentStatusEvent,
    Employee,
    EmployeeAvailabilityRules,
    EmployeeWorkingHours,
    Salon,
    Service,
    utc_now_naive,
)

logger = structlog.get_logger("salonbook.ledger")

APPOINTMENT_STATUSES = {
    "pending",
    "confirmed",
    "in_progress",
    "completed",
    "cancelled",
    "no_show",
}
ALLOWED_APPOINTMENT_STATUS_TRANSITIONS = {
    "pending": {"confirmed", "cancelled", "no_show"},
    "confirmed": {"in_progress", "cancelled", "no_show"},
    "in_progress": {"completed", "cancelled"},
    "completed": set(),
    "cancelled": set(),
    "no_show": set(),
}

SUGGESTION_LIMIT = 5
MAX_RANGE_DAYS = 366

_salon_locks: dict[int, threading.Lock] = {}
_salon_locks_guard = threading.Lock()


def salon_lock(salon_id: int) -> threading.Lock:
    """Process-wide lock serializing appointment commits for one salon."""
    with _salon_locks_guard:
        lock = _salon_locks.get(salon_id)
        if lock is None:
            lock = threading.Lock()
            _salon_locks[salon_id] = lock
        return lock


def _day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


class LedgerStore:
    """
    SQLAlchemy-backed booking store.

    Reads are plain queries. ``create_appointment`` is the only writer that
    matters for conflicts: it re-checks overlap under ``salon_lock`` and a
    ``FOR UPDATE`` on the salon row, then inserts and commits before letting
    the next writer in.

    ``clock`` returns the salon's current wall-clock time for a timezone name.
    """

    def __init__(self, db: Session, clock: Callable[[str | None], datetime] = local_now):
        self.db = db
        self.clock = clock

    # lookups

    def get_salon(self, salon_id: int) -> Salon:
        salon = self.db.get(Salon, salon_id)
        if not salon:
            raise NotFoundError("Salon not found")
        return salon

    def get_service(self, service_id: int) -> Service:
        service = self.db.get(Service, service_id)
        if not service:
            raise NotFoundError("Service not found")
        return service

    def get_employee(self, employee_id: int) -> Employee:
        employee = self.db.get(Employee, employee_id)
        if not employee:
            raise NotFoundError("Employee not found")
        return employee

    def now_for(self, salon: Salon) -> datetime:
        return self.clock(salon.timezone or settings.DEFAULT_SALON_TIMEZONE)

    def _duration(self, service_id: int | None, duration_minutes: int | None) -> int:
        # an explicit duration overrides the service's own
        if duration_minutes is not None:
            resolved = int(duration_minutes)
        elif service_id is not None:
            resolved = int(self.get_service(service_id).duration_min or 0)
        else:
            resolved = int(settings.DEFAULT_SERVICE_DURATION_MIN)
        if resolved <= 0:
            raise MalformedRequestError("Duration must be a positive number")
        return resolved

    def _working_day(self, employee_id: int, day: date) -> tuple[DayWindow, list]:
        row = self.db.execute(
            select(EmployeeWorkingHours).where(
                EmployeeWorkingHours.employee_id == employee_id,
                EmployeeWorkingHours.weekday == day.weekday(),
                EmployeeWorkingHours.is_active.is_(True),
            )
        ).scalar_one_or_none()
        if not row:
            window = DayWindow(
                is_open=True,
                start_time=settings.DEFAULT_OPEN_TIME,
                end_time=settings.DEFAULT_CLOSE_TIME,
            )
            return window, []
        return DayWindow(is_open=True, start_time=row.start_time, end_time=row.end_time), list(row.breaks or [])

    def _rules(self, employee_id: int) -> EmployeeAvailabilityRules | None:
        return self.db.execute(
            select(EmployeeAvailabilityRules).where(EmployeeAvailabilityRules.employee_id == employee_id)
        ).scalar_one_or_none()

    def _booked_windows(self, employee_id: int, start: datetime, end: datetime) -> list[BookedWindow]:
        rows = self.db.execute(
            select(Appointment).where(
                Appointment.employee_id == employee_id,
                Appointment.status.in_(BLOCKING_STATUSES),
                Appointment.scheduled_start < end,
                Appointment.scheduled_end > start,
            )
        ).scalars().all()
        return [
            BookedWindow(
                start=row.scheduled_start,
                end=row.scheduled_end,
                status=row.status,
                appointment_id=row.id,
                employee_id=row.employee_id,
            )
            for row in rows
        ]

    def _day_closed(self, rules: EmployeeAvailabilityRules | None, day: date, now: datetime) -> bool:
        if not rules:
            return False
        if day.isoformat() in (rules.blackout_dates or []):
            return True
        if rules.advance_booking_days and day > (now + timedelta(days=int(rules.advance_booking_days))).date():
            return True
        return False

    # BookingStore

    def get_operating_hours(self, salon_id: int) -> dict:
        salon = self.get_salon(salon_id)
        raw: dict = {}
        if salon.operating_hours is not None:
            raw["operatingHours"] = salon.operating_hours
        if salon.opening_hours is not None:
            raw["openingHours"] = salon.opening_hours
        return raw

    def get_employee_time_slots(
        self,
        employee_id: int,
        day: date,
        duration_minutes: int | None = None,
        service_id: int | None = None,
    ) -> list[TimeSlot]:
        employee = self.get_employee(employee_id)
        duration = self._duration(service_id, duration_minutes)
        now = self.now_for(self.get_salon(employee.salon_id))

        rules = self._rules(employee.id)
        if self._day_closed(rules, day, now):
            return []

        window, breaks = self._working_day(employee.id, day)
        slots = generate(day, window, duration, now)
        if rules and rules.min_lead_time_hours:
            slots = mark_lead_time(slots, day, now + timedelta(hours=int(rules.min_lead_time_hours)))
        slots = mark_breaks(slots, breaks)

        day_start, day_end = _day_bounds(day)
        booked = self._booked_windows(employee.id, day_start - timedelta(days=1), day_end + timedelta(days=1))
        slots = mark_booked(slots, day, booked)
        if rules and rules.buffer_minutes:
            slots = mark_buffer(slots, day, booked, int(rules.buffer_minutes))
        return slots

    def get_employee_availability(
        self,
        employee_id: int,
        start_date: date,
        end_date: date,
        service_id: int | None = None,
        duration_minutes: int | None = None,
    ) -> list[DayAvailability]:
        if end_date < start_date:
            raise MalformedRequestError("End date must be after start date")
        if (end_date - start_date).days > MAX_RANGE_DAYS:
            raise MalformedRequestError(f"Date range cannot exceed {MAX_RANGE_DAYS} days")
        return [
            summarize_slots(
                day,
                self.get_employee_time_slots(
                    employee_id, day, duration_minutes=duration_minutes, service_id=service_id
                ),
            )
            for day in date_range(start_date, end_date)
        ]

    def validate_booking(self, request: BookingRequest) -> dict:
        return self.check_booking(request).to_dict()

    def create_appointment(self, request: BookingRequest) -> Appointment:
        service = self.get_service(request.service_id)
        salon = self._salon_for(request, service)

        with salon_lock(salon.id):
            try:
                self.db.expire_all()
                # row lock for backends that have one; sqlite relies on salon_lock
                self.db.execute(select(Salon.id).where(Salon.id == salon.id).with_for_update()).first()

                verdict = self.check_booking(request)
                if not verdict.valid:
                    error = verdict.to_error()
                    if isinstance(error, OverlapConflict):
                        logger.info(
                            "booking_conflict",
                            salon_id=salon.id,
                            employee_id=request.employee_id,
                            scheduled_start=request.scheduled_start.isoformat(),
                        )
                        raise ConflictError()
                    raise error

                local = self._localize(request, salon)
                employee_id = local.employee_id
                if local.assignment_mode == ASSIGNMENT_ANY:
                    employee_id = self._assign_employee(salon.id, local)

                appointment = Appointment(
                    salon_id=salon.id,
                    employee_id=employee_id,
                    service_id=service.id,
                    customer_id=local.customer_id,
                    scheduled_start=local.scheduled_start,
                    scheduled_end=local.scheduled_end,
                    status="pending",
                    notes=(local.notes or "").strip() or None,
                )
                self.db.add(appointment)
                self.db.flush()
                self.add_status_event(appointment.id, None, "pending", note="created")
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        self.db.refresh(appointment)
        logger.info(
            "appointment_created",
            appointment_id=appointment.id,
            salon_id=salon.id,
            employee_id=appointment.employee_id,
            mode=request.assignment_mode,
        )
        return appointment

    # validation

    def _salon_for(self, request: BookingRequest, service: Service) -> Salon:
        salon_id = request.salon_id if request.salon_id is not None else service.salon_id
        if salon_id != service.salon_id:
            raise MalformedRequestError("Service does not belong to this salon")
        return self.get_salon(salon_id)

    def _localize(self, request: BookingRequest, salon: Salon) -> BookingRequest:
        tz_name = salon.timezone or settings.DEFAULT_SALON_TIMEZONE
        return replace(
            request,
            salon_id=salon.id,
            scheduled_start=to_salon_local(request.scheduled_start, tz_name),
            scheduled_end=to_salon_local(request.scheduled_end, tz_name),
        )

    def check_booking(self, request: BookingRequest, suggest: bool = True) -> Verdict:
        """Engine rules first, then the employee's own rules."""
        service = self.get_service(request.service_id)
        salon = self._salon_for(request, service)
        local = self._localize(request, salon)
        now = self.now_for(salon)
        day = local.scheduled_start.date()

        employee = None
        if local.assignment_mode == ASSIGNMENT_ANY:
            booked: list[BookedWindow] = []
            day_window = window_for(resolver.resolve_or_default(self.get_operating_hours(salon.id)), weekday_name(day))
        elif local.employee_id is not None:
            employee = self.get_employee(local.employee_id)
            if employee.salon_id != salon.id:
                return Rejected.from_error(MalformedRequestError("Employee does not work at this salon"))
            booked = self._booked_windows(
                employee.id,
                local.scheduled_start - timedelta(days=1),
                local.scheduled_end + timedelta(days=1),
            )
            day_window, _ = self._working_day(employee.id, day)
        else:
            booked, day_window = [], None

        validator = BookingConflictValidator(
            service_duration=int(service.duration_min),
            now=now,
            booked=booked,
            day_window=day_window,
        )
        verdict = validator.validate(local)
        if verdict.valid and employee is not None:
            error = self._rule_failure(employee, local, now)
            if error is not None:
                logger.info("booking_rejected", code=error.code, reason=error.message, employee_id=employee.id)
                verdict = Rejected.from_error(error)

        if suggest and isinstance(verdict, Rejected) and verdict.kind == OverlapConflict.code and employee is not None:
            alternatives = available_only(
                self.get_employee_time_slots(employee.id, day, service_id=service.id)
            )[:SUGGESTION_LIMIT]
            verdict = replace(verdict, suggestions=tuple(alternatives))
        return verdict

    def _rule_failure(self, employee: Employee, request: BookingRequest, now: datetime):
        if not employee.is_active:
            return UnavailableError("Employee not found or inactive")
        start, end = request.scheduled_start, request.scheduled_end
        day = start.date()
        requested = TimeSlot(
            start_time=format_hhmm(minutes_of(start)),
            end_time=format_hhmm((end - datetime.combine(day, time.min)) // timedelta(minutes=1)),
        )
        _, breaks = self._working_day(employee.id, day)
        if not mark_breaks([requested], breaks)[0].available:
            return UnavailableError("Time overlaps the employee's break")
        rules = self._rules(employee.id)
        if not rules:
            return None
        if start.date().isoformat() in (rules.blackout_dates or []):
            return UnavailableError("Employee is unavailable on this date")
        if rules.advance_booking_days and start > now + timedelta(days=int(rules.advance_booking_days)):
            return UnavailableError(f"Bookings can only be made {rules.advance_booking_days} days in advance")
        lead_hours = int(rules.min_lead_time_hours or 0)
        if lead_hours and start < now + timedelta(hours=lead_hours):
            return PastTimeError(f"Bookings require at least {lead_hours} hour(s) advance notice")
        buffer = int(rules.buffer_minutes or 0)
        if buffer:
            booked = self._booked_windows(employee.id, start - timedelta(minutes=buffer), end + timedelta(minutes=buffer))
            if not mark_buffer([requested], day, booked, buffer)[0].available:
                return UnavailableError(f"Bookings need {buffer} minutes between appointments")
        return None

    def _assign_employee(self, salon_id: int, request: BookingRequest) -> int | None:
        """First active employee by id who would pass a specific booking; None when the salon has no staff."""
        employees = self.db.execute(
            select(Employee)
            .where(Employee.salon_id == salon_id, Employee.is_active.is_(True))
            .order_by(Employee.id.asc())
        ).scalars().all()
        if not employees:
            return None
        for employee in employees:
            candidate = replace(request, employee_id=employee.id, assignment_mode=ASSIGNMENT_SPECIFIC)
            if self.check_booking(candidate, suggest=False).valid:
                return employee.id
        logger.info("booking_conflict", salon_id=salon_id, mode=ASSIGNMENT_ANY)
        raise ConflictError()

    # salon-wide reads

    def resolved_hours(self, salon_id: int):
        return resolver.resolve_or_default(self.get_operating_hours(salon_id))

    def salon_availability(self, salon_id: int, start_date: date, end_date: date) -> list[DayAvailability]:
        if end_date < start_date:
            raise MalformedRequestError("End date must be after start date")
        return AvailabilityCalculator().for_any_available((start_date, end_date), self.resolved_hours(salon_id))

    def salon_time_slots(
        self,
        salon_id: int,
        day: date,
        service_id: int | None = None,
        duration_minutes: int | None = None,
    ) -> list[TimeSlot]:
        salon = self.get_salon(salon_id)
        duration = self._duration(service_id, duration_minutes)
        window = window_for(self.resolved_hours(salon.id), weekday_name(day))
        return generate(day, window, duration, self.now_for(salon))

    # employee overview

    def next_available(
        self,
        employee_id: int,
        service_id: int | None = None,
        duration_minutes: int | None = None,
    ) -> dict:
        employee = self.get_employee(employee_id)
        today = self.now_for(self.get_salon(employee.salon_id)).date()
        cache: dict[date, list[TimeSlot]] = {}

        def slots_for(day: date) -> list[TimeSlot]:
            if day not in cache:
                cache[day] = self.get_employee_time_slots(
                    employee.id, day, duration_minutes=duration_minutes, service_id=service_id
                )
            return cache[day]

        start, end = default_date_range(today)
        found = first_available((summarize_slots(d, slots_for(d)) for d in date_range(start, end)), slots_for)
        if found is None:
            return {
                "available": False,
                "reason": f"No available slots found in the next {settings.AVAILABILITY_WINDOW_DAYS} days",
            }
        day, slot = found
        return {
            "available": True,
            "next_slot": {"date": day.isoformat(), "start_time": slot.start_time, "end_time": slot.end_time},
        }

    def availability_summary(self, employee_id: int, day: date | None = None) -> dict:
        employee = self.get_employee(employee_id)
        day = day or self.now_for(self.get_salon(employee.salon_id)).date()
        summary = summarize_slots(day, self.get_employee_time_slots(employee.id, day))
        booked = summary.total_slots - summary.available_slots
        rate = (booked / summary.total_slots) * 100 if summary.total_slots > 0 else 0.0

        out = {
            "employee_id": employee.id,
            "date": day.isoformat(),
            "is_working": summary.total_slots > 0,
            "total_slots": summary.total_slots,
            "available_slots": summary.available_slots,
            "booked_slots": booked,
            "utilization_rate": round(rate, 2),
            "next_available": None,
        }
        if summary.available_slots == 0:
            nxt = self.next_available(employee.id)
            if nxt["available"]:
                out["next_available"] = {"date": nxt["next_slot"]["date"], "time": nxt["next_slot"]["start_time"]}
        return out

    # ledger

    def list_appointments(
        self,
        employee_id: int | None = None,
        day: date | None = None,
        salon_id: int | None = None,
    ) -> list[Appointment]:
        stmt = select(Appointment)
        if employee_id is not None:
            stmt = stmt.where(Appointment.employee_id == employee_id)
        if salon_id is not None:
            stmt = stmt.where(Appointment.salon_id == salon_id)
        if day is not None:
            start, end = _day_bounds(day)
            stmt = stmt.where(Appointment.scheduled_start >= start, Appointment.scheduled_start < end)
        stmt = stmt.order_by(Appointment.scheduled_start.asc(), Appointment.id.asc())
        return list(self.db.execute(stmt).scalars().all())

    def add_status_event(
        self,
        appointment_id: int,
        from_status: str | None,
        to_status: str,
        note: str | None = None,
    ) -> AppointmentStatusEvent:
        event = AppointmentStatusEvent(
            appointment_id=appointment_id,
            from_status=from_status,
            to_status=to_status,
            note=(note or "").strip() or None,
            created_at=utc_now_naive(),
        )
        self.db.add(event)
        self.db.flush()
        return event

    def update_appointment_status(self, appointment_id: int, new_status: str, note: str | None = None) -> Appointment:
        appointment = self.db.get(Appointment, appointment_id)
        if not appointment:
            raise NotFoundError("Appointment not found")

        target_status = (new_status or "").strip().lower()
        if target_status not in APPOINTMENT_STATUSES:
            raise MalformedRequestError("Invalid appointment status")

        current_status = (appointment.status or "pending").strip().lower()
        if target_status == current_status:
            return appointment

        if target_status not in ALLOWED_APPOINTMENT_STATUS_TRANSITIONS.get(current_status, set()):
            raise InvalidTransition(f"Invalid appointment status transition: {current_status} -> {target_status}")

        appointment.status = target_status
        self.add_status_event(appointment.id, current_status, target_status, note=note)
        self.db.commit()
        self.db.refresh(appointment)
        logger.info("appointment_status_changed", appointment_id=appointment.id, from_status=current_status, to_status=target_status)
        return appointment

    def list_status_events(self, appointment_id: int) -> list[AppointmentStatusEvent]:
        stmt = (
            select(AppointmentStatusEvent)
            .where(AppointmentStatusEvent.appointment_id == appointment_id)
            .order_by(AppointmentStatusEvent.created_at.asc(), AppointmentStatusEvent.id.asc())
        )
        return list(self.db.execute(stmt).scalars().all())
