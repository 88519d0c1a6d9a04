"""
Booking decisions and the booking attempt state machine.

A booking attempt moves ``draft -> pending_validation -> accepted | rejected``
and an accepted attempt becomes ``committed`` only once the ledger's create
command succeeds. Validation is advisory: the ledger repeats the overlap check
under its own lock, and an accepted attempt may still end up rejected with
``refresh_required`` set when another writer got there first.

Attempts and contexts are frozen; every transition returns a new value.
"""

from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Mapping, Sequence

import structlog

from .clock import at_minutes, minutes_of
from .errors import (
    BookingError,
    ConflictError,
    InvalidTransition,
    MalformedRequestError,
    OverlapConflict,
    PastTimeError,
    error_from_code,
)
from .types import (
    ASSIGNMENT_ANY,
    ASSIGNMENT_MODES,
    ASSIGNMENT_SPECIFIC,
    BookedWindow,
    BookingRequest,
    DayWindow,
    ServiceInfo,
    TimeSlot,
)

logger = structlog.get_logger("salonbook.booking")

ALREADY_BOOKED_REASON = "Time slot is already booked"
PAST_REASON = "Cannot book a time in the past"
OUTSIDE_HOURS_REASON = "Time is outside working hours"


@dataclass(frozen=True)
class Accepted:
    valid: bool = field(default=True, init=False)

    def to_dict(self) -> dict:
        return {"valid": True}


@dataclass(frozen=True)
class Rejected:
    reason: str
    kind: str = BookingError.code
    suggestions: tuple[TimeSlot, ...] = ()
    valid: bool = field(default=False, init=False)

    @classmethod
    def from_error(cls, error: BookingError, suggestions: Sequence[TimeSlot] = ()) -> "Rejected":
        return cls(reason=error.message, kind=error.code, suggestions=tuple(suggestions))

    def to_error(self) -> BookingError:
        return error_from_code(self.kind, self.reason)

    def to_dict(self) -> dict:
        out: dict = {"valid": False, "reason": self.reason, "kind": self.kind}
        if self.suggestions:
            out["suggestions"] = [s.to_dict() for s in self.suggestions]
        return out


Verdict = Accepted | Rejected


def verdict_from_dict(result: Mapping) -> Verdict:
    """Rebuild a verdict from the store's ``{valid, reason?, kind?, suggestions?}`` shape."""
    if result.get("valid"):
        return Accepted()
    return Rejected(
        reason=result.get("reason") or "",
        kind=result.get("kind") or BookingError.code,
        suggestions=tuple(TimeSlot(**item) for item in result.get("suggestions") or ()),
    )


class BookingConflictValidator:
    """
    Advisory validation of one booking request against a ledger snapshot.

    Rules run in order and the first failure wins:

    0. required fields for the assignment mode are present
    1. ``specific``: no overlap with the employee's pending/confirmed bookings
    2. the start is not before ``now``
    3. ``start < end`` and the window length equals the service duration
    4. when a day window is supplied, the booking fits inside it
    """

    def __init__(
        self,
        service_duration: int,
        now: datetime,
        booked: Sequence[BookedWindow] = (),
        day_window: DayWindow | None = None,
    ):
        self.service_duration = int(service_duration)
        self.now = now
        self.booked = tuple(booked)
        self.day_window = day_window

    def first_failure(self, request: BookingRequest) -> BookingError | None:
        mode = (request.assignment_mode or "").strip().lower()
        if mode not in ASSIGNMENT_MODES:
            return MalformedRequestError(f"Unknown assignment mode {request.assignment_mode!r}")
        if mode == ASSIGNMENT_SPECIFIC and request.employee_id is None:
            return MalformedRequestError("employee_id is required for a specific employee booking")

        start, end = request.scheduled_start, request.scheduled_end
        if mode == ASSIGNMENT_SPECIFIC:
            for existing in self.booked:
                if existing.employee_id is not None and existing.employee_id != request.employee_id:
                    continue
                if existing.is_blocking and existing.overlaps(start, end):
                    return OverlapConflict(ALREADY_BOOKED_REASON)

        if start < self.now:
            return PastTimeError(PAST_REASON)

        if not start < end:
            return MalformedRequestError("scheduled_start must be before scheduled_end")
        if request.duration_minutes != self.service_duration:
            return MalformedRequestError(
                f"Booking length {request.duration_minutes} min does not match "
                f"service duration {self.service_duration} min"
            )

        if self.day_window is not None:
            end_minutes = minutes_of(start) + request.duration_minutes
            if not self.day_window.contains(minutes_of(start), end_minutes):
                return MalformedRequestError(OUTSIDE_HOURS_REASON)
        return None

    def validate(self, request: BookingRequest) -> Verdict:
        error = self.first_failure(request)
        if error is None:
            return Accepted()
        if isinstance(error, MalformedRequestError):
            logger.warning("booking_malformed", code=error.code, reason=error.message)
        else:
            logger.info("booking_rejected", code=error.code, reason=error.message)
        return Rejected.from_error(error)


class BookingState(str, Enum):
    DRAFT = "draft"
    PENDING_VALIDATION = "pending_validation"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    COMMITTED = "committed"


ALLOWED_TRANSITIONS = {
    BookingState.DRAFT: {BookingState.DRAFT, BookingState.PENDING_VALIDATION},
    BookingState.PENDING_VALIDATION: {BookingState.ACCEPTED, BookingState.REJECTED},
    BookingState.ACCEPTED: {BookingState.COMMITTED, BookingState.REJECTED},
    BookingState.REJECTED: {BookingState.DRAFT},
    BookingState.COMMITTED: set(),
}


@dataclass(frozen=True)
class BookingContext:
    """Everything the customer has picked so far, passed explicitly between steps."""

    salon_id: int
    service: ServiceInfo | None = None
    employee_id: int | None = None
    assignment_mode: str = ASSIGNMENT_SPECIFIC
    selected_date: date | None = None
    selected_slot: TimeSlot | None = None
    customer_id: int | None = None
    notes: str | None = None
    now: datetime | None = None

    @property
    def is_any_available(self) -> bool:
        return self.assignment_mode == ASSIGNMENT_ANY

    @property
    def is_complete(self) -> bool:
        if self.service is None or self.selected_date is None or self.selected_slot is None:
            return False
        return self.is_any_available or self.employee_id is not None

    def to_request(self) -> BookingRequest:
        if not self.is_complete:
            raise MalformedRequestError("Select a service, a stylist and a time slot first")
        start = at_minutes(self.selected_date, self.selected_slot.start_minutes)
        return BookingRequest(
            service_id=self.service.id,
            scheduled_start=start,
            scheduled_end=start + timedelta(minutes=self.service.duration_minutes),
            customer_id=self.customer_id,
            employee_id=None if self.is_any_available else self.employee_id,
            assignment_mode=self.assignment_mode,
            salon_id=self.salon_id,
            notes=self.notes,
        )


@dataclass(frozen=True)
class BookingAttempt:
    context: BookingContext
    state: BookingState = BookingState.DRAFT
    reason: str | None = None
    kind: str | None = None
    appointment_id: int | None = None
    refresh_required: bool = False
    suggestions: tuple[TimeSlot, ...] = ()

    def _move(self, target: BookingState, **changes) -> "BookingAttempt":
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransition(f"Cannot move booking from {self.state.value} to {target.value}")
        return replace(self, state=target, **changes)

    def edit(self, **context_changes) -> "BookingAttempt":
        """Change selections; a rejected attempt goes back to draft."""
        return self._move(
            BookingState.DRAFT,
            context=replace(self.context, **context_changes),
            reason=None,
            kind=None,
            refresh_required=False,
            suggestions=(),
        )

    def submit(self) -> "BookingAttempt":
        if not self.context.is_complete:
            raise InvalidTransition("Booking is incomplete")
        return self._move(BookingState.PENDING_VALIDATION)

    def resolve(self, verdict: Verdict) -> "BookingAttempt":
        if verdict.valid:
            return self._move(BookingState.ACCEPTED)
        return self._move(
            BookingState.REJECTED,
            reason=verdict.reason,
            kind=verdict.kind,
            suggestions=verdict.suggestions,
        )

    def commit(self, appointment_id: int) -> "BookingAttempt":
        return self._move(BookingState.COMMITTED, appointment_id=appointment_id)

    def commit_failed(self, error: BookingError) -> "BookingAttempt":
        """The create command refused an accepted attempt; a lost race means the slots are stale."""
        return self._move(
            BookingState.REJECTED,
            reason=error.message,
            kind=error.code,
            refresh_required=isinstance(error, ConflictError),
        )
