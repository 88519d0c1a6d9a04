"""
Slot generation for a single calendar day.

``generate`` produces the candidate slots of one open window; the ``mark_*``
helpers refine provisional slots against an employee's calendar. A slot that
is already unavailable keeps its first reason.
"""

from dataclasses import replace
from datetime import date, datetime
from typing import Iterable, Sequence

from ..config import settings
from .clock import at_minutes, format_hhmm, parse_hhmm
from .types import BookedWindow, DayWindow, TimeSlot

PAST_TIME = "Past time slot"
ALREADY_BOOKED = "Already booked"
BREAK_TIME = "Break time"
BUFFER_REQUIRED = "Buffer time required"


def generate(
    day: date,
    day_window: DayWindow,
    duration_minutes: int,
    now: datetime,
    step_minutes: int | None = None,
) -> list[TimeSlot]:
    if not day_window.is_open:
        return []
    duration = int(duration_minutes)
    if duration <= 0:
        raise ValueError("duration_minutes must be > 0")
    step = int(step_minutes or settings.SLOT_STEP_MINUTES)

    open_at = day_window.open_minutes
    close_at = day_window.close_minutes

    slots: list[TimeSlot] = []
    cursor = open_at
    while cursor + duration <= close_at:
        if at_minutes(day, cursor) < now:
            slots.append(
                TimeSlot(
                    start_time=format_hhmm(cursor),
                    end_time=format_hhmm(cursor + duration),
                    available=False,
                    reason=PAST_TIME,
                )
            )
        else:
            slots.append(TimeSlot(start_time=format_hhmm(cursor), end_time=format_hhmm(cursor + duration)))
        cursor += step
    return slots


def _mark(slots: Iterable[TimeSlot], reason: str, predicate) -> list[TimeSlot]:
    out: list[TimeSlot] = []
    for slot in slots:
        if slot.available and predicate(slot):
            out.append(replace(slot, available=False, reason=reason))
        else:
            out.append(slot)
    return out


def mark_lead_time(slots: Sequence[TimeSlot], day: date, earliest: datetime) -> list[TimeSlot]:
    """Slots starting before ``earliest`` (now plus lead time) are past."""
    return _mark(slots, PAST_TIME, lambda s: at_minutes(day, s.start_minutes) < earliest)


def mark_breaks(slots: Sequence[TimeSlot], breaks: Sequence[dict] | None) -> list[TimeSlot]:
    windows: list[tuple[int, int]] = []
    for item in breaks or []:
        try:
            windows.append((parse_hhmm(item["startTime"]), parse_hhmm(item["endTime"])))
        except (KeyError, TypeError, ValueError):
            continue
    if not windows:
        return list(slots)
    return _mark(
        slots,
        BREAK_TIME,
        lambda s: any(s.start_minutes < b_end and s.end_minutes > b_start for b_start, b_end in windows),
    )


def _slot_bounds(day: date, slot: TimeSlot) -> tuple[datetime, datetime]:
    return at_minutes(day, slot.start_minutes), at_minutes(day, slot.end_minutes)


def mark_booked(slots: Sequence[TimeSlot], day: date, booked: Sequence[BookedWindow]) -> list[TimeSlot]:
    blocking = [b for b in booked if b.is_blocking]
    return _mark(
        slots,
        ALREADY_BOOKED,
        lambda s: any(b.overlaps(*_slot_bounds(day, s)) for b in blocking),
    )


def mark_buffer(
    slots: Sequence[TimeSlot], day: date, booked: Sequence[BookedWindow], buffer_minutes: int
) -> list[TimeSlot]:
    if buffer_minutes <= 0:
        return list(slots)
    blocking = [b for b in booked if b.is_blocking]

    def too_close(slot: TimeSlot) -> bool:
        start = at_minutes(day, slot.start_minutes - buffer_minutes)
        end = at_minutes(day, slot.end_minutes + buffer_minutes)
        return any(b.overlaps(start, end) for b in blocking)

    return _mark(slots, BUFFER_REQUIRED, too_close)


def available_only(slots: Iterable[TimeSlot]) -> list[TimeSlot]:
    return [s for s in slots if s.available]
