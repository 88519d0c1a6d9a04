from datetime import date, datetime

import pytest

from helpers import FROZEN_NOW, frozen_clock, seed_salon
from salonbook.core.booking import BookingState
from salonbook.core.errors import InvalidTransition, MalformedRequestError
from salonbook.core.types import BookingRequest, ServiceInfo, TimeSlot
from salonbook.flow import BookingFlowController
from salonbook.services import LedgerStore

MONDAY = FROZEN_NOW.date()


def make_controller(db, seed):
    store = LedgerStore(db, clock=frozen_clock())
    controller = BookingFlowController(store, clock=frozen_clock())
    service = ServiceInfo(id=seed["service_id"], duration_minutes=30, salon_id=seed["salon_id"])
    return store, controller, service


def test_specific_employee_flow_commits(db):
    seed = seed_salon(db)
    store, controller, service = make_controller(db, seed)

    attempt = controller.start(seed["salon_id"], customer_id=5)
    attempt = controller.choose_service(attempt, service)
    attempt = controller.choose_employee(attempt, seed["employee_ids"][0])
    assert attempt.context.now == FROZEN_NOW

    days = controller.available_days(attempt, (MONDAY, date(2030, 3, 6)))
    assert [d.available_slots for d in days] == [18, 18, 18]

    slot = controller.time_slots(attempt, MONDAY)[0]
    attempt = controller.choose_slot(attempt, MONDAY, slot)
    attempt = controller.submit(attempt)
    assert attempt.state is BookingState.ACCEPTED

    attempt = controller.confirm(attempt)
    assert attempt.state is BookingState.COMMITTED
    [row] = store.list_appointments(employee_id=seed["employee_ids"][0])
    assert row.id == attempt.appointment_id
    assert row.customer_id == 5
    assert row.scheduled_start == datetime(2030, 3, 4, 9, 0)


def test_lost_race_asks_for_refresh(db):
    seed = seed_salon(db)
    _, controller, service = make_controller(db, seed)

    def accepted_attempt():
        attempt = controller.start(seed["salon_id"])
        attempt = controller.choose_service(attempt, service)
        attempt = controller.choose_employee(attempt, seed["employee_ids"][0])
        attempt = controller.choose_slot(attempt, MONDAY, TimeSlot("10:00", "10:30"))
        return controller.submit(attempt)

    first, second = accepted_attempt(), accepted_attempt()
    assert first.state is second.state is BookingState.ACCEPTED

    assert controller.confirm(first).state is BookingState.COMMITTED
    lost = controller.confirm(second)
    assert lost.state is BookingState.REJECTED
    assert lost.kind == "slot_conflict"
    assert lost.refresh_required is True

    refreshed = controller.time_slots(lost, MONDAY)
    assert [s.reason for s in refreshed if s.start_time == "10:00"] == ["Already booked"]


def test_rejected_submit_carries_suggestions(db):
    seed = seed_salon(db)
    store, controller, service = make_controller(db, seed)
    store.create_appointment(
        BookingRequest(
            service_id=seed["service_id"],
            scheduled_start=datetime(2030, 3, 4, 9, 0),
            scheduled_end=datetime(2030, 3, 4, 9, 30),
            employee_id=seed["employee_ids"][0],
        )
    )

    attempt = controller.choose_employee(controller.choose_service(controller.start(seed["salon_id"]), service), seed["employee_ids"][0])
    attempt = controller.choose_slot(attempt, MONDAY, TimeSlot("09:00", "09:30"))
    rejected = controller.submit(attempt)

    assert rejected.state is BookingState.REJECTED
    assert rejected.kind == "overlap_conflict"
    assert rejected.suggestions[0] == TimeSlot("09:30", "10:00")

    retry = controller.choose_slot(rejected, MONDAY, rejected.suggestions[0])
    assert controller.submit(retry).state is BookingState.ACCEPTED


def test_any_available_flow(db):
    seed = seed_salon(db)
    store, controller, service = make_controller(db, seed)

    attempt = controller.choose_any_employee(controller.choose_service(controller.start(seed["salon_id"]), service))
    days = controller.available_days(attempt, (MONDAY, date(2030, 3, 10)))
    assert all(d.available_slots == d.total_slots for d in days)
    assert days[-1].total_slots == 0

    slots = controller.time_slots(attempt, MONDAY)
    attempt = controller.submit(controller.choose_slot(attempt, MONDAY, slots[2]))
    assert attempt.state is BookingState.ACCEPTED

    committed = controller.confirm(attempt)
    row = store.list_appointments(salon_id=seed["salon_id"])[0]
    assert row.id == committed.appointment_id
    assert row.employee_id == seed["employee_ids"][0]
    assert row.scheduled_start == datetime(2030, 3, 4, 10, 0)


def test_guards(db):
    seed = seed_salon(db)
    _, controller, service = make_controller(db, seed)
    attempt = controller.start(seed["salon_id"])

    with pytest.raises(MalformedRequestError):
        controller.available_days(attempt)
    with pytest.raises(MalformedRequestError):
        controller.time_slots(controller.choose_service(attempt, service), MONDAY)
    with pytest.raises(MalformedRequestError):
        controller.choose_slot(attempt, MONDAY, TimeSlot("09:00", "09:30", False, "Past time slot"))
    with pytest.raises(InvalidTransition):
        controller.confirm(attempt)
    with pytest.raises(InvalidTransition):
        controller.submit(attempt)


def test_any_mode_slots_use_the_attempts_clock(db):
    seed = seed_salon(db)
    store, controller, service = make_controller(db, seed)
    attempt = controller.choose_any_employee(controller.choose_service(controller.start(seed["salon_id"]), service))

    later = BookingFlowController(store, clock=frozen_clock(datetime(2030, 3, 4, 12, 0)))
    slots = later.time_slots(attempt, MONDAY)
    assert slots[0].start_time == "09:00"
    assert slots[0].available is True
    assert later.available_days(attempt, (MONDAY, MONDAY))[0].available_slots == 18
