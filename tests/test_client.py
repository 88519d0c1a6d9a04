from datetime import date, datetime

import pytest

from helpers import FROZEN_NOW, frozen_clock, make_client
from salonbook.client import BookingApiClient
from salonbook.core.booking import BookingState
from salonbook.core.errors import ConflictError, NotFoundError
from salonbook.core.types import BookingRequest, ServiceInfo, TimeSlot
from salonbook.flow import BookingFlowController

MONDAY = FROZEN_NOW.date()


def api_client(tmp_path, **seed_options):
    http, seed = make_client(tmp_path, **seed_options)
    return BookingApiClient(base_url="http://testserver", session=http), seed


def request_for(seed, hour: int, employee_index: int = 0) -> BookingRequest:
    return BookingRequest(
        service_id=seed["service_id"],
        scheduled_start=datetime(2030, 3, 4, hour, 0),
        scheduled_end=datetime(2030, 3, 4, hour, 30),
        employee_id=seed["employee_ids"][employee_index],
        customer_id=3,
    )


def test_reads_parse_into_engine_types(tmp_path):
    client, seed = api_client(tmp_path, operating_hours="", opening_hours="10:00-14:00")
    employee_id = seed["employee_ids"][0]

    assert client.get_operating_hours(seed["salon_id"]) == {"operatingHours": "", "openingHours": "10:00-14:00"}

    days = client.get_employee_availability(employee_id, MONDAY, date(2030, 3, 5), service_id=seed["service_id"])
    assert [d.date for d in days] == [MONDAY, date(2030, 3, 5)]
    assert days[0].available_slots == 18

    slots = client.get_employee_time_slots(employee_id, MONDAY, duration_minutes=60)
    assert slots[0] == TimeSlot("09:00", "10:00", True, None)


def test_error_codes_map_back_to_exceptions(tmp_path):
    client, seed = api_client(tmp_path)

    with pytest.raises(NotFoundError):
        client.get_operating_hours(999)

    created = client.create_appointment(request_for(seed, 11))
    assert created["status"] == "pending"
    with pytest.raises(ConflictError) as excinfo:
        client.create_appointment(request_for(seed, 11))
    assert excinfo.value.code == "slot_conflict"


def test_validate_over_http(tmp_path):
    client, seed = api_client(tmp_path)
    client.create_appointment(request_for(seed, 9))

    result = client.validate_booking(request_for(seed, 9))
    assert result["valid"] is False
    assert result["kind"] == "overlap_conflict"
    assert result["suggestions"][0]["start_time"] == "09:30"
    assert client.validate_booking(request_for(seed, 9, employee_index=1))["valid"] is True


def test_flow_runs_against_remote_store(tmp_path):
    client, seed = api_client(tmp_path)
    controller = BookingFlowController(client, clock=frozen_clock())
    service = ServiceInfo(id=seed["service_id"], duration_minutes=30, salon_id=seed["salon_id"])

    attempt = controller.choose_employee(controller.choose_service(controller.start(seed["salon_id"]), service), seed["employee_ids"][1])
    slot = controller.time_slots(attempt, MONDAY)[4]
    attempt = controller.submit(controller.choose_slot(attempt, MONDAY, slot))
    assert attempt.state is BookingState.ACCEPTED

    committed = controller.confirm(attempt)
    assert committed.state is BookingState.COMMITTED
    assert committed.appointment_id > 0

    lost = controller.confirm(attempt)
    assert lost.state is BookingState.REJECTED
    assert lost.refresh_required is True
