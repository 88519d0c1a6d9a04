import json

from helpers import make_client


def payload(seed, start: str, end: str, employee_index=0, **extra) -> dict:
    body = {
        "service_id": seed["service_id"],
        "scheduled_start": start,
        "scheduled_end": end,
        "customer_id": 12,
        "employee_id": seed["employee_ids"][employee_index] if employee_index is not None else None,
        "assignment_mode": "specific",
    }
    body.update(extra)
    return body


def test_operating_hours_endpoint_resolves_encodings(tmp_path):
    double_escaped = json.dumps({"monday": {"isOpen": True, "startTime": "10:00", "endTime": "16:00"}}).replace('"', '\\"')
    client, seed = make_client(tmp_path, operating_hours=double_escaped)

    res = client.get(f"/api/salons/{seed['salon_id']}/operating-hours")
    assert res.status_code == 200
    body = res.json()
    assert body["configured"] is True
    assert body["hours"]["monday"] == {"isOpen": True, "startTime": "10:00", "endTime": "16:00"}
    assert body["hours"]["tuesday"]["isOpen"] is False


def test_operating_hours_endpoint_reports_default(tmp_path):
    client, seed = make_client(tmp_path, operating_hours="garbage")
    body = client.get(f"/api/salons/{seed['salon_id']}/operating-hours").json()
    assert body["configured"] is False
    assert body["hours"]["sunday"] == {"isOpen": True, "startTime": "09:00", "endTime": "18:00"}


def test_unknown_salon_is_404_with_code(tmp_path):
    client, _ = make_client(tmp_path)
    res = client.get("/api/salons/999/operating-hours")
    assert res.status_code == 404
    assert res.json() == {"detail": {"code": "not_found", "message": "Salon not found"}}


def test_salon_availability_any_mode(tmp_path):
    client, seed = make_client(tmp_path, operating_hours="", opening_hours="09:00-17:00")
    res = client.get(
        f"/api/salons/{seed['salon_id']}/availability",
        params={"start_date": "2030-03-04", "end_date": "2030-03-06"},
    )
    assert res.status_code == 200
    rows = res.json()
    assert [r["date"] for r in rows] == ["2030-03-04", "2030-03-05", "2030-03-06"]
    assert all(r["total_slots"] == 16 and r["available_slots"] == 16 for r in rows)


def test_salon_availability_defaults_to_thirty_days(tmp_path):
    client, seed = make_client(tmp_path)
    rows = client.get(f"/api/salons/{seed['salon_id']}/availability").json()
    assert len(rows) == 31
    assert rows[0]["date"] == "2030-03-04"
    sunday = [r for r in rows if r["date"] == "2030-03-10"][0]
    assert sunday["status"] == "unavailable"


def test_salon_slots(tmp_path):
    client, seed = make_client(tmp_path)
    res = client.get(f"/api/salons/{seed['salon_id']}/slots", params={"date": "2030-03-04", "duration": 60})
    assert res.status_code == 200
    slots = res.json()
    assert slots[0] == {"start_time": "09:00", "end_time": "10:00", "available": True, "reason": None}
    assert slots[-1]["start_time"] == "17:00"


def test_employee_availability_and_slots(tmp_path):
    client, seed = make_client(tmp_path)
    employee_id = seed["employee_ids"][0]
    client.post("/api/appointments", json=payload(seed, "2030-03-04T09:00:00", "2030-03-04T09:30:00"))

    days = client.get(
        f"/api/availability/{employee_id}",
        params={"start_date": "2030-03-04", "end_date": "2030-03-05", "service_id": seed["service_id"]},
    ).json()
    assert days[0] == {"date": "2030-03-04", "status": "available", "total_slots": 18, "available_slots": 17}
    assert days[1]["available_slots"] == 18

    slots = client.get(f"/api/availability/{employee_id}/slots", params={"date": "2030-03-04"}).json()
    assert slots[0]["available"] is False
    assert slots[0]["reason"] == "Already booked"


def test_non_positive_duration_is_400(tmp_path):
    client, seed = make_client(tmp_path)
    employee_id = seed["employee_ids"][0]
    for path in (f"/api/availability/{employee_id}", f"/api/availability/{employee_id}/next-available"):
        res = client.get(path, params={"duration": 0})
        assert res.status_code == 400
    res = client.get(f"/api/availability/{employee_id}/slots", params={"date": "2030-03-04", "duration": -30})
    assert res.status_code == 400


def test_end_before_start_is_400(tmp_path):
    client, seed = make_client(tmp_path)
    res = client.get(
        f"/api/availability/{seed['employee_ids'][0]}",
        params={"start_date": "2030-03-05", "end_date": "2030-03-04"},
    )
    assert res.status_code == 400


def test_validate_endpoint(tmp_path):
    client, seed = make_client(tmp_path)
    ok = client.post("/api/availability/validate", json=payload(seed, "2030-03-04T10:00:00", "2030-03-04T10:30:00"))
    assert ok.status_code == 200
    assert ok.json()["valid"] is True

    past = client.post("/api/availability/validate", json=payload(seed, "2030-03-01T10:00:00", "2030-03-01T10:30:00"))
    assert past.json()["valid"] is False
    assert past.json()["kind"] == "past_time"


def test_validate_any_mode_is_valid_despite_bookings(tmp_path):
    client, seed = make_client(tmp_path)
    for index in (0, 1):
        client.post(
            "/api/appointments",
            json=payload(seed, "2030-03-04T10:00:00", "2030-03-04T10:30:00", employee_index=index),
        )
    res = client.post(
        "/api/availability/validate",
        json=payload(seed, "2030-03-04T10:00:00", "2030-03-04T10:30:00", employee_index=None, assignment_mode="any"),
    )
    assert res.json() == {"valid": True, "reason": None, "kind": None, "suggestions": []}


def test_create_then_conflict_is_409(tmp_path):
    client, seed = make_client(tmp_path)
    body = payload(seed, "2030-03-04T11:00:00", "2030-03-04T11:30:00", notes="first visit")

    created = client.post("/api/appointments", json=body)
    assert created.status_code == 200
    appointment = created.json()
    assert appointment["status"] == "pending"
    assert appointment["employee_id"] == seed["employee_ids"][0]

    conflict = client.post("/api/appointments", json=body)
    assert conflict.status_code == 409
    assert conflict.json()["detail"]["code"] == "slot_conflict"
    assert conflict.json()["detail"]["message"] == "Slot is no longer available. Please select another time slot."


def test_create_past_and_malformed(tmp_path):
    client, seed = make_client(tmp_path)
    past = client.post("/api/appointments", json=payload(seed, "2030-03-01T11:00:00", "2030-03-01T11:30:00"))
    assert past.status_code == 422
    assert past.json()["detail"]["code"] == "past_time"

    wrong_length = client.post("/api/appointments", json=payload(seed, "2030-03-04T11:00:00", "2030-03-04T12:00:00"))
    assert wrong_length.status_code == 422
    assert wrong_length.json()["detail"]["code"] == "malformed_request"

    no_employee = client.post(
        "/api/appointments", json=payload(seed, "2030-03-04T11:00:00", "2030-03-04T11:30:00", employee_index=None)
    )
    assert no_employee.json()["detail"]["code"] == "malformed_request"

    bad_mode = client.post(
        "/api/appointments", json=payload(seed, "2030-03-04T11:00:00", "2030-03-04T11:30:00", assignment_mode="whoever")
    )
    assert bad_mode.status_code == 422


def test_list_and_status_flow(tmp_path):
    client, seed = make_client(tmp_path)
    employee_id = seed["employee_ids"][1]
    created = client.post(
        "/api/appointments", json=payload(seed, "2030-03-05T14:00:00", "2030-03-05T14:30:00", employee_index=1)
    ).json()

    listed = client.get("/api/appointments", params={"employee_id": employee_id, "day": "2030-03-05"})
    assert [row["id"] for row in listed.json()] == [created["id"]]
    assert client.get("/api/appointments", params={"day": "2030-03-06"}).json() == []

    confirmed = client.patch(f"/api/appointments/{created['id']}/status", json={"status": "confirmed", "note": "called"})
    assert confirmed.status_code == 200
    assert confirmed.json()["status"] == "confirmed"

    invalid = client.patch(f"/api/appointments/{created['id']}/status", json={"status": "pending"})
    assert invalid.status_code == 400
    assert invalid.json()["detail"]["code"] == "invalid_transition"

    missing = client.patch("/api/appointments/999/status", json={"status": "confirmed"})
    assert missing.status_code == 404

    events = client.get(f"/api/appointments/{created['id']}/events").json()
    assert [(e["from_status"], e["to_status"]) for e in events] == [(None, "pending"), ("pending", "confirmed")]


def test_next_available_and_summary_endpoints(tmp_path):
    client, seed = make_client(tmp_path)
    employee_id = seed["employee_ids"][0]

    nxt = client.get(f"/api/availability/{employee_id}/next-available", params={"service_id": seed["service_id"]})
    assert nxt.json()["next_slot"] == {"date": "2030-03-04", "start_time": "09:00", "end_time": "09:30"}

    client.post("/api/appointments", json=payload(seed, "2030-03-04T09:00:00", "2030-03-04T09:30:00"))
    summary = client.get(f"/api/availability/{employee_id}/summary", params={"date": "2030-03-04"}).json()
    assert summary["is_working"] is True
    assert summary["booked_slots"] == 1
    assert summary["utilization_rate"] == round(100 / 18, 2)
    assert summary["next_available"] is None
