"""
HTTP implementation of ``BookingStore`` for callers that talk to a remote ledger.

Failures are mapped back onto the engine's error classes by their ``code``
field, so a lost race still surfaces as ``ConflictError`` on this side.
"""

from datetime import date

import requests
import structlog

from .config import settings
from .core.errors import error_from_code
from .core.types import BookingRequest, DayAvailability, TimeSlot

logger = structlog.get_logger("salonbook.client")


def _day_from_json(item: dict) -> DayAvailability:
    return DayAvailability(
        date=date.fromisoformat(item["date"]),
        status=item["status"],
        total_slots=int(item["total_slots"]),
        available_slots=int(item["available_slots"]),
    )


def _slot_from_json(item: dict) -> TimeSlot:
    return TimeSlot(
        start_time=item["start_time"],
        end_time=item["end_time"],
        available=bool(item.get("available", True)),
        reason=item.get("reason"),
    )


class BookingApiClient:
    def __init__(self, base_url: str | None = None, session=None, timeout: int | None = None):
        self.base_url = (base_url or settings.API_BASE_URL).rstrip("/")
        self.http = session or requests.Session()
        self.timeout = int(timeout or settings.API_TIMEOUT_SECONDS)

    def _raise_for(self, response) -> None:
        if response.status_code < 400:
            return
        try:
            detail = response.json().get("detail")
        except ValueError:
            detail = None
        if isinstance(detail, dict) and detail.get("code"):
            logger.info("api_error", code=detail["code"], status_code=response.status_code)
            raise error_from_code(detail["code"], detail.get("message"))
        response.raise_for_status()

    def _get(self, path: str, params: dict | None = None):
        params = {k: v for k, v in (params or {}).items() if v is not None}
        r = self.http.get(f"{self.base_url}{path}", params=params, timeout=self.timeout)
        self._raise_for(r)
        return r.json()

    def _post(self, path: str, json: dict):
        r = self.http.post(f"{self.base_url}{path}", json=json, timeout=self.timeout)
        self._raise_for(r)
        return r.json()

    def get_operating_hours(self, salon_id: int) -> dict:
        return self._get(f"/api/salons/{salon_id}/operating-hours")["raw"]

    def get_employee_availability(
        self,
        employee_id: int,
        start_date: date,
        end_date: date,
        service_id: int | None = None,
        duration_minutes: int | None = None,
    ) -> list[DayAvailability]:
        rows = self._get(
            f"/api/availability/{employee_id}",
            {
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
                "service_id": service_id,
                "duration": duration_minutes,
            },
        )
        return [_day_from_json(item) for item in rows]

    def get_employee_time_slots(
        self,
        employee_id: int,
        day: date,
        duration_minutes: int | None = None,
        service_id: int | None = None,
    ) -> list[TimeSlot]:
        rows = self._get(
            f"/api/availability/{employee_id}/slots",
            {"date": day.isoformat(), "service_id": service_id, "duration": duration_minutes},
        )
        return [_slot_from_json(item) for item in rows]

    def validate_booking(self, request: BookingRequest) -> dict:
        return self._post("/api/availability/validate", request.to_payload())

    def create_appointment(self, request: BookingRequest) -> dict:
        return self._post("/api/appointments", request.to_payload())
