import json
from datetime import datetime

from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from salonbook.api import get_db, get_store, install_error_handlers, router
from salonbook.db import Base, make_engine
from salonbook.models import (
    Employee,
    EmployeeAvailabilityRules,
    EmployeeWorkingHours,
    Salon,
    Service,
)
from salonbook.services import LedgerStore

FROZEN_NOW = datetime(2030, 3, 4, 8, 0)  # a Monday morning


def frozen_clock(now: datetime = FROZEN_NOW):
    return lambda tz_name: now


def weekly_hours(start: str = "09:00", end: str = "18:00", closed: tuple[str, ...] = ("sunday",)) -> dict:
    days = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
    return {d: {"isOpen": d not in closed, "startTime": start, "endTime": end} for d in days}


def make_session_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'test_salonbook.db'}")
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


def seed_salon(
    db,
    employees: tuple[str, ...] = ("Aline", "Brenda"),
    duration_min: int = 30,
    operating_hours=None,
    opening_hours: str | None = None,
) -> dict:
    raw_hours = operating_hours if operating_hours is not None else weekly_hours()
    salon = Salon(
        name="Kigali Hair Studio",
        timezone="Africa/Kigali",
        operating_hours=raw_hours if isinstance(raw_hours, str) else json.dumps(raw_hours),
        opening_hours=opening_hours,
    )
    db.add(salon)
    db.flush()
    service = Service(salon_id=salon.id, name="Haircut", duration_min=duration_min, base_price=5000)
    db.add(service)
    staff = []
    for name in employees:
        employee = Employee(salon_id=salon.id, name=name, is_active=True)
        db.add(employee)
        staff.append(employee)
    db.commit()
    return {
        "salon_id": salon.id,
        "service_id": service.id,
        "employee_ids": [e.id for e in staff],
    }


def set_working_hours(db, employee_id: int, weekday: int, start: str, end: str, breaks=None) -> None:
    db.add(
        EmployeeWorkingHours(
            employee_id=employee_id,
            weekday=weekday,
            start_time=start,
            end_time=end,
            breaks=breaks or [],
            is_active=True,
        )
    )
    db.commit()


def set_rules(db, employee_id: int, **values) -> None:
    db.add(EmployeeAvailabilityRules(employee_id=employee_id, **values))
    db.commit()


def make_client(tmp_path, operating_hours=None, opening_hours=None, employees=("Aline", "Brenda")):
    TestingSessionLocal = make_session_factory(tmp_path)
    with TestingSessionLocal() as db:
        seed = seed_salon(db, employees=employees, operating_hours=operating_hours, opening_hours=opening_hours)

    app = FastAPI()
    install_error_handlers(app)
    app.include_router(router)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    def override_get_store(db=Depends(get_db)):
        return LedgerStore(db, clock=frozen_clock())

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_store] = override_get_store
    return TestClient(app), seed
