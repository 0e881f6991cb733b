import os

# Set testing environment before the app reads its settings
os.environ["TESTING"] = "1"
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///./test.db")

import pytest
from datetime import datetime

from apscheduler.schedulers.background import BackgroundScheduler

from hospital.core.database import Base, SessionLocal, engine
from hospital.core.exceptions import TransientNotificationError
from hospital.models.appointment import Appointment  # noqa: F401
from hospital.models.patient import Patient
from hospital.services.appointment_service import AppointmentService
from hospital.services.notification_service import NotificationGateway
from hospital.services.reminder_registry import ReminderJobRegistry
from hospital.services.reminder_scheduler import ReminderScheduler


class RecordingGateway(NotificationGateway):
    """Collects messages instead of sending them."""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    def send(self, to, body):
        if self.fail:
            raise TransientNotificationError("gateway unavailable")
        self.sent.append((to, body))
        return f"SM{len(self.sent):04d}"


class BrokenGateway(NotificationGateway):
    """Fails with an error that is not a notification error."""

    def send(self, to, body):
        raise RuntimeError("unexpected response from provider")


class FrozenClock:
    def __init__(self, now: datetime):
        self.current = now

    def __call__(self) -> datetime:
        return self.current


@pytest.fixture
def clock():
    return FrozenClock(datetime(2024, 12, 31, 9, 0))


@pytest.fixture
def gateway():
    return RecordingGateway()


@pytest.fixture
def background():
    # never started: jobs stay pending and are fired by calling run_reminder
    return BackgroundScheduler()


@pytest.fixture
def registry():
    return ReminderJobRegistry()


@pytest.fixture
def reminder_scheduler(gateway, background, clock, registry):
    return ReminderScheduler(
        gateway=gateway,
        scheduler=background,
        clock=clock,
        on_fired=lambda handle: registry.remove(handle.appointment_id, handle),
    )


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def service(db_session, reminder_scheduler, registry, gateway):
    return AppointmentService(
        db_session, reminder_scheduler, registry, gateway, default_country_code="+91"
    )


@pytest.fixture
def patient(db_session):
    patient = Patient(first_name="Asha", last_name="Rao", phone_number="9876543210", email="asha@example.com")
    db_session.add(patient)
    db_session.commit()
    db_session.refresh(patient)
    return patient
