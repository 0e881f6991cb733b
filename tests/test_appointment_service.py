import pytest
from datetime import date, datetime

from sqlalchemy.exc import OperationalError

from hospital.core.exceptions import (
    AppointmentNotFoundError, InvalidTransitionError, PatientNotFoundError
)
from hospital.models.appointment import Appointment, AppointmentStatus
from hospital.models.patient import Patient
from hospital.services.reminder_scheduler import ReminderJobState
from tests.conftest import BrokenGateway, RecordingGateway


def book_default(service, patient, appointment_date=date(2025, 1, 1), appointment_time="02:00 PM"):
    return service.book(
        patient_id=patient.id,
        doctor="Dr Vikram Gupta",
        specialization="Orthopedics",
        appointment_date=appointment_date,
        appointment_time=appointment_time,
    )


def add_appointment(db_session, patient, appointment_date, appointment_time, status=AppointmentStatus.PENDING):
    appointment = Appointment(
        patient_id=patient.id,
        doctor="Dr Asha Rao",
        specialization="Dermatology",
        appointment_date=appointment_date,
        appointment_time=appointment_time,
        status=status,
    )
    db_session.add(appointment)
    db_session.commit()
    db_session.refresh(appointment)
    return appointment


class TestBook:

    def test_book_schedules_reminder_and_confirms(self, service, patient, registry, gateway):
        appointment = book_default(service, patient)

        assert appointment.id is not None
        assert appointment.status == AppointmentStatus.PENDING

        handle = registry.get(str(appointment.id))
        assert handle is not None
        assert handle.fire_time == datetime(2025, 1, 1, 13, 0)
        assert handle.payload.phone == "+919876543210"

        to, body = gateway.sent[0]
        assert to == "+919876543210"
        assert body.startswith("Your appointment with Dr Vikram Gupta (Orthopedics) has been confirmed")

    def test_book_unknown_patient(self, service, db_session):
        with pytest.raises(PatientNotFoundError):
            service.book(999, "Dr Asha Rao", "Dermatology", date(2025, 1, 1), "10:00")
        assert db_session.query(Appointment).count() == 0

    def test_book_without_phone_skips_notifications(self, service, db_session, registry, gateway):
        patient = Patient(first_name="No", last_name="Phone")
        db_session.add(patient)
        db_session.commit()

        appointment = book_default(service, patient)

        assert appointment.id is not None
        assert registry.get(str(appointment.id)) is None
        assert gateway.sent == []

    def test_book_with_short_phone_skips_notifications(self, service, db_session, registry, gateway):
        patient = Patient(first_name="Short", last_name="Number", phone_number="12345")
        db_session.add(patient)
        db_session.commit()

        appointment = book_default(service, patient)

        assert registry.get(str(appointment.id)) is None
        assert gateway.sent == []

    def test_book_survives_gateway_failure(self, db_session, reminder_scheduler, registry, patient):
        from hospital.services.appointment_service import AppointmentService

        failing = AppointmentService(
            db_session, reminder_scheduler, registry, RecordingGateway(fail=True), default_country_code="+91"
        )
        appointment = book_default(failing, patient)

        assert db_session.get(Appointment, appointment.id) is not None
        assert registry.get(str(appointment.id)) is not None

    def test_book_survives_unexpected_gateway_error(self, db_session, reminder_scheduler, registry, patient):
        from hospital.services.appointment_service import AppointmentService

        service = AppointmentService(
            db_session, reminder_scheduler, registry, BrokenGateway(), default_country_code="+91"
        )
        appointment = book_default(service, patient)

        assert db_session.get(Appointment, appointment.id) is not None
        assert registry.get(str(appointment.id)) is not None

    def test_book_with_unparseable_time_has_no_reminder(self, service, patient, registry, gateway):
        appointment = book_default(service, patient, appointment_time="after lunch")

        assert appointment.id is not None
        assert registry.get(str(appointment.id)) is None
        # confirmation still goes out
        assert len(gateway.sent) == 1

    def test_book_in_the_past_has_no_reminder(self, service, patient, registry, clock):
        clock.current = datetime(2025, 1, 1, 13, 30)

        appointment = book_default(service, patient)

        assert registry.get(str(appointment.id)) is None

    def test_book_accepts_24_hour_time(self, service, patient, registry):
        appointment = book_default(service, patient, appointment_time="14:00")
        assert registry.get(str(appointment.id)).fire_time == datetime(2025, 1, 1, 13, 0)


class TestReschedule:

    def test_reschedule_replaces_reminder(self, service, patient, registry, background):
        appointment = book_default(service, patient)
        old = registry.get(str(appointment.id))

        updated = service.reschedule(appointment.id, date(2025, 1, 2), "09:00 AM")

        new = registry.get(str(appointment.id))
        assert old.state == ReminderJobState.CANCELLED
        assert new is not old
        assert new.state == ReminderJobState.SCHEDULED
        assert new.fire_time == datetime(2025, 1, 2, 8, 0)
        assert [job.id for job in background.get_jobs()] == [new.job_id]
        assert updated.appointment_date == date(2025, 1, 2)
        assert updated.appointment_time == "09:00 AM"
        assert updated.status == AppointmentStatus.PENDING

    def test_reschedule_keeps_confirmed_status(self, service, patient):
        appointment = book_default(service, patient)
        service.confirm(appointment.id)

        updated = service.reschedule(appointment.id, date(2025, 1, 2), "10:00")

        assert updated.status == AppointmentStatus.CONFIRMED

    def test_reschedule_to_past_leaves_no_reminder(self, service, patient, registry):
        appointment = book_default(service, patient)

        service.reschedule(appointment.id, date(2024, 12, 30), "10:00")

        assert registry.get(str(appointment.id)) is None

    def test_reschedule_sends_new_confirmation(self, service, patient, gateway):
        appointment = book_default(service, patient)
        service.reschedule(appointment.id, date(2025, 1, 2), "09:00 AM")

        assert len(gateway.sent) == 2
        assert "Thursday, January 2, 2025 at 09:00 AM" in gateway.sent[1][1]

    def test_reschedule_cancelled_appointment_fails(self, service, patient):
        appointment = book_default(service, patient)
        service.cancel(appointment.id)

        with pytest.raises(InvalidTransitionError):
            service.reschedule(appointment.id, date(2025, 1, 2), "09:00 AM")

    def test_reschedule_missing_appointment(self, service):
        with pytest.raises(AppointmentNotFoundError):
            service.reschedule(404, date(2025, 1, 2), "09:00 AM")

    def test_failed_save_restores_previous_reminder(self, service, patient, registry, db_session, monkeypatch):
        appointment = book_default(service, patient)
        appointment_id = appointment.id

        def broken_commit():
            raise OperationalError("UPDATE appointments", {}, Exception("database is locked"))

        monkeypatch.setattr(db_session, "commit", broken_commit)

        with pytest.raises(OperationalError):
            service.reschedule(appointment_id, date(2025, 1, 2), "09:00 AM")

        handle = registry.get(str(appointment_id))
        assert handle is not None
        assert handle.fire_time == datetime(2025, 1, 1, 13, 0)
        assert len(registry) == 1


class TestStatusChanges:

    def test_cancel_removes_reminder(self, service, patient, registry, background):
        appointment = book_default(service, patient)
        handle = registry.get(str(appointment.id))

        cancelled = service.cancel(appointment.id)

        assert cancelled.status == AppointmentStatus.CANCELLED
        assert registry.get(str(appointment.id)) is None
        assert handle.state == ReminderJobState.CANCELLED
        assert background.get_jobs() == []

    def test_cancel_twice_is_noop(self, service, patient, registry, gateway):
        appointment = book_default(service, patient)
        service.cancel(appointment.id)

        again = service.cancel(appointment.id)

        assert again.status == AppointmentStatus.CANCELLED
        assert registry.get(str(appointment.id)) is None
        # only the booking confirmation
        assert len(gateway.sent) == 1

    def test_confirm_keeps_reminder(self, service, patient, registry):
        appointment = book_default(service, patient)
        handle = registry.get(str(appointment.id))

        confirmed = service.confirm(appointment.id)

        assert confirmed.status == AppointmentStatus.CONFIRMED
        assert registry.get(str(appointment.id)) is handle
        assert handle.is_active

    def test_complete_cancels_pending_reminder(self, service, patient, registry):
        appointment = book_default(service, patient)
        handle = registry.get(str(appointment.id))
        service.confirm(appointment.id)

        completed = service.complete(appointment.id)

        assert completed.status == AppointmentStatus.COMPLETED
        assert registry.get(str(appointment.id)) is None
        assert handle.state == ReminderJobState.CANCELLED

    def test_complete_requires_confirmation(self, service, patient, registry):
        appointment = book_default(service, patient)

        with pytest.raises(InvalidTransitionError):
            service.complete(appointment.id)
        assert registry.get(str(appointment.id)) is not None

    def test_terminal_states_are_final(self, service, patient):
        appointment = book_default(service, patient)
        service.cancel(appointment.id)

        with pytest.raises(InvalidTransitionError):
            service.confirm(appointment.id)
        with pytest.raises(InvalidTransitionError):
            service.complete(appointment.id)

    def test_cancel_missing_appointment(self, service):
        with pytest.raises(AppointmentNotFoundError):
            service.cancel(12345)


class TestDelete:

    def test_delete_removes_reminder_and_row(self, service, patient, registry, db_session):
        appointment = book_default(service, patient)
        appointment_id = appointment.id
        handle = registry.get(str(appointment_id))

        service.delete(appointment_id)

        assert handle.state == ReminderJobState.CANCELLED
        assert registry.get(str(appointment_id)) is None
        assert db_session.get(Appointment, appointment_id) is None

    def test_delete_missing_appointment(self, service):
        with pytest.raises(AppointmentNotFoundError):
            service.delete(31337)


class TestReconcile:

    def test_reconcile_schedules_future_appointments_only(self, service, db_session, patient, registry, gateway):
        future = add_appointment(db_session, patient, date(2025, 1, 1), "02:00 PM")
        confirmed = add_appointment(db_session, patient, date(2025, 1, 3), "11:00", AppointmentStatus.CONFIRMED)
        add_appointment(db_session, patient, date(2024, 12, 30), "10:00")
        add_appointment(db_session, patient, date(2024, 12, 31), "08:00")
        add_appointment(db_session, patient, date(2025, 1, 2), "10:00", AppointmentStatus.CANCELLED)
        add_appointment(db_session, patient, date(2025, 1, 2), "whenever")

        scheduled = service.reconcile_reminders()

        assert scheduled == 2
        assert set(registry.snapshot()) == {str(future.id), str(confirmed.id)}
        # reconciliation never sends confirmations
        assert gateway.sent == []

    def test_reconcile_isolates_failures(self, service, db_session, patient, registry, monkeypatch):
        first = add_appointment(db_session, patient, date(2025, 1, 1), "02:00 PM")
        second = add_appointment(db_session, patient, date(2025, 1, 2), "02:00 PM")

        original = service.patients.resolve_phone
        calls = []

        def flaky_resolve(patient_id):
            calls.append(patient_id)
            if len(calls) == 1:
                raise RuntimeError("patient record unreadable")
            return original(patient_id)

        monkeypatch.setattr(service.patients, "resolve_phone", flaky_resolve)

        scheduled = service.reconcile_reminders()

        assert scheduled == 1
        assert len(registry) == 1
        assert len(calls) == 2
        assert set(registry.snapshot()) <= {str(first.id), str(second.id)}

    def test_reconcile_twice_keeps_one_job_per_appointment(self, service, db_session, patient, registry, background):
        appointment = add_appointment(db_session, patient, date(2025, 1, 1), "02:00 PM")

        service.reconcile_reminders()
        service.reconcile_reminders()

        assert len(registry) == 1
        assert [job.id for job in background.get_jobs()] == [registry.get(str(appointment.id)).job_id]


class TestQueries:

    def test_list_by_doctor_and_range(self, service, db_session, patient):
        add_appointment(db_session, patient, date(2025, 1, 1), "10:00")
        add_appointment(db_session, patient, date(2025, 1, 5), "10:00")
        book_default(service, patient, appointment_date=date(2025, 1, 2))

        calendar = service.list_appointments(doctor="Dr Asha Rao", date_from=date(2025, 1, 1), date_to=date(2025, 1, 3))

        assert [a.appointment_date for a in calendar] == [date(2025, 1, 1)]

    def test_active_reminder(self, service, patient):
        appointment = book_default(service, patient)
        assert service.active_reminder(appointment.id) is not None

        service.cancel(appointment.id)
        assert service.active_reminder(appointment.id) is None
