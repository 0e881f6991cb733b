import logging
from datetime import date
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import (
    AppointmentNotFoundError, InvalidTransitionError,
    TransientNotificationError, ValidationError
)
from ..models.appointment import Appointment, AppointmentStatus, ALLOWED_TRANSITIONS
from ..utils.date_utils import combine_date_and_time
from .notification_service import NotificationGateway, render_confirmation
from .patient_service import PatientService
from .reminder_registry import ReminderJobRegistry
from .reminder_scheduler import JobHandle, ReminderPayload, ReminderScheduler

logger = logging.getLogger(__name__)

class AppointmentService:
    """
    Appointment lifecycle: booking, rescheduling and status changes.

    Keeps the reminder registry in step with each appointment: a stale job is
    always cancelled before the appointment changes, and a new job is only
    scheduled once the change is committed. Notification and reminder
    failures are logged and never undo the appointment change; database
    errors propagate.
    """

    def __init__(
        self,
        db: Session,
        scheduler: ReminderScheduler,
        registry: ReminderJobRegistry,
        gateway: NotificationGateway,
        default_country_code: Optional[str] = None,
    ):
        self.db = db
        self.scheduler = scheduler
        self.registry = registry
        self.gateway = gateway
        self.patients = PatientService(db, default_country_code)

    # Queries
    def get_appointment(self, appointment_id: int) -> Appointment:
        appointment = self.db.query(Appointment).filter(
            Appointment.id == appointment_id
        ).first()
        if not appointment:
            raise AppointmentNotFoundError(appointment_id)
        return appointment

    def list_appointments(
        self,
        doctor: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        status: Optional[AppointmentStatus] = None,
    ) -> List[Appointment]:
        """Appointments ordered by date, e.g. for a doctor's calendar."""
        query = self.db.query(Appointment)
        if doctor:
            query = query.filter(Appointment.doctor == doctor)
        if date_from:
            query = query.filter(Appointment.appointment_date >= date_from)
        if date_to:
            query = query.filter(Appointment.appointment_date <= date_to)
        if status:
            query = query.filter(Appointment.status == status)
        return query.order_by(Appointment.appointment_date, Appointment.id).all()

    def active_reminder(self, appointment_id: int) -> Optional[JobHandle]:
        handle = self.registry.get(str(appointment_id))
        if handle is not None and handle.is_active:
            return handle
        return None

    # Lifecycle operations
    def book(
        self,
        patient_id: int,
        doctor: str,
        specialization: str,
        appointment_date: date,
        appointment_time: str,
        notes: Optional[str] = None,
    ) -> Appointment:
        """Create a Pending appointment, confirm it by SMS and schedule its reminder."""
        patient = self.patients.get_patient(patient_id)

        appointment = Appointment(
            patient_id=patient.id,
            doctor=doctor,
            specialization=specialization,
            appointment_date=appointment_date,
            appointment_time=appointment_time,
            status=AppointmentStatus.PENDING,
            notes=notes,
        )
        self.db.add(appointment)
        self.db.commit()
        self.db.refresh(appointment)
        logger.info(f"Created new appointment {appointment.id}")

        self._notify_and_schedule(appointment)
        return appointment

    def reschedule(self, appointment_id: int, new_date: date, new_time: str) -> Appointment:
        """Move an appointment to a new slot, replacing its reminder."""
        appointment = self.get_appointment(appointment_id)
        if appointment.status.is_terminal:
            raise InvalidTransitionError(appointment.status.value, "Rescheduled")

        # stale job goes first so two jobs never coexist
        self._cancel_reminder(appointment.reminder_key)

        appointment.appointment_date = new_date
        appointment.appointment_time = new_time
        self._commit_or_restore(appointment)
        logger.info(f"Rescheduled appointment {appointment.id} to {new_date} {new_time}")

        self._notify_and_schedule(appointment)
        return appointment

    def confirm(self, appointment_id: int) -> Appointment:
        return self._change_status(appointment_id, AppointmentStatus.CONFIRMED)

    def cancel(self, appointment_id: int) -> Appointment:
        return self._change_status(appointment_id, AppointmentStatus.CANCELLED)

    def complete(self, appointment_id: int) -> Appointment:
        return self._change_status(appointment_id, AppointmentStatus.COMPLETED)

    def delete(self, appointment_id: int) -> None:
        """Cancel any reminder, then delete the appointment."""
        self._cancel_reminder(str(appointment_id))

        appointment = self.get_appointment(appointment_id)
        self.db.delete(appointment)
        self._commit_or_restore(appointment)
        logger.info(f"Deleted appointment {appointment_id}")

    def reconcile_reminders(self) -> int:
        """
        Rebuild the reminder registry from the database.

        Run once at startup. Every Pending or Confirmed appointment that is
        still ahead of us gets its reminder scheduled as if just booked (no
        confirmation SMS). A bad record is logged and skipped.
        Returns the number of reminders scheduled.
        """
        now = self.scheduler.now()
        appointments = self.db.query(Appointment).filter(
            Appointment.status.in_([AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED]),
            Appointment.appointment_date >= now.date(),
        ).all()

        future_appointments = []
        for appointment in appointments:
            try:
                starts_at = combine_date_and_time(appointment.appointment_date, appointment.appointment_time)
            except ValidationError as e:
                logger.warning(f"Skipping reminder for appointment {appointment.id}: {e}")
                continue
            if starts_at > now:
                future_appointments.append(appointment)

        logger.info(f"Found {len(future_appointments)} future appointments to schedule reminders for.")

        scheduled = 0
        for appointment in future_appointments:
            try:
                phone = self.patients.resolve_phone(appointment.patient_id)
                if not phone:
                    logger.info(f"No phone number for appointment {appointment.id}, no reminder")
                    continue
                if self._schedule_reminder(appointment, phone):
                    scheduled += 1
            except Exception as e:
                logger.error(f"Error scheduling reminder for appointment {appointment.id}: {e}")

        logger.info(f"Reminder reconciliation complete: {scheduled} scheduled")
        return scheduled

    # Internals
    def _change_status(self, appointment_id: int, new_status: AppointmentStatus) -> Appointment:
        appointment = self.get_appointment(appointment_id)
        current = appointment.status

        if current == new_status:
            if new_status.is_terminal:
                self._cancel_reminder(appointment.reminder_key)
            return appointment

        if new_status not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(current.value, new_status.value)

        # Completed is treated like Cancelled: no reminder survives a terminal state
        if new_status.is_terminal:
            self._cancel_reminder(appointment.reminder_key)

        appointment.status = new_status
        self._commit_or_restore(appointment)
        logger.info(f"Appointment {appointment.id} moved from {current.value} to {new_status.value}")
        return appointment

    def _notify_and_schedule(self, appointment: Appointment) -> Optional[JobHandle]:
        phone = self.patients.resolve_phone(appointment.patient_id)
        if not phone:
            logger.info(f"Patient phone not found for appointment {appointment.id}, SMS not sent")
            return None

        self._send_confirmation(phone, appointment)
        handle = self._schedule_reminder(appointment, phone)
        if handle is None:
            logger.info(f"Could not schedule reminder job for appointment {appointment.id}")
        return handle

    def _send_confirmation(self, phone: str, appointment: Appointment) -> bool:
        body = render_confirmation(
            appointment.doctor,
            appointment.specialization,
            appointment.appointment_date,
            appointment.appointment_time,
        )
        try:
            self.gateway.send(phone, body)
        except TransientNotificationError as e:
            logger.warning(f"Confirmation SMS for appointment {appointment.id} failed: {e}")
            return False
        except Exception:
            logger.exception(f"Unexpected error sending confirmation SMS for appointment {appointment.id}")
            return False
        logger.info(f"Confirmation SMS sent to {phone} for appointment {appointment.id}")
        return True

    def _schedule_reminder(self, appointment: Appointment, phone: str) -> Optional[JobHandle]:
        key = appointment.reminder_key
        self._cancel_reminder(key)

        payload = ReminderPayload(
            phone=phone,
            doctor=appointment.doctor,
            specialization=appointment.specialization,
            date=appointment.appointment_date,
            time=appointment.appointment_time,
        )
        handle = self.scheduler.schedule_reminder(key, payload)
        if handle is not None:
            self.registry.put(key, handle)
        return handle

    def _cancel_reminder(self, key: str) -> None:
        handle = self.registry.get(key)
        if handle is None:
            return
        self.scheduler.cancel(handle)
        self.registry.remove(key, handle)

    def _commit_or_restore(self, appointment: Appointment) -> None:
        """Commit, or roll back and put back the reminder the unchanged appointment had."""
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to save appointment {appointment.id}: {e}")
            self._restore_reminder(appointment)
            raise
        if appointment in self.db:
            self.db.refresh(appointment)

    def _restore_reminder(self, appointment: Appointment) -> None:
        try:
            if appointment.status.is_terminal:
                return
            phone = self.patients.resolve_phone(appointment.patient_id)
            if phone:
                self._schedule_reminder(appointment, phone)
        except SQLAlchemyError as e:
            logger.error(f"Could not restore reminder for appointment {appointment.id}: {e}")
