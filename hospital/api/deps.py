from fastapi import Depends
from sqlalchemy.orm import Session

from ..core.database import get_db
from ..core.reminders import (
    get_notification_gateway, get_reminder_registry, get_reminder_scheduler
)
from ..services.appointment_service import AppointmentService
from ..services.notification_service import NotificationGateway
from ..services.patient_service import PatientService
from ..services.reminder_registry import ReminderJobRegistry
from ..services.reminder_scheduler import ReminderScheduler

def get_patient_service(db: Session = Depends(get_db)) -> PatientService:
    """Patient lookups bound to the request's database session."""
    return PatientService(db)

def get_appointment_service(
    db: Session = Depends(get_db),
    scheduler: ReminderScheduler = Depends(get_reminder_scheduler),
    registry: ReminderJobRegistry = Depends(get_reminder_registry),
    gateway: NotificationGateway = Depends(get_notification_gateway),
) -> AppointmentService:
    """Appointment lifecycle service wired to the process-wide reminder state."""
    return AppointmentService(db, scheduler, registry, gateway)
