from fastapi import HTTPException, status

# Internal errors: logged and absorbed by the reminder layer, never surfaced to clients
class ValidationError(ValueError):
    """Appointment data that cannot produce a reminder (bad date/time, missing identity)."""

class TransientNotificationError(Exception):
    """The notification gateway failed to deliver a message."""

# HTTP-facing errors
class NotFoundError(HTTPException):
    def __init__(self, detail: str = "Resource not found"):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
        )

class AppointmentNotFoundError(NotFoundError):
    def __init__(self, appointment_id):
        super().__init__(detail=f"Appointment {appointment_id} not found")
        self.appointment_id = appointment_id

class PatientNotFoundError(NotFoundError):
    def __init__(self, patient_id):
        super().__init__(detail=f"Patient {patient_id} not found")
        self.patient_id = patient_id

class InvalidTransitionError(HTTPException):
    def __init__(self, current, requested):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Cannot move appointment from {current} to {requested}",
        )
        self.current = current
        self.requested = requested
