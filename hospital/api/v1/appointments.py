from fastapi import APIRouter, Depends, Query, status
from typing import List, Optional
from datetime import date

from ...api.deps import get_appointment_service
from ...core.exceptions import NotFoundError
from ...models.appointment import Appointment, AppointmentStatus
from ...schemas.appointment import (
    AppointmentCreate, AppointmentReschedule, AppointmentResponse, ReminderResponse
)
from ...services.appointment_service import AppointmentService
from ...services.reminder_scheduler import JobHandle

router = APIRouter(prefix="/appointments", tags=["Appointments"])

def reminder_response(handle: JobHandle) -> ReminderResponse:
    return ReminderResponse(
        appointment_id=handle.appointment_id,
        job_id=handle.job_id,
        fire_time=handle.fire_time,
        state=handle.state.value,
    )

def appointment_response(appointment: Appointment, service: AppointmentService) -> AppointmentResponse:
    response = AppointmentResponse.model_validate(appointment)
    handle = service.active_reminder(appointment.id)
    if handle is not None:
        response.reminder = reminder_response(handle)
    return response

@router.post("", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def book_appointment(
    appointment_data: AppointmentCreate,
    service: AppointmentService = Depends(get_appointment_service)
):
    """Book an appointment; sends a confirmation SMS and schedules a reminder when possible."""
    appointment = service.book(
        patient_id=appointment_data.patient_id,
        doctor=appointment_data.doctor,
        specialization=appointment_data.specialization,
        appointment_date=appointment_data.appointment_date,
        appointment_time=appointment_data.appointment_time,
        notes=appointment_data.notes,
    )
    return appointment_response(appointment, service)

@router.get("", response_model=List[AppointmentResponse])
async def list_appointments(
    doctor: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    appointment_status: Optional[AppointmentStatus] = Query(None, alias="status"),
    service: AppointmentService = Depends(get_appointment_service)
):
    """List appointments, optionally for one doctor and a date range."""
    appointments = service.list_appointments(
        doctor=doctor, date_from=date_from, date_to=date_to, status=appointment_status
    )
    return [appointment_response(a, service) for a in appointments]

@router.get("/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: int,
    service: AppointmentService = Depends(get_appointment_service)
):
    return appointment_response(service.get_appointment(appointment_id), service)

@router.put("/{appointment_id}/reschedule", response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: int,
    reschedule_data: AppointmentReschedule,
    service: AppointmentService = Depends(get_appointment_service)
):
    """Move an appointment to a new date and time; its reminder is replaced."""
    appointment = service.reschedule(
        appointment_id,
        reschedule_data.appointment_date,
        reschedule_data.appointment_time,
    )
    return appointment_response(appointment, service)

@router.post("/{appointment_id}/confirm", response_model=AppointmentResponse)
async def confirm_appointment(
    appointment_id: int,
    service: AppointmentService = Depends(get_appointment_service)
):
    return appointment_response(service.confirm(appointment_id), service)

@router.post("/{appointment_id}/cancel", response_model=AppointmentResponse)
async def cancel_appointment(
    appointment_id: int,
    service: AppointmentService = Depends(get_appointment_service)
):
    return appointment_response(service.cancel(appointment_id), service)

@router.post("/{appointment_id}/complete", response_model=AppointmentResponse)
async def complete_appointment(
    appointment_id: int,
    service: AppointmentService = Depends(get_appointment_service)
):
    return appointment_response(service.complete(appointment_id), service)

@router.delete("/{appointment_id}")
async def delete_appointment(
    appointment_id: int,
    service: AppointmentService = Depends(get_appointment_service)
):
    service.delete(appointment_id)
    return {"message": "Appointment deleted"}

@router.get("/{appointment_id}/reminder", response_model=ReminderResponse)
async def get_appointment_reminder(
    appointment_id: int,
    service: AppointmentService = Depends(get_appointment_service)
):
    """Active reminder for an appointment."""
    service.get_appointment(appointment_id)
    handle = service.active_reminder(appointment_id)
    if handle is None:
        raise NotFoundError(f"No reminder scheduled for appointment {appointment_id}")
    return reminder_response(handle)
