from fastapi import APIRouter, Depends, status
from typing import List

from ...api.deps import get_appointment_service, get_patient_service
from ...schemas.appointment import AppointmentResponse
from ...schemas.patient import PatientCreate, PatientResponse
from ...services.appointment_service import AppointmentService
from ...services.patient_service import PatientService
from .appointments import appointment_response

router = APIRouter(prefix="/patients", tags=["Patients"])

@router.post("", response_model=PatientResponse, status_code=status.HTTP_201_CREATED)
async def create_patient(
    patient_data: PatientCreate,
    service: PatientService = Depends(get_patient_service)
):
    """Register a patient."""
    return PatientResponse.model_validate(service.create_patient(patient_data))

@router.get("/{patient_id}", response_model=PatientResponse)
async def get_patient(
    patient_id: int,
    service: PatientService = Depends(get_patient_service)
):
    return PatientResponse.model_validate(service.get_patient(patient_id))

@router.get("/{patient_id}/appointments", response_model=List[AppointmentResponse])
async def list_patient_appointments(
    patient_id: int,
    service: PatientService = Depends(get_patient_service),
    appointments: AppointmentService = Depends(get_appointment_service)
):
    """A patient's appointments, earliest first."""
    return [appointment_response(a, appointments) for a in service.list_appointments(patient_id)]
