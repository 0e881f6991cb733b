from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import date, datetime

from ..models.appointment import AppointmentStatus

class AppointmentCreate(BaseModel):
    patient_id: int
    doctor: str = Field(..., min_length=1, max_length=100)
    specialization: str = Field(..., min_length=1, max_length=100)
    appointment_date: date
    appointment_time: str = Field(..., min_length=1, max_length=20, examples=["14:00", "02:00 PM"])
    notes: Optional[str] = None

class AppointmentReschedule(BaseModel):
    appointment_date: date
    appointment_time: str = Field(..., min_length=1, max_length=20)

class ReminderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    appointment_id: str
    job_id: str
    fire_time: datetime
    state: str

class AppointmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    patient_id: int
    doctor: str
    specialization: str
    appointment_date: date
    appointment_time: str
    status: AppointmentStatus
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    reminder: Optional[ReminderResponse] = None

class SMSTestRequest(BaseModel):
    phone_number: str = Field(..., min_length=1, max_length=20)
