from sqlalchemy.orm import Session
from typing import List, Optional

from ..core.config import settings
from ..core.exceptions import PatientNotFoundError
from ..models.appointment import Appointment
from ..models.patient import Patient
from ..schemas.patient import PatientCreate
from .notification_service import normalize_phone_number

class PatientService:
    def __init__(self, db: Session, default_country_code: Optional[str] = None):
        self.db = db
        self.default_country_code = default_country_code or settings.DEFAULT_COUNTRY_CODE

    def create_patient(self, patient_data: PatientCreate) -> Patient:
        """Register a new patient."""
        patient = Patient(**patient_data.model_dump())
        self.db.add(patient)
        self.db.commit()
        self.db.refresh(patient)
        return patient

    def get_patient(self, patient_id: int) -> Patient:
        patient = self.db.query(Patient).filter(Patient.id == patient_id).first()
        if not patient:
            raise PatientNotFoundError(patient_id)
        return patient

    def list_appointments(self, patient_id: int) -> List[Appointment]:
        self.get_patient(patient_id)
        return self.db.query(Appointment).filter(
            Appointment.patient_id == patient_id
        ).order_by(Appointment.appointment_date, Appointment.id).all()

    def resolve_phone(self, patient_id: int) -> Optional[str]:
        """International phone number of a patient, or None if unknown or unusable."""
        patient = self.db.query(Patient).filter(Patient.id == patient_id).first()
        if not patient:
            return None
        return normalize_phone_number(patient.phone_number, self.default_country_code)
