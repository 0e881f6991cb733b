from sqlalchemy import Column, Integer, String, ForeignKey, Date, DateTime, Text, Enum as SQLEnum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum

from ..core.database import Base

class AppointmentStatus(str, enum.Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED)

# Allowed status changes; rescheduling keeps the status and is allowed from any non-terminal state
ALLOWED_TRANSITIONS = {
    AppointmentStatus.PENDING: {AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED},
    AppointmentStatus.CONFIRMED: {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED},
    AppointmentStatus.COMPLETED: set(),
    AppointmentStatus.CANCELLED: set(),
}

class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True)

    # Relationships
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)

    # Appointment details
    doctor = Column(String(100), nullable=False, index=True)
    specialization = Column(String(100), nullable=False)
    appointment_date = Column(Date, nullable=False, index=True)
    appointment_time = Column(String(20), nullable=False)  # as entered, e.g. "14:00" or "02:00 PM"
    status = Column(SQLEnum(AppointmentStatus), default=AppointmentStatus.PENDING, nullable=False)
    notes = Column(Text, nullable=True)

    # Tracking
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    patient = relationship("Patient", back_populates="appointments")

    @property
    def reminder_key(self) -> str:
        """Identity used by the reminder registry."""
        return str(self.id)

    def __repr__(self):
        return f"<Appointment(id={self.id}, patient_id={self.patient_id}, doctor='{self.doctor}', date='{self.appointment_date}', time='{self.appointment_time}')>"
