import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.sql import func

from .database import Base


def generate_id():
    """Generate an opaque record ID"""
    return str(uuid.uuid4())


class User(Base):
    """Staff account (doctor, admin, pharmacist, ...); read-only to this core"""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_id)
    email = Column(String(255), unique=True, index=True, nullable=True)
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    role = Column(String(50), nullable=False, index=True)
    created_at = Column(DateTime, server_default=func.now())

    @property
    def display_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or "Doctor"


class Patient(Base):
    """Patient record; read-only to this core"""

    __tablename__ = "patients"

    id = Column(String(36), primary_key=True, default=generate_id)
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    @property
    def display_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or "Patient"


class Appointment(Base):
    """Appointment between one doctor and one patient over a half-open [start_at, end_at) interval"""

    __tablename__ = "appointments"

    id = Column(String(36), primary_key=True, default=generate_id)
    doctor_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    patient_id = Column(String(36), ForeignKey("patients.id"), nullable=False)

    # Naive UTC
    start_at = Column(DateTime, nullable=False)
    end_at = Column(DateTime, nullable=False)

    # Status workflow: scheduled → completed | cancelled (terminal)
    status = Column(String(20), default="scheduled", nullable=False, index=True)
    notes = Column(Text, nullable=True)

    # Durable delivery marker checked by the notification worker
    reminder_sent = Column(Boolean, default=False, nullable=False)
    reminder_sent_at = Column(DateTime, nullable=True)

    # Cancellation tracking
    cancelled_at = Column(DateTime, nullable=True)
    cancelled_by = Column(String(36), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    created_by = Column(String(36), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("ix_appointments_doctor_window", "doctor_id", "start_at", "end_at"),
        Index("ix_appointments_patient_window", "patient_id", "start_at", "end_at"),
    )


class LabResult(Base):
    """Lab result; the core only reads its status and owns the notified marker"""

    __tablename__ = "lab_results"

    id = Column(String(36), primary_key=True, default=generate_id)
    order_id = Column(String(36), nullable=False)
    patient_id = Column(String(36), ForeignKey("patients.id"), nullable=False)
    doctor_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    status = Column(String(20), default="pending", nullable=False)  # pending, uploaded, reviewed
    notified = Column(Boolean, default=False, nullable=False)
    notified_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class Pharmacy(Base):
    __tablename__ = "pharmacies"

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String(255), nullable=False)


class Prescription(Base):
    """Prescription; the core only reads its status and owns the notified_status marker"""

    __tablename__ = "prescriptions"

    id = Column(String(36), primary_key=True, default=generate_id)
    patient_id = Column(String(36), ForeignKey("patients.id"), nullable=False)
    pharmacy_id = Column(String(36), ForeignKey("pharmacies.id"), nullable=True)
    # draft, sent, dispensed, unavailable
    status = Column(String(20), default="draft", nullable=False)
    # Last status a notification was delivered for
    notified_status = Column(String(20), nullable=True)
    notified_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
