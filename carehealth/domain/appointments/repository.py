"""Appointment repository - overlap queries and persistence for appointments"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...models import Appointment, Patient, User

ACTIVE_STATUSES = ("scheduled", "completed")


class AppointmentRepository:
    """Repository for appointment database operations"""

    @staticmethod
    def get_user_by_id(db: Session, user_id: str) -> Optional[User]:
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def get_patient_by_id(db: Session, patient_id: str) -> Optional[Patient]:
        return db.query(Patient).filter(Patient.id == patient_id).first()

    @staticmethod
    def get_appointment_by_id(db: Session, appointment_id: str) -> Optional[Appointment]:
        return db.query(Appointment).filter(Appointment.id == appointment_id).first()

    @staticmethod
    def _overlapping(
        db: Session,
        column,
        owner_id: str,
        start_at: datetime,
        end_at: datetime,
        exclude_id: Optional[str],
    ) -> list[Appointment]:
        # Half-open intervals: [10:00,10:30) and [10:30,11:00) do not overlap
        query = db.query(Appointment).filter(
            column == owner_id,
            Appointment.status.in_(ACTIVE_STATUSES),
            Appointment.start_at < end_at,
            Appointment.end_at > start_at,
        )
        if exclude_id:
            query = query.filter(Appointment.id != exclude_id)
        return query.order_by(Appointment.start_at).all()

    @classmethod
    def find_doctor_conflicts(
        cls,
        db: Session,
        doctor_id: str,
        start_at: datetime,
        end_at: datetime,
        exclude_id: Optional[str] = None,
    ) -> list[Appointment]:
        """Active appointments of a doctor intersecting [start_at, end_at)"""
        return cls._overlapping(db, Appointment.doctor_id, doctor_id, start_at, end_at, exclude_id)

    @classmethod
    def find_patient_conflicts(
        cls,
        db: Session,
        patient_id: str,
        start_at: datetime,
        end_at: datetime,
        exclude_id: Optional[str] = None,
    ) -> list[Appointment]:
        """Active appointments of a patient intersecting [start_at, end_at)"""
        return cls._overlapping(
            db, Appointment.patient_id, patient_id, start_at, end_at, exclude_id
        )

    @staticmethod
    def list_appointments(
        db: Session,
        doctor_id: Optional[str] = None,
        patient_id: Optional[str] = None,
        status: Optional[str] = None,
        start_from: Optional[datetime] = None,
        start_to: Optional[datetime] = None,
    ) -> list[Appointment]:
        query = db.query(Appointment)

        if doctor_id:
            query = query.filter(Appointment.doctor_id == doctor_id)
        if patient_id:
            query = query.filter(Appointment.patient_id == patient_id)
        if status:
            query = query.filter(Appointment.status == status)
        if start_from:
            query = query.filter(Appointment.start_at >= start_from)
        if start_to:
            query = query.filter(Appointment.start_at < start_to)

        return query.order_by(Appointment.start_at).all()

    @staticmethod
    def create_appointment(db: Session, **appointment_data) -> Appointment:
        appointment = Appointment(**appointment_data)
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment

    @staticmethod
    def update_appointment(db: Session, appointment: Appointment, **updates) -> Appointment:
        """Update an appointment with provided fields"""
        for key, value in updates.items():
            if hasattr(appointment, key):
                setattr(appointment, key, value)

        db.commit()
        db.refresh(appointment)
        return appointment

    @staticmethod
    def cancel_if_active(
        db: Session,
        appointment_id: str,
        cancelled_at: datetime,
        cancelled_by: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> bool:
        """
        Atomic conditional update: active → cancelled.
        Returns False when the appointment was already cancelled.
        """
        updated = (
            db.query(Appointment)
            .filter(Appointment.id == appointment_id, Appointment.status.in_(ACTIVE_STATUSES))
            .update(
                {
                    Appointment.status: "cancelled",
                    Appointment.cancelled_at: cancelled_at,
                    Appointment.cancelled_by: cancelled_by,
                    Appointment.cancellation_reason: reason,
                },
                synchronize_session=False,
            )
        )
        db.commit()
        return updated == 1

    @staticmethod
    def mark_reminder_sent(db: Session, appointment_id: str, sent_at: datetime) -> bool:
        """
        Atomic conditional update of the delivery marker.
        Returns False if another worker already marked it, or the appointment left "scheduled".
        """
        updated = (
            db.query(Appointment)
            .filter(
                Appointment.id == appointment_id,
                Appointment.status == "scheduled",
                Appointment.reminder_sent.is_(False),
            )
            .update(
                {Appointment.reminder_sent: True, Appointment.reminder_sent_at: sent_at},
                synchronize_session=False,
            )
        )
        db.commit()
        return updated == 1
