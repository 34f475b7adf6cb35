"""Notification subject repository - state reads and delivery markers"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...models import LabResult, Patient, Pharmacy, Prescription, User


class NotificationRepository:
    """Reads the authoritative state of notification subjects"""

    @staticmethod
    def get_patient(db: Session, patient_id: str) -> Optional[Patient]:
        return db.query(Patient).filter(Patient.id == patient_id).first()

    @staticmethod
    def get_user(db: Session, user_id: str) -> Optional[User]:
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def get_lab_result(db: Session, result_id: str) -> Optional[LabResult]:
        return db.query(LabResult).filter(LabResult.id == result_id).first()

    @staticmethod
    def get_prescription(db: Session, prescription_id: str) -> Optional[Prescription]:
        return db.query(Prescription).filter(Prescription.id == prescription_id).first()

    @staticmethod
    def get_pharmacy(db: Session, pharmacy_id: str) -> Optional[Pharmacy]:
        return db.query(Pharmacy).filter(Pharmacy.id == pharmacy_id).first()

    @staticmethod
    def mark_lab_result_notified(db: Session, result_id: str, notified_at: datetime) -> bool:
        updated = (
            db.query(LabResult)
            .filter(
                LabResult.id == result_id,
                LabResult.status == "uploaded",
                LabResult.notified.is_(False),
            )
            .update(
                {LabResult.notified: True, LabResult.notified_at: notified_at},
                synchronize_session=False,
            )
        )
        db.commit()
        return updated == 1

    @staticmethod
    def mark_prescription_notified(
        db: Session, prescription_id: str, status: str, notified_at: datetime
    ) -> bool:
        updated = (
            db.query(Prescription)
            .filter(
                Prescription.id == prescription_id,
                Prescription.status == status,
                (Prescription.notified_status.is_(None)) | (Prescription.notified_status != status),
            )
            .update(
                {Prescription.notified_status: status, Prescription.notified_at: notified_at},
                synchronize_session=False,
            )
        )
        db.commit()
        return updated == 1
