"""Notification producers for lab-result and prescription-status events"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ...clock import Clock, SystemClock
from ...errors import NotFoundError, ValidationError
from ...jobs import (
    JOB_TYPE_LAB_RESULT,
    JOB_TYPE_PRESCRIPTION_STATUS,
    JobQueue,
    NotificationJob,
    queue_for,
)
from .repository import NotificationRepository

logger = logging.getLogger(__name__)


class NotificationScheduler:
    """Enqueues immediate notification jobs when subject records change state"""

    def __init__(self, db: Session, queue: JobQueue, clock: Optional[Clock] = None):
        self.db = db
        self.repo = NotificationRepository()
        self.queue = queue
        self.clock = clock or SystemClock()

    def lab_result_uploaded(self, result_id: str) -> NotificationJob:
        """Queue the patient/doctor alert for an uploaded lab result"""
        result = self.repo.get_lab_result(self.db, result_id)
        if not result:
            raise NotFoundError("Lab result not found")
        if result.status != "uploaded":
            raise ValidationError(f"Lab result status is '{result.status}', not 'uploaded'")

        job = NotificationJob(
            type=JOB_TYPE_LAB_RESULT,
            subject_id=result.id,
            patient_id=result.patient_id,
            doctor_id=result.doctor_id,
            order_id=result.order_id,
            send_at=self.clock.now(),
        )
        self.queue.enqueue(queue_for(JOB_TYPE_LAB_RESULT), job)
        logger.info(f"📥 Queued lab result notification for result {result.id}")
        return job

    def prescription_status_changed(self, prescription_id: str) -> Optional[NotificationJob]:
        """
        Queue a status alert capturing the prescription's current status.
        Prescriptions not yet assigned to a pharmacy are not announced.
        """
        prescription = self.repo.get_prescription(self.db, prescription_id)
        if not prescription:
            raise NotFoundError("Prescription not found")

        if not prescription.pharmacy_id:
            logger.info(
                f"⏭️ Prescription {prescription.id} has no pharmacy, skipping status notification"
            )
            return None

        job = NotificationJob(
            type=JOB_TYPE_PRESCRIPTION_STATUS,
            subject_id=prescription.id,
            patient_id=prescription.patient_id,
            pharmacy_id=prescription.pharmacy_id,
            status=prescription.status,
            send_at=self.clock.now(),
        )
        self.queue.enqueue(queue_for(JOB_TYPE_PRESCRIPTION_STATUS), job)
        logger.info(
            f"📥 Queued prescription notification for {prescription.id} (status: {prescription.status})"
        )
        return job
