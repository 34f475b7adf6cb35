"""
Notification Background Worker
Consumes one notification queue: defers jobs that are not yet due, re-checks
the subject record before every send and marks delivery with a conditional
update so duplicate or stale jobs never notify twice
"""

import logging
import threading
from datetime import timedelta
from typing import Callable, Optional

import redis
from pydantic import ValidationError as PayloadError
from sqlalchemy.orm import Session

from ..clock import Clock, SystemClock, to_epoch_millis
from ..config import (
    NOTIFICATION_MAX_RETRIES,
    REMINDER_LEAD_HOURS,
    WORKER_NOT_DUE_SLEEP,
    WORKER_POP_TIMEOUT,
)
from ..database import SessionLocal
from ..domain.appointments.repository import AppointmentRepository
from ..domain.notifications.repository import NotificationRepository
from ..errors import TransportError
from ..jobs import (
    JOB_TYPE_LAB_RESULT,
    JOB_TYPE_PRESCRIPTION_STATUS,
    JOB_TYPE_REMINDER,
    JobQueue,
    NotificationJob,
)
from ..services.notification_service import (
    Notifier,
    appointment_reminder_message,
    lab_result_doctor_message,
    lab_result_patient_message,
    prescription_status_message,
)
from ..shared.validators import validate_email

logger = logging.getLogger(__name__)

# Outcomes returned by process_payload / process_job
DELIVERED = "delivered"
SKIPPED = "skipped"
DEFERRED = "deferred"
RETRIED = "retried"
DROPPED = "dropped"
FAILED = "failed"

BACKEND_ERROR_BACKOFF = 1.0  # seconds


def _recipient(email: Optional[str]) -> Optional[str]:
    try:
        return validate_email(email) or None
    except ValueError:
        logger.warning(f"⚠️ Ignoring invalid recipient address: {email}")
        return None


class NotificationWorker:
    """Long-running consumer for a single notification queue"""

    def __init__(
        self,
        queue: JobQueue,
        notifier: Notifier,
        queue_name: str,
        session_factory: Callable[[], Session] = SessionLocal,
        clock: Optional[Clock] = None,
        max_retries: int = NOTIFICATION_MAX_RETRIES,
        pop_timeout: float = WORKER_POP_TIMEOUT,
        not_due_sleep: float = WORKER_NOT_DUE_SLEEP,
        reminder_lead: timedelta = timedelta(hours=REMINDER_LEAD_HOURS),
    ):
        self.queue = queue
        self.notifier = notifier
        self.queue_name = queue_name
        self.session_factory = session_factory
        self.clock = clock or SystemClock()
        self.max_retries = max_retries
        self.pop_timeout = pop_timeout
        self.not_due_sleep = not_due_sleep
        self.reminder_lead = reminder_lead
        self.appointments = AppointmentRepository()
        self.subjects = NotificationRepository()
        self._stop_event = threading.Event()
        self._handlers = {
            JOB_TYPE_REMINDER: self._deliver_reminder,
            JOB_TYPE_LAB_RESULT: self._deliver_lab_result,
            JOB_TYPE_PRESCRIPTION_STATUS: self._deliver_prescription_status,
        }

    # ------------------------------------------------------------------
    # Loop control
    # ------------------------------------------------------------------

    def stop(self) -> None:
        self._stop_event.set()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def run(self) -> None:
        logger.info(f"🚀 Notification worker started on {self.queue_name}")

        while not self._stop_event.is_set():
            try:
                raw = self.queue.dequeue_blocking(self.queue_name, self.pop_timeout)
            except redis.RedisError as e:
                logger.error(f"❌ Queue read failed on {self.queue_name}: {e}")
                self._stop_event.wait(BACKEND_ERROR_BACKOFF)
                continue

            if raw is None:
                continue

            self.process_payload(raw)

        logger.info(f"👋 Notification worker stopped on {self.queue_name}")

    # ------------------------------------------------------------------
    # Job processing
    # ------------------------------------------------------------------

    def process_payload(self, raw: str) -> str:
        try:
            job = NotificationJob.decode(raw)
        except PayloadError as e:
            logger.error(
                f"❌ Dropping malformed job on {self.queue_name}: {raw[:200]!r} "
                f"({e.error_count()} errors)"
            )
            return DROPPED
        return self.process_job(job)

    def process_job(self, job: NotificationJob) -> str:
        try:
            if job.send_at > self.clock.now():
                return self._defer(job)
            return self._deliver(job)
        except Exception as e:
            logger.error(f"❌ Error processing {job.type} job for {job.subject_id}: {e}")
            return FAILED

    def _defer(self, job: NotificationJob) -> str:
        # Tail requeue, attempts unchanged
        self.queue.enqueue(self.queue_name, job)
        self._stop_event.wait(self.not_due_sleep)
        return DEFERRED

    def _deliver(self, job: NotificationJob) -> str:
        db = self.session_factory()
        try:
            return self._handlers[job.type](db, job)
        except TransportError as e:
            db.rollback()
            return self._retry(job, e)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _retry(self, job: NotificationJob, error: TransportError) -> str:
        retried = job.next_attempt()
        if retried.attempts < self.max_retries:
            self.queue.enqueue(self.queue_name, retried)
            logger.warning(
                f"🔄 Delivery failed for {job.type} job {job.subject_id} "
                f"(attempt {retried.attempts}/{self.max_retries}), requeued: {error}"
            )
            return RETRIED

        logger.error(
            f"❌ Dropping {job.type} job {job.subject_id} after "
            f"{retried.attempts} failed attempts: {error}"
        )
        return DROPPED

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _deliver_reminder(self, db: Session, job: NotificationJob) -> str:
        appointment = self.appointments.get_appointment_by_id(db, job.subject_id)
        if not appointment:
            logger.warning(f"⚠️ Appointment {job.subject_id} not found, dropping reminder")
            return SKIPPED

        if appointment.status != "scheduled":
            logger.info(
                f"⏭️ Skipping reminder for appointment {appointment.id} (status: {appointment.status})"
            )
            return SKIPPED

        if appointment.reminder_sent:
            logger.info(f"⏭️ Reminder already sent for appointment {appointment.id}")
            return SKIPPED

        # Reminder time still ahead means a stale job from a rescheduled slot.
        # Compared in epoch millis, the resolution sendAt travels in.
        reminder_at = appointment.start_at - self.reminder_lead
        if to_epoch_millis(self.clock.now()) < to_epoch_millis(reminder_at):
            logger.info(f"⏭️ Skipping stale reminder for rescheduled appointment {appointment.id}")
            return SKIPPED

        patient = self.appointments.get_patient_by_id(db, appointment.patient_id)
        to = _recipient(patient.email) if patient else None
        if not to:
            logger.error(f"❌ No recipient for appointment {appointment.id} reminder, dropping")
            return DROPPED

        doctor = self.appointments.get_user_by_id(db, appointment.doctor_id)
        subject, body = appointment_reminder_message(appointment, patient, doctor)
        self.notifier.send(to, subject, body)

        if not self.appointments.mark_reminder_sent(db, appointment.id, self.clock.now()):
            logger.warning(f"⚠️ Reminder marker for appointment {appointment.id} was already set")
        logger.info(f"✅ Reminder sent for appointment {appointment.id}")
        return DELIVERED

    def _deliver_lab_result(self, db: Session, job: NotificationJob) -> str:
        result = self.subjects.get_lab_result(db, job.subject_id)
        if not result:
            logger.warning(f"⚠️ Lab result {job.subject_id} not found, dropping notification")
            return SKIPPED

        if result.status != "uploaded" or result.notified:
            logger.info(
                f"⏭️ Skipping lab result {result.id} "
                f"(status: {result.status}, notified: {result.notified})"
            )
            return SKIPPED

        patient = self.subjects.get_patient(db, result.patient_id)
        doctor = self.subjects.get_user(db, result.doctor_id) if result.doctor_id else None
        patient_email = _recipient(patient.email) if patient else None
        doctor_email = _recipient(doctor.email) if doctor else None

        if not patient_email and not doctor_email:
            logger.error(f"❌ No recipients for lab result {result.id}, dropping")
            return DROPPED

        if patient_email:
            subject, body = lab_result_patient_message(patient)
            self.notifier.send(patient_email, subject, body)
        if doctor_email and patient:
            subject, body = lab_result_doctor_message(patient, job.order_id or result.order_id)
            self.notifier.send(doctor_email, subject, body)

        self.subjects.mark_lab_result_notified(db, result.id, self.clock.now())
        logger.info(f"✅ Lab result notification sent for {result.id}")
        return DELIVERED

    def _deliver_prescription_status(self, db: Session, job: NotificationJob) -> str:
        prescription = self.subjects.get_prescription(db, job.subject_id)
        if not prescription:
            logger.warning(f"⚠️ Prescription {job.subject_id} not found, dropping notification")
            return SKIPPED

        if prescription.status != job.status:
            logger.info(
                f"⏭️ Prescription {prescription.id} moved from {job.status} "
                f"to {prescription.status}, skipping"
            )
            return SKIPPED

        if prescription.notified_status == job.status:
            logger.info(f"⏭️ Prescription {prescription.id} already notified for {job.status}")
            return SKIPPED

        patient = self.subjects.get_patient(db, prescription.patient_id)
        to = _recipient(patient.email) if patient else None
        if not to:
            logger.error(f"❌ No recipient for prescription {prescription.id}, dropping")
            return DROPPED

        pharmacy_id = job.pharmacy_id or prescription.pharmacy_id
        pharmacy = self.subjects.get_pharmacy(db, pharmacy_id) if pharmacy_id else None
        subject, body = prescription_status_message(
            prescription.status, pharmacy.name if pharmacy else "your pharmacy"
        )
        self.notifier.send(to, subject, body)

        self.subjects.mark_prescription_notified(
            db, prescription.id, prescription.status, self.clock.now()
        )
        logger.info(
            f"✅ Prescription notification sent for {prescription.id} (status: {prescription.status})"
        )
        return DELIVERED
