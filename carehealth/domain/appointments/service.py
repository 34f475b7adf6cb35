"""
Booking service - business logic for appointment booking

Creation and rescheduling run inside a per-doctor lock so the overlap check
and the write happen in one holder's critical section. The patient
dimension is checked by query inside the same section but is not itself
locked: two different doctors booking the same patient concurrently can
still both pass their patient check.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, Union

import redis
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...clock import Clock, SystemClock
from ...config import APPOINTMENT_QUEUE_KEY, DEFAULT_APPOINTMENT_MINUTES, REMINDER_LEAD_HOURS
from ...errors import ConflictError, NotFoundError, ValidationError
from ...jobs import JOB_TYPE_REMINDER, JobQueue, NotificationJob
from ...locks import LockService, doctor_lock_key
from ...models import Appointment
from ...shared.validators import parse_timestamp
from .repository import AppointmentRepository

logger = logging.getLogger(__name__)

Timestamp = Union[str, datetime]

UPDATABLE_STATUSES = ("scheduled", "completed")


def _parse(value: Timestamp, field: str) -> datetime:
    try:
        return parse_timestamp(value, field)
    except ValueError as e:
        raise ValidationError(str(e)) from e


class BookingService:
    """Service layer for appointment booking"""

    def __init__(
        self,
        db: Session,
        locks: LockService,
        queue: JobQueue,
        clock: Optional[Clock] = None,
        queue_name: str = APPOINTMENT_QUEUE_KEY,
        reminder_lead: timedelta = timedelta(hours=REMINDER_LEAD_HOURS),
        default_duration_minutes: int = DEFAULT_APPOINTMENT_MINUTES,
    ):
        self.db = db
        self.repo = AppointmentRepository()
        self.locks = locks
        self.queue = queue
        self.clock = clock or SystemClock()
        self.queue_name = queue_name
        self.reminder_lead = reminder_lead
        self.default_duration_minutes = default_duration_minutes

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_appointment(self, appointment_id: str) -> Appointment:
        appointment = self.repo.get_appointment_by_id(self.db, appointment_id)
        if not appointment:
            raise NotFoundError("Appointment not found")
        return appointment

    def list_appointments(
        self,
        doctor_id: Optional[str] = None,
        patient_id: Optional[str] = None,
        status: Optional[str] = None,
        start_from: Optional[Timestamp] = None,
        start_to: Optional[Timestamp] = None,
    ) -> list[Appointment]:
        return self.repo.list_appointments(
            self.db,
            doctor_id=doctor_id,
            patient_id=patient_id,
            status=status,
            start_from=_parse(start_from, "from") if start_from else None,
            start_to=_parse(start_to, "to") if start_to else None,
        )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def create_appointment(
        self,
        doctor_id: str,
        patient_id: str,
        start_at: Timestamp,
        end_at: Optional[Timestamp] = None,
        duration_minutes: Optional[int] = None,
        notes: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Appointment:
        """
        Book an appointment.

        Raises:
            ValidationError: bad timestamps, start >= end, or the user is not a doctor
            NotFoundError: doctor or patient does not exist
            ConflictError: the doctor or the patient already has an overlapping appointment
            LockUnavailableError: the doctor's lock was not acquired in time
        """
        start, end = self._resolve_window(start_at, end_at, duration_minutes)

        doctor = self.repo.get_user_by_id(self.db, doctor_id)
        if not doctor:
            raise NotFoundError("Doctor not found")
        if doctor.role != "doctor":
            raise ValidationError("User is not a doctor")

        patient = self.repo.get_patient_by_id(self.db, patient_id)
        if not patient:
            raise NotFoundError("Patient not found")

        with self.locks.hold(doctor_lock_key(doctor_id)):
            # Conflict reads run in a transaction opened under the lock
            self.db.commit()
            self._ensure_no_conflicts(doctor_id, patient_id, start, end)

            try:
                appointment = self.repo.create_appointment(
                    self.db,
                    doctor_id=doctor_id,
                    patient_id=patient_id,
                    start_at=start,
                    end_at=end,
                    status="scheduled",
                    notes=notes,
                    created_by=created_by,
                )
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"❌ Failed to persist appointment for doctor {doctor_id}: {e}")
                raise

            logger.info(
                f"✅ Appointment {appointment.id} booked: doctor={doctor_id} "
                f"patient={patient_id} [{start.isoformat()}, {end.isoformat()})"
            )
            self._schedule_reminder(appointment)

        return appointment

    def update_appointment(
        self,
        appointment_id: str,
        start_at: Optional[Timestamp] = None,
        end_at: Optional[Timestamp] = None,
        duration_minutes: Optional[int] = None,
        notes: Optional[str] = None,
        status: Optional[str] = None,
    ) -> Appointment:
        """
        Update notes/status, or reschedule.

        Only an interval change takes the doctor's lock and re-runs the
        overlap checks (excluding this appointment). Moving only the start
        keeps the current duration.
        """
        appointment = self.get_appointment(appointment_id)
        if appointment.status == "cancelled":
            raise ValidationError("Cancelled appointments cannot be modified")

        updates = {}
        if notes is not None:
            updates["notes"] = notes
        if status is not None:
            if status not in UPDATABLE_STATUSES:
                raise ValidationError("status must be one of: scheduled, completed")
            updates["status"] = status

        if start_at is None and end_at is None and duration_minutes is None:
            return self.repo.update_appointment(self.db, appointment, **updates)

        start = _parse(start_at, "startAt") if start_at is not None else appointment.start_at
        if end_at is not None:
            end = _parse(end_at, "endAt")
        elif duration_minutes is not None:
            end = start + self._duration(duration_minutes)
        else:
            end = start + (appointment.end_at - appointment.start_at)
        if start >= end:
            raise ValidationError("startAt must be before endAt")

        with self.locks.hold(doctor_lock_key(appointment.doctor_id)):
            self.db.commit()
            self.db.refresh(appointment)
            if appointment.status == "cancelled":
                raise ValidationError("Cancelled appointments cannot be modified")

            self._ensure_no_conflicts(
                appointment.doctor_id, appointment.patient_id, start, end, exclude_id=appointment.id
            )

            updates.update(start_at=start, end_at=end, reminder_sent=False, reminder_sent_at=None)
            try:
                appointment = self.repo.update_appointment(self.db, appointment, **updates)
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"❌ Failed to reschedule appointment {appointment_id}: {e}")
                raise

            logger.info(
                f"🔁 Appointment {appointment.id} rescheduled to "
                f"[{start.isoformat()}, {end.isoformat()})"
            )
            self._remove_reminder(appointment.id)
            if appointment.status == "scheduled":
                self._schedule_reminder(appointment)

        return appointment

    def cancel_appointment(
        self,
        appointment_id: str,
        cancelled_by: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Appointment:
        """
        Cancel an appointment (terminal) and best-effort dequeue its reminder.
        Cancelling an already-cancelled appointment returns it unchanged.
        """
        appointment = self.get_appointment(appointment_id)

        changed = self.repo.cancel_if_active(
            self.db,
            appointment_id,
            cancelled_at=self.clock.now(),
            cancelled_by=cancelled_by,
            reason=reason,
        )
        self.db.refresh(appointment)

        if changed:
            logger.info(f"🚫 Appointment {appointment_id} cancelled by {cancelled_by or 'unknown'}")
            self._remove_reminder(appointment_id)
        else:
            logger.info(f"ℹ️ Appointment {appointment_id} was already cancelled")

        return appointment

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _duration(self, minutes: int) -> timedelta:
        if minutes <= 0:
            raise ValidationError("duration must be a positive number of minutes")
        return timedelta(minutes=minutes)

    def _resolve_window(
        self,
        start_at: Timestamp,
        end_at: Optional[Timestamp],
        duration_minutes: Optional[int],
    ) -> tuple[datetime, datetime]:
        start = _parse(start_at, "startAt")
        if end_at is not None:
            end = _parse(end_at, "endAt")
        else:
            end = start + self._duration(
                duration_minutes if duration_minutes is not None else self.default_duration_minutes
            )

        if start >= end:
            raise ValidationError("startAt must be before endAt")
        return start, end

    def _ensure_no_conflicts(
        self,
        doctor_id: str,
        patient_id: str,
        start: datetime,
        end: datetime,
        exclude_id: Optional[str] = None,
    ) -> None:
        if self.repo.find_doctor_conflicts(self.db, doctor_id, start, end, exclude_id=exclude_id):
            logger.info(f"⚠️ Doctor {doctor_id} already booked in [{start}, {end})")
            raise ConflictError("Doctor has an overlapping appointment at this time")

        if self.repo.find_patient_conflicts(self.db, patient_id, start, end, exclude_id=exclude_id):
            logger.info(f"⚠️ Patient {patient_id} already booked in [{start}, {end})")
            raise ConflictError("Patient has another appointment at this time")

    def reminder_send_at(self, start_at: datetime) -> datetime:
        """start - lead time, clamped to now"""
        return max(start_at - self.reminder_lead, self.clock.now())

    def _schedule_reminder(self, appointment: Appointment) -> None:
        job = NotificationJob(
            type=JOB_TYPE_REMINDER,
            subject_id=appointment.id,
            patient_id=appointment.patient_id,
            doctor_id=appointment.doctor_id,
            send_at=self.reminder_send_at(appointment.start_at),
        )
        try:
            self.queue.enqueue(self.queue_name, job)
        except redis.RedisError as e:
            # Booking stands; the reminder is best-effort
            logger.error(f"❌ Failed to enqueue reminder for appointment {appointment.id}: {e}")
            return
        logger.info(
            f"⏰ Reminder for appointment {appointment.id} scheduled at {job.send_at.isoformat()}"
        )

    def _remove_reminder(self, appointment_id: str) -> None:
        try:
            removed = self.queue.remove_matching(
                self.queue_name,
                lambda job: job.type == JOB_TYPE_REMINDER and job.subject_id == appointment_id,
            )
        except redis.RedisError as e:
            logger.error(f"❌ Failed to remove reminder for appointment {appointment_id}: {e}")
            return
        if not removed:
            logger.info(
                f"ℹ️ No queued reminder found for appointment {appointment_id} "
                "(already claimed or delivered)"
            )
