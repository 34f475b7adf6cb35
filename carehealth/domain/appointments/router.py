"""Appointment router - FastAPI endpoints for booking operations"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...database import get_db
from ...jobs import JobQueue, RedisQueueBackend
from ...locks import LockService, RedisLockBackend
from ...models import Appointment
from ...redis_client import get_redis_client
from .schemas import (
    AppointmentCancel,
    AppointmentCreate,
    AppointmentResponse,
    AppointmentUpdate,
)
from .service import BookingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/appointments", tags=["Appointments"])


def get_lock_service() -> LockService:
    return LockService(RedisLockBackend(get_redis_client()))


def get_job_queue() -> JobQueue:
    return JobQueue(RedisQueueBackend(get_redis_client()))


def get_booking_service(
    db: Session = Depends(get_db),
    locks: LockService = Depends(get_lock_service),
    queue: JobQueue = Depends(get_job_queue),
) -> BookingService:
    """Dependency injection for BookingService"""
    return BookingService(db, locks, queue)


def to_response(appointment: Appointment) -> AppointmentResponse:
    return AppointmentResponse(
        id=appointment.id,
        doctorId=appointment.doctor_id,
        patientId=appointment.patient_id,
        startAt=appointment.start_at,
        endAt=appointment.end_at,
        status=appointment.status,
        notes=appointment.notes,
        reminderSent=appointment.reminder_sent,
        reminderSentAt=appointment.reminder_sent_at,
        cancelledAt=appointment.cancelled_at,
        cancelledBy=appointment.cancelled_by,
        cancellationReason=appointment.cancellation_reason,
        createdAt=appointment.created_at,
    )


# Sync handlers: FastAPI runs them in its threadpool, each with its own session


@router.post("", response_model=AppointmentResponse, status_code=201)
def create_appointment(
    data: AppointmentCreate,
    service: BookingService = Depends(get_booking_service),
):
    """Book an appointment; 409 on overlap, 503 when the doctor's slot lock is busy"""
    appointment = service.create_appointment(
        doctor_id=data.doctorId,
        patient_id=data.patientId,
        start_at=data.startAt,
        end_at=data.endAt,
        duration_minutes=data.duration,
        notes=data.notes,
        created_by=data.createdBy,
    )
    return to_response(appointment)


@router.get("", response_model=list[AppointmentResponse])
def list_appointments(
    doctor_id: Optional[str] = Query(None, alias="doctorId"),
    patient_id: Optional[str] = Query(None, alias="patientId"),
    status: Optional[str] = Query(None),
    start_from: Optional[str] = Query(None, alias="from"),
    start_to: Optional[str] = Query(None, alias="to"),
    service: BookingService = Depends(get_booking_service),
):
    appointments = service.list_appointments(
        doctor_id=doctor_id,
        patient_id=patient_id,
        status=status,
        start_from=start_from,
        start_to=start_to,
    )
    return [to_response(a) for a in appointments]


@router.get("/{appointment_id}", response_model=AppointmentResponse)
def get_appointment(
    appointment_id: str,
    service: BookingService = Depends(get_booking_service),
):
    return to_response(service.get_appointment(appointment_id))


@router.patch("/{appointment_id}", response_model=AppointmentResponse)
def update_appointment(
    appointment_id: str,
    data: AppointmentUpdate,
    service: BookingService = Depends(get_booking_service),
):
    """Update notes/status or reschedule"""
    appointment = service.update_appointment(
        appointment_id,
        start_at=data.startAt,
        end_at=data.endAt,
        duration_minutes=data.duration,
        notes=data.notes,
        status=data.status,
    )
    return to_response(appointment)


@router.post("/{appointment_id}/cancel", response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: str,
    data: Optional[AppointmentCancel] = None,
    service: BookingService = Depends(get_booking_service),
):
    data = data or AppointmentCancel()
    appointment = service.cancel_appointment(
        appointment_id, cancelled_by=data.cancelledBy, reason=data.reason
    )
    return to_response(appointment)
