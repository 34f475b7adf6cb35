"""Appointment domain schemas - Pydantic models for the booking API"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field


class AppointmentCreate(BaseModel):
    """Schema for booking a new appointment; endAt or duration (minutes), not required both"""

    doctorId: str = Field(min_length=1)
    patientId: str = Field(min_length=1)
    startAt: str
    endAt: Optional[str] = None
    duration: Optional[int] = None
    notes: Optional[str] = None
    createdBy: Optional[str] = None


class AppointmentUpdate(BaseModel):
    """Schema for updating an appointment; cancellation goes through /cancel"""

    startAt: Optional[str] = None
    endAt: Optional[str] = None
    duration: Optional[int] = None
    notes: Optional[str] = None
    status: Optional[Literal["scheduled", "completed"]] = None


class AppointmentCancel(BaseModel):
    cancelledBy: Optional[str] = None
    reason: Optional[str] = None


class AppointmentResponse(BaseModel):
    """Schema for appointment response"""

    id: str
    doctorId: str
    patientId: str
    startAt: datetime
    endAt: datetime
    status: str
    notes: Optional[str] = None
    reminderSent: bool = False
    reminderSentAt: Optional[datetime] = None
    cancelledAt: Optional[datetime] = None
    cancelledBy: Optional[str] = None
    cancellationReason: Optional[str] = None
    createdAt: Optional[datetime] = None
