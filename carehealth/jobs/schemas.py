"""Notification job wire format - flat, language-neutral, forward-compatible"""

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from ..clock import from_epoch_millis, to_epoch_millis

JOB_TYPE_REMINDER = "reminder"
JOB_TYPE_LAB_RESULT = "lab-result"
JOB_TYPE_PRESCRIPTION_STATUS = "prescription-status"

JobType = Literal["reminder", "lab-result", "prescription-status"]


class NotificationJob(BaseModel):
    """
    Queued notification.

    The subject's delivery state is not carried on the job; the worker
    re-reads it from the subject record at delivery time. Unknown fields
    are ignored so older consumers accept newer producers.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    type: JobType
    subject_id: str = Field(alias="subjectId", min_length=1)
    patient_id: Optional[str] = Field(default=None, alias="patientId")
    doctor_id: Optional[str] = Field(default=None, alias="doctorId")
    send_at: datetime = Field(alias="sendAt")
    attempts: int = Field(default=0, ge=0)

    # lab-result
    order_id: Optional[str] = Field(default=None, alias="orderId")
    # prescription-status
    pharmacy_id: Optional[str] = Field(default=None, alias="pharmacyId")
    status: Optional[str] = None

    @field_validator("send_at", mode="before")
    @classmethod
    def parse_send_at(cls, v):
        # Epoch millis or ISO-8601
        if isinstance(v, bool):
            raise ValueError("sendAt must be epoch millis or ISO-8601")
        if isinstance(v, (int, float)):
            return from_epoch_millis(int(v))
        if isinstance(v, str):
            parsed = datetime.fromisoformat(v.replace("Z", "+00:00"))
            if parsed.tzinfo is not None:
                parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
            return parsed
        return v

    @field_serializer("send_at")
    def serialize_send_at(self, v: datetime) -> int:
        return to_epoch_millis(v)

    def encode(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    @classmethod
    def decode(cls, payload: str) -> "NotificationJob":
        """Raises pydantic.ValidationError on malformed payloads"""
        return cls.model_validate_json(payload)

    def next_attempt(self) -> "NotificationJob":
        return self.model_copy(update={"attempts": self.attempts + 1})
