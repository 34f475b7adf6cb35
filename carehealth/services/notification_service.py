"""
Notification delivery
Notifier contract plus the message bodies for each notification type
"""

import logging
from typing import Optional, Protocol

from ..email_service import send_email
from ..email_templates import notification_template
from ..models import Appointment, Patient, User

logger = logging.getLogger(__name__)

SIGNATURE = "Best regards,\nCareHealth Team"


class Notifier(Protocol):
    def send(self, to: str, subject: str, body: str) -> None:
        """Deliver one message; raises TransportError on failure"""
        ...


class EmailNotifier:
    """Email transport: SMTP or Resend, MJML-rendered HTML with the text body alongside"""

    def __init__(self, from_address: Optional[str] = None):
        self.from_address = from_address

    def send(self, to: str, subject: str, body: str) -> None:
        send_email(
            to=to,
            subject=subject,
            text_content=body,
            mjml_content=notification_template(subject, body),
            from_address=self.from_address,
        )


def appointment_reminder_message(
    appointment: Appointment, patient: Patient, doctor: Optional[User]
) -> tuple[str, str]:
    doctor_name = doctor.display_name if doctor else "your doctor"
    when = appointment.start_at.strftime("%A, %d %B %Y at %H:%M UTC")
    body = (
        f"Dear {patient.display_name},\n\n"
        f"This is a reminder that you have an appointment scheduled with {doctor_name} on {when}.\n\n"
        "Please arrive on time.\n\n"
        f"{SIGNATURE}"
    )
    return "Appointment Reminder", body


def lab_result_patient_message(patient: Patient) -> tuple[str, str]:
    body = (
        f"Dear {patient.display_name},\n\n"
        "Your lab results have been uploaded and are now available for review.\n\n"
        "Please log in to your account to view the results.\n\n"
        f"{SIGNATURE}"
    )
    return "Lab Results Available", body


def lab_result_doctor_message(patient: Patient, order_id: Optional[str]) -> tuple[str, str]:
    order = f" (Order ID: {order_id})" if order_id else ""
    body = (
        "Dear Doctor,\n\n"
        f"Lab results have been uploaded for patient {patient.display_name}{order}.\n\n"
        "Please review the results at your earliest convenience.\n\n"
        f"{SIGNATURE}"
    )
    return "New Lab Results Available for Review", body


def prescription_status_message(status: str, pharmacy_name: str) -> tuple[str, str]:
    if status == "dispensed":
        subject = "Your Prescription is Ready"
        text = (
            f"Your prescription is now ready for pickup at {pharmacy_name}.\n\n"
            "Please bring a valid ID when collecting your medication."
        )
    elif status == "unavailable":
        subject = "Prescription Unavailable"
        text = (
            f"We regret to inform you that your prescription is currently unavailable at {pharmacy_name}.\n\n"
            "Please contact your doctor or the pharmacy for further assistance."
        )
    elif status == "sent":
        subject = "Prescription Sent to Pharmacy"
        text = (
            f"Your prescription has been sent to {pharmacy_name}.\n\n"
            "You will be notified when it is ready for pickup."
        )
    else:
        subject = "Prescription Status Update"
        text = f"Your prescription status has been updated to: {status}."

    return subject, f"Dear Patient,\n\n{text}\n\n{SIGNATURE}"
