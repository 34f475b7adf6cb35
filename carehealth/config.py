import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./carehealth.db")

# Redis Configuration (locks + notification queues)
REDIS_URL = os.getenv("REDIS_URL")
REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", "6379"))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD")
REDIS_DB = int(os.getenv("REDIS_DB", "0"))
REDIS_SSL = os.getenv("REDIS_SSL", "false").lower() == "true"

# Booking locks - TTL must exceed the conflict check + write with margin
APPOINTMENT_LOCK_TTL_MS = int(os.getenv("APPOINTMENT_LOCK_TTL_MS", "2000"))
APPOINTMENT_LOCK_TIMEOUT_MS = int(os.getenv("APPOINTMENT_LOCK_TIMEOUT_MS", "2000"))
APPOINTMENT_LOCK_RETRY_MS = int(os.getenv("APPOINTMENT_LOCK_RETRY_MS", "50"))

# Booking defaults
DEFAULT_APPOINTMENT_MINUTES = int(os.getenv("DEFAULT_APPOINTMENT_MINUTES", "30"))
REMINDER_LEAD_HOURS = int(os.getenv("REMINDER_LEAD_HOURS", "24"))

# Notification queues
APPOINTMENT_QUEUE_KEY = os.getenv("APPOINTMENT_QUEUE_KEY", "queues:appointment-reminders")
LAB_RESULT_QUEUE_KEY = os.getenv("LAB_RESULT_QUEUE_KEY", "queue:lab:results")
PHARMACY_QUEUE_KEY = os.getenv("PHARMACY_QUEUE_KEY", "queue:pharmacy:notifications")

# Notification worker
NOTIFICATION_MAX_RETRIES = int(os.getenv("NOTIFICATION_MAX_RETRIES", "3"))
WORKER_POP_TIMEOUT = int(os.getenv("WORKER_POP_TIMEOUT", "5"))  # seconds
WORKER_NOT_DUE_SLEEP = float(os.getenv("WORKER_NOT_DUE_SLEEP", "1.0"))  # seconds

# Resend Email Configuration
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "CareHealth <noreply@carehealth.local>")

# Optional SMTP transport (takes precedence over Resend when configured)
SMTP_HOST = os.getenv("SMTP_HOST")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")

# CORS
ALLOWED_ORIGINS = os.getenv(
    "ALLOWED_ORIGINS", "http://localhost:5173,http://localhost:3000"
).split(",")
