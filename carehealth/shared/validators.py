"""Shared validation utilities"""

import re
from datetime import datetime, timezone
from typing import Optional, Union


def parse_timestamp(value: Union[str, datetime, None], field: str = "timestamp") -> datetime:
    """
    Parse an ISO-8601 string or datetime into naive UTC.

    Args:
        value: ISO-8601 string (trailing "Z" allowed) or datetime
        field: Field name used in the error message

    Returns:
        Naive UTC datetime

    Raises:
        ValueError: If the value is missing or not a valid timestamp
    """
    if value is None or value == "":
        raise ValueError(f"{field} is required")

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            raise ValueError(f"{field} must be a valid ISO 8601 date") from None
    else:
        raise ValueError(f"{field} must be a valid ISO 8601 date")

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def validate_email(email: Optional[str]) -> Optional[str]:
    """
    Validate email format.

    Args:
        email: Email address string

    Returns:
        Lowercase email address

    Raises:
        ValueError: If email format is invalid
    """
    if not email:
        return email

    email = email.strip().lower()

    # Basic email validation pattern
    email_pattern = r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"

    if not re.match(email_pattern, email):
        raise ValueError("Invalid email format")

    return email
