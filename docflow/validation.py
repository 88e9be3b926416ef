"""
Docflow - Input validation helpers.

Checks run before any dispatch or persistence so that malformed requests
never reach a delivery gateway.
"""

import re
from typing import Any, Optional

from .exceptions import InvalidMethodParametersError
from .models import SignatureMethod, SubmissionMethod


class InputValidationError(InvalidMethodParametersError):
    """Raised when a parameter fails validation before any work is done."""

    def __init__(self, message: str, field: str = None, value: Any = None):
        super().__init__(message, field=field)
        self.value = value


EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
PHONE_PATTERN = re.compile(r"^\+?[0-9 ()-]+$")

# Upper bound for signature request expiry, ten years
MAX_EXPIRY_DAYS = 3650


def validate_required(value: Any, field_name: str) -> None:
    """Validate that a required field is not None or empty."""
    if value is None:
        raise InputValidationError(f"{field_name} is required", field=field_name)
    if isinstance(value, str) and not value.strip():
        raise InputValidationError(
            f"{field_name} cannot be empty", field=field_name, value=value
        )


def validate_string_length(
    value: str,
    field_name: str,
    min_length: int = None,
    max_length: int = None
) -> None:
    """Validate string length constraints."""
    if value is None:
        return

    if min_length is not None and len(value) < min_length:
        raise InputValidationError(
            f"{field_name} must be at least {min_length} characters",
            field=field_name,
            value=value
        )

    if max_length is not None and len(value) > max_length:
        raise InputValidationError(
            f"{field_name} must be at most {max_length} characters",
            field=field_name,
            value=value
        )


def validate_non_negative_int(value: int, field_name: str, max_value: int = None) -> None:
    """Validate that a number is an integer >= 0, and at most max_value if given."""
    if not isinstance(value, int) or isinstance(value, bool):
        raise InputValidationError(
            f"{field_name} must be an integer",
            field=field_name,
            value=value
        )

    if value < 0:
        raise InputValidationError(
            f"{field_name} cannot be negative",
            field=field_name,
            value=value
        )

    if max_value is not None and value > max_value:
        raise InputValidationError(
            f"{field_name} must be at most {max_value}",
            field=field_name,
            value=value
        )


def validate_email(value: str, field_name: str) -> None:
    """Validate email format."""
    if not EMAIL_PATTERN.match(value):
        raise InputValidationError(
            f"{field_name} must be a valid email address",
            field=field_name,
            value=value
        )


def validate_phone(value: str, field_name: str) -> None:
    """Validate phone format: digits with optional +, spaces, dashes, parentheses."""
    digits = re.sub(r"\D", "", value)
    if not PHONE_PATTERN.match(value) or not 7 <= len(digits) <= 15:
        raise InputValidationError(
            f"{field_name} must be a valid phone number",
            field=field_name,
            value=value
        )


def coerce_signature_method(value: Any) -> SignatureMethod:
    try:
        return SignatureMethod(value)
    except ValueError:
        raise InputValidationError(
            f"method must be one of: {', '.join(m.value for m in SignatureMethod)}",
            field="method",
            value=value,
        )


def coerce_submission_method(value: Any) -> SubmissionMethod:
    try:
        return SubmissionMethod(value)
    except ValueError:
        raise InputValidationError(
            f"method must be one of: {', '.join(m.value for m in SubmissionMethod)}",
            field="method",
            value=value,
        )


def validate_signature_request(
    method: SignatureMethod,
    recipient_contact: Optional[str],
    expiry_days: int,
    message: Optional[str] = None,
) -> Optional[str]:
    """Validate parameters for a signature request.

    Returns the normalized contact: stripped for email and sms, None for
    link requests.
    """
    validate_non_negative_int(expiry_days, "expiry_days", max_value=MAX_EXPIRY_DAYS)
    validate_string_length(message, "message", max_length=2000)

    if method == SignatureMethod.LINK:
        return None

    validate_required(recipient_contact, "recipient_contact")
    contact = recipient_contact.strip()
    if method == SignatureMethod.EMAIL:
        validate_email(contact, "recipient_contact")
    else:
        validate_phone(contact, "recipient_contact")
    return contact


def validate_resolution_outcome(outcome: Any) -> None:
    if outcome not in ("approved", "rejected"):
        raise InputValidationError(
            "outcome must be one of: approved, rejected",
            field="outcome",
            value=outcome,
        )
