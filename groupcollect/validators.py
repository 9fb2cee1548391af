"""Input cleaning shared by the services.

All free text that ends up in emails or CSV exports (names, titles) is
stripped of HTML with bleach.clean().
"""

import re

import bleach

from groupcollect.services.errors import ValidationError

# Simple email regex — not exhaustive, just sanity-check
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

MAX_NAME_LENGTH = 255
MAX_SLUG_LENGTH = 100


def sanitize(text):
    """Strip all HTML tags from user input."""
    if text is None:
        return text
    return bleach.clean(str(text), tags=[], strip=True).strip()


def normalise_email(email):
    """Trim + lowercase an email address."""
    return (email or "").strip().lower()


def require_text(value, field_name, max_length=MAX_NAME_LENGTH):
    """Return sanitized, non-empty text or raise ValidationError."""
    cleaned = sanitize(value) if isinstance(value, str) else None
    if not cleaned:
        raise ValidationError(f"{field_name} is required")
    if len(cleaned) > max_length:
        raise ValidationError(f"{field_name} is too long")
    return cleaned


def require_email(email):
    normalised = normalise_email(email if isinstance(email, str) else "")
    if not normalised:
        raise ValidationError("Email is required")
    if not EMAIL_RE.match(normalised) or len(normalised) > MAX_NAME_LENGTH:
        raise ValidationError("Invalid email format")
    return normalised


def optional_int(value, field_name, minimum):
    """Parse an optional integer >= minimum. None / "" mean "not set".

    Booleans and floats with a fractional part are rejected.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a whole number")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be a whole number")
    if isinstance(value, float) and value != number:
        raise ValidationError(f"{field_name} must be a whole number")
    if number < minimum:
        raise ValidationError(f"{field_name} must be at least {minimum}")
    return number
