"""
SlotGuard — Field Rules

One function per field. Each returns the normalised value or raises
ValidationError naming the violated rule. No rule coerces an invalid value
into a valid one: normalisation is limited to trimming, case and separator
handling.
"""

from __future__ import annotations

import html
import re
import unicodedata
from typing import Any

from slotguard.errors import ValidationError

NAME_MAX = 100
EMAIL_MAX = 254
EMAIL_LOCAL_MAX = 64
PHONE_MAX = 20
LICENCE_MAX = 20
TEST_CENTRE_MAX = 100
TEST_REFERENCE_MAX = 16
POSTCODE_MAX = 10

_NAME_RE = re.compile(r"^[a-zA-Z\s\-'.]+$")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PHONE_RE = re.compile(r"^\+?[0-9]+$")
_LICENCE_RE = re.compile(r"^[A-Z0-9]+$")
_TEST_CENTRE_RE = re.compile(r"^[a-zA-Z0-9\s\-,.()]+$")
_TEST_REFERENCE_RE = re.compile(r"^[A-Z0-9]{8,16}$")
_POSTCODE_RE = re.compile(r"^[A-Z]{1,2}[0-9][A-Z0-9]?\s?[0-9][ABD-HJLNP-UW-Z]{2}$")
_ID_STRIP_RE = re.compile(r"[^a-zA-Z0-9_-]")
_TAG_RE = re.compile(r"<[^>]*>")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")

# Throwaway-looking local parts
_SUSPICIOUS_EMAIL = (
    re.compile(r"^(test|fake|temp)\d*@", re.IGNORECASE),
    re.compile(r"\d{4,}@"),
    re.compile(r"[a-z]{20,}@", re.IGNORECASE),
)


def _require_str(value: Any, label: str, field: str) -> str:
    if not value or not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{label} is required", field=field)
    return value


def _clean_text(value: str) -> str:
    return unicodedata.normalize("NFKC", _CONTROL_RE.sub("", value.strip()))


def sanitize_text(text: Any, max_length: int = 1000) -> str:
    """Free text: trimmed, truncated, tags stripped, HTML-escaped."""
    if not text or not isinstance(text, str):
        return ""
    cleaned = text.strip()[:max_length]
    cleaned = _TAG_RE.sub("", cleaned)
    cleaned = html.escape(cleaned, quote=True).replace("/", "&#x2F;")
    cleaned = _CONTROL_RE.sub("", cleaned)
    return unicodedata.normalize("NFKC", cleaned)


def sanitize_id(value: Any) -> str:
    raw = _require_str(value, "ID", "id")
    cleaned = _ID_STRIP_RE.sub("", raw)
    if not cleaned:
        raise ValidationError("ID cannot be empty after sanitization", field="id")
    return cleaned


def validate_name(value: Any) -> str:
    name = _clean_text(_require_str(value, "Name", "name"))
    if len(name) > NAME_MAX:
        raise ValidationError(f"Name too long (max {NAME_MAX} characters)", field="name")
    if not _NAME_RE.match(name):
        raise ValidationError(
            "Name contains invalid characters. Only letters, spaces, hyphens, "
            "apostrophes, and periods are allowed.",
            field="name",
        )
    return name


def is_suspicious_email(email: str) -> bool:
    return any(p.search(email) for p in _SUSPICIOUS_EMAIL)


def validate_email(value: Any) -> str:
    email = _require_str(value, "Email", "email").strip().lower()
    if len(email) > EMAIL_MAX:
        raise ValidationError(f"Email too long (max {EMAIL_MAX} characters)", field="email")
    if not _EMAIL_RE.match(email):
        raise ValidationError("Invalid email format", field="email")
    local_part = email.split("@", 1)[0]
    if len(local_part) > EMAIL_LOCAL_MAX:
        raise ValidationError(
            f"Email local part too long (max {EMAIL_LOCAL_MAX} characters)",
            field="email",
        )
    if is_suspicious_email(email):
        raise ValidationError("Email address appears suspicious", field="email")
    return email


def validate_phone(value: Any) -> str:
    """UK numbers only: +44 and ten digits, or 0 and ten digits."""
    phone = re.sub(r"[\s\-()]", "", _require_str(value, "Phone number", "phone"))
    if len(phone) > PHONE_MAX:
        raise ValidationError(f"Phone number too long (max {PHONE_MAX} characters)", field="phone")
    if not _PHONE_RE.match(phone):
        raise ValidationError("Invalid phone number format", field="phone")
    if phone.startswith("+44"):
        if len(phone) != 13:
            raise ValidationError("Invalid UK international phone number format", field="phone")
    elif phone.startswith("0"):
        if len(phone) != 11:
            raise ValidationError("Invalid UK phone number format", field="phone")
    else:
        raise ValidationError("Phone number must start with +44 or 0", field="phone")
    return phone


def validate_licence_number(value: Any) -> str:
    licence = re.sub(r"[\s-]", "", _require_str(value, "Licence number", "licence_number").upper())
    if len(licence) > LICENCE_MAX:
        raise ValidationError(
            f"Licence number too long (max {LICENCE_MAX} characters)",
            field="licence_number",
        )
    if not _LICENCE_RE.match(licence):
        raise ValidationError(
            "Licence number can only contain letters and numbers",
            field="licence_number",
        )
    return licence


def sanitize_test_centre(value: Any) -> str:
    centre = _clean_text(_require_str(value, "Test centre", "test_centre"))
    if len(centre) > TEST_CENTRE_MAX:
        raise ValidationError(
            f"Test centre name too long (max {TEST_CENTRE_MAX} characters)",
            field="test_centre",
        )
    if not _TEST_CENTRE_RE.match(centre):
        raise ValidationError("Test centre name contains invalid characters", field="test_centre")
    return centre


def validate_test_reference(value: Any) -> str:
    ref = re.sub(r"[\s-]", "", _require_str(value, "Test reference", "test_reference").upper())
    if len(ref) > TEST_REFERENCE_MAX:
        raise ValidationError(
            f"Test reference too long (max {TEST_REFERENCE_MAX} characters)",
            field="test_reference",
        )
    if not _TEST_REFERENCE_RE.match(ref):
        raise ValidationError(
            "Test reference must be 8-16 alphanumeric characters",
            field="test_reference",
        )
    return ref


def validate_postcode(value: Any) -> str:
    """UK postcode, re-emitted with a single space before the inward code."""
    postcode = re.sub(r"\s", "", _require_str(value, "Postcode", "postcode").upper())
    if len(postcode) > POSTCODE_MAX:
        raise ValidationError(f"Postcode too long (max {POSTCODE_MAX} characters)", field="postcode")
    if not _POSTCODE_RE.match(postcode):
        raise ValidationError("Invalid UK postcode format", field="postcode")
    return f"{postcode[:-3]} {postcode[-3:]}"
