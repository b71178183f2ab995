"""center_registry.validation

Validate a raw registration payload (the camelCase dict the form layer
posts) into a RegistrationData record.  The first failing field raises
ValidationError(field, message); field is the form field the caller
attaches the inline error to.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from center_registry.config import RegistrationConfig
from center_registry.errors import ValidationError
from center_registry.models import Program
from center_registry.normalize import (
    format_full_name,
    normalize_email,
    normalize_phone,
    normalize_space,
    parse_iso_date,
    trim,
)

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 50
EMAIL_MIN_LENGTH = 5
EMAIL_MAX_LENGTH = 100
SCHOOL_NAME_MAX_LENGTH = 100

_NAME_RE = re.compile(r"^[A-Za-z\s-]+$")
_SCHOOL_NAME_RE = re.compile(r"^[A-Za-z0-9\s\-.']+$")

# Allowed student age (inclusive) per program; programs not listed are unchecked.
PROGRAM_AGE_RANGES: dict[Program, tuple[int, int]] = {
    Program.MAHAD: (15, 100),
    Program.DUGSI: (5, 18),
}

# Optional payload keys copied onto program_profile columns.
PROFILE_FIELD_KEYS = {
    "educationLevel": "education_level",
    "gradeLevel": "grade_level",
    "schoolName": "school_name",
    "graduationStatus": "graduation_status",
    "paymentFrequency": "payment_frequency",
    "billingType": "billing_type",
    "paymentNotes": "payment_notes",
}


@dataclass
class RegistrationData:
    first_name: str
    last_name: str
    full_name: str
    email: str | None
    phone: str | None
    date_of_birth: date | None
    program: Program
    profile_fields: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Field validators
# ---------------------------------------------------------------------------

def _validate_name(value: Any, form_field: str, label: str) -> str:
    v = normalize_space(value if isinstance(value, str) else None)
    if v is None:
        raise ValidationError(form_field, f"{label} is required")
    if len(v) < NAME_MIN_LENGTH:
        raise ValidationError(form_field, f"{label} must be at least {NAME_MIN_LENGTH} characters")
    if len(v) > NAME_MAX_LENGTH:
        raise ValidationError(form_field, f"{label} must be less than {NAME_MAX_LENGTH} characters")
    if not _NAME_RE.match(v):
        raise ValidationError(form_field, f"{label} can only contain letters, spaces, and hyphens")
    return v


def _validate_email(value: Any, required: bool) -> str | None:
    raw = trim(value if isinstance(value, str) else None)
    if raw is None:
        if required:
            raise ValidationError("email", "Email is required")
        return None
    email = normalize_email(raw)
    if email is None:
        raise ValidationError("email", "Please enter a valid email address")
    if not EMAIL_MIN_LENGTH <= len(email) <= EMAIL_MAX_LENGTH:
        raise ValidationError(
            "email",
            f"Email must be between {EMAIL_MIN_LENGTH} and {EMAIL_MAX_LENGTH} characters",
        )
    return email


def _validate_phone(value: Any, required: bool) -> str | None:
    raw = trim(value if isinstance(value, str) else None)
    if raw is None:
        if required:
            raise ValidationError("phone", "Phone number is required")
        return None
    phone = normalize_phone(raw)
    if phone is None:
        raise ValidationError("phone", "Enter a valid phone number (XXX-XXX-XXXX)")
    return phone


def _age_on(born: date, today: date) -> int:
    return today.year - born.year - ((today.month, today.day) < (born.month, born.day))


def _validate_date_of_birth(value: Any, program: Program, today: date) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        born = value.date()
    elif isinstance(value, date):
        born = value
    else:
        born = parse_iso_date(str(value))
        if born is None:
            raise ValidationError("dateOfBirth", "Please enter a valid date of birth")

    if born > today:
        raise ValidationError("dateOfBirth", "Date of birth cannot be in the future")

    age_range = PROGRAM_AGE_RANGES.get(program)
    if age_range is not None:
        low, high = age_range
        if not low <= _age_on(born, today) <= high:
            raise ValidationError(
                "dateOfBirth",
                f"Student must be between {low} and {high} years old",
            )
    return born


def _validate_program(value: Any, config: RegistrationConfig) -> Program:
    try:
        program = Program(value)
    except ValueError:
        raise ValidationError("program", f"Unknown program: {value!r}") from None
    if not config.is_open(program):
        raise ValidationError(
            "program", f"Registration for {program.display_name} is currently closed"
        )
    return program


def _profile_fields(payload: dict[str, Any]) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    for key, column in PROFILE_FIELD_KEYS.items():
        v = payload.get(key)
        if isinstance(v, str):
            v = normalize_space(v)
        if v is not None:
            fields[column] = v
    school = fields.get("school_name")
    if school is not None and (
        len(school) > SCHOOL_NAME_MAX_LENGTH or not _SCHOOL_NAME_RE.match(school)
    ):
        raise ValidationError(
            "schoolName",
            "School name can only contain letters, numbers, spaces, hyphens, periods, "
            "and apostrophes",
        )
    return fields


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def validate_registration(
    payload: dict[str, Any],
    config: RegistrationConfig,
    today: date | None = None,
) -> RegistrationData:
    """Validate payload; raise ValidationError on the first bad field."""
    today = today or date.today()
    first_name = _validate_name(payload.get("firstName"), "firstName", "First name")
    last_name = _validate_name(payload.get("lastName"), "lastName", "Last name")
    email = _validate_email(payload.get("email"), config.require_email)
    phone = _validate_phone(payload.get("phone"), config.require_phone)
    if email is None and phone is None:
        raise ValidationError("email", "An email address or phone number is required")
    program = _validate_program(payload.get("program"), config)
    born = _validate_date_of_birth(payload.get("dateOfBirth"), program, today)

    return RegistrationData(
        first_name=first_name,
        last_name=last_name,
        full_name=format_full_name(first_name, last_name),
        email=email,
        phone=phone,
        date_of_birth=born,
        program=program,
        profile_fields=_profile_fields(payload),
    )


def validate_sibling_ids(sibling_ids: list[str] | None, config: RegistrationConfig) -> list[str]:
    """De-duplicate sibling ids (order kept) and enforce the per-registration cap."""
    ids = list(dict.fromkeys(s.strip() for s in (sibling_ids or []) if s and s.strip()))
    if len(ids) > config.max_siblings_per_registration:
        raise ValidationError(
            "siblings",
            f"A registration can link at most {config.max_siblings_per_registration} siblings",
        )
    return ids
