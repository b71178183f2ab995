"""center_registry.duplicate_detection

Read-only duplicate-person check run before every registration.

Given an email and/or phone and the program being registered into, find the
person who already owns either contact value and report whether that person
holds an active profile in the program:

    is_duplicate=False                          no person owns either value
    is_duplicate=True,  has_active_profile=True  block the registration
    is_duplicate=True,  has_active_profile=False attach to the existing person

Tie-break: when the email and the phone belong to two different people the
email owner is the match (duplicate_field='email') and the phone owner is
reported as conflicting_person_id.  duplicate_field='both' only when the same
person owns both values.

Inputs that fail normalization (malformed email, phone outside 10-11 digits)
are treated as absent.  Database errors propagate.

To close the check/insert race, run this inside the same transaction as the
insert; the active-contact unique index is the final guard (see
registration.py).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import psycopg

from center_registry import people
from center_registry.models import Person, Program, ProgramProfile
from center_registry.normalize import format_display_date, normalize_email, normalize_phone


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class ExistingPersonSummary:
    """Display data for the 'already registered' dialog."""

    person_id: str
    name: str
    email: str | None
    phone: str | None
    registered_date: str | None
    enrollment_status: str | None
    program: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "personId": self.person_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "registeredDate": self.registered_date,
            "enrollmentStatus": self.enrollment_status,
            "program": self.program,
        }


@dataclass
class ActiveProfileSummary:
    id: str
    program: Program
    status: str
    status_label: str
    created_at: datetime | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "program": self.program.value,
            "status": self.status,
            "statusLabel": self.status_label,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class DuplicateCheckResult:
    is_duplicate: bool = False
    has_active_profile: bool = False
    duplicate_field: str | None = None
    person_id: str | None = None
    existing_person: ExistingPersonSummary | None = None
    active_profile: ActiveProfileSummary | None = None
    conflicting_person_id: str | None = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "isDuplicate": self.is_duplicate,
            "hasActiveProfile": self.has_active_profile,
            "duplicateField": self.duplicate_field,
            "personId": self.person_id,
            "existingPerson": self.existing_person.to_dict() if self.existing_person else None,
            "activeProfile": self.active_profile.to_dict() if self.active_profile else None,
            "conflictingPersonId": self.conflicting_person_id,
            "warnings": self.warnings,
        }


# ---------------------------------------------------------------------------
# Match resolution
# ---------------------------------------------------------------------------

def choose_match(
    email_person_ids: list[str],
    phone_person_ids: list[str],
) -> tuple[str | None, str | None, str | None]:
    """Return (person_id, duplicate_field, conflicting_person_id).

    Lists are ordered by person id, so the first entry is a deterministic
    pick if historical data left a value on more than one person.
    """
    email_pid = email_person_ids[0] if email_person_ids else None
    phone_pid = phone_person_ids[0] if phone_person_ids else None

    if email_pid and email_pid in phone_person_ids:
        return email_pid, "both", None
    if email_pid and phone_pid:
        return email_pid, "email", phone_pid
    if email_pid:
        return email_pid, "email", None
    if phone_pid:
        return phone_pid, "phone", None
    return None, None, None


def summarize_person(
    person: Person,
    program: Program,
    active: ProgramProfile | None,
) -> ExistingPersonSummary:
    if active is not None:
        registered_on = active.created_at or person.created_at
        status_label = active.status.label
    else:
        registered_on = person.created_at
        in_program = [p for p in person.profiles if p.program == program]
        status_label = in_program[-1].status.label if in_program else None
    return ExistingPersonSummary(
        person_id=person.id,
        name=person.name,
        email=person.primary_email,
        phone=person.primary_phone,
        registered_date=format_display_date(registered_on),
        enrollment_status=status_label,
        program=program.display_name,
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def check_duplicate(
    conn: psycopg.Connection,
    email: str | None,
    phone: str | None,
    program: Program,
) -> DuplicateCheckResult:
    """Check whether the email/phone already belongs to a person (see module doc)."""
    email_norm = normalize_email(email)
    phone_norm = normalize_phone(phone)
    result = DuplicateCheckResult()
    if email_norm is None and phone_norm is None:
        return result

    email_ids = people.find_person_ids_by_email(conn, email_norm) if email_norm else []
    phone_ids = people.find_person_ids_by_phone(conn, phone_norm) if phone_norm else []

    if len(email_ids) > 1:
        result.warnings.append(
            f"email {email_norm!r} is active on {len(email_ids)} people; using {email_ids[0]}"
        )
    if len(phone_ids) > 1:
        result.warnings.append(
            f"phone {phone_norm!r} is active on {len(phone_ids)} people; using {phone_ids[0]}"
        )

    person_id, duplicate_field, conflicting_id = choose_match(email_ids, phone_ids)
    if person_id is None:
        return result

    person = people.fetch_person(conn, person_id)
    if person is None:
        return result

    if conflicting_id:
        result.warnings.append(
            f"email matched {person_id} but phone matched {conflicting_id}; email match wins"
        )

    active = person.active_profile_for(program)
    result.is_duplicate = True
    result.duplicate_field = duplicate_field
    result.person_id = person.id
    result.conflicting_person_id = conflicting_id
    result.has_active_profile = active is not None
    result.existing_person = summarize_person(person, program, active)
    if active is not None:
        result.active_profile = ActiveProfileSummary(
            id=active.id,
            program=active.program,
            status=active.status.value,
            status_label=active.status.label,
            created_at=active.created_at,
        )
    return result


def is_email_registered(conn: psycopg.Connection, email: str, program: Program) -> bool:
    """True when the email belongs to a person with an active profile in program."""
    result = check_duplicate(conn, email, None, program)
    return result.is_duplicate and result.has_active_profile


def is_phone_registered(conn: psycopg.Connection, phone: str, program: Program) -> bool:
    """True when the phone belongs to a person with an active profile in program."""
    result = check_duplicate(conn, None, phone, program)
    return result.is_duplicate and result.has_active_profile
