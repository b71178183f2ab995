"""center_registry.people

Person, contact-point, program-profile and enrollment queries.

Every function takes an open psycopg connection and never commits; the
caller owns the transaction.  Contact values are stored normalized
(lowercase email, digits-only phone) so lookups compare normalized values.
"""

from __future__ import annotations

import json
import uuid
from datetime import date
from typing import Any

import psycopg

from center_registry.db import is_unique_violation
from center_registry.errors import ActiveProfileExistsError, ConstraintRaceError
from center_registry.models import (
    PHONE_CONTACT_TYPES,
    ContactPoint,
    ContactState,
    ContactType,
    EnrollmentStatus,
    Person,
    Program,
    ProgramProfile,
)

_PHONE_TYPE_VALUES = [t.value for t in PHONE_CONTACT_TYPES]

# Optional program_profile columns accepted by create_program_profile_with_enrollment.
PROFILE_FIELDS = (
    "education_level",
    "grade_level",
    "school_name",
    "graduation_status",
    "payment_frequency",
    "billing_type",
    "payment_notes",
)


def is_uuid(value: str | None) -> bool:
    if not value:
        return False
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

def find_person_ids_by_email(conn: psycopg.Connection, email_norm: str) -> list[str]:
    rows = conn.execute(
        """
        SELECT DISTINCT person_id
        FROM contact_point
        WHERE contact_type = 'EMAIL'
          AND contact_value = %s
          AND state = 'ACTIVE'
        ORDER BY person_id
        """,
        (email_norm,),
    ).fetchall()
    return [str(r[0]) for r in rows]


def find_person_ids_by_phone(conn: psycopg.Connection, phone_norm: str) -> list[str]:
    rows = conn.execute(
        """
        SELECT DISTINCT person_id
        FROM contact_point
        WHERE contact_type = ANY(%s::text[])
          AND contact_value = %s
          AND state = 'ACTIVE'
        ORDER BY person_id
        """,
        (_PHONE_TYPE_VALUES, phone_norm),
    ).fetchall()
    return [str(r[0]) for r in rows]


def person_exists(conn: psycopg.Connection, person_id: str) -> bool:
    if not is_uuid(person_id):
        return False
    row = conn.execute("SELECT 1 FROM person WHERE id = %s", (person_id,)).fetchone()
    return row is not None


def fetch_person(conn: psycopg.Connection, person_id: str) -> Person | None:
    """Load a person with their contact points and program profiles, or None."""
    if not is_uuid(person_id):
        return None
    row = conn.execute(
        "SELECT id, name, date_of_birth, created_at FROM person WHERE id = %s",
        (person_id,),
    ).fetchone()
    if row is None:
        return None

    person = Person(
        id=str(row[0]),
        name=row[1],
        date_of_birth=row[2],
        created_at=row[3],
    )

    for cp in conn.execute(
        """
        SELECT contact_type, contact_value, is_primary, state
        FROM contact_point
        WHERE person_id = %s
        ORDER BY is_primary DESC, created_at ASC
        """,
        (person_id,),
    ).fetchall():
        person.contact_points.append(ContactPoint(
            person_id=person.id,
            contact_type=ContactType(cp[0]),
            value=cp[1],
            is_primary=cp[2],
            state=ContactState(cp[3]),
        ))

    person.profiles = fetch_profiles(conn, person.id)
    return person


def fetch_profiles(conn: psycopg.Connection, person_id: str) -> list[ProgramProfile]:
    rows = conn.execute(
        """
        SELECT pp.id, pp.program, pp.status, pp.created_at,
               COUNT(e.id) FILTER (
                   WHERE e.status <> 'WITHDRAWN' AND e.end_date IS NULL
               ) AS open_enrollments
        FROM program_profile pp
        LEFT JOIN enrollment e ON e.program_profile_id = pp.id
        WHERE pp.person_id = %s
        GROUP BY pp.id, pp.program, pp.status, pp.created_at
        ORDER BY pp.created_at ASC
        """,
        (person_id,),
    ).fetchall()
    return [
        ProgramProfile(
            id=str(r[0]),
            person_id=person_id,
            program=Program(r[1]),
            status=EnrollmentStatus(r[2]),
            created_at=r[3],
            open_enrollments=int(r[4]),
        )
        for r in rows
    ]


def resolve_profile_person_ids(
    conn: psycopg.Connection,
    profile_ids: list[str],
) -> dict[str, str]:
    """Map program_profile ids to their owning person ids.

    Ids that are not UUIDs or have no row are absent from the result.
    """
    valid = [p for p in dict.fromkeys(profile_ids) if is_uuid(p)]
    if not valid:
        return {}
    rows = conn.execute(
        "SELECT id, person_id FROM program_profile WHERE id = ANY(%s::uuid[])",
        (valid,),
    ).fetchall()
    found = {str(r[0]): str(r[1]) for r in rows}
    # Preserve the caller's spelling of each id.
    return {p: found[str(uuid.UUID(p))] for p in valid if str(uuid.UUID(p)) in found}


# ---------------------------------------------------------------------------
# Person + contact creation
# ---------------------------------------------------------------------------

def add_contact_point(
    conn: psycopg.Connection,
    person_id: str,
    contact_type: ContactType,
    value_norm: str,
    is_primary: bool,
) -> None:
    """Insert an active contact point, reactivating the person's own old row.

    A unique violation means another person owns the value (a registration
    that raced this one); it surfaces as ConstraintRaceError.
    """
    field = "email" if contact_type == ContactType.EMAIL else "phone"
    try:
        conn.execute(
            """
            INSERT INTO contact_point
              (person_id, contact_type, contact_value, is_primary)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (person_id, contact_type, contact_value) DO UPDATE SET
              state = 'ACTIVE',
              deactivated_at = NULL
            """,
            (person_id, contact_type.value, value_norm, is_primary),
        )
    except psycopg.Error as exc:
        if is_unique_violation(exc):
            raise ConstraintRaceError(field) from exc
        raise


def create_person_with_contact(
    conn: psycopg.Connection,
    name: str,
    date_of_birth: date | None,
    email_norm: str | None,
    phone_norm: str | None,
) -> Person:
    """Insert a person and their primary email/phone contact points."""
    row = conn.execute(
        """
        INSERT INTO person (name, date_of_birth)
        VALUES (%s, %s)
        RETURNING id, created_at
        """,
        (name, date_of_birth),
    ).fetchone()
    person = Person(id=str(row[0]), name=name, date_of_birth=date_of_birth, created_at=row[1])

    if email_norm:
        add_contact_point(conn, person.id, ContactType.EMAIL, email_norm, True)
        person.contact_points.append(
            ContactPoint(person.id, ContactType.EMAIL, email_norm, is_primary=True)
        )
    if phone_norm:
        add_contact_point(conn, person.id, ContactType.PHONE, phone_norm, True)
        person.contact_points.append(
            ContactPoint(person.id, ContactType.PHONE, phone_norm, is_primary=True)
        )
    return person


# ---------------------------------------------------------------------------
# Profile + enrollment creation
# ---------------------------------------------------------------------------

def create_enrollment(
    conn: psycopg.Connection,
    profile_id: str,
    status: EnrollmentStatus,
    reason: str | None = None,
    notes: str | None = None,
) -> str:
    row = conn.execute(
        """
        INSERT INTO enrollment (program_profile_id, status, reason, notes)
        VALUES (%s, %s, %s, %s)
        RETURNING id
        """,
        (profile_id, status.value, reason, notes),
    ).fetchone()
    return str(row[0])


def create_program_profile_with_enrollment(
    conn: psycopg.Connection,
    person_id: str,
    program: Program,
    status: EnrollmentStatus = EnrollmentStatus.REGISTERED,
    fields: dict[str, Any] | None = None,
    metadata: dict[str, Any] | None = None,
) -> ProgramProfile:
    """Create (or reopen) the person's profile in a program plus a new enrollment.

    (person_id, program) is unique, so a person who withdrew gets their old
    profile back with a fresh enrollment instead of a second profile row.
    Raises ActiveProfileExistsError when the profile still has an open
    enrollment.
    """
    fields = {k: v for k, v in (fields or {}).items() if k in PROFILE_FIELDS}
    meta_json = json.dumps(metadata) if metadata is not None else None

    existing = conn.execute(
        """
        SELECT id, status, created_at
        FROM program_profile
        WHERE person_id = %s AND program = %s
        FOR UPDATE
        """,
        (person_id, program.value),
    ).fetchone()

    if existing is not None:
        profile_id = str(existing[0])
        open_row = conn.execute(
            """
            SELECT COUNT(*) FROM enrollment
            WHERE program_profile_id = %s
              AND status <> 'WITHDRAWN'
              AND end_date IS NULL
            """,
            (profile_id,),
        ).fetchone()
        if existing[1] != EnrollmentStatus.WITHDRAWN.value and open_row[0] > 0:
            raise ActiveProfileExistsError(profile_id, program)

        assignments = ", ".join(f"{col} = COALESCE(%s, {col})" for col in PROFILE_FIELDS)
        conn.execute(
            f"""
            UPDATE program_profile
            SET status = %s,
                {assignments},
                metadata = COALESCE(%s::jsonb, metadata),
                updated_at = now()
            WHERE id = %s
            """,
            (status.value, *[fields.get(col) for col in PROFILE_FIELDS], meta_json, profile_id),
        )
        created_at = existing[2]
    else:
        cols = ", ".join(PROFILE_FIELDS)
        placeholders = ", ".join(["%s"] * len(PROFILE_FIELDS))
        row = conn.execute(
            f"""
            INSERT INTO program_profile
              (person_id, program, status, {cols}, metadata)
            VALUES (%s, %s, %s, {placeholders}, %s::jsonb)
            RETURNING id, created_at
            """,
            (person_id, program.value, status.value,
             *[fields.get(col) for col in PROFILE_FIELDS], meta_json),
        ).fetchone()
        profile_id = str(row[0])
        created_at = row[1]

    create_enrollment(conn, profile_id, status)
    return ProgramProfile(
        id=profile_id,
        person_id=person_id,
        program=program,
        status=status,
        created_at=created_at,
        open_enrollments=1,
    )
