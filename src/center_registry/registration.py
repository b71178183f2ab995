"""center_registry.registration

Student registration: the one write path that ties duplicate detection,
person/profile creation and sibling linking together.

register_student(conn, payload, config, sibling_profile_ids) runs:

  1. Validate the payload (ValidationError, field-tagged).
  2. In one transaction:
     a. check_duplicate on email/phone for the program.
     b. Person with an active profile in the program -> DuplicateError.
     c. Person found without one -> attach: reuse the person, add any
        contact value they lack that nobody else owns.
        No person -> create person + primary contact points.
     d. Create (or reopen) the program profile plus a new enrollment.
     e. Link sibling profiles (per-pair savepoints; failures are counted).
  3. Convert errors to ActionResult at the boundary:
       RegistryError          -> {success: False, error, field}
       unique violation       -> ConstraintRaceError, same message as a duplicate
       other psycopg.Error    -> "Registration failed: ..."

Any error in step 2 rolls back everything written in step 2.

run_registration_import() feeds CSV rows through register_student with a
SAVEPOINT per row, writing failures to a reject CSV.
"""

from __future__ import annotations

import csv
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any

import psycopg

from center_registry import people
from center_registry.config import RegistrationConfig
from center_registry.db import is_unique_violation, savepoint, with_transaction
from center_registry.duplicate_detection import DuplicateCheckResult, check_duplicate
from center_registry.errors import (
    ActionResult,
    ConstraintRaceError,
    DuplicateError,
    RegistryError,
)
from center_registry.models import ContactType
from center_registry.normalize import split_id_list
from center_registry.shared import RejectWriter, normalize_headers
from center_registry.siblings import link_sibling_profiles
from center_registry.validation import (
    RegistrationData,
    validate_registration,
    validate_sibling_ids,
)

REGISTRATION_FAILED_PREFIX = "Registration failed"

REQUIRED_CSV_HEADERS = frozenset({"first_name", "last_name", "program"})

# CSV column -> payload key
CSV_PAYLOAD_KEYS = {
    "first_name": "firstName",
    "last_name": "lastName",
    "email": "email",
    "phone": "phone",
    "date_of_birth": "dateOfBirth",
    "program": "program",
    "education_level": "educationLevel",
    "grade_level": "gradeLevel",
    "school_name": "schoolName",
}


class CsvHeaderError(ValueError):
    """Raised when an import CSV is missing required columns."""


# ---------------------------------------------------------------------------
# Single registration
# ---------------------------------------------------------------------------

@dataclass
class RegistrationOutcome:
    profile_id: str
    person_id: str
    name: str
    attached_existing: bool
    siblings_added: int = 0
    siblings_failed: int = 0
    warnings: list[str] = field(default_factory=list)

    def to_data(self) -> dict[str, Any]:
        return {
            "id": self.profile_id,
            "name": self.name,
            "personId": self.person_id,
            "siblingsAdded": self.siblings_added,
            "siblingsFailed": self.siblings_failed,
            "attachedExisting": self.attached_existing,
            "warnings": self.warnings,
        }


def _race_field(data: RegistrationData) -> str:
    return "email" if data.email else "phone"


def _attach_missing_contacts(
    conn: psycopg.Connection,
    person_id: str,
    data: RegistrationData,
    dup: DuplicateCheckResult,
    warnings: list[str],
) -> None:
    """Add the submitted email/phone to an existing person when nobody owns it.

    An email match always wins, so the email is only missing when the person
    was found by phone; the phone is only missing when found by email, and
    then belongs to conflicting_person_id if anyone.
    """
    existing = dup.existing_person
    if data.email and dup.duplicate_field == "phone":
        people.add_contact_point(
            conn, person_id, ContactType.EMAIL, data.email,
            is_primary=not (existing and existing.email),
        )
    if data.phone and dup.duplicate_field == "email":
        if dup.conflicting_person_id:
            warnings.append(
                f"phone {data.phone} belongs to person {dup.conflicting_person_id}; "
                "not added"
            )
        else:
            people.add_contact_point(
                conn, person_id, ContactType.PHONE, data.phone,
                is_primary=not (existing and existing.phone),
            )


def _register(
    conn: psycopg.Connection,
    data: RegistrationData,
    config: RegistrationConfig,
    sibling_profile_ids: list[str],
) -> RegistrationOutcome:
    dup = check_duplicate(conn, data.email, data.phone, data.program)
    warnings = list(dup.warnings)

    if dup.is_duplicate and dup.has_active_profile:
        raise DuplicateError(
            dup.duplicate_field or _race_field(data),
            dup.person_id or "",
            data.program,
            dup.existing_person.to_dict() if dup.existing_person else None,
        )

    if dup.is_duplicate and dup.person_id:
        person_id = dup.person_id
        _attach_missing_contacts(conn, person_id, data, dup, warnings)
        attached = True
    else:
        person = people.create_person_with_contact(
            conn, data.full_name, data.date_of_birth, data.email, data.phone
        )
        person_id = person.id
        attached = False

    profile = people.create_program_profile_with_enrollment(
        conn,
        person_id,
        data.program,
        status=config.default_status,
        fields=data.profile_fields,
    )

    linked = link_sibling_profiles(conn, profile.id, sibling_profile_ids)
    for sibling_id, error in linked.failures:
        warnings.append(f"sibling {sibling_id} not linked: {error}")

    return RegistrationOutcome(
        profile_id=profile.id,
        person_id=person_id,
        name=data.full_name,
        attached_existing=attached,
        siblings_added=linked.added,
        siblings_failed=linked.failed,
        warnings=warnings,
    )


def register_student(
    conn: psycopg.Connection,
    payload: dict[str, Any],
    config: RegistrationConfig,
    sibling_profile_ids: list[str] | None = None,
    today: date | None = None,
) -> ActionResult:
    """Register one student (see module doc).  Never raises RegistryError."""
    try:
        data = validate_registration(payload, config, today=today)
        sibling_ids = validate_sibling_ids(sibling_profile_ids, config)
    except RegistryError as exc:
        return ActionResult.from_error(exc)

    try:
        outcome = with_transaction(
            conn, lambda c: _register(c, data, config, sibling_ids)
        )
    except ConstraintRaceError as exc:
        return ActionResult.from_error(ConstraintRaceError(exc.field, data.program))
    except RegistryError as exc:
        return ActionResult.from_error(exc)
    except psycopg.Error as exc:
        if is_unique_violation(exc):
            return ActionResult.from_error(
                ConstraintRaceError(_race_field(data), data.program)
            )
        return ActionResult.fail(f"{REGISTRATION_FAILED_PREFIX}: {exc}")

    return ActionResult.ok(**outcome.to_data())


# ---------------------------------------------------------------------------
# CSV import
# ---------------------------------------------------------------------------

@dataclass
class RegistrationCounters:
    rows_read: int = 0
    rows_registered: int = 0
    rows_attached_existing: int = 0
    rows_rejected: int = 0
    duplicates_blocked: int = 0
    siblings_added: int = 0
    siblings_failed: int = 0
    db_errors: int = 0
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rows_read": self.rows_read,
            "rows_registered": self.rows_registered,
            "rows_attached_existing": self.rows_attached_existing,
            "rows_rejected": self.rows_rejected,
            "duplicates_blocked": self.duplicates_blocked,
            "siblings_added": self.siblings_added,
            "siblings_failed": self.siblings_failed,
            "db_errors": self.db_errors,
            "warnings": self.warnings[:50],
        }


def row_to_payload(row: dict[str, str]) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for column, key in CSV_PAYLOAD_KEYS.items():
        value = row.get(column)
        if value is not None and value.strip():
            payload[key] = value.strip()
    return payload


def _process_row(
    conn: psycopg.Connection,
    idx: int,
    row: dict[str, str],
    config: RegistrationConfig,
    counters: RegistrationCounters,
    rejects: RejectWriter,
) -> None:
    result = register_student(
        conn,
        row_to_payload(row),
        config,
        split_id_list(row.get("sibling_profile_ids")),
    )
    if not result.success:
        error = result.error or "unknown_error"
        if error.startswith(REGISTRATION_FAILED_PREFIX):
            counters.db_errors += 1
            counters.warnings.append(f"row {idx}: {error}")
        elif "existingPersonId" in result.details:
            counters.duplicates_blocked += 1
        rejects.write(row, error)
        counters.rows_rejected += 1
        return

    counters.rows_registered += 1
    if result.data.get("attachedExisting"):
        counters.rows_attached_existing += 1
    counters.siblings_added += result.data.get("siblingsAdded", 0)
    counters.siblings_failed += result.data.get("siblingsFailed", 0)
    for warning in result.data.get("warnings", []):
        counters.warnings.append(f"row {idx}: {warning}")


def run_registration_import(
    conn: psycopg.Connection,
    csv_path: Path,
    config: RegistrationConfig,
    rejects: RejectWriter,
    counters: RegistrationCounters | None = None,
) -> RegistrationCounters:
    """Register every row of csv_path; caller commits or rolls back.

    Raises CsvHeaderError before touching the database when required
    columns are missing.
    """
    counters = counters or RegistrationCounters()
    with csv_path.open(encoding="utf-8-sig", newline="") as fh:
        reader = csv.DictReader(fh)
        headers = {h.strip().lower() for h in (reader.fieldnames or [])}
        missing = REQUIRED_CSV_HEADERS - headers
        if missing:
            raise CsvHeaderError(f"{csv_path.name} missing required headers: {sorted(missing)}")

        for idx, raw_row in enumerate(reader):
            row = normalize_headers(raw_row)
            counters.rows_read += 1
            try:
                with savepoint(conn, "reg_row"):
                    _process_row(conn, idx, row, config, counters, rejects)
            except Exception as exc:
                rejects.write(row, "db_error")
                counters.rows_rejected += 1
                counters.db_errors += 1
                counters.warnings.append(f"row {idx} {type(exc).__name__}: {exc}")
    return counters


def build_registration_report(ctrs: RegistrationCounters, dry_run: bool = False) -> str:
    lines = [
        "=" * 60,
        "Registration Import Report",
        f"  dry_run: {dry_run}",
        "=" * 60,
        f"  rows read:            {ctrs.rows_read}",
        f"  rows registered:      {ctrs.rows_registered}",
        f"    attached existing:  {ctrs.rows_attached_existing}",
        f"  rows rejected:        {ctrs.rows_rejected}",
        f"    duplicates blocked: {ctrs.duplicates_blocked}",
        f"  siblings added:       {ctrs.siblings_added}",
        f"  siblings failed:      {ctrs.siblings_failed}",
        f"DB errors:              {ctrs.db_errors}",
    ]
    if ctrs.warnings:
        lines.append(f"\nWarnings ({len(ctrs.warnings)}):")
        for w in ctrs.warnings[:20]:
            lines.append(f"  {w}")
        if len(ctrs.warnings) > 20:
            lines.append(f"  ... and {len(ctrs.warnings) - 20} more")
    lines.append("=" * 60)
    return "\n".join(lines)
