"""center_registry.errors

Error taxonomy for registration and sibling linking, plus the uniform
ActionResult shape every boundary operation returns:

    {"success": False, "error": "<message>", "field": "email" | ... | None}

ValidationError, DuplicateError, NotFoundError and ConstraintRaceError are
raised inside the core and converted to ActionResult at the operation
boundary (registration.register_student, siblings.add_sibling,
siblings.remove_sibling).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from center_registry.models import Program

# Form fields the caller can attach an inline error to.
VALIDATION_FIELDS = frozenset({
    "email", "phone", "firstName", "lastName", "dateOfBirth", "program", "siblings",
    "schoolName",
})

DUPLICATE_FIELDS = frozenset({"email", "phone", "both"})


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class RegistryError(Exception):
    """Base class for recoverable registration / linking errors."""

    field: str | None = None


class ValidationError(RegistryError):
    """Raised when a payload field is missing or malformed."""

    def __init__(self, field: str, message: str) -> None:
        if field not in VALIDATION_FIELDS:
            raise ValueError(f"unknown validation field: {field!r}")
        super().__init__(message)
        self.field = field
        self.message = message


class DuplicateError(RegistryError):
    """Raised when the person already holds an active profile in the program."""

    def __init__(
        self,
        field: str,
        existing_person_id: str,
        program: Program,
        existing_person: dict[str, Any] | None = None,
    ) -> None:
        if field not in DUPLICATE_FIELDS:
            raise ValueError(f"unknown duplicate field: {field!r}")
        message = duplicate_message(field, program)
        super().__init__(message)
        self.field = field
        self.message = message
        self.existing_person_id = existing_person_id
        self.program = program
        self.existing_person = existing_person


class ConstraintRaceError(RegistryError):
    """Raised when a unique constraint rejects an insert that passed the pre-check.

    Raised without a program from the contact insert; registration re-raises
    it with the program so the message matches DuplicateError.
    """

    def __init__(self, field: str, program: Program | None = None) -> None:
        if program is None:
            message = f"This {field} is already registered"
        else:
            message = duplicate_message(field, program)
        super().__init__(message)
        self.field = field
        self.message = message
        self.program = program


class ActiveProfileExistsError(RegistryError):
    """Raised when a profile insert finds an open enrollment for the same program."""

    def __init__(self, profile_id: str, program: Program) -> None:
        super().__init__(
            f"Person already has an active {program.display_name} enrollment "
            f"(profile {profile_id}). Withdraw it before re-registering."
        )
        self.profile_id = profile_id
        self.program = program


class NotFoundError(RegistryError):
    """Raised when a referenced person, profile or relationship does not exist."""


class SiblingRelationshipNotFound(NotFoundError):
    """Raised when unlinking a pair that has no active sibling relationship."""

    def __init__(self, person_a: str, person_b: str) -> None:
        super().__init__(f"No active sibling relationship between {person_a} and {person_b}")
        self.person_a = person_a
        self.person_b = person_b


class SelfLinkError(RegistryError):
    """Raised when a person is linked as their own sibling."""

    def __init__(self, person_id: str) -> None:
        super().__init__("Cannot add a person as their own sibling")
        self.person_id = person_id


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

def duplicate_message(field: str, program: Program) -> str:
    if field == "both":
        field_text = "email address and phone number are"
    elif field == "phone":
        field_text = "phone number is"
    else:
        field_text = "email address is"
    return f"This {field_text} already registered for the {program.display_name} program"


def form_field(field: str | None) -> str | None:
    """Map a duplicate field onto a form field; 'both' is shown on email."""
    if field == "both":
        return "email"
    return field


# ---------------------------------------------------------------------------
# ActionResult
# ---------------------------------------------------------------------------

@dataclass
class ActionResult:
    success: bool
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    # Declared last: the name shadows dataclasses.field inside the class body.
    field: str | None = None

    @classmethod
    def ok(cls, **data: Any) -> "ActionResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(
        cls,
        error: str,
        field: str | None = None,
        **details: Any,
    ) -> "ActionResult":
        return cls(success=False, error=error, field=field, details=details)

    @classmethod
    def from_error(cls, exc: RegistryError) -> "ActionResult":
        details: dict[str, Any] = {}
        if isinstance(exc, DuplicateError):
            details = {
                "existingPersonId": exc.existing_person_id,
                "program": exc.program.value,
                "existingPerson": exc.existing_person,
            }
        return cls.fail(str(exc), form_field(exc.field), **details)

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "data": self.data}
        out: dict[str, Any] = {"success": False, "error": self.error}
        if self.field:
            out["field"] = self.field
        if self.details:
            out.update(self.details)
        return out
