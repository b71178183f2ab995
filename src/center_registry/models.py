"""center_registry.models

Lifecycle enums and plain dataclasses for the identity tables in
migrations/0001_identity.sql.  Rows are read with raw SQL in people.py and
siblings.py and mapped onto these types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class Program(str, Enum):
    MAHAD = "MAHAD_PROGRAM"
    DUGSI = "DUGSI_PROGRAM"
    YOUTH_EVENTS = "YOUTH_EVENTS"
    GENERAL_DONATION = "GENERAL_DONATION"

    @property
    def display_name(self) -> str:
        """'MAHAD_PROGRAM' -> 'Mahad', 'YOUTH_EVENTS' -> 'Youth Events'."""
        name = self.value.replace("_PROGRAM", "")
        return " ".join(w.capitalize() for w in name.split("_"))


class ContactType(str, Enum):
    EMAIL = "EMAIL"
    PHONE = "PHONE"
    WHATSAPP = "WHATSAPP"


PHONE_CONTACT_TYPES = (ContactType.PHONE, ContactType.WHATSAPP)


class ContactState(str, Enum):
    ACTIVE = "ACTIVE"
    DEACTIVATED = "DEACTIVATED"


class EnrollmentStatus(str, Enum):
    REGISTERED = "REGISTERED"
    ENROLLED = "ENROLLED"
    ON_LEAVE = "ON_LEAVE"
    WITHDRAWN = "WITHDRAWN"
    COMPLETED = "COMPLETED"
    SUSPENDED = "SUSPENDED"

    @property
    def label(self) -> str:
        """Human-readable status: 'ON_LEAVE' -> 'On Leave'."""
        return " ".join(w.capitalize() for w in self.value.split("_"))


class RelationshipState(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


# NONE -> ACTIVE is an insert; everything else is an UPDATE of the one row.
RELATIONSHIP_TRANSITIONS: dict[RelationshipState | None, frozenset[RelationshipState]] = {
    None: frozenset({RelationshipState.ACTIVE}),
    RelationshipState.ACTIVE: frozenset({RelationshipState.INACTIVE}),
    RelationshipState.INACTIVE: frozenset({RelationshipState.ACTIVE}),
}


def can_transition(
    current: RelationshipState | None,
    target: RelationshipState,
) -> bool:
    return target in RELATIONSHIP_TRANSITIONS[current]


class DetectionMethod(str, Enum):
    MANUAL = "MANUAL"
    GUARDIAN_MATCH = "GUARDIAN_MATCH"
    NAME_MATCH = "NAME_MATCH"
    CONTACT_MATCH = "CONTACT_MATCH"


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass
class ContactPoint:
    person_id: str
    contact_type: ContactType
    value: str
    is_primary: bool = False
    state: ContactState = ContactState.ACTIVE


@dataclass
class ProgramProfile:
    id: str
    person_id: str
    program: Program
    status: EnrollmentStatus
    created_at: datetime | None = None
    open_enrollments: int = 0

    @property
    def is_active(self) -> bool:
        """Not withdrawn and holding at least one open enrollment."""
        return self.status != EnrollmentStatus.WITHDRAWN and self.open_enrollments > 0


@dataclass
class Person:
    id: str
    name: str
    date_of_birth: date | None = None
    created_at: datetime | None = None
    contact_points: list[ContactPoint] = field(default_factory=list)
    profiles: list[ProgramProfile] = field(default_factory=list)

    def _primary(self, types: tuple[ContactType, ...]) -> str | None:
        active = [
            cp for cp in self.contact_points
            if cp.contact_type in types and cp.state == ContactState.ACTIVE
        ]
        for cp in active:
            if cp.is_primary:
                return cp.value
        return active[0].value if active else None

    @property
    def primary_email(self) -> str | None:
        return self._primary((ContactType.EMAIL,))

    @property
    def primary_phone(self) -> str | None:
        return self._primary(PHONE_CONTACT_TYPES)

    def has_contact(self, contact_type: ContactType, value: str) -> bool:
        types = PHONE_CONTACT_TYPES if contact_type in PHONE_CONTACT_TYPES else (contact_type,)
        return any(
            cp.contact_type in types
            and cp.value == value
            and cp.state == ContactState.ACTIVE
            for cp in self.contact_points
        )

    def active_profile_for(self, program: Program) -> ProgramProfile | None:
        for profile in self.profiles:
            if profile.program == program and profile.is_active:
                return profile
        return None


@dataclass
class SiblingRelationship:
    id: str
    person1_id: str
    person2_id: str
    state: RelationshipState
    detection_method: DetectionMethod = DetectionMethod.MANUAL
    notes: str | None = None

    @property
    def is_active(self) -> bool:
        return self.state == RelationshipState.ACTIVE
