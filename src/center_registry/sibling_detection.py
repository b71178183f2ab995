"""center_registry.sibling_detection

Suggest people who are probably siblings of a given person but are not yet
linked.  Read-only; nothing is written until an admin accepts a suggestion
through siblings.add_sibling.

Detection methods and confidence:

    GUARDIAN_MATCH  0.9   shares an active guardian
                    0.95  ... and more than one
    CONTACT_MATCH   0.8   shares a contact value (household phone/email)
                    +0.1  per further shared value, capped at 0.95
    NAME_MATCH      0.5   shares a last name
                    0.7   ... and birth dates are under 5 years apart

People already related to the person (active or inactive edge) are never
suggested.  All scores come from calculate_confidence_score.  Each
candidate appears once with its highest-confidence method;
results are sorted by confidence, highest first.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any

import psycopg

from center_registry import people
from center_registry.errors import NotFoundError
from center_registry.models import ContactState, DetectionMethod
from center_registry.normalize import last_name_of, normalize_name

SIMILAR_AGE_YEARS = 5


@dataclass
class PotentialSibling:
    person_id: str
    name: str
    method: DetectionMethod
    confidence: float
    reasons: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "personId": self.person_id,
            "name": self.name,
            "method": self.method.value,
            "confidence": self.confidence,
            "reasons": self.reasons,
        }


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

def calculate_confidence_score(
    method: DetectionMethod,
    shared_guardians: int = 0,
    name_match: bool = False,
    age_difference_years: float | None = None,
    shared_contacts: int = 0,
) -> float:
    """Score a proposed relationship from the evidence behind it, in [0, 1]."""
    if method == DetectionMethod.GUARDIAN_MATCH:
        score = 0.95 if shared_guardians > 1 else 0.9
    elif method == DetectionMethod.CONTACT_MATCH:
        score = min(0.7 + shared_contacts * 0.1, 0.95)
    elif method == DetectionMethod.NAME_MATCH:
        score = 0.6 if name_match else 0.5
        if age_difference_years is not None and age_difference_years < SIMILAR_AGE_YEARS:
            score += 0.2
        score = min(score, 0.9)
    else:
        score = 1.0
    return min(max(round(score, 4), 0.0), 1.0)


def years_apart(first: date | None, second: date | None) -> float | None:
    if first is None or second is None:
        return None
    return abs((first - second).days) / 365


# ---------------------------------------------------------------------------
# Candidate queries
# ---------------------------------------------------------------------------

def _related_person_ids(conn: psycopg.Connection, person_id: str) -> set[str]:
    rows = conn.execute(
        """
        SELECT CASE WHEN person1_id = %s THEN person2_id ELSE person1_id END
        FROM sibling_relationship
        WHERE person1_id = %s OR person2_id = %s
        """,
        (person_id, person_id, person_id),
    ).fetchall()
    return {str(r[0]) for r in rows}


def _guardian_matches(conn: psycopg.Connection, person_id: str) -> list[tuple]:
    """(dependent_id, dependent_name, guardian_name) for co-dependents."""
    return conn.execute(
        """
        SELECT other.dependent_id, dep.name, g.name
        FROM guardian_relationship mine
        JOIN guardian_relationship other
          ON other.guardian_id = mine.guardian_id
         AND other.dependent_id <> mine.dependent_id
         AND other.state = 'ACTIVE'
        JOIN person dep ON dep.id = other.dependent_id
        JOIN person g   ON g.id = mine.guardian_id
        WHERE mine.dependent_id = %s
          AND mine.state = 'ACTIVE'
        ORDER BY dep.name, g.name
        """,
        (person_id,),
    ).fetchall()


def _name_matches(conn: psycopg.Connection, person_id: str, last_name: str) -> list[tuple]:
    """(id, name, date_of_birth) for people whose name contains last_name."""
    return conn.execute(
        """
        SELECT id, name, date_of_birth
        FROM person
        WHERE id <> %s
          AND name ILIKE %s
        ORDER BY name
        """,
        (person_id, f"%{last_name}%"),
    ).fetchall()


def _contact_matches(
    conn: psycopg.Connection,
    person_id: str,
    values: list[str],
) -> list[tuple]:
    """(person_id, name, contact_type, contact_value) sharing any of values."""
    return conn.execute(
        """
        SELECT cp.person_id, p.name, cp.contact_type, cp.contact_value
        FROM contact_point cp
        JOIN person p ON p.id = cp.person_id
        WHERE cp.person_id <> %s
          AND cp.contact_value = ANY(%s::text[])
        ORDER BY p.name, cp.contact_type
        """,
        (person_id, values),
    ).fetchall()


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------

def detect_potential_siblings(conn: psycopg.Connection, person_id: str) -> list[PotentialSibling]:
    person = people.fetch_person(conn, person_id)
    if person is None:
        raise NotFoundError(f"Person not found: {person_id}")

    excluded = _related_person_ids(conn, person.id) | {person.id}
    found: dict[str, PotentialSibling] = {}

    def _offer(candidate: PotentialSibling) -> None:
        if candidate.person_id in excluded:
            return
        current = found.get(candidate.person_id)
        if current is None or candidate.confidence > current.confidence:
            found[candidate.person_id] = candidate
        elif candidate.method == current.method:
            current.reasons.extend(r for r in candidate.reasons if r not in current.reasons)

    # 1. shared guardian
    guardians: dict[str, tuple[str, list[str]]] = {}
    for dependent_id, dependent_name, guardian_name in _guardian_matches(conn, person.id):
        _, names = guardians.setdefault(str(dependent_id), (dependent_name, []))
        if guardian_name not in names:
            names.append(guardian_name)
    for dependent_id, (dependent_name, names) in guardians.items():
        _offer(PotentialSibling(
            person_id=dependent_id,
            name=dependent_name,
            method=DetectionMethod.GUARDIAN_MATCH,
            confidence=calculate_confidence_score(
                DetectionMethod.GUARDIAN_MATCH, shared_guardians=len(names)
            ),
            reasons=[f"Shared guardian: {n}" for n in names],
        ))

    # 2. shared last name, boosted by similar age
    last_name = last_name_of(person.name)
    if last_name:
        wanted = normalize_name(last_name)
        for match_id, match_name, match_dob in _name_matches(conn, person.id, last_name):
            if normalize_name(last_name_of(match_name)) != wanted:
                continue
            reasons = [f"Shared last name: {last_name}"]
            gap = years_apart(person.date_of_birth, match_dob)
            if gap is not None and gap < SIMILAR_AGE_YEARS:
                reasons.append(f"Similar age ({round(gap)} years apart)")
            _offer(PotentialSibling(
                person_id=str(match_id),
                name=match_name,
                method=DetectionMethod.NAME_MATCH,
                confidence=calculate_confidence_score(
                    DetectionMethod.NAME_MATCH, age_difference_years=gap
                ),
                reasons=reasons,
            ))

    # 3. shared contact values
    values = sorted({
        cp.value for cp in person.contact_points if cp.state == ContactState.ACTIVE
    })
    shared: dict[str, tuple[str, list[str]]] = {}
    if values:
        for match_id, match_name, contact_type, value in _contact_matches(conn, person.id, values):
            _, reasons = shared.setdefault(str(match_id), (match_name, []))
            reason = f"Shared {str(contact_type).lower()}: {value}"
            if reason not in reasons:
                reasons.append(reason)
    for match_id, (match_name, reasons) in shared.items():
        _offer(PotentialSibling(
            person_id=match_id,
            name=match_name,
            method=DetectionMethod.CONTACT_MATCH,
            confidence=calculate_confidence_score(
                DetectionMethod.CONTACT_MATCH, shared_contacts=len(reasons)
            ),
            reasons=reasons,
        ))

    return sorted(found.values(), key=lambda c: c.confidence, reverse=True)
